"""Tessera Foundation Application -- session context, usage gate, wiring types."""

from tessera.foundation.application.context import (
    NoSessionContextError,
    SessionContext,
    SessionContextBuilder,
    clear_session_context,
    get_current_session,
    get_optional_session,
    set_session_context,
)
from tessera.foundation.application.contributions import LifespanContribution
from tessera.foundation.application.discovery import discover_lifespan_hooks
from tessera.foundation.application.usage_gate import (
    Entitlement,
    UsageDecision,
    UsageGate,
    UsageSummary,
)

__all__ = [
    "Entitlement",
    "LifespanContribution",
    "NoSessionContextError",
    "SessionContext",
    "SessionContextBuilder",
    "UsageDecision",
    "UsageGate",
    "UsageSummary",
    "clear_session_context",
    "discover_lifespan_hooks",
    "get_current_session",
    "get_optional_session",
    "set_session_context",
]
