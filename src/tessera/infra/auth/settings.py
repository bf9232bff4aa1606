"""Authentication and gate configuration settings.

Loaded from environment variables with AUTH_ and GATE_ prefixes.
Follows Pydantic BaseSettings pattern for type-safe configuration.

Environment Variables:
    AUTH_ISSUER: Identity provider issuer URL (enables the asymmetric path)
    AUTH_AUDIENCE: Expected JWT audience claim
    AUTH_JWKS_URL: Explicit JWKS endpoint (skips OIDC discovery)
    AUTH_JWKS_CACHE_TTL: Key set freshness in seconds
    AUTH_JWKS_FETCH_TIMEOUT: HTTP timeout for discovery and key fetches
    AUTH_JWKS_MIN_REFRESH_INTERVAL: Minimum seconds between refreshes
    AUTH_SHARED_SECRET: HS256 secret (enables the symmetric path)
    AUTH_SYMMETRIC_FALLBACK: key_unavailable | any_failure
    AUTH_LEEWAY: Clock skew tolerance for exp/nbf in seconds
    AUTH_CREDENTIAL_ISSUER: iss claim stamped on issued credentials
    GATE_DEFAULT_PLAN_CODE: Plan assigned to new principals
    GATE_DEFAULT_ROLE: Role assigned to new principals
    GATE_IMPERSONATION_TTL_MINUTES: Elevated credential lifetime (max 30)
    GATE_IMPERSONATION_ROLE: Tenant-scoped role of impersonating operators
    GATE_IMPERSONATION_RESUME_LOCATION: Where operators return after impersonation
    GATE_REFERENCE_TIMEZONE: Time zone defining calendar-month billing windows
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tessera.foundation.domain.principal import Role

SymmetricFallback = Literal["key_unavailable", "any_failure"]


class AuthSettings(BaseSettings):
    """Credential verification configuration loaded from environment variables.

    Example:
        >>> settings = AuthSettings()
        >>> settings.audience
        'authenticated'
        >>> settings.has_verification_path()
        False
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    issuer: str = Field(
        default="",
        description="Identity provider issuer URL",
    )
    audience: str = Field(
        default="authenticated",
        description="Expected JWT audience claim",
    )
    jwks_url: str = Field(
        default="",
        description="Explicit JWKS endpoint; discovered from the issuer when empty",
    )
    jwks_cache_ttl: int = Field(
        default=3600,
        ge=30,
        le=86400,
        description="Key set freshness in seconds",
    )
    jwks_fetch_timeout: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="HTTP timeout for discovery and key set fetches in seconds",
    )
    jwks_min_refresh_interval: float = Field(
        default=30.0,
        ge=0,
        description="Minimum seconds between key set refreshes",
    )
    shared_secret: str = Field(
        default="",
        repr=False,  # Security: never log the shared secret
        description="HS256 shared secret for the symmetric verification path",
    )
    symmetric_fallback: SymmetricFallback = Field(
        default="key_unavailable",
        description="When the symmetric path is tried after the asymmetric path",
    )
    leeway: int = Field(
        default=0,
        ge=0,
        le=300,
        description="Clock skew tolerance for exp/nbf in seconds",
    )
    credential_issuer: str = Field(
        default="tessera",
        description="iss claim stamped on credentials issued by this service",
    )

    def has_asymmetric_path(self) -> bool:
        """True when a JWKS endpoint is configured or discoverable."""
        return bool(self.jwks_url or self.issuer)

    def has_symmetric_path(self) -> bool:
        """True when a shared secret is configured."""
        return bool(self.shared_secret)

    def has_verification_path(self) -> bool:
        return self.has_asymmetric_path() or self.has_symmetric_path()


class GateSettings(BaseSettings):
    """Provisioning, impersonation and quota configuration.

    Example:
        >>> GateSettings().default_plan_code
        'free'
    """

    model_config = SettingsConfigDict(
        env_prefix="GATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_plan_code: str = Field(
        default="free",
        description="Plan every new principal is subscribed to",
    )
    default_role: Role = Field(
        default=Role.MEMBER,
        description="Role assigned to newly provisioned principals",
    )
    impersonation_ttl_minutes: int = Field(
        default=30,
        ge=1,
        le=30,
        description="Lifetime of elevated impersonation credentials",
    )
    impersonation_role: Role = Field(
        default=Role.ADMIN,
        description="Tenant-scoped role granted to impersonating operators",
    )
    impersonation_resume_location: str = Field(
        default="/saas-admin",
        description="Location operators return to after impersonation",
    )
    reference_timezone: str = Field(
        default="UTC",
        description="IANA time zone defining calendar-month billing windows",
    )

    @field_validator("impersonation_role")
    @classmethod
    def _tenant_scoped(cls, value: Role) -> Role:
        if value.is_platform_role:
            raise ValueError("GATE_IMPERSONATION_ROLE must be a tenant-scoped role")
        return value

    @field_validator("reference_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown time zone: {value}") from exc
        return value


@lru_cache(maxsize=1)
def get_auth_settings() -> AuthSettings:
    """Get singleton AuthSettings instance.

    Cached for performance - settings are loaded once per application lifecycle.
    Clear cache with ``get_auth_settings.cache_clear()`` for testing.
    """
    return AuthSettings()


@lru_cache(maxsize=1)
def get_gate_settings() -> GateSettings:
    """Get singleton GateSettings instance. Clear with ``cache_clear()`` in tests."""
    return GateSettings()
