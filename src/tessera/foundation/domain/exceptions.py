"""Domain exception hierarchy for the access and entitlement gate.

Every gate failure is a ``DomainError`` carrying a machine-readable
``error_code`` and structured ``context``. The API layer maps each class to
an RFC 7807 response; callers never see a bare "unauthorized" without a
reason code.

Taxonomy:
    AuthenticationError        -- request carries no usable bearer credential
      CredentialError          -- credential present but rejected (reason code)
    ResolutionError            -- reference data missing (configuration fault)
    AuthorizationError         -- authenticated but not permitted
      TenantNotFoundError      -- impersonation target missing or deleted
    QuotaExceededError         -- usage limit reached for the billing period
    ConflictError              -- uniqueness / concurrent creation conflict
    StorageUnavailableError    -- persistent store failed or timed out

Example:
    >>> from tessera.foundation.domain.exceptions import CredentialError, CredentialFailure
    >>> raise CredentialError(CredentialFailure.EXPIRED, "Credential has expired")
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "AuthorizationFailure",
    "ConflictError",
    "CredentialError",
    "CredentialFailure",
    "DomainError",
    "QuotaExceededError",
    "ResolutionError",
    "StorageUnavailableError",
    "TenantNotFoundError",
]


class DomainError(Exception):
    """Base class for all gate errors.

    Attributes:
        error_code: Machine-readable error code for client handling.
        message: Human-readable error description.
        context: Structured debugging information (ids, limits, reasons).

    Example:
        >>> raise DomainError("Operation failed", context={"principal_id": "123"})
        DomainError: Operation failed (principal_id=123)
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Initialize domain error with message and optional context.

        Args:
            message: Human-readable error description.
            context: Structured debugging information. Keys should be snake_case.
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """String representation including context for logging."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message

    def __repr__(self) -> str:
        """Detailed representation for debugging."""
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConflictError(DomainError):
    """Raised when an operation conflicts with current persisted state.

    The store raises this on a uniqueness violation (for example a second
    principal for the same external identity). Callers that can recover,
    like the principal resolver, re-read instead of failing.

    Example:
        >>> raise ConflictError("Principal already exists", external_identity_id="sub-1")
        ConflictError: Conflict: Principal already exists (external_identity_id=sub-1)
    """

    error_code: str = "CONFLICT"

    def __init__(self, reason: str, **context: Any) -> None:
        self.reason = reason
        super().__init__(f"Conflict: {reason}", context)


class AuthenticationError(DomainError):
    """Raised when a request cannot be authenticated.

    Maps to HTTP 401. Responses MUST include a ``WWW-Authenticate`` header
    per RFC 6750.

    Attributes:
        error_code: Machine-readable error code (e.g., "MISSING_CREDENTIAL").
        auth_error: RFC 6750 error code for the WWW-Authenticate header.
    """

    error_code: str = "AUTHENTICATION_ERROR"

    def __init__(
        self,
        message: str,
        auth_error: str = "invalid_request",
        error_code: str = "AUTHENTICATION_ERROR",
        context: dict[str, Any] | None = None,
    ) -> None:
        self.auth_error = auth_error
        self.error_code = error_code
        super().__init__(message, context)


class CredentialFailure(StrEnum):
    """Reason codes for a rejected bearer credential. All are terminal."""

    MALFORMED = "MALFORMED"
    EXPIRED = "EXPIRED"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    NO_VERIFICATION_PATH_CONFIGURED = "NO_VERIFICATION_PATH_CONFIGURED"
    INVALID_CLAIMS = "INVALID_CLAIMS"
    KEY_UNAVAILABLE = "KEY_UNAVAILABLE"


class CredentialError(AuthenticationError):
    """Raised by the credential verifier when a credential is rejected.

    The ``reason`` doubles as the ``error_code`` so that support staff can
    tell an expired credential from a wrong audience or a missing key.

    Example:
        >>> raise CredentialError(CredentialFailure.INVALID_CLAIMS, "Invalid audience")
        CredentialError: Invalid audience
    """

    def __init__(
        self,
        reason: CredentialFailure,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.reason = reason
        super().__init__(
            message,
            auth_error="invalid_token",
            error_code=reason.value,
            context=context,
        )


class ResolutionError(DomainError):
    """Raised when principal or entitlement resolution lacks reference data.

    A configuration fault (for example the default plan was never seeded).
    Fatal to the request, never retried.
    """

    error_code: str = "REFERENCE_DATA_MISSING"


class AuthorizationFailure(StrEnum):
    """Reason codes for authorization failures."""

    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    ALREADY_IMPERSONATING = "ALREADY_IMPERSONATING"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"


class AuthorizationError(DomainError):
    """Raised when an authenticated principal lacks permission.

    Maps to HTTP 403 Forbidden.

    Example:
        >>> raise AuthorizationError("Platform role required")
    """

    error_code: str = AuthorizationFailure.NOT_AUTHORIZED.value

    def __init__(
        self,
        message: str,
        reason: AuthorizationFailure = AuthorizationFailure.NOT_AUTHORIZED,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.reason = reason
        self.error_code = reason.value
        super().__init__(message, context)


class TenantNotFoundError(AuthorizationError):
    """Raised when an impersonation target tenant is missing or hard-deleted.

    Maps to HTTP 404.
    """

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(
            f"Tenant not found: {tenant_id}",
            reason=AuthorizationFailure.TENANT_NOT_FOUND,
            context={"tenant_id": tenant_id},
        )


class QuotaExceededError(DomainError):
    """Raised when a metered operation would exceed the plan limit.

    Maps to HTTP 429. Carries the exact usage and limit so callers can render
    an upgrade prompt.

    Attributes:
        current_usage: Units consumed in the current billing period.
        limit: The plan's finite unit limit.
    """

    error_code: str = "LIMIT_EXCEEDED"

    def __init__(self, reason: str, *, current_usage: int, limit: int, **extra_context: Any) -> None:
        self.current_usage = current_usage
        self.limit = limit
        super().__init__(
            reason,
            {"current_usage": current_usage, "limit": limit, **extra_context},
        )


class StorageUnavailableError(DomainError):
    """Raised when the persistent store fails or times out.

    Maps to HTTP 503. The gate fails closed: the operation is denied rather
    than granted on an infrastructure fault.
    """

    error_code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, operation: str, **extra_context: Any) -> None:
        self.operation = operation
        super().__init__(
            f"Persistent store unavailable during {operation}",
            {"operation": operation, **extra_context},
        )
