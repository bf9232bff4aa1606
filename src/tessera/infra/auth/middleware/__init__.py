"""Authentication middleware."""

from tessera.infra.auth.middleware.bearer_auth import BearerAuthMiddleware

__all__ = ["BearerAuthMiddleware"]
