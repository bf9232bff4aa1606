"""HTTP surface settings: app metadata, public paths and CORS.

Environment Variables:
    APP_TITLE, APP_DESCRIPTION, APP_DEBUG: OpenAPI metadata and debug flag
    APP_DOCS_URL, APP_REDOC_URL, APP_OPENAPI_URL: Docs endpoints (empty disables)
    APP_PUBLIC_PATH_PREFIXES: Paths served without a bearer credential
    APP_OPTIONAL_AUTH_PATH_PREFIXES: Paths where a bearer credential is optional
    APP_EXCLUDE_ENTRY_POINTS: Lifespan entry point names to skip
    CORS_ALLOW_ORIGINS, CORS_ALLOW_METHODS, CORS_ALLOW_HEADERS,
    CORS_EXPOSE_HEADERS, CORS_ALLOW_CREDENTIALS: Browser access policy
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


# NoDecode: list fields arrive from the environment as comma-separated strings.
CsvList = Annotated[list[str], NoDecode]


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class CORSSettings(BaseSettings):
    """Browser access policy for the gate endpoints.

    Defaults cover what the gate serves: GET/POST with a bearer credential,
    and the rate-limit headers a client needs to render quota state.
    """

    model_config = SettingsConfigDict(env_prefix="CORS_", extra="ignore")

    allow_origins: CsvList = Field(default=["*"])
    allow_methods: CsvList = Field(default=["GET", "POST", "OPTIONS"])
    allow_headers: CsvList = Field(default=["Authorization", "Content-Type", "X-Request-ID"])
    allow_credentials: bool = Field(default=False)
    expose_headers: CsvList = Field(
        default=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"]
    )

    @field_validator(
        "allow_origins", "allow_methods", "allow_headers", "expose_headers", mode="before"
    )
    @classmethod
    def _parse_lists(cls, value: Any) -> Any:
        return _split_csv(value)

    @model_validator(mode="after")
    def _no_credentials_with_wildcard(self) -> CORSSettings:
        if self.allow_credentials and "*" in self.allow_origins:
            msg = "CORS allow_credentials requires explicit origins, not '*'"
            raise ValueError(msg)
        return self


def _installed_version() -> str:
    try:
        return version("tessera")
    except PackageNotFoundError:
        return "0.0.0"


class AppSettings(BaseSettings):
    """Settings consumed by :func:`~tessera.infra.fastapi.create_app`."""

    model_config = SettingsConfigDict(env_prefix="APP_", extra="ignore")

    title: str = "Tessera Access Gate"
    version: str = Field(default_factory=_installed_version)
    description: str = ""
    debug: bool = False
    docs_url: str | None = "/docs"
    redoc_url: str | None = "/redoc"
    openapi_url: str | None = "/openapi.json"
    public_path_prefixes: CsvList = Field(
        default=["/health", "/docs", "/redoc", "/openapi.json"],
        description="Path prefixes the bearer middleware lets through unauthenticated",
    )
    optional_auth_path_prefixes: CsvList = Field(
        default=[],
        description="Path prefixes authenticated only when a bearer credential is sent",
    )
    exclude_entry_points: frozenset[str] = Field(default=frozenset())
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("public_path_prefixes", "optional_auth_path_prefixes", mode="before")
    @classmethod
    def _parse_prefixes(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("public_path_prefixes", "optional_auth_path_prefixes")
    @classmethod
    def _absolute_paths(cls, value: list[str]) -> list[str]:
        relative = [prefix for prefix in value if not prefix.startswith("/")]
        if relative:
            msg = f"path prefixes must start with '/': {relative}"
            raise ValueError(msg)
        return value

    @field_validator("docs_url", "redoc_url", "openapi_url", mode="before")
    @classmethod
    def _empty_disables(cls, value: Any) -> Any:
        return None if value == "" else value
