"""Pydantic v2 model for mcprelay configuration.

A ``RelayConfig`` is built once at startup and shared read-only by every
request handler. Nothing in the request path reads the environment.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_UPSTREAM_URL = "https://mcp.render.com/mcp"
DEFAULT_API_BASE_URL = "https://api.render.com/v1"
DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_PORT = 10_000
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024


class RelayConfig(BaseModel):
    """Immutable proxy configuration.

    Attributes:
        api_key: Bearer credential injected on every upstream call. ``None``
            means every relayed request fails with a 500.
        path_secret: Shared secret expected in ``/mcp/{secret}``. ``None``
            leaves the gate open.
        upstream_url: The single upstream MCP endpoint.
        timeout_ms: Deadline for an upstream call, in milliseconds.
        host: Interface to bind.
        port: Port to bind.
        api_base_url: Base URL of the REST API used by the named tool layer.
        max_body_bytes: Largest inbound request body accepted (413 above).
        log_path: Optional JSON Lines request log.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    api_key: str | None = None
    path_secret: str | None = None
    upstream_url: str = DEFAULT_UPSTREAM_URL
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    host: str = "0.0.0.0"
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    api_base_url: str = DEFAULT_API_BASE_URL
    max_body_bytes: int = Field(default=DEFAULT_MAX_BODY_BYTES, gt=0)
    log_path: Path | None = None

    @field_validator("api_key", "path_secret", mode="before")
    @classmethod
    def blank_is_unset(cls, value: Any) -> Any:
        """Treat empty strings as absent, the way an unset env var behaves."""
        if isinstance(value, str) and value == "":
            return None
        return value

    @field_validator("upstream_url", "api_base_url")
    @classmethod
    def require_http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            msg = f"must be an http:// or https:// URL, got '{value}'"
            raise ValueError(msg)
        return value

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    @property
    def gate_open(self) -> bool:
        """True when no path secret is configured (open mode)."""
        return self.path_secret is None
