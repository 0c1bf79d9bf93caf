"""Error kinds surfaced to the caller.

Every error response is a JSON object with an ``error`` string field. The
HTTP layer turns any ``RelayError`` raised while handling a request into
``web.json_response(exc.to_body(), status=exc.status)``.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for failures that map to a caller-facing HTTP error.

    Attributes:
        status: HTTP status sent to the caller.
        kind: Short machine-readable name used in the request log.
    """

    status: int = 500
    kind: str = "relay_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message}


class Unauthorized(RelayError):
    """The path secret did not match."""

    status = 401
    kind = "unauthorized"

    def __init__(self) -> None:
        super().__init__("Unauthorized")


class MissingCredential(RelayError):
    """No upstream API key is configured."""

    status = 500
    kind = "missing_credential"

    def __init__(self) -> None:
        super().__init__("Missing RENDER_API_KEY env var")


class UpstreamUnreachable(RelayError):
    """Connection refused, DNS failure, TLS failure, or similar."""

    status = 502
    kind = "upstream_unreachable"


class UpstreamTimeout(RelayError):
    """The upstream did not answer before the deadline."""

    status = 502
    kind = "timeout"

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Upstream timed out after {timeout_ms} ms")


class UpstreamStreamError(RelayError):
    """The upstream body failed after headers arrived but before any byte was sent."""

    status = 502
    kind = "upstream_stream_error"


class ToolNotFound(RelayError):
    status = 404
    kind = "tool_not_found"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool '{name}'")


class ToolArgumentError(RelayError):
    status = 400
    kind = "tool_argument_error"


class ToolUpstreamError(RelayError):
    """The REST API behind a named tool answered with a non-2xx status."""

    status = 502
    kind = "tool_upstream_error"

    def __init__(self, upstream_status: int, detail: Any) -> None:
        self.upstream_status = upstream_status
        self.detail = detail
        super().__init__(f"Render API returned {upstream_status}")

    def to_body(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "status": self.upstream_status,
            "detail": self.detail,
        }
