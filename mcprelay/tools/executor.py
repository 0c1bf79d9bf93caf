"""Generic executor for catalog tools.

Turns ``(tool name, arguments)`` into one REST request and wraps the reply
as ``{"content": ...}``. Entirely separate from the streaming relay.
"""

from __future__ import annotations

import asyncio
import json as _json
from typing import Any
from urllib.parse import quote

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from mcprelay.config.schema import RelayConfig
from mcprelay.proxy.errors import (
    MissingCredential,
    ToolArgumentError,
    ToolNotFound,
    ToolUpstreamError,
    UpstreamTimeout,
    UpstreamUnreachable,
)
from mcprelay.tools.catalog import ToolSpec, get_tool


def build_request(
    spec: ToolSpec, arguments: dict[str, Any]
) -> tuple[str, dict[str, str], dict[str, Any] | None]:
    """Resolve the path, query and body for a tool call.

    Returns:
        ``(path, query, body)``. ``body`` is None unless the tool takes one.

    Raises:
        ToolArgumentError: If a required argument is missing or a path
            argument is not a scalar.
    """
    missing = [
        name for name in spec.required
        if name not in arguments or arguments[name] in (None, "")
    ]
    if missing:
        raise ToolArgumentError(
            f"Tool '{spec.name}' is missing required argument(s): {', '.join(missing)}"
        )

    path = spec.path
    for name in spec.path_params:
        value = arguments[name]
        if isinstance(value, (dict, list)):
            raise ToolArgumentError(
                f"Argument '{name}' of tool '{spec.name}' must be a string or number"
            )
        path = path.replace("{" + name + "}", quote(str(value), safe=""))

    query: dict[str, str] = {}
    for name in spec.query:
        value = arguments.get(name)
        if value is None:
            continue
        # JSON true/false → "true"/"false", not Python's "True"/"False"
        query[name] = str(value).lower() if isinstance(value, bool) else str(value)

    body: dict[str, Any] | None = None
    if spec.body:
        used = set(spec.path_params) | set(spec.query)
        body = {k: v for k, v in arguments.items() if k not in used}

    return path, query, body


class ToolExecutor:
    """Runs catalog tools against the REST API.

    Args:
        session: Shared client session.
        config: Proxy configuration (API key, base URL, timeout).
    """

    def __init__(self, session: ClientSession, config: RelayConfig) -> None:
        self._session = session
        self._config = config

    async def execute(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Execute one tool call.

        Returns:
            ``{"content": <upstream JSON, or text if not JSON>}``.

        Raises:
            ToolNotFound, ToolArgumentError, MissingCredential,
            ToolUpstreamError, UpstreamTimeout, UpstreamUnreachable.
        """
        spec = get_tool(name)
        if spec is None:
            raise ToolNotFound(name)
        if not self._config.api_key:
            raise MissingCredential()

        path, query, body = build_request(spec, arguments)
        url = f"{self._config.api_base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Accept": "application/json",
        }
        if body is not None:
            headers["Content-Type"] = "application/json"

        try:
            async with self._session.request(
                spec.method,
                url,
                headers=headers,
                params=query or None,
                json=body,
                timeout=ClientTimeout(total=self._config.timeout_seconds),
            ) as resp:
                raw = await resp.read()
                status = resp.status
        except asyncio.TimeoutError:
            raise UpstreamTimeout(self._config.timeout_ms) from None
        except aiohttp.ClientError as e:
            raise UpstreamUnreachable(f"Upstream unreachable: {e}") from e

        content = _decode(raw)
        if not 200 <= status < 300:
            raise ToolUpstreamError(status, content)
        return {"content": content}


def _decode(raw: bytes) -> Any:
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    try:
        return _json.loads(text)
    except ValueError:
        return text
