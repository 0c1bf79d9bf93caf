"""Upstream dispatcher.

Issues the single outbound request for a relayed call over a shared
``aiohttp.ClientSession``. The deadline covers connecting and receiving the
status line and headers; the body is left unread so the relay can decide
whether to buffer or stream it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import aiohttp
from aiohttp import ClientSession, ClientTimeout
from yarl import URL

from mcprelay.proxy.errors import UpstreamTimeout, UpstreamUnreachable

# Methods whose inbound body is never forwarded.
_NO_BODY_METHODS = frozenset({"GET", "HEAD"})


def make_session() -> ClientSession:
    """Create the process-wide upstream session.

    ``auto_decompress`` is off because the relay decides when to decode.
    ``Accept-Encoding`` and ``Content-Type`` are not added automatically so
    that only the caller's own headers reach the upstream.
    """
    return ClientSession(
        timeout=ClientTimeout(total=None),
        auto_decompress=False,
        skip_auto_headers=("Accept-Encoding", "Content-Type"),
    )


@dataclass
class OutboundRequest:
    """One request to the upstream, derived from the caller's request."""

    method: str
    url: str
    headers: dict[str, str]
    body: bytes | None
    timeout_ms: int
    query_string: str = ""

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        headers: dict[str, str],
        raw_body: bytes,
        timeout_ms: int,
        query_string: str = "",
    ) -> OutboundRequest:
        """Attach the raw body unless the method is GET or HEAD.

        ``query_string`` is the caller's query exactly as sent (still
        percent-encoded) and is appended to ``url`` unchanged.
        """
        method = method.upper()
        body = None if method in _NO_BODY_METHODS else raw_body
        return cls(
            method=method,
            url=url,
            headers=headers,
            body=body,
            timeout_ms=timeout_ms,
            query_string=query_string,
        )


def upstream_url(base: str, query_string: str) -> URL:
    """Append a raw, already-encoded query string to ``base``.

    The caller's query is not decoded and re-encoded, so ``?a&b=%2F`` reaches
    the upstream byte for byte. A query already on ``base`` comes first.
    """
    url = URL(base)
    if not query_string:
        return url
    existing = url.raw_query_string
    combined = f"{existing}&{query_string}" if existing else query_string
    return URL(f"{url.with_query(None)}?{combined}", encoded=True)


class UpstreamDispatcher:
    """Sends outbound requests and maps transport failures to relay errors.

    Args:
        session: Shared client session (connection pool).
    """

    def __init__(self, session: ClientSession) -> None:
        self._session = session

    async def dispatch(self, outbound: OutboundRequest) -> aiohttp.ClientResponse:
        """Send the request and return once status and headers have arrived.

        The caller owns the returned response and must release it.
        Cancelling the awaiting task (caller disconnect) cancels the
        in-flight request.

        Raises:
            UpstreamTimeout: No response before ``outbound.timeout_ms``.
            UpstreamUnreachable: Connection, DNS or TLS failure.
        """
        url = upstream_url(outbound.url, outbound.query_string)

        try:
            return await asyncio.wait_for(
                self._send(outbound, url),
                timeout=outbound.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            raise UpstreamTimeout(outbound.timeout_ms) from None
        except aiohttp.ClientError as e:
            raise UpstreamUnreachable(f"Upstream unreachable: {e}") from e
        except OSError as e:
            raise UpstreamUnreachable(f"Upstream unreachable: {e}") from e

    async def _send(
        self, outbound: OutboundRequest, url: URL
    ) -> aiohttp.ClientResponse:
        return await self._session.request(
            outbound.method,
            url,
            headers=outbound.headers,
            data=outbound.body,
            allow_redirects=False,
        )
