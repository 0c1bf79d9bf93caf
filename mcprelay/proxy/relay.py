"""Response relay: the core of the proxy.

Takes the upstream response for one relayed call and hands it to the
caller either as a single buffered body or as a live byte stream.

State flow per request::

    IDLE → DISPATCHED → CLASSIFYING → BUFFERING | STREAMING → COMPLETED | FAILED

Classification returns one of two reply types, each carrying only what its
path needs:

- ``BufferedReply``: the whole (possibly decompressed) body as bytes.
- ``StreamingReply``: the live upstream byte source.

Streaming is a direct await loop: one ``readany()`` from the upstream, one
``write()`` to the caller. ``write()`` waits for the caller's socket to
drain and the upstream reader pauses its transport when its buffer fills,
so a slow caller slows the upstream instead of growing a queue in memory.
"""

from __future__ import annotations

import asyncio
import time
import zlib
from dataclasses import dataclass, field
from enum import Enum

import aiohttp
from aiohttp import web
from multidict import CIMultiDict, CIMultiDictProxy

from mcprelay.proxy.dispatch import OutboundRequest, UpstreamDispatcher
from mcprelay.proxy.errors import UpstreamStreamError, UpstreamTimeout
from mcprelay.proxy.headers import filter_response_headers

# Encodings the relay decodes itself on the buffering path.
_DECODABLE = frozenset({"gzip", "x-gzip", "deflate"})


class RelayState(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    CLASSIFYING = "classifying"
    BUFFERING = "buffering"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


# Legal transitions. FAILED is reachable from every non-terminal state.
_TRANSITIONS: dict[RelayState, frozenset[RelayState]] = {
    RelayState.IDLE: frozenset({RelayState.DISPATCHED}),
    RelayState.DISPATCHED: frozenset({RelayState.CLASSIFYING}),
    RelayState.CLASSIFYING: frozenset({RelayState.BUFFERING, RelayState.STREAMING}),
    RelayState.BUFFERING: frozenset({RelayState.COMPLETED}),
    RelayState.STREAMING: frozenset({RelayState.COMPLETED}),
    RelayState.COMPLETED: frozenset(),
    RelayState.FAILED: frozenset(),
}


@dataclass
class RelaySession:
    """Diagnostics for one relayed exchange.

    Attributes:
        state: Current relay state.
        bytes_relayed: Bytes written to the caller's response body.
        chunk_count: Number of body writes to the caller.
        failure: Kind of failure when ``state`` is FAILED.
        client_disconnected: The caller went away before completion.
    """

    state: RelayState = RelayState.IDLE
    bytes_relayed: int = 0
    chunk_count: int = 0
    failure: str | None = None
    client_disconnected: bool = False
    started: float = field(default_factory=time.monotonic)
    history: list[RelayState] = field(default_factory=lambda: [RelayState.IDLE])

    def advance(self, new_state: RelayState) -> None:
        if new_state is RelayState.FAILED:
            if self.state in (RelayState.COMPLETED, RelayState.FAILED):
                msg = f"Cannot fail a relay that is already {self.state.value}"
                raise RuntimeError(msg)
        elif new_state not in _TRANSITIONS[self.state]:
            msg = f"Illegal relay transition {self.state.value} → {new_state.value}"
            raise RuntimeError(msg)
        self.state = new_state
        self.history.append(new_state)

    def fail(self, kind: str) -> None:
        if self.state not in (RelayState.COMPLETED, RelayState.FAILED):
            self.advance(RelayState.FAILED)
        self.failure = self.failure or kind

    def record(self, nbytes: int) -> None:
        self.bytes_relayed += nbytes
        self.chunk_count += 1

    @property
    def mode(self) -> str:
        if RelayState.STREAMING in self.history:
            return "streaming"
        if RelayState.BUFFERING in self.history:
            return "buffered"
        return "none"

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


@dataclass(frozen=True)
class BufferedReply:
    status: int
    headers: CIMultiDict[str]
    body: bytes


@dataclass(frozen=True)
class StreamingReply:
    status: int
    headers: CIMultiDict[str]
    source: aiohttp.StreamReader


Reply = BufferedReply | StreamingReply


def is_event_stream(headers: CIMultiDictProxy[str] | CIMultiDict[str]) -> bool:
    """True when the response is an event stream with no declared length."""
    content_type = headers.get("Content-Type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "text/event-stream" and "Content-Length" not in headers


def decompress(body: bytes, encoding: str) -> bytes:
    """Decode a gzip or deflate body.

    Raises:
        UpstreamStreamError: If the body is not valid for its declared encoding.
    """
    try:
        if encoding in ("gzip", "x-gzip"):
            return zlib.decompress(body, 16 + zlib.MAX_WBITS)
        # "deflate" is zlib-wrapped per the RFC, but raw deflate is common.
        try:
            return zlib.decompress(body)
        except zlib.error:
            return zlib.decompress(body, -zlib.MAX_WBITS)
    except zlib.error as e:
        raise UpstreamStreamError(
            f"Upstream stream error: invalid {encoding} body ({e})"
        ) from e


async def classify(
    upstream: aiohttp.ClientResponse,
    *,
    timeout_ms: int,
    deadline: float,
    method: str = "GET",
) -> Reply:
    """Decide between streaming and buffering, reading the body if buffering.

    Args:
        upstream: Response whose status and headers have arrived.
        timeout_ms: Configured deadline, for the timeout error message.
        deadline: Loop time by which a buffered body must be fully read.
        method: Request method. A HEAD reply keeps the upstream
            ``Content-Length``.

    Raises:
        UpstreamTimeout: The buffered body did not finish before the deadline.
        UpstreamStreamError: The upstream failed while sending the body.
    """
    if is_event_stream(upstream.headers):
        return StreamingReply(
            status=upstream.status,
            headers=filter_response_headers(upstream.headers),
            source=upstream.content,
        )

    remaining = deadline - asyncio.get_running_loop().time()
    if remaining <= 0:
        raise UpstreamTimeout(timeout_ms)
    try:
        body = await asyncio.wait_for(upstream.read(), timeout=remaining)
    except asyncio.TimeoutError:
        raise UpstreamTimeout(timeout_ms) from None
    except (aiohttp.ClientError, OSError) as e:
        raise UpstreamStreamError(f"Upstream stream error: {e}") from e

    encoding = upstream.headers.get("Content-Encoding", "").strip().lower()
    drop: tuple[str, ...] = ()
    if encoding in _DECODABLE and body:
        body = decompress(body, encoding)
        drop = ("content-encoding",)

    return BufferedReply(
        status=upstream.status,
        headers=filter_response_headers(
            upstream.headers, drop=drop, keep_length=method == "HEAD"
        ),
        body=body,
    )


class ResponseRelay:
    """Runs one exchange from dispatch to the caller's last byte.

    Args:
        dispatcher: Sends the outbound request.
    """

    def __init__(self, dispatcher: UpstreamDispatcher) -> None:
        self._dispatcher = dispatcher

    async def relay(
        self,
        request: web.Request,
        outbound: OutboundRequest,
        session: RelaySession,
    ) -> web.StreamResponse:
        """Forward ``outbound`` and relay its response to ``request``'s caller.

        Errors raised before anything reaches the caller propagate as
        ``RelayError`` for the HTTP layer to render. Once a streaming
        response has started, failures close the caller's connection.
        Cancellation (caller disconnect) closes the upstream connection and
        propagates.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + outbound.timeout_ms / 1000

        session.advance(RelayState.DISPATCHED)
        upstream = await self._dispatcher.dispatch(outbound)

        completed = False
        try:
            session.advance(RelayState.CLASSIFYING)
            reply = await classify(
                upstream,
                timeout_ms=outbound.timeout_ms,
                deadline=deadline,
                method=outbound.method,
            )
            if isinstance(reply, StreamingReply):
                response = await self._stream(request, reply, session)
            else:
                response = self._buffer(reply, session)
            completed = session.state is RelayState.COMPLETED
            return response
        finally:
            if completed:
                upstream.release()
            else:
                upstream.close()

    def _buffer(self, reply: BufferedReply, session: RelaySession) -> web.Response:
        session.advance(RelayState.BUFFERING)
        response = web.Response(
            status=reply.status,
            body=reply.body,
            headers=reply.headers,
        )
        session.record(len(reply.body))
        session.advance(RelayState.COMPLETED)
        return response

    async def _stream(
        self,
        request: web.Request,
        reply: StreamingReply,
        session: RelaySession,
    ) -> web.StreamResponse:
        response = web.StreamResponse(status=reply.status, headers=reply.headers)
        response.headers["Cache-Control"] = "no-cache"
        response.headers["Connection"] = "keep-alive"
        session.advance(RelayState.STREAMING)

        try:
            await response.prepare(request)
        except OSError:
            session.client_disconnected = True
            session.fail("client_disconnect")
            return response

        while True:
            try:
                chunk = await reply.source.readany()
            except (aiohttp.ClientError, OSError) as e:
                # Headers are already out; a trailing error can't be sent.
                session.fail(f"upstream_stream_error: {e}")
                _abort(request)
                return response
            if not chunk:
                break
            try:
                await response.write(chunk)
            except OSError:
                session.client_disconnected = True
                session.fail("client_disconnect")
                return response
            session.record(len(chunk))

        try:
            await response.write_eof()
        except OSError:
            session.client_disconnected = True
            session.fail("client_disconnect")
            return response

        session.advance(RelayState.COMPLETED)
        return response


def _abort(request: web.Request) -> None:
    """Close the caller's connection so a truncated stream is not mistaken for a complete one."""
    transport = request.transport
    if transport is not None:
        transport.close()
