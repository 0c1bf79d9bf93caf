"""Unit tests for response classification and the relay state machine.

End-to-end behaviour over real sockets lives in test_proxy_http.py.
"""

from __future__ import annotations

import asyncio
import gzip
import zlib
from typing import Any

import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from mcprelay.proxy.errors import UpstreamStreamError, UpstreamTimeout
from mcprelay.proxy.relay import (
    BufferedReply,
    RelaySession,
    RelayState,
    StreamingReply,
    classify,
    decompress,
    is_event_stream,
)


def _headers(**values: str) -> CIMultiDictProxy[str]:
    return CIMultiDictProxy(CIMultiDict((k.replace("_", "-"), v) for k, v in values.items()))


class _FakeUpstream:
    """Just enough of aiohttp.ClientResponse for classify()."""

    def __init__(self, status: int, headers: CIMultiDictProxy[str], body: bytes = b"", delay: float = 0.0) -> None:
        self.status = status
        self.headers = headers
        self.content: Any = object()
        self._body = body
        self._delay = delay
        self.reads = 0

    async def read(self) -> bytes:
        self.reads += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        return self._body


# ---------------------------------------------------------------------------
# RelaySession
# ---------------------------------------------------------------------------


class TestRelaySession:
    def test_buffered_path(self) -> None:
        session = RelaySession()
        for state in (
            RelayState.DISPATCHED,
            RelayState.CLASSIFYING,
            RelayState.BUFFERING,
            RelayState.COMPLETED,
        ):
            session.advance(state)
        assert session.mode == "buffered"
        assert session.history[0] is RelayState.IDLE
        assert session.history[-1] is RelayState.COMPLETED

    def test_streaming_mode(self) -> None:
        session = RelaySession()
        session.advance(RelayState.DISPATCHED)
        session.advance(RelayState.CLASSIFYING)
        session.advance(RelayState.STREAMING)
        session.record(10)
        session.record(5)
        assert session.mode == "streaming"
        assert session.bytes_relayed == 15
        assert session.chunk_count == 2

    def test_no_mode_before_classification(self) -> None:
        session = RelaySession()
        session.advance(RelayState.DISPATCHED)
        assert session.mode == "none"

    def test_illegal_transition(self) -> None:
        session = RelaySession()
        with pytest.raises(RuntimeError, match="Illegal relay transition"):
            session.advance(RelayState.STREAMING)

    def test_fail_from_any_live_state(self) -> None:
        session = RelaySession()
        session.advance(RelayState.DISPATCHED)
        session.fail("timeout")
        assert session.state is RelayState.FAILED
        assert session.failure == "timeout"

    def test_first_failure_kind_wins(self) -> None:
        session = RelaySession()
        session.fail("upstream_unreachable")
        session.fail("client_disconnect")
        assert session.failure == "upstream_unreachable"
        assert session.history.count(RelayState.FAILED) == 1

    def test_completed_is_terminal(self) -> None:
        session = RelaySession()
        for state in (
            RelayState.DISPATCHED,
            RelayState.CLASSIFYING,
            RelayState.BUFFERING,
            RelayState.COMPLETED,
        ):
            session.advance(state)
        with pytest.raises(RuntimeError):
            session.advance(RelayState.FAILED)
        session.fail("late")
        assert session.state is RelayState.COMPLETED


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestIsEventStream:
    @pytest.mark.parametrize(
        "content_type",
        ["text/event-stream", "text/event-stream; charset=utf-8", "Text/Event-Stream"],
    )
    def test_event_stream_without_length(self, content_type: str) -> None:
        assert is_event_stream(_headers(Content_Type=content_type)) is True

    def test_declared_length_means_buffered(self) -> None:
        assert is_event_stream(
            _headers(Content_Type="text/event-stream", Content_Length="12")
        ) is False

    @pytest.mark.parametrize("content_type", ["application/json", "text/plain", ""])
    def test_other_types(self, content_type: str) -> None:
        assert is_event_stream(_headers(Content_Type=content_type)) is False

    def test_missing_content_type(self) -> None:
        assert is_event_stream(_headers()) is False


class TestDecompress:
    PAYLOAD = b'{"jsonrpc":"2.0","result":{"items":[1,2,3]}}' * 20

    def test_gzip(self) -> None:
        assert decompress(gzip.compress(self.PAYLOAD), "gzip") == self.PAYLOAD

    def test_x_gzip(self) -> None:
        assert decompress(gzip.compress(self.PAYLOAD), "x-gzip") == self.PAYLOAD

    def test_zlib_wrapped_deflate(self) -> None:
        assert decompress(zlib.compress(self.PAYLOAD), "deflate") == self.PAYLOAD

    def test_raw_deflate(self) -> None:
        compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        raw = compressor.compress(self.PAYLOAD) + compressor.flush()
        assert decompress(raw, "deflate") == self.PAYLOAD

    def test_garbage_raises(self) -> None:
        with pytest.raises(UpstreamStreamError, match="invalid gzip body"):
            decompress(b"definitely not gzip", "gzip")


class TestClassify:
    @pytest.mark.asyncio
    async def test_event_stream_is_not_read(self) -> None:
        upstream = _FakeUpstream(
            200, _headers(Content_Type="text/event-stream", Cache_Control="no-cache")
        )
        deadline = asyncio.get_running_loop().time() + 5
        reply = await classify(upstream, timeout_ms=5000, deadline=deadline)  # type: ignore[arg-type]
        assert isinstance(reply, StreamingReply)
        assert reply.source is upstream.content
        assert upstream.reads == 0

    @pytest.mark.asyncio
    async def test_json_is_buffered(self) -> None:
        upstream = _FakeUpstream(
            201,
            _headers(Content_Type="application/json", Content_Length="2", Transfer_Encoding="identity"),
            b"{}",
        )
        deadline = asyncio.get_running_loop().time() + 5
        reply = await classify(upstream, timeout_ms=5000, deadline=deadline)  # type: ignore[arg-type]
        assert isinstance(reply, BufferedReply)
        assert reply.status == 201
        assert reply.body == b"{}"
        assert "Content-Length" not in reply.headers
        assert "Transfer-Encoding" not in reply.headers
        assert reply.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_gzip_body_decoded(self) -> None:
        body = b'{"ok":true}'
        upstream = _FakeUpstream(
            200,
            _headers(Content_Type="application/json", Content_Encoding="gzip"),
            gzip.compress(body),
        )
        deadline = asyncio.get_running_loop().time() + 5
        reply = await classify(upstream, timeout_ms=5000, deadline=deadline)  # type: ignore[arg-type]
        assert isinstance(reply, BufferedReply)
        assert reply.body == body
        assert "Content-Encoding" not in reply.headers

    @pytest.mark.asyncio
    async def test_unknown_encoding_passed_through(self) -> None:
        upstream = _FakeUpstream(
            200, _headers(Content_Type="application/json", Content_Encoding="br"), b"\x8b\x00"
        )
        deadline = asyncio.get_running_loop().time() + 5
        reply = await classify(upstream, timeout_ms=5000, deadline=deadline)  # type: ignore[arg-type]
        assert isinstance(reply, BufferedReply)
        assert reply.body == b"\x8b\x00"
        assert reply.headers["Content-Encoding"] == "br"

    @pytest.mark.asyncio
    async def test_empty_body_with_encoding(self) -> None:
        upstream = _FakeUpstream(
            204, _headers(Content_Encoding="gzip"), b""
        )
        deadline = asyncio.get_running_loop().time() + 5
        reply = await classify(upstream, timeout_ms=5000, deadline=deadline)  # type: ignore[arg-type]
        assert isinstance(reply, BufferedReply)
        assert reply.body == b""

    @pytest.mark.asyncio
    async def test_slow_body_times_out(self) -> None:
        upstream = _FakeUpstream(200, _headers(Content_Type="application/json"), b"{}", delay=1.0)
        deadline = asyncio.get_running_loop().time() + 0.1
        with pytest.raises(UpstreamTimeout) as exc_info:
            await classify(upstream, timeout_ms=100, deadline=deadline)  # type: ignore[arg-type]
        assert exc_info.value.to_body() == {"error": "Upstream timed out after 100 ms"}

    @pytest.mark.asyncio
    async def test_deadline_already_passed(self) -> None:
        upstream = _FakeUpstream(200, _headers(Content_Type="application/json"), b"{}")
        deadline = asyncio.get_running_loop().time() - 1
        with pytest.raises(UpstreamTimeout):
            await classify(upstream, timeout_ms=50, deadline=deadline)  # type: ignore[arg-type]
        assert upstream.reads == 0
