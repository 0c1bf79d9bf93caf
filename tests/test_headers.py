"""Tests for request and response header translation."""

from __future__ import annotations

import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from mcprelay.proxy.errors import MissingCredential
from mcprelay.proxy.headers import (
    STREAM_ACCEPT,
    filter_response_headers,
    translate_request_headers,
)


def _inbound(*pairs: tuple[str, str]) -> CIMultiDictProxy[str]:
    return CIMultiDictProxy(CIMultiDict(pairs))


class TestTranslateRequestHeaders:
    def test_injects_bearer_credential(self) -> None:
        out = translate_request_headers(_inbound(("Content-Type", "application/json")), "rnd_abc")
        assert out["Authorization"] == "Bearer rnd_abc"
        assert out["Content-Type"] == "application/json"

    def test_caller_authorization_replaced(self) -> None:
        out = translate_request_headers(
            _inbound(("authorization", "Bearer caller"), ("Accept", "*/*")),
            "rnd_abc",
        )
        assert out["Authorization"] == "Bearer rnd_abc"
        assert "authorization" not in out
        assert list(out).count("Authorization") == 1

    def test_hop_headers_dropped(self) -> None:
        out = translate_request_headers(
            _inbound(
                ("Host", "proxy.example.com"),
                ("Connection", "keep-alive"),
                ("Content-Length", "42"),
                ("Transfer-Encoding", "chunked"),
                ("Keep-Alive", "timeout=5"),
                ("TE", "trailers"),
                ("Trailers", "X-Checksum"),
                ("X-Trace", "t-1"),
            ),
            "k",
        )
        lowered = {k.lower() for k in out}
        for name in ("host", "connection", "content-length", "transfer-encoding", "keep-alive", "te", "trailers"):
            assert name not in lowered
        assert out["X-Trace"] == "t-1"

    def test_accept_defaulted_when_absent(self) -> None:
        out = translate_request_headers(_inbound(), "k")
        assert out["Accept"] == STREAM_ACCEPT

    def test_accept_kept_when_present(self) -> None:
        out = translate_request_headers(
            _inbound(("accept", "application/json, text/event-stream")), "k"
        )
        assert out["accept"] == "application/json, text/event-stream"
        assert "Accept" not in out

    def test_repeated_header_joined(self) -> None:
        out = translate_request_headers(
            _inbound(("X-Tag", "a"), ("X-Tag", "b")), "k"
        )
        assert out["X-Tag"] == "a,b"

    @pytest.mark.parametrize("api_key", [None, ""])
    def test_missing_key_raises(self, api_key: str | None) -> None:
        with pytest.raises(MissingCredential) as exc_info:
            translate_request_headers(_inbound(("Accept", "*/*")), api_key)
        assert exc_info.value.status == 500
        assert exc_info.value.to_body() == {"error": "Missing RENDER_API_KEY env var"}


class TestFilterResponseHeaders:
    def test_framing_headers_removed(self) -> None:
        out = filter_response_headers(
            _inbound(
                ("Content-Type", "application/json"),
                ("Content-Length", "10"),
                ("Transfer-Encoding", "chunked"),
                ("Connection", "close"),
                ("Keep-Alive", "timeout=5"),
                ("Mcp-Session-Id", "abc"),
            )
        )
        assert dict(out) == {"Content-Type": "application/json", "Mcp-Session-Id": "abc"}

    def test_repeated_values_preserved(self) -> None:
        out = filter_response_headers(
            _inbound(("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"))
        )
        assert out.getall("Set-Cookie") == ["a=1", "b=2"]

    def test_head_keeps_length(self) -> None:
        out = filter_response_headers(
            _inbound(("Content-Length", "27"), ("Transfer-Encoding", "chunked")),
            keep_length=True,
        )
        assert out["Content-Length"] == "27"
        assert "Transfer-Encoding" not in out

    def test_extra_drop(self) -> None:
        out = filter_response_headers(
            _inbound(("Content-Encoding", "gzip"), ("Vary", "Accept-Encoding")),
            drop=("Content-Encoding",),
        )
        assert "Content-Encoding" not in out
        assert out["Vary"] == "Accept-Encoding"
