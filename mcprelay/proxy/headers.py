"""Header translation for both legs of the relay.

Outbound: the caller's headers minus connection/length headers, with the
upstream credential injected and ``Accept`` defaulted for event streams.

Inbound (response to the caller): upstream headers minus the framing
headers the relay itself controls.
"""

from __future__ import annotations

from collections.abc import Iterable

from multidict import CIMultiDict, CIMultiDictProxy

from mcprelay.proxy.errors import MissingCredential

# Dropped from the caller's request before forwarding. The body is sent
# buffered, so the caller's framing (chunked or sized) does not apply.
_DROP_REQUEST = frozenset(
    {
        "host",
        "connection",
        "content-length",
        "transfer-encoding",
        "keep-alive",
        "te",
        "trailers",
    }
)

# Never copied from the upstream response. The relay frames the caller's
# response itself, so these would describe bytes that are not being sent.
_DROP_RESPONSE = frozenset(
    {"transfer-encoding", "content-length", "connection", "keep-alive"}
)

STREAM_ACCEPT = "text/event-stream"


def translate_request_headers(
    inbound: CIMultiDictProxy[str] | CIMultiDict[str],
    api_key: str | None,
) -> dict[str, str]:
    """Build the outbound header set from the caller's headers.

    Multi-valued headers are joined with ``,``. The first spelling of a
    header name seen is kept.

    Raises:
        MissingCredential: If no API key is configured.
    """
    if not api_key:
        raise MissingCredential()

    outbound: dict[str, str] = {}
    seen: set[str] = set()
    for key in inbound.keys():
        lower = key.lower()
        if lower in seen or lower in _DROP_REQUEST or lower == "authorization":
            continue
        seen.add(lower)
        outbound[key] = ",".join(inbound.getall(key))

    outbound["Authorization"] = f"Bearer {api_key}"

    if "accept" not in seen:
        outbound["Accept"] = STREAM_ACCEPT

    return outbound


def filter_response_headers(
    upstream: CIMultiDictProxy[str] | CIMultiDict[str],
    *,
    drop: Iterable[str] = (),
    keep_length: bool = False,
) -> CIMultiDict[str]:
    """Copy upstream response headers, skipping framing headers.

    Every value of a repeated header (e.g. ``Set-Cookie``) is preserved.

    Args:
        upstream: Headers received from the upstream.
        drop: Extra header names to skip, e.g. ``content-encoding`` after
            the relay has decompressed the body.
        keep_length: Copy ``Content-Length`` through. Used for HEAD, where
            the length describes a body that is never sent.
    """
    extra = {name.lower() for name in drop}
    out: CIMultiDict[str] = CIMultiDict()
    for key, value in upstream.items():
        lower = key.lower()
        if lower in extra:
            continue
        if lower in _DROP_RESPONSE and not (keep_length and lower == "content-length"):
            continue
        out.add(key, value)
    return out
