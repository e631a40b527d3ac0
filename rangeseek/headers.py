from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import httpx

from .errors import InvalidURL

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
else:  # pragma: no cover
    Iterable = Mapping = Any

BINARY_MEDIA_TYPE = "application/octet-stream"

REQUEST_HEADER_ALLOWLIST = frozenset(
    {
        "range",
        "if-range",
        "accept",
        "accept-language",
        "user-agent",
    }
)

RESPONSE_HEADER_ALLOWLIST = (
    "content-length",
    "content-range",
    "accept-ranges",
    "last-modified",
    "etag",
)

# Never forwarded upstream, whatever the allow-list says.
PRIVATE_REQUEST_HEADERS = frozenset({"cookie", "origin"})

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type, User-Agent",
    "Access-Control-Expose-Headers": ", ".join(
        name.title() if name != "etag" else "ETag"
        for name in RESPONSE_HEADER_ALLOWLIST
    ),
}

_CONTENT_RANGE_TOTAL = re.compile(r"/\s*(\d+)\s*$")
_CONTENT_RANGE_SPAN = re.compile(r"^\s*bytes\s+(\d+)-(\d+)/")


def validate_url(value: str) -> httpx.URL:
    """Parse an absolute http(s) URL or raise InvalidURL."""
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError) as exc:
        message = "Invalid URL format"
        raise InvalidURL(message) from exc
    if url.scheme not in {"http", "https"} or not url.host:
        message = "Invalid URL format"
        raise InvalidURL(message)
    return url


def parse_content_range_total(value: str | None) -> int | None:
    """Return TOTAL from a ``bytes start-end/TOTAL`` or ``bytes */TOTAL`` value."""
    if not value:
        return None
    match = _CONTENT_RANGE_TOTAL.search(value)
    if match is None:
        return None
    return int(match.group(1))


def parse_content_range_span(value: str | None) -> tuple[int, int] | None:
    """Return the inclusive ``(start, end)`` of a ``bytes start-end/TOTAL`` value."""
    if not value:
        return None
    match = _CONTENT_RANGE_SPAN.match(value)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def parse_content_length(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        length = int(value.strip())
    except ValueError:
        return None
    return length if length >= 0 else None


def filter_request_headers(headers: Mapping[str, str]) -> dict[str, str]:
    prepared: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if lowered in PRIVATE_REQUEST_HEADERS:
            continue
        if lowered in REQUEST_HEADER_ALLOWLIST:
            prepared[lowered] = value
    return prepared


def filter_response_headers(headers: Iterable[tuple[bytes, bytes]]) -> dict[str, str]:
    prepared: dict[str, str] = {}
    for key_bytes, value_bytes in headers:
        key = key_bytes.decode("latin-1").lower()
        if key not in RESPONSE_HEADER_ALLOWLIST:
            continue
        prepared[key] = value_bytes.decode("latin-1")
    return prepared
