from __future__ import annotations

import gzip
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
import pytest
from rangeseek import ReaderSettings

if TYPE_CHECKING:
    from collections.abc import Callable

ORIGIN_URL = "https://media.example.com/videos/movie.mkv"

_RANGE = re.compile(r"bytes=(\d+)-(\d*)")


def make_content(size: int) -> bytes:
    pattern = bytes(range(251))
    return (pattern * (size // len(pattern) + 1))[:size]


@dataclass
class FakeOrigin:
    """An in-memory HTTP origin with configurable range behaviour.

    GET bodies are handed out as unread streams, as a real origin's would be.
    ``max_reply`` caps how many bytes one ``206`` carries and ``encoding``
    gzips every GET body regardless of ``Accept-Encoding``.
    """

    content: bytes
    honor_range: bool = True
    allow_head: bool = True
    max_reply: int | None = None
    encoding: str | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        total = len(self.content)
        if request.method == "HEAD":
            if not self.allow_head:
                return httpx.Response(405)
            headers = {"Content-Length": str(total), **self.extra_headers}
            if self.honor_range:
                headers["Accept-Ranges"] = "bytes"
            return httpx.Response(200, headers=headers, stream=httpx.ByteStream(b""))

        match = _RANGE.fullmatch(request.headers.get("range", ""))
        if match is None or not self.honor_range:
            return self._stream(200, self.extra_headers, self.content)

        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) else total - 1
        if start >= total:
            return httpx.Response(416, headers={"Content-Range": f"bytes */{total}"})
        end = min(end, total - 1)
        if self.max_reply is not None:
            end = min(end, start + self.max_reply - 1)
        headers = {
            "Content-Range": f"bytes {start}-{end}/{total}",
            "Accept-Ranges": "bytes",
            **self.extra_headers,
        }
        return self._stream(206, headers, self.content[start : end + 1])

    def _stream(
        self, status: int, headers: dict[str, str], body: bytes
    ) -> httpx.Response:
        headers = dict(headers)
        if self.encoding == "gzip":
            body = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"
        headers["Content-Length"] = str(len(body))
        return httpx.Response(status, headers=headers, stream=httpx.ByteStream(body))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def ranges(self) -> list[str]:
        """Range headers of every GET the origin received, in order."""
        return [r.headers.get("range", "") for r in self.requests if r.method == "GET"]


@dataclass
class RecordingObserver:
    statuses: list[str] = field(default_factory=list)
    progress: list[int] = field(default_factory=list)

    def on_status(self, message: str) -> None:
        self.statuses.append(message)

    def on_progress(self, percent: int) -> None:
        self.progress.append(percent)


@pytest.fixture
def content() -> bytes:
    return make_content(10_000)


@pytest.fixture
def origin(content: bytes) -> FakeOrigin:
    return FakeOrigin(content=content)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def reader_settings() -> Callable[..., ReaderSettings]:
    """Build ReaderSettings that ignore the caller's environment."""

    def build(**overrides: object) -> ReaderSettings:
        values: dict[str, object] = {
            "proxy_endpoint": None,
            "strategy": "prefetch",
            "prefetch_window": 2 * 1024 * 1024,
            "estimated_workload": 10 * 1024 * 1024,
            "head_probe": True,
        }
        values.update(overrides)
        return ReaderSettings(**values)

    return build
