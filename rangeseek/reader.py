from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import httpx
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import (
    NonRangeServerError,
    ProxyUpstreamError,
    RangeSeekError,
    ReadError,
    SizeUnknownError,
)
from .headers import (
    parse_content_length,
    parse_content_range_span,
    parse_content_range_total,
    validate_url,
)
from .progress import ProgressTracker

LOG = logging.getLogger("rangeseek.reader")

PROXY_ERROR_PREFIX = "Proxy error"


class ReadStrategy(str, Enum):
    DIRECT = "direct"
    PREFETCH = "prefetch"


class RangeSupport(str, Enum):
    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"


class ReaderSettings(BaseSettings):
    """Configuration for one remote range reading session."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    proxy_endpoint: str | None = Field(
        default=None,
        validation_alias="RANGESEEK_PROXY_ENDPOINT",
    )
    strategy: ReadStrategy = Field(
        default=ReadStrategy.PREFETCH,
        validation_alias="RANGESEEK_READ_STRATEGY",
    )
    prefetch_window: int = Field(
        default=2 * 1024 * 1024,
        validation_alias="RANGESEEK_PREFETCH_WINDOW",
    )
    estimated_workload: int = Field(
        default=10 * 1024 * 1024,
        validation_alias="RANGESEEK_ESTIMATED_WORKLOAD",
    )
    head_probe: bool = Field(
        default=True,
        validation_alias="RANGESEEK_HEAD_PROBE",
    )
    connect_timeout: float = Field(
        default=10.0,
        validation_alias="RANGESEEK_CONNECT_TIMEOUT",
    )
    read_timeout: float = Field(
        default=60.0,
        validation_alias="RANGESEEK_READ_TIMEOUT",
    )
    analyzer_backend: str | None = Field(
        default=None,
        validation_alias="RANGESEEK_ANALYZER_BACKEND",
    )

    @field_validator("prefetch_window", "estimated_workload")
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value <= 0:
            msg = "must be a positive number of bytes"
            raise ValueError(msg)
        return value

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.read_timeout, connect=self.connect_timeout)


def load_reader_settings_from_env() -> ReaderSettings:
    """Load reader settings from environment variables.

    Returns:
        ReaderSettings instance populated from environment variables.
    """
    return ReaderSettings()


@dataclass(frozen=True)
class ResourceDescriptor:
    """What a session knows about the remote resource once its size is resolved."""

    url: str
    size: int
    range_support: RangeSupport


@dataclass(frozen=True)
class ByteWindow:
    """Half-open byte range ``[start, start + length)``."""

    start: int
    length: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.length <= 0:
            msg = f"invalid byte window start={self.start} length={self.length}"
            raise ValueError(msg)

    @property
    def end(self) -> int:
        return self.start + self.length

    def clip(self, total: int) -> ByteWindow:
        return ByteWindow(self.start, min(self.end, total) - self.start)

    def range_header(self) -> str:
        return f"bytes={self.start}-{self.end - 1}"


@dataclass
class CacheEntry:
    start: int
    data: bytes

    @property
    def end(self) -> int:
        return self.start + len(self.data)

    def covers(self, offset: int, size: int) -> bool:
        return self.start <= offset and offset + size <= self.end

    def slice(self, offset: int, size: int) -> bytes:
        begin = offset - self.start
        return self.data[begin : begin + size]


def build_fetch_url(url: str, proxy_endpoint: str | None) -> httpx.URL:
    """Return the URL a session actually requests: the origin or the gateway."""
    target = validate_url(url)
    if not proxy_endpoint:
        return target
    return httpx.URL(proxy_endpoint).copy_merge_params({"url": str(target)})


async def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    if response.status_code == 502:
        await response.aread()
        body = response.text.strip()
        if body.startswith(PROXY_ERROR_PREFIX):
            raise ProxyUpstreamError(body)
    message = f"Read error: {response.status_code} {response.reason_phrase}".rstrip()
    raise ReadError(response.status_code, message)


def _check_partial_start(response: httpx.Response, window: ByteWindow) -> None:
    span = parse_content_range_span(response.headers.get("content-range"))
    if span is not None and span[0] != window.start:
        msg = (
            f"Server returned bytes {span[0]}-{span[1]} for "
            f"{window.range_header()}"
        )
        raise ReadError(response.status_code, msg)


class SizeResolver:
    """Determines the total length of a remote resource with the fewest requests."""

    def __init__(self, client: httpx.AsyncClient, settings: ReaderSettings):
        self._client = client
        self._settings = settings

    async def resolve(self, url: str) -> ResourceDescriptor:
        fetch_url = build_fetch_url(url, self._settings.proxy_endpoint)
        if self._settings.head_probe:
            descriptor = await self._probe_head(url, fetch_url)
            if descriptor is not None:
                return descriptor
        return await self._probe_range(url, fetch_url)

    async def resolve_size(self, url: str) -> int:
        descriptor = await self.resolve(url)
        return descriptor.size

    async def _probe_head(
        self, url: str, fetch_url: httpx.URL
    ) -> ResourceDescriptor | None:
        try:
            response = await self._client.head(fetch_url)
        except httpx.HTTPError as exc:
            LOG.debug("HEAD probe failed for %s: %s", url, exc)
            return None
        if not response.is_success:
            LOG.debug("HEAD probe for %s returned %s", url, response.status_code)
            return None
        size = parse_content_length(response.headers.get("content-length"))
        if not size:
            return None
        accept_ranges = response.headers.get("accept-ranges", "").lower()
        support = RangeSupport.YES if "bytes" in accept_ranges else RangeSupport.UNKNOWN
        LOG.debug("HEAD probe resolved %s to %d bytes (ranges=%s)", url, size, support)
        return ResourceDescriptor(url=url, size=size, range_support=support)

    async def _probe_range(self, url: str, fetch_url: httpx.URL) -> ResourceDescriptor:
        try:
            async with self._client.stream(
                "GET", fetch_url, headers={"Range": "bytes=0-0"}
            ) as response:
                total = parse_content_range_total(response.headers.get("content-range"))
                if total is not None:
                    support = (
                        RangeSupport.YES
                        if response.status_code == 206
                        else RangeSupport.UNKNOWN
                    )
                    LOG.debug("range probe resolved %s to %d bytes", url, total)
                    return ResourceDescriptor(url=url, size=total, range_support=support)

                length = parse_content_length(response.headers.get("content-length"))
                if response.status_code == 200 and length is not None:
                    LOG.info(
                        "origin ignored Range for %s, using Content-Length %d", url, length
                    )
                    return ResourceDescriptor(
                        url=url, size=length, range_support=RangeSupport.NO
                    )

                if response.status_code == 502:
                    await _raise_for_status(response)
                status = response.status_code
        except httpx.HTTPError as exc:
            raise ReadError(None, f"Connection failed: {exc}") from exc

        msg = f"Could not determine exact file size (status {status})"
        raise SizeUnknownError(msg)


class ChunkReader:
    """Serves ``read_chunk(size, offset)`` against one resolved resource.

    With the prefetch strategy a cache miss fetches at least
    ``prefetch_window`` bytes and keeps them in a single slot; reads fully
    covered by that slot make no request. The cache is only safe because the
    analyzer issues one read at a time.

    Every fetch returns the whole window: a ``206`` that stops early is
    followed by ranged GETs for the remainder, and one that starts anywhere
    other than the requested offset is a :class:`ReadError`.

    Any failure is fatal: it is remembered and raised again on every later
    call without touching the network.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        descriptor: ResourceDescriptor,
        settings: ReaderSettings,
        progress: ProgressTracker,
    ):
        self._client = client
        self._descriptor = descriptor
        self._settings = settings
        self._progress = progress
        self._fetch_url = build_fetch_url(descriptor.url, settings.proxy_endpoint)
        self._cache: CacheEntry | None = None
        self._failure: RangeSeekError | None = None
        self.fetch_count = 0

    @property
    def strategy(self) -> ReadStrategy:
        return self._settings.strategy

    async def read_chunk(self, size: int, offset: int) -> bytes:
        if size < 0 or offset < 0:
            msg = f"size and offset must be non-negative (size={size}, offset={offset})"
            raise ValueError(msg)
        if self._failure is not None:
            raise self._failure

        total = self._descriptor.size
        if size == 0 or offset >= total:
            return b""
        length = min(size, total - offset)

        try:
            if self.strategy is ReadStrategy.PREFETCH:
                return await self._read_prefetch(offset, length)
            return await self._fetch(ByteWindow(offset, length))
        except RangeSeekError as exc:
            self._failure = exc
            raise

    async def _read_prefetch(self, offset: int, length: int) -> bytes:
        cache = self._cache
        if cache is not None and cache.covers(offset, length):
            LOG.debug("cache hit offset=%d length=%d", offset, length)
            return cache.slice(offset, length)

        window = ByteWindow(
            offset, max(length, self._settings.prefetch_window)
        ).clip(self._descriptor.size)
        data = await self._fetch(window)
        self._cache = CacheEntry(start=window.start, data=data)
        return data[:length]

    async def _fetch(self, window: ByteWindow) -> bytes:
        """Fetch exactly ``window``, following up when the origin caps a reply."""
        data = bytearray()
        while len(data) < window.length:
            part = ByteWindow(window.start + len(data), window.length - len(data))
            if data:
                LOG.debug(
                    "short reply for %s, requesting remainder %s",
                    window.range_header(),
                    part.range_header(),
                )
            data.extend(await self._fetch_part(part))
        return bytes(data)

    async def _fetch_part(self, window: ByteWindow) -> bytes:
        self.fetch_count += 1
        LOG.debug("fetch %s from %s", window.range_header(), self._descriptor.url)
        try:
            async with self._client.stream(
                "GET", self._fetch_url, headers={"Range": window.range_header()}
            ) as response:
                await _raise_for_status(response)
                if response.status_code == 200 and window.start > 0:
                    msg = (
                        "Server returned full file (200) instead of partial "
                        "(206). Aborting."
                    )
                    raise NonRangeServerError(msg)
                if response.status_code == 206:
                    _check_partial_start(response, window)
                data = await self._read_body(response, window.length)
        except httpx.TimeoutException as exc:
            raise ReadError(None, f"Read timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ReadError(None, f"Read error: {exc}") from exc

        if not data:
            msg = f"Empty reply for {window.range_header()}"
            raise ReadError(response.status_code, msg)
        self._progress.add(len(data))
        return data

    @staticmethod
    async def _read_body(response: httpx.Response, limit: int) -> bytes:
        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if len(buffer) >= limit:
                # a full-body reply at offset 0 only needs its prefix
                break
        return bytes(buffer[:limit])
