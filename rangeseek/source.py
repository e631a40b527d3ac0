from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from .headers import validate_url
from .progress import LoggingStatusObserver, ProgressTracker, StatusObserver
from .reader import (
    ChunkReader,
    ReaderSettings,
    ResourceDescriptor,
    SizeResolver,
    load_reader_settings_from_env,
)

if TYPE_CHECKING:
    from types import TracebackType
else:  # pragma: no cover
    TracebackType = Any

LOG = logging.getLogger("rangeseek.source")


class ByteSourceAdapter:
    """The ``get_size`` / ``read_chunk`` surface handed to a binary analyzer.

    One adapter is one analysis session: it owns the HTTP client, the
    resolved :class:`ResourceDescriptor` and the reader's cache. Use it as an
    async context manager so the client is released on success, error or
    cancellation alike.
    """

    def __init__(
        self,
        url: str,
        settings: ReaderSettings | None = None,
        observer: StatusObserver | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        validate_url(url)
        self.url = url
        self._settings = settings or load_reader_settings_from_env()
        self._observer = observer or LoggingStatusObserver()
        self.progress = ProgressTracker(
            self._observer, self._settings.estimated_workload
        )
        self._client = httpx.AsyncClient(
            timeout=self._settings.timeout,
            follow_redirects=True,
            trust_env=False,
            headers={"Accept-Encoding": "identity"},
            transport=transport,
        )
        self._resolver = SizeResolver(self._client, self._settings)
        self._descriptor: ResourceDescriptor | None = None
        self._reader: ChunkReader | None = None

    async def __aenter__(self) -> ByteSourceAdapter:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def descriptor(self) -> ResourceDescriptor | None:
        return self._descriptor

    @property
    def reader(self) -> ChunkReader | None:
        return self._reader

    async def get_size(self) -> int:
        if self._descriptor is None:
            self.progress.status("Connecting...")
            self._descriptor = await self._resolver.resolve(self.url)
            self._reader = ChunkReader(
                self._client, self._descriptor, self._settings, self.progress
            )
            LOG.info(
                "resolved %s: %d bytes (ranges=%s, strategy=%s)",
                self.url,
                self._descriptor.size,
                self._descriptor.range_support.value,
                self._settings.strategy.value,
            )
        return self._descriptor.size

    async def read_chunk(self, size: int, offset: int) -> bytes:
        if self._reader is None:
            message = "get_size() must be called before read_chunk()"
            raise RuntimeError(message)
        return await self._reader.read_chunk(size, offset)
