"""Boundary to the external binary analyzer.

The analyzer is an opaque consumer: it is handed two coroutines,
``get_size()`` and ``read_chunk(size, offset)``, reads whatever windows it
needs in whatever order, and returns a report. Backends are located by a
``module:attribute`` path or by name in the ``rangeseek.analyzers`` entry
point group, and loaded once per process.
"""

from __future__ import annotations

import functools
import importlib
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from importlib.metadata import entry_points
from typing import TYPE_CHECKING, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict

from .errors import ModuleLoadError
from .headers import validate_url
from .progress import LoggingStatusObserver, StatusObserver
from .reader import load_reader_settings_from_env
from .source import ByteSourceAdapter

if TYPE_CHECKING:
    import httpx

    from .reader import ReaderSettings

LOG = logging.getLogger("rangeseek.analysis")

ENTRY_POINT_GROUP = "rangeseek.analyzers"

OutputFormat = Literal["text", "json", "object", "XML", "MAXML", "HTML"]


class AnalyzerOptions(BaseModel):
    """Options passed through to the analyzer backend untouched."""

    model_config = ConfigDict(frozen=True)

    output_format: OutputFormat = "text"
    # cover art is skipped by default to save bandwidth
    cover_data: bool = False
    full: bool = True


class Analyzer(Protocol):
    async def analyze(
        self,
        get_size: Callable[[], Awaitable[int]],
        read_chunk: Callable[[int, int], Awaitable[bytes]],
    ) -> str | Mapping[str, Any]: ...

    def close(self) -> None: ...


AnalyzerFactory = Callable[[AnalyzerOptions], Analyzer]


@functools.cache
def load_analyzer_factory(backend: str) -> AnalyzerFactory:
    """Resolve an analyzer factory from ``module:attr`` or an entry point name.

    Successful lookups are cached for the lifetime of the process.

    Raises:
        ModuleLoadError: the backend cannot be imported or is not callable.
    """
    if ":" in backend:
        module_name, _, attribute = backend.partition(":")
        try:
            module = importlib.import_module(module_name)
            factory = getattr(module, attribute)
        except (ImportError, AttributeError) as exc:
            message = f"Failed to load analyzer backend {backend!r}: {exc}"
            raise ModuleLoadError(message) from exc
    else:
        matches = entry_points(group=ENTRY_POINT_GROUP, name=backend)
        if not matches:
            message = f"No analyzer backend named {backend!r} is installed"
            raise ModuleLoadError(message)
        try:
            factory = next(iter(matches)).load()
        except (ImportError, AttributeError) as exc:
            message = f"Failed to load analyzer backend {backend!r}: {exc}"
            raise ModuleLoadError(message) from exc

    if not callable(factory):
        message = f"Analyzer backend {backend!r} is not callable"
        raise ModuleLoadError(message)
    LOG.info("loaded analyzer backend %s", backend)
    return factory


def render_report(result: str | Mapping[str, Any]) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2)


async def analyze_media(
    url: str,
    *,
    options: AnalyzerOptions | None = None,
    observer: StatusObserver | None = None,
    settings: ReaderSettings | None = None,
    backend: str | None = None,
    factory: AnalyzerFactory | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Run one analysis session against ``url`` and return the report text."""
    observer = observer or LoggingStatusObserver()
    settings = settings or load_reader_settings_from_env()
    options = options or AnalyzerOptions()

    observer.on_status("Validating URL...")
    validate_url(url)

    observer.on_status("Loading analyzer backend...")
    if factory is None:
        backend = backend or settings.analyzer_backend
        if not backend:
            message = "No analyzer backend configured"
            raise ModuleLoadError(message)
        factory = load_analyzer_factory(backend)
    try:
        analyzer = factory(options)
    except Exception as exc:
        message = f"Failed to initialise analyzer backend: {exc}"
        raise ModuleLoadError(message) from exc

    try:
        async with ByteSourceAdapter(url, settings, observer, transport) as source:
            await source.get_size()
            result = await analyzer.analyze(source.get_size, source.read_chunk)
            source.progress.complete()
    except Exception as error:
        LOG.warning("analysis of %s failed: %s", url, error)
        observer.on_status(str(error) or "Error occurred")
        raise
    finally:
        analyzer.close()

    report = render_report(result)
    observer.on_status("Analysis complete!")
    return report
