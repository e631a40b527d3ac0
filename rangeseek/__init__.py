"""Seekable byte access to remote HTTP resources, with a CORS range proxy."""

from .analysis import AnalyzerOptions, analyze_media
from .app import create_app
from .errors import (
    InvalidURL,
    ModuleLoadError,
    NonRangeServerError,
    ProxyUpstreamError,
    RangeSeekError,
    ReadError,
    SizeUnknownError,
)
from .gateway import GatewaySettings, ProxyGateway
from .reader import ChunkReader, ReaderSettings, ReadStrategy, SizeResolver
from .source import ByteSourceAdapter

__all__ = [
    "AnalyzerOptions",
    "ByteSourceAdapter",
    "ChunkReader",
    "GatewaySettings",
    "InvalidURL",
    "ModuleLoadError",
    "NonRangeServerError",
    "ProxyGateway",
    "ProxyUpstreamError",
    "RangeSeekError",
    "ReadError",
    "ReadStrategy",
    "ReaderSettings",
    "SizeResolver",
    "SizeUnknownError",
    "analyze_media",
    "create_app",
]
