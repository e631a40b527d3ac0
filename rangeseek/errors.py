from __future__ import annotations


class RangeSeekError(Exception):
    """Base class for failures that abort an analysis session."""


class InvalidURL(RangeSeekError, ValueError):
    """The target is not an absolute http(s) URL."""


class SizeUnknownError(RangeSeekError):
    """No response yielded a usable total length."""


class NonRangeServerError(RangeSeekError):
    """The origin answered a non-zero offset range read with the full body."""


class ReadError(RangeSeekError):
    """A chunk or probe fetch failed with a non-success status or transport error."""

    def __init__(self, status: int | None, message: str | None = None):
        self.status = status
        if message is None:
            message = f"Read error: {status}" if status is not None else "Read error"
        super().__init__(message)


class ProxyUpstreamError(RangeSeekError):
    """The gateway could not reach or stream from the upstream origin."""


class ModuleLoadError(RangeSeekError):
    """The analyzer backend could not be imported or instantiated."""
