from __future__ import annotations

import logging
from typing import Protocol

LOG = logging.getLogger("rangeseek.progress")


class StatusObserver(Protocol):
    """Receives advisory status and progress updates from a session."""

    def on_status(self, message: str) -> None: ...

    def on_progress(self, percent: int) -> None: ...


class LoggingStatusObserver:
    """Headless observer that writes updates to the log."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or LOG

    def on_status(self, message: str) -> None:
        self._logger.info("%s", message)

    def on_progress(self, percent: int) -> None:
        self._logger.debug("progress %d%%", percent)


class ProgressTracker:
    """Counts bytes fetched in one session and turns them into a percentage.

    The percentage is an estimate against ``estimated_workload`` and is capped
    at 99 until :meth:`complete` is called.
    """

    def __init__(self, observer: StatusObserver, estimated_workload: int):
        self._observer = observer
        self._estimated_workload = estimated_workload
        self.bytes_read = 0
        self.percent = 0

    def status(self, message: str) -> None:
        self._observer.on_status(message)

    def add(self, nbytes: int) -> None:
        if nbytes <= 0:
            return
        self.bytes_read += nbytes
        self.percent = min(
            99, int(self.bytes_read / self._estimated_workload * 100)
        )
        self._observer.on_status(
            f"Analyzing... ({self.bytes_read / 1024 / 1024:.2f} MB read)"
        )
        self._observer.on_progress(self.percent)

    def complete(self) -> None:
        self.percent = 100
        self._observer.on_progress(100)
