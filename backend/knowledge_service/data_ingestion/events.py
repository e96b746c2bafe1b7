"""
Loader events and observers.

The loader emits events; observers turn them into log lines, progress
bars or whatever else is attached. The loader itself never prints.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union
from loguru import logger


@dataclass
class LoadStarted:
    state: str
    total: int
    valid: int
    invalid: int
    resume_from: int
    total_batches: int


@dataclass
class BatchStarted:
    batch_num: int
    total_batches: int
    start: int
    size: int
    valid: int


@dataclass
class DocumentSkipped:
    position: int
    reference: str
    error: str
    silent: bool = False


@dataclass
class BatchCompleted:
    batch_num: int
    total_batches: int
    checkpoint: int
    loaded: int
    failed: int
    valid: int


@dataclass
class Verified:
    document_count: int
    point_count: int
    collection_status: str


@dataclass
class LoadFinished:
    state: str
    loaded: int
    errors: int
    duration: float


LoaderEvent = Union[LoadStarted, BatchStarted, DocumentSkipped, BatchCompleted, Verified, LoadFinished]


class LoaderObserver(ABC):
    """Receives every event the loader emits."""

    @abstractmethod
    def handle(self, event: LoaderEvent) -> None:
        pass


def format_duration(seconds: float) -> str:
    """Render seconds as '1h 2m 3s', '2m 3s' or '3s'."""
    s = int(seconds)
    m, s = divmod(s, 60)
    h, m = divmod(m, 60)
    if h > 0:
        return f"{h}h {m}m {s}s"
    if m > 0:
        return f"{m}m {s}s"
    return f"{s}s"


class EtaTracker:
    """Estimate remaining time from documents processed so far in this run."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started: Optional[float] = None
        self._done = 0

    def start(self):
        self._started = self._clock()
        self._done = 0

    def advance(self, count: int):
        self._done += count

    def eta(self, remaining: int) -> str:
        if self._started is None or self._done == 0:
            return "calculating..."
        elapsed = self._clock() - self._started
        rate = self._done / elapsed if elapsed > 0 else 0
        if rate <= 0:
            return "calculating..."
        return format_duration(remaining / rate)


class LoggingObserver(LoaderObserver):
    """Write loader progress to the log."""

    def __init__(self):
        self._eta = EtaTracker()
        self._remaining = 0

    def handle(self, event: LoaderEvent) -> None:
        if isinstance(event, LoadStarted):
            self._eta.start()
            self._remaining = event.valid - event.resume_from
            logger.info(
                f"{event.state}: {event.valid} valid documents "
                f"({event.invalid} skipped with empty text), resuming from {event.resume_from}"
            )
            logger.info(f"Processing {self._remaining} documents in {event.total_batches} batches")
        elif isinstance(event, BatchStarted):
            progress = 100.0 * event.start / event.valid if event.valid else 100.0
            logger.info(
                f"Batch {event.batch_num}/{event.total_batches} [{progress:.1f}%] "
                f"ETA: {self._eta.eta(self._remaining)}"
            )
        elif isinstance(event, DocumentSkipped):
            if event.silent:
                logger.debug(f"Skipped #{event.position} {event.reference}: {event.error}")
            else:
                logger.warning(f"Doc error #{event.position} {event.reference}: {event.error}")
        elif isinstance(event, BatchCompleted):
            done = event.loaded + event.failed
            self._eta.advance(done)
            self._remaining -= done
            skipped = f" ({event.failed} skipped)" if event.failed else ""
            logger.info(f"Batch {event.batch_num} done{skipped} [{event.checkpoint}/{event.valid}]")
        elif isinstance(event, Verified):
            logger.info(f"Document store count: {event.document_count}")
            logger.info(f"Vector index points: {event.point_count} (status: {event.collection_status})")
            if event.document_count != event.point_count:
                logger.warning("Document store and vector index counts differ")
        elif isinstance(event, LoadFinished):
            logger.info(
                f"Load {event.state}: {event.loaded} loaded, {event.errors} errors "
                f"in {format_duration(event.duration)}"
            )


class ProgressBarObserver(LoaderObserver):
    """tqdm progress bar over documents."""

    def __init__(self, desc: str = "Loading"):
        self.desc = desc
        self._bar = None
        self._errors = 0

    def handle(self, event: LoaderEvent) -> None:
        from tqdm import tqdm

        if isinstance(event, LoadStarted):
            self._errors = 0
            self._bar = tqdm(total=event.valid, initial=event.resume_from, desc=self.desc, unit="doc")
        elif isinstance(event, BatchCompleted) and self._bar is not None:
            self._errors += event.failed
            self._bar.update(event.loaded + event.failed)
            self._bar.set_postfix(errors=self._errors)
        elif isinstance(event, LoadFinished) and self._bar is not None:
            self._bar.close()
            self._bar = None
