"""Shared in-memory slot holding the latest UsageSummary.

Many readers, one writer at a time.  Readers always get a deep copy, so a
reader can never observe a summary that is being replaced.  Writes carry the
``as_of`` instant their refresh started from; a write older than the cached
value is dropped, so a slow refresh cannot clobber a newer one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from src.usage.summary import UsageSummary

logger = logging.getLogger(__name__)

NOT_LOADED_MESSAGE = "Data not loaded yet. Refreshing..."


class NotLoadedError(Exception):
    """Raised when the cache is read before any refresh has succeeded."""

    def __init__(self, message: str = NOT_LOADED_MESSAGE) -> None:
        super().__init__(message)


class ReadWriteLock:
    """Writer-preferring readers/writer lock built on a Condition."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SummaryCache:
    """The single source of truth for the current usage summary."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._summary: UsageSummary | None = None

    def get(self) -> UsageSummary:
        """Return a copy of the cached summary.

        Raises:
            NotLoadedError: if no refresh has succeeded yet.
        """
        summary = self.peek()
        if summary is None:
            raise NotLoadedError()
        return summary

    def peek(self) -> UsageSummary | None:
        """Return a copy of the cached summary, or None if empty."""
        with self._lock.read():
            if self._summary is None:
                return None
            return self._summary.model_copy(deep=True)

    @property
    def loaded(self) -> bool:
        with self._lock.read():
            return self._summary is not None

    def store(self, summary: UsageSummary) -> bool:
        """Replace the cached summary unless it is newer than ``summary``.

        Returns True if the write was applied.
        """
        with self._lock.write():
            current = self._summary
            if current is not None and summary.as_of < current.as_of:
                logger.info(
                    "Dropping stale refresh result (as_of %s < cached %s)",
                    summary.as_of.isoformat(), current.as_of.isoformat(),
                )
                return False
            self._summary = summary.model_copy(deep=True)
            return True

    def clear(self) -> None:
        with self._lock.write():
            self._summary = None
