"""Usage refresh scheduler — keeps the SummaryCache fresh.

Refreshes once on start, then every ``interval`` seconds.  The blocking part
(log scan + provider subprocess) runs in a thread pool so cache readers on
the event loop are never held up.  Manual refreshes go through the same
``do_refresh`` path; concurrent refreshes are not coalesced, the cache's
``as_of`` check decides which result survives.

Every completed refresh is published to subscribers as ``usage-updated``
(payload: UsageSummary) or ``usage-error`` (payload: error string).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.providers import ProviderError, UsageProvider
from src.usage.cache import SummaryCache
from src.usage.summary import FETCH_DAYS, UsageSummary, build_summary
from src.usage.windows import DEFAULT_WINDOWS, WindowSpec

logger = logging.getLogger(__name__)

REFRESH_INTERVAL_SECS = 300  # 5 minutes

USAGE_UPDATED = "usage-updated"
USAGE_ERROR = "usage-error"

Subscriber = Callable[[str, Any], Any]


class UsageScheduler:
    """Periodic + on-demand refresh of the usage summary."""

    def __init__(
        self,
        provider: UsageProvider,
        cache: SummaryCache,
        *,
        interval: float = REFRESH_INTERVAL_SECS,
        projects_dir: Path | None = None,
        windows: list[WindowSpec] | tuple[WindowSpec, ...] = DEFAULT_WINDOWS,
        fetch_days: int = FETCH_DAYS,
        on_event: Subscriber | None = None,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.interval = interval
        self.projects_dir = projects_dir
        self.windows = list(windows)
        self.fetch_days = fetch_days
        self._subscribers: list[Subscriber] = []
        if on_event:
            self._subscribers.append(on_event)
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="usage-refresh")
        self._task: asyncio.Task[None] | None = None
        self._running = False
        # Diagnostics
        self.in_flight = 0
        self.last_outcome: str | None = None  # "cached" | "superseded" | "failed"
        self.last_error: str | None = None
        self.last_attempt_at: str | None = None
        self.last_success_at: str | None = None

    # -- subscribers -----------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Subscriber:
        self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _emit(self, event: str, payload: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event, payload)
            except Exception:
                logger.exception("Usage event subscriber error (%s)", event)

    # -- lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the background refresh loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop(), name="usage-refresh")
        logger.info(
            "Usage scheduler started (provider=%s, interval=%ss)",
            self.provider.name, self.interval,
        )

    async def stop(self) -> None:
        """Stop the loop. A refresh already running in the pool finishes on its own."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._executor.shutdown(wait=False)
        logger.info("Usage scheduler stopped")

    @property
    def running(self) -> bool:
        return self._running

    # -- refresh ---------------------------------------------------------------

    def _build(self) -> UsageSummary:
        return build_summary(
            self.provider,
            projects_dir=self.projects_dir,
            windows=self.windows,
            fetch_days=self.fetch_days,
        )

    async def do_refresh(self) -> UsageSummary:
        """Build a fresh summary, cache it and notify subscribers.

        Raises:
            ProviderError: if the provider fails. The cache is left untouched
                and ``usage-error`` is emitted before raising.
        """
        self.in_flight += 1
        self.last_attempt_at = datetime.now(timezone.utc).isoformat()
        loop = asyncio.get_event_loop()
        try:
            summary = await loop.run_in_executor(self._executor, self._build)
        except Exception as e:
            self.last_outcome = "failed"
            self.last_error = str(e)
            if isinstance(e, ProviderError):
                logger.warning("Usage refresh failed: %s", e)
            else:
                logger.exception("Usage refresh error")
            self._emit(USAGE_ERROR, str(e))
            raise
        finally:
            self.in_flight -= 1

        if not self.cache.store(summary):
            # A newer refresh already landed; serve and announce that one.
            current = self.cache.get()
            self.last_outcome = "superseded"
            self.last_error = None
            self._emit(USAGE_UPDATED, current)
            return current

        self.last_outcome = "cached"
        self.last_error = None
        self.last_success_at = summary.as_of.isoformat()
        self._emit(USAGE_UPDATED, summary)
        return summary

    async def _refresh_once(self) -> None:
        try:
            await self.do_refresh()
        except asyncio.CancelledError:
            raise
        except Exception:
            # do_refresh has already logged and published the failure
            logger.debug("Scheduled refresh failed", exc_info=True)

    async def _refresh_loop(self) -> None:
        """Refresh immediately, then on every interval."""
        await self._refresh_once()
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                if not self._running:
                    break
                await self._refresh_once()
            except asyncio.CancelledError:
                break

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "provider": self.provider.name,
            "interval_seconds": self.interval,
            "in_flight": self.in_flight,
            "loaded": self.cache.loaded,
            "last_outcome": self.last_outcome,
            "last_error": self.last_error,
            "last_attempt_at": self.last_attempt_at,
            "last_success_at": self.last_success_at,
            "windows": [{"label": w.label, "hours": w.hours} for w in self.windows],
        }
