"""Rolling usage windows — specs, per-scan accumulators and snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict

from src.config import Settings, settings
from src.usage.records import LogRecord


@dataclass(frozen=True)
class WindowSpec:
    """A trailing window of ``hours`` length, reported under ``label``."""

    hours: int
    label: str

    @property
    def length(self) -> timedelta:
        return timedelta(hours=self.hours)


SESSION_WINDOW = WindowSpec(hours=5, label="session")
WEEKLY_WINDOW = WindowSpec(hours=168, label="weekly")
DEFAULT_WINDOWS: tuple[WindowSpec, ...] = (SESSION_WINDOW, WEEKLY_WINDOW)


def windows_from_settings(cfg: Settings | None = None) -> list[WindowSpec]:
    """Build the session/weekly window pair from configuration."""
    cfg = cfg or settings
    return [
        WindowSpec(hours=cfg.session_window_hours, label="session"),
        WindowSpec(hours=cfg.weekly_window_hours, label="weekly"),
    ]


def longest_window(specs: list[WindowSpec] | tuple[WindowSpec, ...]) -> WindowSpec:
    return max(specs, key=lambda s: s.hours)


class WindowInfo(BaseModel):
    """Reportable snapshot of one window."""

    model_config = ConfigDict(frozen=True)

    label: str
    tokens_used: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    sessions_active: int = 0
    oldest_message_time: str | None = None
    resets_at: str | None = None
    minutes_until_reset: int | None = None
    window_hours: int

    def percent_of(self, cap: int) -> float:
        """Share of ``cap`` used by this window, 0..100."""
        if cap <= 0:
            return 0.0
        return min(100.0, self.tokens_used / cap * 100)


@dataclass
class WindowAccumulator:
    """Running totals for one window during a single scan pass."""

    spec: WindowSpec
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    oldest: datetime | None = None
    sessions: set[str] = field(default_factory=set)
    records: int = 0

    def add(self, record: LogRecord) -> None:
        usage = record.usage
        if usage is None:
            return
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.cache_read_tokens += usage.cache_read_tokens
        self.cache_creation_tokens += usage.cache_creation_tokens
        self.records += 1
        if self.oldest is None or record.timestamp < self.oldest:
            self.oldest = record.timestamp
        if record.session_id:
            self.sessions.add(record.session_id)


def empty_window(spec: WindowSpec) -> WindowInfo:
    """The defined no-data state for a window."""
    return WindowInfo(label=spec.label, window_hours=spec.hours)


def finalize(acc: WindowAccumulator, now: datetime) -> WindowInfo:
    """Convert an accumulator into a WindowInfo snapshot (no I/O)."""
    if acc.oldest is None:
        return empty_window(acc.spec)

    resets_at = acc.oldest + acc.spec.length
    if resets_at > now:
        minutes = int((resets_at - now).total_seconds() // 60)
    else:
        minutes = 0

    return WindowInfo(
        label=acc.spec.label,
        tokens_used=acc.input_tokens + acc.output_tokens,
        input_tokens=acc.input_tokens,
        output_tokens=acc.output_tokens,
        cache_read_tokens=acc.cache_read_tokens,
        cache_creation_tokens=acc.cache_creation_tokens,
        sessions_active=len(acc.sessions),
        oldest_message_time=acc.oldest.isoformat(),
        resets_at=resets_at.isoformat(),
        minutes_until_reset=max(0, minutes),
        window_hours=acc.spec.hours,
    )
