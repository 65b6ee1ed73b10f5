"""Usage provider that reads Claude Code session logs directly.

No external binary needed: assistant entries are grouped by local date and
priced with a per-model-family table (USD per million tokens).  Claude Code
writes one JSONL line per content block of a response, all carrying the same
usage, so entries are de-duplicated by ``requestId``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from pathlib import Path

from src.providers import UsageProvider
from src.providers.types import DailyUsage, ModelBreakdown, ProviderParseError
from src.usage.records import LogRecord
from src.usage.scanner import (
    ScanStats,
    default_claude_dir,
    is_readable_dir,
    iter_log_files,
    iter_records,
)

logger = logging.getLogger(__name__)

SYNTHETIC_MODEL = "<synthetic>"


@dataclass(frozen=True)
class TokenPricing:
    """Prices in USD per million tokens."""

    input: float
    output: float
    cache_creation: float
    cache_read: float

    def cost(self, input: int, output: int, cache_creation: int, cache_read: int) -> float:
        return (
            input * self.input
            + output * self.output
            + cache_creation * self.cache_creation
            + cache_read * self.cache_read
        ) / 1_000_000


OPUS_45 = TokenPricing(input=5.0, output=25.0, cache_creation=6.25, cache_read=0.50)
OPUS = TokenPricing(input=15.0, output=75.0, cache_creation=18.75, cache_read=1.50)
SONNET = TokenPricing(input=3.0, output=15.0, cache_creation=3.75, cache_read=0.30)
HAIKU = TokenPricing(input=1.0, output=5.0, cache_creation=1.25, cache_read=0.10)


def pricing_for_model(model: str) -> TokenPricing:
    """Pick a price table by model family; unknown models price as Sonnet."""
    lower = model.lower()
    if "opus-4-5" in lower or "opus-4.5" in lower:
        return OPUS_45
    if "opus" in lower:
        return OPUS
    if "sonnet" in lower:
        return SONNET
    if "haiku" in lower:
        return HAIKU
    return SONNET


@dataclass
class _TokenCounts:
    input: int = 0
    output: int = 0
    cache_creation: int = 0
    cache_read: int = 0

    def add(self, record: LogRecord) -> None:
        usage = record.usage
        if usage is None:
            return
        self.input += usage.input_tokens
        self.output += usage.output_tokens
        self.cache_creation += usage.cache_creation_tokens
        self.cache_read += usage.cache_read_tokens

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_creation + self.cache_read


@dataclass
class _DayAccumulator:
    totals: _TokenCounts = field(default_factory=_TokenCounts)
    models: dict[str, _TokenCounts] = field(default_factory=lambda: defaultdict(_TokenCounts))


def _parse_day(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y%m%d").date()
    except ValueError as e:
        raise ProviderParseError(f"Bad date {value!r}, expected YYYYMMDD") from e


def deduplicate(records: list[LogRecord]) -> list[LogRecord]:
    """Keep the first record per request id; records without one are kept."""
    seen: set[str] = set()
    result: list[LogRecord] = []
    for record in records:
        if record.request_id is None:
            result.append(record)
            continue
        if record.request_id in seen:
            continue
        seen.add(record.request_id)
        result.append(record)
    return result


def aggregate_daily(records: list[LogRecord], since: date, until: date) -> list[DailyUsage]:
    """Group records by local calendar date and price each model's share."""
    days: dict[str, _DayAccumulator] = defaultdict(_DayAccumulator)
    for record in records:
        local_day = record.timestamp.astimezone().date()
        if not since <= local_day <= until:
            continue
        acc = days[local_day.isoformat()]
        acc.totals.add(record)
        acc.models[record.model or "unknown"].add(record)

    daily: list[DailyUsage] = []
    for day, acc in days.items():
        breakdowns = [
            ModelBreakdown(
                model_name=model,
                input_tokens=counts.input,
                output_tokens=counts.output,
                cache_creation_tokens=counts.cache_creation,
                cache_read_tokens=counts.cache_read,
                cost=pricing_for_model(model).cost(
                    counts.input, counts.output, counts.cache_creation, counts.cache_read,
                ),
            )
            for model, counts in acc.models.items()
        ]
        breakdowns.sort(key=lambda b: b.cost, reverse=True)
        daily.append(
            DailyUsage(
                date=day,
                input_tokens=acc.totals.input,
                output_tokens=acc.totals.output,
                cache_creation_tokens=acc.totals.cache_creation,
                cache_read_tokens=acc.totals.cache_read,
                total_tokens=acc.totals.total,
                total_cost=sum(b.cost for b in breakdowns),
                models_used=sorted(acc.models),
                model_breakdowns=breakdowns,
            )
        )
    return sorted(daily, key=lambda d: d.date)


class NativeProvider(UsageProvider):
    """Compute daily usage from local session logs."""

    def __init__(self, claude_dir: str | Path | None = None) -> None:
        if claude_dir:
            self._projects_dirs = [Path(claude_dir).expanduser() / "projects"]
        else:
            home_claude = default_claude_dir()
            self._projects_dirs = []
            if home_claude is not None:
                self._projects_dirs = [
                    home_claude / "projects",
                    home_claude.parent / ".config" / "claude" / "projects",
                ]

    @property
    def name(self) -> str:
        return "native"

    def fetch_daily(self, since: str, until: str) -> list[DailyUsage]:
        since_day = _parse_day(since)
        until_day = _parse_day(until)
        modified_after = datetime.combine(since_day, time.min).astimezone(timezone.utc)

        stats = ScanStats()
        records: list[LogRecord] = []
        for projects_dir in self._projects_dirs:
            if not is_readable_dir(projects_dir, stats):
                continue
            for path in iter_log_files(projects_dir, modified_after, stats):
                for record in iter_records(path, stats):
                    if record.usage is None or record.model == SYNTHETIC_MODEL:
                        continue
                    records.append(record)

        logger.debug("Native provider read %d records from %d files", len(records), stats.files_scanned)
        return aggregate_daily(deduplicate(records), since_day, until_day)
