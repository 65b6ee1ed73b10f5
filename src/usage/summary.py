"""Compose one UsageSummary from provider data and the local log windows."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from src.providers import UsageProvider
from src.providers.types import DailyUsage, ModelBreakdown
from src.usage.scanner import scan_windows
from src.usage.windows import DEFAULT_WINDOWS, WindowInfo, WindowSpec

logger = logging.getLogger(__name__)

FETCH_DAYS = 30
WEEK_DAYS = 7


class UsageSummary(BaseModel):
    """Complete usage report served from the cache."""

    model_config = ConfigDict(frozen=True)

    daily: list[DailyUsage] = []
    today_cost: float = 0.0
    week_cost: float = 0.0
    month_cost: float = 0.0
    today_tokens: int = 0
    today_model_breakdowns: list[ModelBreakdown] = []
    rate_limits: dict[str, WindowInfo] = {}
    scan_stats: dict[str, int] = {}
    provider: str = ""
    last_updated: str
    as_of: datetime


def _parse_date(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def cost_since(daily: list[DailyUsage], start: date) -> float:
    """Sum costs of entries dated on/after ``start``; bad dates are excluded."""
    total = 0.0
    for day in daily:
        parsed = _parse_date(day.date)
        if parsed is not None and parsed >= start:
            total += day.total_cost
    return total


def build_summary(
    provider: UsageProvider,
    *,
    projects_dir: Path | None = None,
    windows: list[WindowSpec] | tuple[WindowSpec, ...] = DEFAULT_WINDOWS,
    fetch_days: int = FETCH_DAYS,
    now: datetime | None = None,
) -> UsageSummary:
    """Run one full refresh.

    Raises:
        ProviderError: if the provider fails; no partial summary is built.
    """
    now = now or datetime.now(timezone.utc)
    local_now = now.astimezone()
    today = local_now.date()
    since = today - timedelta(days=fetch_days)

    daily = provider.fetch_daily(since.strftime("%Y%m%d"), today.strftime("%Y%m%d"))

    today_str = today.isoformat()
    today_data = next((d for d in daily if d.date == today_str), None)

    week_cost = cost_since(daily, today - timedelta(days=WEEK_DAYS - 1))
    month_cost = cost_since(daily, today.replace(day=1))

    scan = scan_windows(projects_dir, windows, now)

    logger.info(
        "Usage refreshed via %s: %d days, today $%.2f, week $%.2f, month $%.2f",
        provider.name, len(daily),
        today_data.total_cost if today_data else 0.0, week_cost, month_cost,
    )

    return UsageSummary(
        daily=daily,
        today_cost=today_data.total_cost if today_data else 0.0,
        week_cost=week_cost,
        month_cost=month_cost,
        today_tokens=today_data.total_tokens if today_data else 0,
        today_model_breakdowns=list(today_data.model_breakdowns) if today_data else [],
        rate_limits=scan.windows,
        scan_stats=asdict(scan.stats),
        provider=provider.name,
        last_updated=local_now.strftime("%Y-%m-%dT%H:%M:%S"),
        as_of=now,
    )
