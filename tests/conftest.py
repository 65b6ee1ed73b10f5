"""Shared test fixtures."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from src.providers import DailyUsage, ProviderError, UsageProvider

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


class FakeProvider(UsageProvider):
    """In-memory provider returning canned days, or raising a canned error."""

    def __init__(self, daily: list[DailyUsage] | None = None, error: ProviderError | None = None) -> None:
        self.daily = daily or []
        self.error = error
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "fake"

    def fetch_daily(self, since: str, until: str) -> list[DailyUsage]:
        self.calls.append((since, until))
        if self.error is not None:
            raise self.error
        return list(self.daily)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def claude_dir(tmp_path: Path) -> Path:
    """A fake ~/.claude with an empty projects directory."""
    root = tmp_path / ".claude"
    (root / "projects").mkdir(parents=True)
    return root


@pytest.fixture
def projects_dir(claude_dir: Path) -> Path:
    return claude_dir / "projects"


@pytest.fixture
def make_entry() -> Callable[..., dict[str, Any]]:
    """Factory for assistant log entries as Claude Code writes them."""

    def _make(
        ts: datetime,
        input_tokens: int = 100,
        output_tokens: int = 50,
        session_id: str | None = "s1",
        model: str = "claude-sonnet-4-6",
        request_id: str | None = None,
        cache_read: int = 0,
        cache_creation: int = 0,
    ) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "type": "assistant",
            "timestamp": _iso(ts),
            "message": {
                "role": "assistant",
                "model": model,
                "content": [{"type": "text", "text": "ok"}],
                "usage": {
                    "input_tokens": input_tokens,
                    "output_tokens": output_tokens,
                    "cache_read_input_tokens": cache_read,
                    "cache_creation_input_tokens": cache_creation,
                },
            },
        }
        if session_id is not None:
            entry["sessionId"] = session_id
        if request_id is not None:
            entry["requestId"] = request_id
        return entry

    return _make


@pytest.fixture
def write_log() -> Callable[..., Path]:
    """Write entries (dicts or raw strings) as a JSONL file modified at ``mtime`` (default NOW)."""

    def _write(path: Path, entries: list[Any], mtime: datetime | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        stamp = (mtime or NOW).timestamp()
        os.utime(path, (stamp, stamp))
        return path

    return _write


@pytest.fixture
def sample_daily() -> list[DailyUsage]:
    """Three days of provider data ending on NOW's local date."""
    today = NOW.astimezone().date()
    return [
        DailyUsage(
            date=(today - timedelta(days=10)).isoformat(),
            total_tokens=1000,
            total_cost=1.0,
        ),
        DailyUsage(
            date=(today - timedelta(days=3)).isoformat(),
            total_tokens=2000,
            total_cost=2.0,
        ),
        DailyUsage.model_validate({
            "date": today.isoformat(),
            "inputTokens": 300,
            "outputTokens": 200,
            "totalTokens": 500,
            "totalCost": 4.5,
            "modelsUsed": ["claude-sonnet-4-6"],
            "modelBreakdowns": [
                {"modelName": "claude-sonnet-4-6", "inputTokens": 300, "outputTokens": 200, "cost": 4.5},
            ],
        }),
    ]
