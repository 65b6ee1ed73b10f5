"""Tests for usage providers — ccusage subprocess and native log pricing."""

from __future__ import annotations

import json
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from src.providers import (
    BinaryNotFoundError,
    ExecutionFailedError,
    ProviderParseError,
    get_provider,
)
from src.providers.ccusage import CcusageProvider, candidate_paths, parse_daily_payload, resolve_binary
from src.providers.native import (
    HAIKU,
    OPUS,
    OPUS_45,
    SONNET,
    NativeProvider,
    aggregate_daily,
    deduplicate,
    pricing_for_model,
)
from src.usage.records import LogRecord, TokenUsage

CCUSAGE_OUTPUT = {
    "daily": [
        {
            "date": "2026-03-09",
            "inputTokens": 1200,
            "outputTokens": 800,
            "cacheCreationTokens": 100,
            "cacheReadTokens": 5000,
            "totalTokens": 7100,
            "totalCost": 1.25,
            "modelsUsed": ["claude-sonnet-4-6"],
            "modelBreakdowns": [
                {
                    "modelName": "claude-sonnet-4-6",
                    "inputTokens": 1200,
                    "outputTokens": 800,
                    "cacheCreationTokens": 100,
                    "cacheReadTokens": 5000,
                    "cost": 1.25,
                }
            ],
        }
    ],
    "totals": {"totalCost": 1.25},
}


@pytest.fixture
def fake_binary(tmp_path: Path) -> Path:
    binary = tmp_path / "bin" / "ccusage"
    binary.parent.mkdir()
    binary.write_text("#!/bin/sh\n")
    binary.chmod(0o755)
    return binary


@pytest.fixture
def mock_subprocess():
    """Patch subprocess.run inside the ccusage provider."""
    with patch("src.providers.ccusage.subprocess") as mock_sp:
        mock_sp.TimeoutExpired = subprocess.TimeoutExpired
        result = MagicMock()
        result.stdout = json.dumps(CCUSAGE_OUTPUT)
        result.stderr = ""
        result.returncode = 0
        mock_sp.run.return_value = result
        yield mock_sp


# -- ccusage -------------------------------------------------------------------


class TestBinaryDiscovery:
    def test_explicit_path_first(self, fake_binary: Path):
        assert candidate_paths(str(fake_binary))[0] == fake_binary
        assert resolve_binary(str(fake_binary)) == str(fake_binary)

    def test_env_override(self, fake_binary: Path, monkeypatch):
        monkeypatch.setenv("CCUSAGE_PATH", str(fake_binary))
        assert fake_binary in candidate_paths()

    def test_not_found(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("CCUSAGE_PATH", raising=False)
        with patch("src.providers.ccusage.candidate_paths", return_value=[tmp_path / "missing"]):
            with pytest.raises(BinaryNotFoundError) as exc:
                resolve_binary()
        assert str(exc.value).startswith("Binary not found:")
        assert "npm install -g ccusage" in str(exc.value)

    def test_non_executable_skipped(self, tmp_path: Path):
        plain = tmp_path / "ccusage"
        plain.write_text("not executable")
        plain.chmod(0o644)
        with patch("src.providers.ccusage.candidate_paths", return_value=[plain]):
            with pytest.raises(BinaryNotFoundError):
                resolve_binary()


class TestCcusageProvider:
    def test_fetch_daily(self, fake_binary: Path, mock_subprocess):
        provider = CcusageProvider(bin_path=str(fake_binary))
        daily = provider.fetch_daily("20260208", "20260310")

        args = mock_subprocess.run.call_args[0][0]
        assert args == [str(fake_binary), "daily", "--json", "--since", "20260208", "--until", "20260310"]
        assert provider.name == "claude-code"
        assert len(daily) == 1
        day = daily[0]
        assert day.date == "2026-03-09"
        assert day.total_cost == 1.25
        assert day.cache_read_tokens == 5000
        assert day.model_breakdowns[0].model_name == "claude-sonnet-4-6"

    def test_non_zero_exit(self, fake_binary: Path, mock_subprocess):
        mock_subprocess.run.return_value.returncode = 1
        mock_subprocess.run.return_value.stderr = "boom\n"
        provider = CcusageProvider(bin_path=str(fake_binary))
        with pytest.raises(ExecutionFailedError) as exc:
            provider.fetch_daily("20260208", "20260310")
        assert str(exc.value) == "Execution failed: ccusage exited with 1: boom"

    def test_timeout(self, fake_binary: Path, mock_subprocess):
        mock_subprocess.run.side_effect = subprocess.TimeoutExpired(cmd="ccusage", timeout=5)
        provider = CcusageProvider(bin_path=str(fake_binary), timeout=5)
        with pytest.raises(ExecutionFailedError, match="timed out"):
            provider.fetch_daily("20260208", "20260310")

    def test_launch_failure(self, fake_binary: Path, mock_subprocess):
        mock_subprocess.run.side_effect = PermissionError("denied")
        provider = CcusageProvider(bin_path=str(fake_binary))
        with pytest.raises(ExecutionFailedError, match="denied"):
            provider.fetch_daily("20260208", "20260310")

    def test_invalid_json(self, fake_binary: Path, mock_subprocess):
        mock_subprocess.run.return_value.stdout = "Loading...\n{"
        provider = CcusageProvider(bin_path=str(fake_binary))
        with pytest.raises(ProviderParseError) as exc:
            provider.fetch_daily("20260208", "20260310")
        assert str(exc.value).startswith("Parse error: JSON parse error")

    def test_missing_binary_reported_on_fetch(self, mock_subprocess):
        with patch("src.providers.ccusage.candidate_paths", return_value=[]):
            provider = CcusageProvider()
            with pytest.raises(BinaryNotFoundError):
                provider.fetch_daily("20260208", "20260310")
        mock_subprocess.run.assert_not_called()


class TestParseDailyPayload:
    def test_missing_daily_key(self):
        with pytest.raises(ProviderParseError, match="missing 'daily' key"):
            parse_daily_payload({"totals": {}})

    def test_bare_list(self):
        assert parse_daily_payload([{"date": "2026-03-09"}])[0].total_cost == 0.0

    def test_daily_not_a_list(self):
        with pytest.raises(ProviderParseError):
            parse_daily_payload({"daily": "nope"})

    def test_bad_row(self):
        with pytest.raises(ProviderParseError, match="Failed to parse daily data"):
            parse_daily_payload({"daily": [{"totalCost": 1.0}]})

    def test_empty(self):
        assert parse_daily_payload({"daily": []}) == []


class TestGetProvider:
    def test_native(self, tmp_path: Path):
        assert get_provider("native").name == "native"

    def test_ccusage(self):
        with patch("src.providers.ccusage.candidate_paths", return_value=[]):
            assert get_provider("ccusage").name == "claude-code"

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown usage provider"):
            get_provider("openai")


# -- native --------------------------------------------------------------------


def _record(ts: datetime, model: str = "claude-sonnet-4-6", request_id: str | None = None, **usage: int) -> LogRecord:
    return LogRecord(
        kind="assistant",
        timestamp=ts,
        session_id="s1",
        usage=TokenUsage(**usage),
        model=model,
        request_id=request_id,
    )


class TestPricing:
    def test_families(self):
        assert pricing_for_model("claude-opus-4-5-20251101") is OPUS_45
        assert pricing_for_model("claude-opus-4-1") is OPUS
        assert pricing_for_model("claude-sonnet-4-6") is SONNET
        assert pricing_for_model("claude-3-5-haiku") is HAIKU
        assert pricing_for_model("mystery-model") is SONNET

    def test_cost_per_million(self):
        cost = SONNET.cost(input=1_000_000, output=1_000_000, cache_creation=0, cache_read=1_000_000)
        assert cost == pytest.approx(3.0 + 15.0 + 0.30)


class TestAggregation:
    def test_deduplicate_by_request_id(self):
        ts = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
        records = [
            _record(ts, request_id="req_1", input_tokens=10),
            _record(ts, request_id="req_1", input_tokens=10),
            _record(ts, request_id=None, input_tokens=5),
            _record(ts, request_id=None, input_tokens=5),
        ]
        assert len(deduplicate(records)) == 3

    def test_daily_grouping_and_breakdowns(self):
        ts = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        day = ts.astimezone().date()
        records = [
            _record(ts, model="claude-opus-4-1", input_tokens=1_000_000),
            _record(ts, model="claude-sonnet-4-6", input_tokens=1_000_000, output_tokens=1000),
            _record(ts - timedelta(days=1), input_tokens=10),
            _record(ts - timedelta(days=40), input_tokens=10),
        ]
        daily = aggregate_daily(records, day - timedelta(days=30), day)

        assert [d.date for d in daily] == [(day - timedelta(days=1)).isoformat(), day.isoformat()]
        today = daily[-1]
        assert today.input_tokens == 2_000_000
        assert today.total_tokens == 2_001_000
        assert today.models_used == ["claude-opus-4-1", "claude-sonnet-4-6"]
        # most expensive model first
        assert today.model_breakdowns[0].model_name == "claude-opus-4-1"
        assert today.total_cost == pytest.approx(15.0 + 3.0 + 0.015)


class TestNativeProvider:
    def test_fetch_from_logs(self, claude_dir: Path, now, make_entry, write_log):
        ts = now - timedelta(hours=1)
        write_log(claude_dir / "projects" / "p" / "a.jsonl", [
            make_entry(ts, input_tokens=1000, output_tokens=100, request_id="r1"),
            make_entry(ts, input_tokens=1000, output_tokens=100, request_id="r1"),
            make_entry(ts, input_tokens=999, output_tokens=999, model="<synthetic>", request_id="r2"),
        ])
        today = ts.astimezone().date()
        provider = NativeProvider(claude_dir=claude_dir)
        daily = provider.fetch_daily(
            (today - timedelta(days=30)).strftime("%Y%m%d"), today.strftime("%Y%m%d"),
        )
        assert len(daily) == 1
        assert daily[0].input_tokens == 1000
        assert daily[0].output_tokens == 100
        assert daily[0].models_used == ["claude-sonnet-4-6"]

    def test_bad_date_argument(self, claude_dir: Path):
        with pytest.raises(ProviderParseError, match="expected YYYYMMDD"):
            NativeProvider(claude_dir=claude_dir).fetch_daily("2026-03-01", "20260310")

    def test_missing_dirs_give_no_data(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert NativeProvider().fetch_daily("20260101", "20260310") == []
