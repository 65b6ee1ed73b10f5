"""Usage providers — sources of daily cost/token summaries."""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.providers.types import (
    BinaryNotFoundError,
    DailyUsage,
    ExecutionFailedError,
    ModelBreakdown,
    ProviderError,
    ProviderParseError,
)


class UsageProvider(ABC):
    """Fetches a day-indexed usage series for a date range."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def fetch_daily(self, since: str, until: str) -> list[DailyUsage]:
        """Return daily usage between ``since`` and ``until`` (``YYYYMMDD``).

        Raises:
            ProviderError: on any failure to obtain or parse the data.
        """


def get_provider(kind: str | None = None) -> UsageProvider:
    """Instantiate the provider named in configuration."""
    from src.config import settings

    kind = (kind or settings.usage_provider).lower()
    if kind == "ccusage":
        from src.providers.ccusage import CcusageProvider

        return CcusageProvider(
            bin_path=settings.ccusage_path or None,
            timeout=settings.ccusage_timeout or None,
        )
    if kind == "native":
        from src.providers.native import NativeProvider

        return NativeProvider(claude_dir=settings.claude_dir or None)
    raise ValueError(f"Unknown usage provider: {kind!r} (expected 'ccusage' or 'native')")


__all__ = [
    "BinaryNotFoundError",
    "DailyUsage",
    "ExecutionFailedError",
    "ModelBreakdown",
    "ProviderError",
    "ProviderParseError",
    "UsageProvider",
    "get_provider",
]
