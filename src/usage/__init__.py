from src.usage.cache import NotLoadedError, SummaryCache
from src.usage.records import LogRecord, MalformedLineError, TokenUsage, decode_line, read_line
from src.usage.scanner import ScanStats, WindowScan, compute, resolve_projects_dir, scan_windows
from src.usage.scheduler import USAGE_ERROR, USAGE_UPDATED, UsageScheduler
from src.usage.summary import UsageSummary, build_summary
from src.usage.windows import (
    DEFAULT_WINDOWS,
    WindowAccumulator,
    WindowInfo,
    WindowSpec,
    empty_window,
    finalize,
    windows_from_settings,
)

__all__ = [
    "DEFAULT_WINDOWS",
    "LogRecord",
    "MalformedLineError",
    "NotLoadedError",
    "ScanStats",
    "SummaryCache",
    "TokenUsage",
    "USAGE_ERROR",
    "USAGE_UPDATED",
    "UsageScheduler",
    "UsageSummary",
    "WindowAccumulator",
    "WindowInfo",
    "WindowScan",
    "WindowSpec",
    "build_summary",
    "compute",
    "decode_line",
    "empty_window",
    "finalize",
    "read_line",
    "resolve_projects_dir",
    "scan_windows",
    "windows_from_settings",
]
