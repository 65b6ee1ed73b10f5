"""Scan Claude Code session logs into rolling usage windows.

Walks ``~/.claude/projects/<project>/*.jsonl`` (plus each project's nested
``subagents/`` directory), skips files that have not been touched within
the longest window, and feeds every assistant record to every window it
falls into, filling all windows in a single pass.

Logs are best-effort telemetry: unreadable directories, unreadable files
and malformed lines are counted in :class:`ScanStats` and skipped.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from src.usage.records import LogRecord, MalformedLineError, read_line
from src.usage.windows import (
    DEFAULT_WINDOWS,
    WindowAccumulator,
    WindowInfo,
    WindowSpec,
    empty_window,
    finalize,
    longest_window,
)

logger = logging.getLogger(__name__)

PROJECTS_SUBDIR = "projects"
SUBAGENTS_SUBDIR = "subagents"
LOG_SUFFIX = ".jsonl"


def default_claude_dir() -> Path | None:
    """Return ``$HOME/.claude``, or None when HOME is not set."""
    home = os.environ.get("HOME")
    if not home:
        return None
    return Path(home) / ".claude"


def resolve_projects_dir(claude_dir: str | Path | None = None) -> Path | None:
    """Locate the projects directory; None means "no log root"."""
    if claude_dir:
        return Path(claude_dir).expanduser() / PROJECTS_SUBDIR
    base = default_claude_dir()
    return base / PROJECTS_SUBDIR if base else None


@dataclass
class ScanStats:
    """Diagnostic counters for one scan pass."""

    projects: int = 0
    dirs_unreadable: int = 0
    files_scanned: int = 0
    files_stale: int = 0
    files_unreadable: int = 0
    lines_rejected: int = 0  # corrupt lines
    lines_skipped: int = 0  # well-formed non-assistant entries
    records_accepted: int = 0


@dataclass
class WindowScan:
    """Finalized windows keyed by label, plus the scan diagnostics."""

    windows: dict[str, WindowInfo] = field(default_factory=dict)
    stats: ScanStats = field(default_factory=ScanStats)


def _list_dir(path: Path, stats: ScanStats) -> list[Path]:
    try:
        return sorted(path.iterdir())
    except OSError as e:
        stats.dirs_unreadable += 1
        logger.debug("Could not list %s: %s", path, e)
        return []


def is_readable_dir(path: Path, stats: ScanStats) -> bool:
    """``path.is_dir()`` that counts permission errors instead of raising."""
    try:
        return path.is_dir()
    except OSError as e:
        stats.dirs_unreadable += 1
        logger.debug("Could not stat %s: %s", path, e)
        return False


def iter_log_dirs(projects_dir: Path, stats: ScanStats) -> Iterator[Path]:
    """Yield every project directory and its ``subagents`` directory."""
    for project in _list_dir(projects_dir, stats):
        if not is_readable_dir(project, stats):
            continue
        stats.projects += 1
        yield project
        subagents = project / SUBAGENTS_SUBDIR
        if is_readable_dir(subagents, stats):
            yield subagents


def iter_log_files(
    projects_dir: Path,
    modified_after: datetime,
    stats: ScanStats,
) -> Iterator[Path]:
    """Yield log files whose mtime is not older than ``modified_after``."""
    for directory in iter_log_dirs(projects_dir, stats):
        for path in _list_dir(directory, stats):
            if path.suffix != LOG_SUFFIX:
                continue
            try:
                if not path.is_file():
                    continue
                mtime = path.stat().st_mtime
            except OSError:
                stats.files_unreadable += 1
                continue
            if datetime.fromtimestamp(mtime, tz=timezone.utc) < modified_after:
                stats.files_stale += 1
                continue
            yield path


def iter_records(path: Path, stats: ScanStats) -> Iterator[LogRecord]:
    """Yield decoded assistant records from one file."""
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        stats.files_unreadable += 1
        logger.debug("Could not read %s: %s", path, e)
        return
    stats.files_scanned += 1

    for line in content.splitlines():
        if not line.strip():
            continue
        try:
            record = read_line(line)
        except MalformedLineError:
            stats.lines_rejected += 1
            continue
        if record is None:
            stats.lines_skipped += 1
            continue
        yield record


def scan_windows(
    projects_dir: Path | None = None,
    specs: list[WindowSpec] | tuple[WindowSpec, ...] = DEFAULT_WINDOWS,
    now: datetime | None = None,
) -> WindowScan:
    """Scan the log tree once and return a finalized snapshot per window.

    Args:
        projects_dir: Directory holding one subdirectory per project.
                      Defaults to ``$HOME/.claude/projects``.
        specs: Windows to fill. Overlapping windows are independent.
        now: Reference instant (UTC). Defaults to the current time.
    """
    now = now or datetime.now(timezone.utc)
    if projects_dir is None:
        projects_dir = resolve_projects_dir()

    if not specs:
        return WindowScan()

    stats = ScanStats()
    if projects_dir is None or not is_readable_dir(projects_dir, stats):
        return WindowScan(windows={s.label: empty_window(s) for s in specs}, stats=stats)

    outer_cutoff = now - longest_window(specs).length
    accumulators = [(now - spec.length, WindowAccumulator(spec)) for spec in specs]

    for path in iter_log_files(projects_dir, outer_cutoff, stats):
        for record in iter_records(path, stats):
            if record.usage is None or record.timestamp < outer_cutoff:
                continue
            stats.records_accepted += 1
            for cutoff, acc in accumulators:
                if record.timestamp >= cutoff:
                    acc.add(record)

    logger.debug(
        "Scanned %d files in %d projects (%d stale, %d unreadable, %d dirs unreadable, "
        "%d lines rejected, %d lines skipped)",
        stats.files_scanned, stats.projects, stats.files_stale, stats.files_unreadable,
        stats.dirs_unreadable, stats.lines_rejected, stats.lines_skipped,
    )

    return WindowScan(
        windows={acc.spec.label: finalize(acc, now) for _, acc in accumulators},
        stats=stats,
    )


def compute(
    projects_dir: Path | None = None,
    specs: list[WindowSpec] | tuple[WindowSpec, ...] = DEFAULT_WINDOWS,
    now: datetime | None = None,
) -> dict[str, WindowInfo]:
    """Like :func:`scan_windows` but returns only the window snapshots."""
    return scan_windows(projects_dir, specs, now).windows
