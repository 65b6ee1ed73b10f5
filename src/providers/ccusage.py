"""Usage provider backed by the ``ccusage`` CLI.

Runs ``ccusage daily --json --since YYYYMMDD --until YYYYMMDD`` and parses
its ``daily`` array.  Install with: ``npm install -g ccusage``.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from src.providers import UsageProvider
from src.providers.types import (
    BinaryNotFoundError,
    DailyUsage,
    ExecutionFailedError,
    ProviderParseError,
)

logger = logging.getLogger(__name__)

BINARY_NAME = "ccusage"
INSTALL_HINT = "ccusage not found. Install with: npm install -g ccusage"
_GLOBAL_BIN_DIRS = ("/usr/local/bin", "/opt/homebrew/bin")


def _nvm_bin_dirs(home: Path) -> list[Path]:
    """Node version bin dirs under ~/.nvm, newest version first."""
    base = home / ".nvm" / "versions" / "node"
    try:
        versions = sorted((p for p in base.iterdir() if p.is_dir()), reverse=True)
    except OSError:
        return []
    return [v / "bin" for v in versions]


def candidate_paths(explicit: str | None = None) -> list[Path]:
    """Ordered, de-duplicated list of places ccusage might live."""
    home = Path.home()
    candidates: list[str | Path | None] = [
        explicit,
        os.environ.get("CCUSAGE_PATH"),
        *(d / BINARY_NAME for d in _nvm_bin_dirs(home)),
        shutil.which(BINARY_NAME),
        *(Path(d) / BINARY_NAME for d in _GLOBAL_BIN_DIRS),
        home / ".npm-global" / "bin" / BINARY_NAME,
    ]
    unique: list[Path] = []
    seen: set[str] = set()
    for item in candidates:
        if not item:
            continue
        path = Path(item).expanduser()
        key = str(path)
        if key in seen:
            continue
        seen.add(key)
        unique.append(path)
    return unique


def resolve_binary(explicit: str | None = None) -> str:
    """Return the first executable ccusage candidate, or raise."""
    for path in candidate_paths(explicit):
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)
    raise BinaryNotFoundError(INSTALL_HINT)


def _child_path() -> str:
    """PATH for the child: node/homebrew bins first so `#!/usr/bin/env node` works."""
    home = Path.home()
    extra = [str(d) for d in _nvm_bin_dirs(home)]
    extra += [str(home / ".cargo" / "bin"), *_GLOBAL_BIN_DIRS]
    existing = os.environ.get("PATH", "")
    return os.pathsep.join([*extra, existing]) if existing else os.pathsep.join(extra)


class CcusageProvider(UsageProvider):
    """Fetch daily usage by shelling out to ccusage."""

    def __init__(self, bin_path: str | None = None, timeout: float | None = None) -> None:
        self._explicit = bin_path
        self._timeout = timeout
        self._bin_path: str | None = None
        try:
            self._bin_path = resolve_binary(bin_path)
            logger.info("ccusage found at %s", self._bin_path)
        except BinaryNotFoundError:
            logger.warning("ccusage not found, will retry on fetch")

    @property
    def name(self) -> str:
        return "claude-code"

    def _get_bin_path(self) -> str:
        if self._bin_path is None:
            self._bin_path = resolve_binary(self._explicit)
        return self._bin_path

    def _run(self, args: list[str]) -> Any:
        binary = self._get_bin_path()
        env = {**os.environ, "PATH": _child_path()}
        try:
            result = subprocess.run(
                [binary, *args],
                capture_output=True,
                text=True,
                env=env,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionFailedError(f"ccusage timed out after {self._timeout}s")
        except OSError as e:
            # Binary vanished or lost its exec bit; rediscover next time
            self._bin_path = None
            raise ExecutionFailedError(str(e)) from e

        if result.returncode != 0:
            raise ExecutionFailedError(
                f"ccusage exited with {result.returncode}: {result.stderr.strip()}"
            )

        try:
            return json.loads(result.stdout)
        except (json.JSONDecodeError, ValueError) as e:
            raise ProviderParseError(f"JSON parse error: {e}") from e

    def fetch_daily(self, since: str, until: str) -> list[DailyUsage]:
        payload = self._run(["daily", "--json", "--since", since, "--until", until])
        return parse_daily_payload(payload)


def parse_daily_payload(payload: Any) -> list[DailyUsage]:
    """Validate ccusage's ``{"daily": [...]}`` output (a bare list is accepted too)."""
    if isinstance(payload, dict):
        if "daily" not in payload:
            raise ProviderParseError("missing 'daily' key in response")
        rows = payload["daily"]
    else:
        rows = payload
    if not isinstance(rows, list):
        raise ProviderParseError("'daily' is not a list")
    try:
        return [DailyUsage.model_validate(row) for row in rows]
    except ValidationError as e:
        raise ProviderParseError(f"Failed to parse daily data: {e}") from e
