"""Decode single lines of Claude Code session logs (JSONL).

Only the fields needed for usage accounting are read; everything else in
the entry is ignored.  ``decode_line`` never raises: a line that cannot be
turned into a usable record simply yields ``None`` so the caller can move on.
``read_line`` raises :class:`MalformedLineError` for corrupt lines instead,
so the scanner can count them apart from ordinary non-assistant entries.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

ASSISTANT_KIND = "assistant"

_USAGE_FIELDS = {
    "input_tokens": "input_tokens",
    "output_tokens": "output_tokens",
    "cache_read_tokens": "cache_read_input_tokens",
    "cache_creation_tokens": "cache_creation_input_tokens",
}


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported on one assistant message."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0


@dataclass(frozen=True)
class LogRecord:
    """An assistant entry from a session log."""

    kind: str
    timestamp: datetime
    session_id: str | None = None
    usage: TokenUsage | None = None
    model: str | None = None
    request_id: str | None = None


class MalformedLineError(ValueError):
    """A log line that could not be decoded into a usable record."""


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive or malformed values yield None."""
    if not isinstance(value, str) or not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        return None
    return dt


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _counter(usage: dict[str, Any], key: str) -> int:
    value = usage.get(key)
    if value is None:
        return 0
    # bool is an int subclass but never a token count
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedLineError(f"bad {key}: {value!r}")
    return value


def _decode_usage(raw: Any) -> TokenUsage | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedLineError("usage is not an object")
    return TokenUsage(**{field: _counter(raw, key) for field, key in _USAGE_FIELDS.items()})


def _entry_to_record(entry: Any) -> LogRecord | None:
    if not isinstance(entry, dict):
        raise MalformedLineError("entry is not an object")
    if entry.get("type") != ASSISTANT_KIND:
        return None

    timestamp = parse_timestamp(entry.get("timestamp"))
    if timestamp is None:
        raise MalformedLineError(f"bad timestamp: {entry.get('timestamp')!r}")

    message = entry.get("message")
    if message is not None and not isinstance(message, dict):
        raise MalformedLineError("message is not an object")
    message = message or {}

    return LogRecord(
        kind=ASSISTANT_KIND,
        timestamp=timestamp,
        session_id=_optional_str(entry.get("sessionId")),
        usage=_decode_usage(message.get("usage")),
        model=_optional_str(message.get("model")),
        request_id=_optional_str(entry.get("requestId")),
    )


def read_line(line: str) -> LogRecord | None:
    """Decode one JSONL line, telling corrupt lines apart from irrelevant ones.

    Returns None for blank lines and well-formed non-assistant entries
    (user, tool result, summary...).

    Raises:
        MalformedLineError: if the line is not valid JSON, is too deeply
            nested to parse, or is an assistant entry with unusable fields.
    """
    line = line.strip()
    if not line:
        return None
    try:
        entry = json.loads(line)
    except (ValueError, RecursionError) as e:
        raise MalformedLineError(f"invalid JSON: {type(e).__name__}") from None
    return _entry_to_record(entry)


def decode_entry(entry: Any) -> LogRecord | None:
    """Turn an already-parsed JSON value into a LogRecord, or None."""
    try:
        return _entry_to_record(entry)
    except MalformedLineError:
        return None


def decode_line(line: str) -> LogRecord | None:
    """Decode one JSONL line. Malformed or irrelevant lines yield None."""
    try:
        return read_line(line)
    except MalformedLineError:
        return None
