"""Decode one Claude Code session log line into a UsageRecord.

Session files hold one JSON object per line. Only assistant entries carry
token usage:

  {
    "type": "assistant",
    "timestamp": "2026-02-19T10:00:05.000Z",
    "cwd": "/Users/me/code/shop",
    "requestId": "req_01...",
    "message": {
      "id": "msg_01...",
      "model": "claude-sonnet-4-6",
      "stop_reason": "end_turn",
      "usage": {
        "input_tokens": 7,
        "output_tokens": 176,
        "cache_creation_input_tokens": 464,
        "cache_read_input_tokens": 37687
      }
    }
  }

Claude streams several lines per API call with the same message id and
request id; ``message.id:requestId`` is the dedup key.
"""

import json
from datetime import datetime
from pathlib import Path, PurePath
from typing import NamedTuple

from models import UsageRecord
from pricing import classify_model

_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)


class DecodedLine(NamedTuple):
    record: UsageRecord
    dedup_key: str | None


def parse_timestamp(value: str) -> datetime | None:
    """Parse ISO-8601 with or without fractional seconds; None if neither fits."""
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def project_name(cwd: str | None, path: Path) -> str:
    if cwd:
        return PurePath(cwd).name or cwd
    # "-Users-me-code-shop" -> "shop"
    folder = path.parent.name
    parts = [p for p in folder.split("-") if p]
    return parts[-1] if parts else folder


def _token_count(usage: dict, key: str) -> int:
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)


def decode_line(raw: bytes, path: Path) -> DecodedLine | None:
    """Return the decoded record for an assistant line, or None to skip it."""
    if not raw.strip():
        return None
    try:
        entry = json.loads(raw)
    except (ValueError, RecursionError):
        # also over-deep nesting and integers past the digit limit
        return None
    if not isinstance(entry, dict):
        return None

    entry_type = entry.get("type")
    ts_str = entry.get("timestamp")
    message = entry.get("message")
    if not isinstance(entry_type, str) or not isinstance(ts_str, str):
        return None
    if message is not None and not isinstance(message, dict):
        return None

    if entry_type != "assistant" or message is None:
        return None

    raw_model = message.get("model")
    if not isinstance(raw_model, str):
        return None
    model = classify_model(raw_model)
    if model is None:
        return None

    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None
    inp = _token_count(usage, "input_tokens")
    out = _token_count(usage, "output_tokens")
    cache_create = _token_count(usage, "cache_creation_input_tokens")
    cache_read = _token_count(usage, "cache_read_input_tokens")
    if inp + out + cache_create + cache_read <= 0:
        return None

    ts = parse_timestamp(ts_str)
    if ts is None:
        return None

    cwd = entry.get("cwd")
    record = UsageRecord(
        timestamp=ts,
        project=project_name(cwd if isinstance(cwd, str) else None, path),
        model=model,
        input_tokens=inp,
        output_tokens=out,
        cache_creation_tokens=cache_create,
        cache_read_tokens=cache_read,
        completed=message.get("stop_reason") is not None,
    )

    msg_id = message.get("id")
    req_id = entry.get("requestId")
    dedup_key = None
    if isinstance(msg_id, str) and isinstance(req_id, str):
        dedup_key = f"{msg_id}:{req_id}"
    return DecodedLine(record, dedup_key)
