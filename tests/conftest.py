"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest


def _assistant_entry(
    *,
    msg_id: str | None = "msg-1",
    request_id: str | None = "req-1",
    model: str = "claude-sonnet-4-6",
    input_tokens: int = 1000,
    output_tokens: int = 500,
    cache_creation: int = 0,
    cache_read: int = 0,
    stop_reason: str | None = "end_turn",
    timestamp: str = "2026-02-19T10:00:05.000Z",
    cwd: str | None = "/Users/me/code/shop",
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "role": "assistant",
        "model": model,
        "content": [{"type": "text", "text": "ok"}],
        "stop_reason": stop_reason,
        "usage": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cache_creation_input_tokens": cache_creation,
            "cache_read_input_tokens": cache_read,
        },
    }
    if msg_id is not None:
        message["id"] = msg_id
    entry: dict[str, Any] = {
        "type": "assistant",
        "timestamp": timestamp,
        "sessionId": "test-session-001",
        "message": message,
    }
    if request_id is not None:
        entry["requestId"] = request_id
    if cwd is not None:
        entry["cwd"] = cwd
    return entry


@pytest.fixture
def make_entry() -> Callable[..., dict[str, Any]]:
    """Factory for assistant log entries with usage data."""
    return _assistant_entry


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    """A fake ~/.claude/projects directory."""
    d = tmp_path / ".claude" / "projects"
    d.mkdir(parents=True)
    return d


@pytest.fixture
def session_file(projects_dir: Path) -> Path:
    proj = projects_dir / "-Users-me-code-shop"
    proj.mkdir()
    return proj / "test-session-001.jsonl"


@pytest.fixture
def append_entries() -> Callable[..., int]:
    """Append entries as JSONL; returns the file size afterwards."""

    def _append(path: Path, entries: list[dict[str, Any]], *, terminate: bool = True) -> int:
        lines = [json.dumps(e) for e in entries]
        text = "\n".join(lines) + ("\n" if terminate else "")
        with open(path, "ab") as f:
            f.write(text.encode("utf-8"))
        return path.stat().st_size

    return _append
