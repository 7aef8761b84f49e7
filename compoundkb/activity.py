"""Activity logging for MCP tool calls.

Logs every MCP tool invocation to a JSONL file so humans can see what
knowledge their AI agent was served (and what it captured). Each line is a
JSON object with timestamp, tool name, arguments, result preview, and duration.

The log file lives alongside compoundkb.db by default.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

RESULT_PREVIEW_LIMIT = 500


def _resolve_log_path() -> Path:
    """Find the log file path, checking env var then defaulting next to the DB."""
    env_path = os.getenv("COMPOUNDKB_LOG_PATH")
    if env_path:
        return Path(env_path)

    db_path = os.getenv("COMPOUNDKB_DB_PATH", "compoundkb.db")
    return Path(db_path).parent / "compoundkb-activity.jsonl"


def log_tool_call(
    tool_name: str,
    arguments: dict,
    result_text: str,
    error: str | None,
    duration_ms: int,
) -> None:
    """Append a tool call entry to the activity log. Never raises."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "tool_name": tool_name,
        "arguments": arguments,
        "result_preview": result_text[:RESULT_PREVIEW_LIMIT] if result_text else "",
        "error": error,
        "duration_ms": duration_ms,
    }
    try:
        log_path = _resolve_log_path()
        with open(log_path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError as e:
        # Never crash the MCP server for logging
        logger.debug(f"Could not write activity log: {e}")


def read_activity_log(
    limit: int = 20,
    tool_name: str | None = None,
    log_path: Path | None = None,
) -> list[dict]:
    """Read recent activity log entries.

    Returns entries in reverse chronological order (most recent first).
    """
    path = log_path or _resolve_log_path()
    if not path.exists():
        return []

    entries: list[dict] = []
    for line in path.read_text().splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue

        if tool_name and entry.get("tool_name") != tool_name:
            continue

        entries.append(entry)

    entries.reverse()
    return entries[:limit]
