"""Tests for compoundkb.activity: logging and reading."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

from compoundkb.activity import log_tool_call, read_activity_log


class TestLogToolCall:
    def test_creates_log_file(self, tmp_path: Path):
        log_path = tmp_path / "activity.jsonl"
        with patch.dict(os.environ, {"COMPOUNDKB_LOG_PATH": str(log_path)}):
            log_tool_call("search_solutions", {"query": "slow dashboard"}, "results", None, 100)

        entry = json.loads(log_path.read_text().strip())
        assert entry["tool_name"] == "search_solutions"
        assert entry["arguments"]["query"] == "slow dashboard"
        assert entry["duration_ms"] == 100
        assert entry["error"] is None

    def test_logs_error(self, tmp_path: Path):
        log_path = tmp_path / "activity.jsonl"
        with patch.dict(os.environ, {"COMPOUNDKB_LOG_PATH": str(log_path)}):
            log_tool_call("get_solution", {"id": "x"}, "", "solution not found: x", 5)

        entry = json.loads(log_path.read_text().strip())
        assert entry["error"] == "solution not found: x"

    def test_truncates_result_preview(self, tmp_path: Path):
        log_path = tmp_path / "activity.jsonl"
        with patch.dict(os.environ, {"COMPOUNDKB_LOG_PATH": str(log_path)}):
            log_tool_call("tool", {}, "x" * 1000, None, 10)

        entry = json.loads(log_path.read_text().strip())
        assert len(entry["result_preview"]) == 500

    def test_defaults_next_to_db(self, tmp_path: Path):
        env = {"COMPOUNDKB_DB_PATH": str(tmp_path / "kb.db")}
        with patch.dict(os.environ, env):
            os.environ.pop("COMPOUNDKB_LOG_PATH", None)
            log_tool_call("get_critical_patterns", {}, "# Critical Patterns", None, 1)

        assert (tmp_path / "compoundkb-activity.jsonl").exists()

    def test_unwritable_path_does_not_raise(self, tmp_path: Path):
        log_path = tmp_path / "missing-dir" / "activity.jsonl"
        with patch.dict(os.environ, {"COMPOUNDKB_LOG_PATH": str(log_path)}):
            log_tool_call("tool", {}, "ok", None, 1)
        assert not log_path.exists()


class TestReadActivityLog:
    def _write(self, path: Path, entries: list[dict]) -> None:
        path.write_text("\n".join(json.dumps(e) for e in entries) + "\n")

    def test_most_recent_first(self, tmp_path: Path):
        log_path = tmp_path / "activity.jsonl"
        self._write(log_path, [{"tool_name": "a"}, {"tool_name": "b"}, {"tool_name": "c"}])

        entries = read_activity_log(limit=2, log_path=log_path)
        assert [e["tool_name"] for e in entries] == ["c", "b"]

    def test_filter_by_tool(self, tmp_path: Path):
        log_path = tmp_path / "activity.jsonl"
        self._write(log_path, [
            {"tool_name": "search_solutions"},
            {"tool_name": "capture_session"},
            {"tool_name": "search_solutions"},
        ])
        entries = read_activity_log(tool_name="capture_session", log_path=log_path)
        assert len(entries) == 1

    def test_skips_corrupt_lines(self, tmp_path: Path):
        log_path = tmp_path / "activity.jsonl"
        log_path.write_text('{"tool_name": "a"}\nnot json\n\n{"tool_name": "b"}\n')
        assert len(read_activity_log(log_path=log_path)) == 2

    def test_missing_file(self, tmp_path: Path):
        assert read_activity_log(log_path=tmp_path / "nope.jsonl") == []
