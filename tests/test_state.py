"""Tests for conclave.state module - member slugs, job layout paths, and atomic JSON writes."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from conclave.state import (
    ensure_member_layout,
    error_path,
    job_json_path,
    member_dir,
    members_root,
    output_path,
    prompt_path,
    read_json,
    read_json_if_exists,
    safe_member_name,
    status_path,
    wait_cursor_path,
    write_json,
    write_text,
)


class TestSafeMemberName:
    """Tests for safe_member_name function."""

    def test_lowercase(self) -> None:
        assert safe_member_name("Claude") == "claude"

    def test_symbol_runs_collapse_to_single_dash(self) -> None:
        assert safe_member_name("gpt 4.1 (mini)") == "gpt-4-1-mini-"

    def test_underscore_and_dash_kept(self) -> None:
        assert safe_member_name("my_agent-2") == "my_agent-2"

    def test_surrounding_whitespace_ignored(self) -> None:
        assert safe_member_name("  gemini  ") == "gemini"

    def test_empty_uses_placeholder(self) -> None:
        assert safe_member_name("") == "member"

    def test_all_symbols_uses_placeholder(self) -> None:
        assert safe_member_name("!!!") == "member"
        assert safe_member_name("🧠") == "member"

    def test_non_ascii_letters_become_dashes(self) -> None:
        assert safe_member_name("café") == "caf-"


class TestJobLayout:
    """The job directory layout must match what every reader expects."""

    def test_top_level_files(self, tmp_path: Path) -> None:
        assert job_json_path(tmp_path) == tmp_path / "job.json"
        assert prompt_path(tmp_path) == tmp_path / "prompt.txt"
        assert wait_cursor_path(tmp_path) == tmp_path / ".wait_cursor"

    def test_member_files(self, tmp_path: Path) -> None:
        assert members_root(tmp_path) == tmp_path / "members"
        assert member_dir(tmp_path, "claude") == tmp_path / "members" / "claude"
        assert status_path(tmp_path, "claude") == tmp_path / "members" / "claude" / "status.json"
        assert output_path(tmp_path, "claude") == tmp_path / "members" / "claude" / "output.txt"
        assert error_path(tmp_path, "claude") == tmp_path / "members" / "claude" / "error.txt"

    def test_ensure_member_layout_idempotent(self, tmp_path: Path) -> None:
        first = ensure_member_layout(tmp_path, "codex")
        second = ensure_member_layout(tmp_path, "codex")
        assert first == second
        assert first.is_dir()


class TestReadJson:
    def test_missing_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            read_json(tmp_path / "missing.json")

    def test_empty_file_is_empty_dict(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.json"
        path.write_text("  \n", encoding="utf-8")
        assert read_json(path) == {}

    def test_if_exists_missing(self, tmp_path: Path) -> None:
        assert read_json_if_exists(tmp_path / "missing.json") is None

    def test_if_exists_corrupt(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert read_json_if_exists(path) is None

    def test_if_exists_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert read_json_if_exists(path) is None


class TestWriteJson:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "data.json"
        write_json(path, {"state": "queued", "pid": None})
        assert read_json(path) == {"state": "queued", "pid": None}

    def test_replaces_existing(self, tmp_path: Path) -> None:
        path = tmp_path / "data.json"
        write_json(path, {"v": 1})
        write_json(path, {"v": 2})
        assert read_json(path) == {"v": 2}

    def test_leaves_no_temp_files(self, tmp_path: Path) -> None:
        path = tmp_path / "data.json"
        for i in range(5):
            write_json(path, {"i": i})
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]

    def test_failed_rename_cleans_up_and_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "data.json"
        with patch("conclave.state.os.replace", side_effect=OSError("disk gone")), pytest.raises(OSError):
            write_json(path, {"v": 1})
        assert list(tmp_path.iterdir()) == []

    def test_concurrent_readers_never_see_partial_writes(self, tmp_path: Path) -> None:
        """Readers racing one writer only ever observe one of the two whole records."""
        path = tmp_path / "status.json"
        record_a = {"member": "a", "state": "running", "padding": "x" * 4096}
        record_b = {"member": "b", "state": "done", "padding": "y" * 8192}
        write_json(path, record_a)

        stop = threading.Event()
        seen: list[dict] = []
        failures: list[str] = []

        def reader() -> None:
            while not stop.is_set():
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except (json.JSONDecodeError, FileNotFoundError) as exc:
                    failures.append(repr(exc))
                    continue
                seen.append(data)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for t in readers:
            t.start()
        for i in range(300):
            write_json(path, record_a if i % 2 else record_b)
        stop.set()
        for t in readers:
            t.join()

        assert failures == []
        assert seen
        assert all(item in (record_a, record_b) for item in seen)


class TestWriteText:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "prompt.txt"
        write_text(path, "What should we build?\n")
        assert path.read_text(encoding="utf-8") == "What should we build?\n"
