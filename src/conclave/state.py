"""Job directory layout and JSON helpers for Conclave.

Every job lives in its own directory::

    <job-dir>/
      job.json                   # job metadata, written once
      prompt.txt                 # the dispatched prompt
      .wait_cursor               # last-issued wait cursor
      members/<slug>/status.json # per-member status record
      members/<slug>/output.txt  # captured stdout
      members/<slug>/error.txt   # captured stderr

Example:
    from pathlib import Path
    from conclave.state import ensure_member_layout, status_path

    job_dir = Path(".conclave/jobs/council-20260101-120000-abc123")
    ensure_member_layout(job_dir, "claude")
    status_path(job_dir, "claude")
"""

from __future__ import annotations

import json
import os
import re
import secrets
from pathlib import Path
from typing import Any

MEMBER_PLACEHOLDER = "member"


def safe_member_name(name: str) -> str:
    """Derive a filesystem-safe slug from a member name.

    Lowercases and collapses runs of characters outside ``[a-z0-9_-]`` into a
    single dash. Falls back to ``member`` when nothing but separators remains.

    Examples:
        - 'Claude' -> 'claude'
        - 'GPT 4.1 (mini)' -> 'gpt-4-1-mini-'
        - '!!!' -> 'member'
        - '' -> 'member'
    """
    cleaned = re.sub(r"[^a-z0-9_-]+", "-", str(name or "").strip().lower())
    if not cleaned.strip("-"):
        return MEMBER_PLACEHOLDER
    return cleaned


def job_json_path(job_dir: Path) -> Path:
    return job_dir / "job.json"


def prompt_path(job_dir: Path) -> Path:
    return job_dir / "prompt.txt"


def wait_cursor_path(job_dir: Path) -> Path:
    return job_dir / ".wait_cursor"


def members_root(job_dir: Path) -> Path:
    return job_dir / "members"


def member_dir(job_dir: Path, slug: str) -> Path:
    return members_root(job_dir) / slug


def status_path(job_dir: Path, slug: str) -> Path:
    return member_dir(job_dir, slug) / "status.json"


def output_path(job_dir: Path, slug: str) -> Path:
    return member_dir(job_dir, slug) / "output.txt"


def error_path(job_dir: Path, slug: str) -> Path:
    return member_dir(job_dir, slug) / "error.txt"


def worker_log_path(job_dir: Path, slug: str) -> Path:
    return member_dir(job_dir, slug) / "worker.log"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def ensure_member_layout(job_dir: Path, slug: str) -> Path:
    """Create ``members/<slug>/`` under *job_dir*. Idempotent."""
    path = member_dir(job_dir, slug)
    ensure_dir(path)
    return path


def read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Missing JSON file: {path}")
    content = path.read_text(encoding="utf-8").strip()
    if not content:
        return {}
    return json.loads(content)


def read_json_if_exists(path: Path) -> dict[str, Any] | None:
    """Read a JSON object, or return None if the file is missing or unreadable."""
    try:
        data = read_json(path)
    except (FileNotFoundError, json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    return data


def write_json(path: Path, data: dict[str, Any]) -> None:
    """Atomically write *data* as JSON to *path*.

    Writes to a uniquely-named temporary file in the same directory, then
    renames into place so concurrent readers never see a partial write and
    concurrent writers don't clobber each other's temp files.
    """
    serialized = json.dumps(data, indent=2)
    tmp = path.with_name(f"{path.name}.{os.getpid()}.{secrets.token_hex(4)}.tmp")
    try:
        tmp.write_text(f"{serialized}\n", encoding="utf-8")
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def write_text(path: Path, text: str) -> None:
    """Atomically replace *path* with *text* using the same temp-then-rename scheme."""
    tmp = path.with_name(f"{path.name}.{os.getpid()}.{secrets.token_hex(4)}.tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
