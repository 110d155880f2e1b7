"""Per-member status records.

One ``members/<slug>/status.json`` per member. Each member has exactly one
writer (the dispatcher for the initial ``queued`` record, then that member's
worker), and every write goes through :func:`conclave.state.write_json`, so
readers always see a whole record without any locking.

Status JSON format::

    {
        "member": "claude",
        "state": "running",
        "queuedAt": "2026-01-01T12:00:00+00:00",
        "startedAt": "2026-01-01T12:00:01+00:00",
        "finishedAt": null,
        "command": "claude -p",
        "pid": 4242,
        "exitCode": null,
        "signal": null,
        "message": null
    }

Lifecycle: queued -> running -> one of done, error, missing_cli, timed_out,
canceled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from conclave.state import ensure_member_layout, read_json_if_exists, status_path, write_json

QUEUED = "queued"
RUNNING = "running"
DONE = "done"
ERROR = "error"
MISSING_CLI = "missing_cli"
TIMED_OUT = "timed_out"
CANCELED = "canceled"

ACTIVE_STATES = (QUEUED, RUNNING)
TERMINAL_STATES = (DONE, ERROR, MISSING_CLI, TIMED_OUT, CANCELED)
STATES = ACTIVE_STATES + TERMINAL_STATES


def is_terminal(state: str | None) -> bool:
    return state in TERMINAL_STATES


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


# Dataclass attribute -> on-disk key
FIELD_KEYS = {
    "member": "member",
    "state": "state",
    "queued_at": "queuedAt",
    "started_at": "startedAt",
    "finished_at": "finishedAt",
    "command": "command",
    "pid": "pid",
    "exit_code": "exitCode",
    "signal": "signal",
    "message": "message",
}


@dataclass
class StatusRecord:
    """Lifecycle state for a single member."""

    member: str
    state: str = QUEUED
    command: str = ""
    queued_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None
    pid: int | None = None
    exit_code: int | None = None
    signal: str | None = None
    message: str | None = None

    @property
    def terminal(self) -> bool:
        return is_terminal(self.state)

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for attr, key in FIELD_KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusRecord:
        kwargs = {attr: data.get(key) for attr, key in FIELD_KEYS.items() if data.get(key) is not None}
        kwargs.setdefault("member", "")
        kwargs["member"] = str(kwargs["member"])
        kwargs["state"] = str(kwargs.get("state", "unknown"))
        return cls(**kwargs)


def write_status(job_dir: Path, slug: str, record: StatusRecord) -> None:
    """Replace a member's status record wholesale.

    Filesystem errors propagate: a lost write would leave the member stuck
    in a stale state.
    """
    ensure_member_layout(job_dir, slug)
    write_json(status_path(job_dir, slug), record.to_dict())


def read_status(job_dir: Path, slug: str) -> StatusRecord | None:
    """Return the member's current record, or None if none has been written yet."""
    data = read_json_if_exists(status_path(job_dir, slug))
    if data is None:
        return None
    return StatusRecord.from_dict(data)
