"""Compute a job's overall progress from its status records.

Pure read of the job directory; never writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from conclave.state import job_json_path, members_root, read_json_if_exists, status_path
from conclave.status import QUEUED, RUNNING, STATES, TERMINAL_STATES, StatusRecord


class JobNotFoundError(FileNotFoundError):
    """The job directory, its job.json, or its members/ folder is missing."""


@dataclass
class MemberSummary:
    member: str
    state: str
    slug: str = ""
    started_at: str | None = None
    finished_at: str | None = None
    exit_code: int | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "member": self.member,
            "state": self.state,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "exitCode": self.exit_code,
            "message": self.message,
        }


@dataclass
class JobStatus:
    """Per-state counts, overall state, and per-member summaries for one job."""

    job_dir: Path
    id: str | None
    chairman_role: str | None
    overall_state: str
    counts: dict[str, int]
    members: list[MemberSummary] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.counts.get("total", 0)

    @property
    def terminal(self) -> int:
        return terminal_count(self.counts)

    @property
    def is_done(self) -> bool:
        return self.overall_state == "done"

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobDir": str(self.job_dir),
            "id": self.id,
            "chairmanRole": self.chairman_role,
            "overallState": self.overall_state,
            "counts": dict(self.counts),
            "members": [m.to_dict() for m in self.members],
        }


def terminal_count(counts: dict[str, int]) -> int:
    """Number of members in any terminal state."""
    return sum(int(counts.get(state, 0)) for state in TERMINAL_STATES)


def overall_state(counts: dict[str, int]) -> str:
    if counts.get(RUNNING, 0) > 0:
        return RUNNING
    if counts.get(QUEUED, 0) > 0:
        return QUEUED
    return "done"


def load_job_meta(job_dir: Path) -> dict[str, Any]:
    job_dir = Path(job_dir).resolve()
    if not job_dir.exists():
        raise JobNotFoundError(f"Job directory not found: {job_dir}")
    meta = read_json_if_exists(job_json_path(job_dir))
    if meta is None:
        raise JobNotFoundError(f"job.json not found: {job_json_path(job_dir)}")
    return meta


def read_member_records(job_dir: Path) -> list[tuple[str, StatusRecord]]:
    """Return ``(slug, record)`` for every member folder holding a readable status.json."""
    root = members_root(job_dir)
    if not root.is_dir():
        raise JobNotFoundError(f"members folder not found: {root}")
    records: list[tuple[str, StatusRecord]] = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            continue
        data = read_json_if_exists(status_path(job_dir, entry.name))
        if data is None:
            continue
        records.append((entry.name, StatusRecord.from_dict(data)))
    return records


def compute_status(job_dir: Path) -> JobStatus:
    """Scan *job_dir* and summarize every member's current state.

    Raises:
        JobNotFoundError: If the job directory, job.json, or members/ is missing.
    """
    job_dir = Path(job_dir).resolve()
    meta = load_job_meta(job_dir)
    records = read_member_records(job_dir)

    counts = {"total": len(records)}
    counts.update({state: 0 for state in STATES})
    for _, record in records:
        if record.state in counts and record.state != "total":
            counts[record.state] += 1

    members = sorted(
        (
            MemberSummary(
                member=record.member,
                state=record.state,
                slug=slug,
                started_at=record.started_at,
                finished_at=record.finished_at,
                exit_code=record.exit_code,
                message=record.message,
            )
            for slug, record in records
        ),
        key=lambda m: (m.member, m.slug),
    )

    return JobStatus(
        job_dir=job_dir,
        id=meta.get("id"),
        chairman_role=meta.get("chairmanRole"),
        overall_state=overall_state(counts),
        counts=counts,
        members=members,
    )
