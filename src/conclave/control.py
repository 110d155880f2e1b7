"""Stop, clean up, and collect results for council jobs."""

from __future__ import annotations

import logging
import os
import shutil
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from conclave.aggregate import JobNotFoundError, load_job_meta, read_member_records
from conclave.state import error_path, members_root, output_path, prompt_path
from conclave.status import RUNNING

logger = logging.getLogger("conclave.control")


def stop_job(job_dir: Path) -> list[str]:
    """Send SIGTERM to every running member with a known pid.

    Members that already exited (or whose pid we may not signal) are skipped
    silently. The worker records the resulting exit as ``canceled``.

    Returns:
        Names of members that were signaled.

    Raises:
        JobNotFoundError: If the job has no members/ folder.
    """
    job_dir = Path(job_dir).resolve()
    if not members_root(job_dir).is_dir():
        raise JobNotFoundError(f"No members folder found: {members_root(job_dir)}")

    stopped: list[str] = []
    for _, record in read_member_records(job_dir):
        if record.state != RUNNING or not record.pid:
            continue
        try:
            os.kill(int(record.pid), signal.SIGTERM)
        except (ProcessLookupError, PermissionError) as exc:
            logger.debug("Could not signal %s (pid %s): %s", record.member, record.pid, exc)
            continue
        stopped.append(record.member)
    return stopped


def clean_job(job_dir: Path) -> Path:
    """Remove the job directory tree. Removing an absent job is a no-op."""
    job_dir = Path(job_dir).resolve()
    try:
        shutil.rmtree(job_dir)
    except FileNotFoundError:
        pass
    return job_dir


@dataclass
class MemberResult:
    member: str
    state: str
    exit_code: int | None = None
    message: str | None = None
    output: str = ""
    stderr: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "member": self.member,
            "state": self.state,
            "exitCode": self.exit_code,
            "message": self.message,
            "output": self.output,
            "stderr": self.stderr,
        }


@dataclass
class JobResults:
    job_dir: Path
    id: str | None
    prompt: str | None
    members: list[MemberResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobDir": str(self.job_dir),
            "id": self.id,
            "prompt": self.prompt,
            "members": [m.to_dict() for m in self.members],
        }


def read_capture(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8", errors="replace")


def collect_results(job_dir: Path) -> JobResults:
    """Gather every member's state and captured output, sorted by member name."""
    job_dir = Path(job_dir).resolve()
    meta = load_job_meta(job_dir)
    prompt_file = prompt_path(job_dir)
    prompt = prompt_file.read_text(encoding="utf-8") if prompt_file.exists() else None

    members = [
        MemberResult(
            member=record.member,
            state=record.state,
            exit_code=record.exit_code,
            message=record.message,
            output=read_capture(output_path(job_dir, slug)),
            stderr=read_capture(error_path(job_dir, slug)),
        )
        for slug, record in read_member_records(job_dir)
    ]
    members.sort(key=lambda m: m.member)
    return JobResults(job_dir=job_dir, id=meta.get("id"), prompt=prompt, members=members)
