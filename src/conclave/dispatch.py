"""Create council jobs and launch one detached worker per member.

The dispatcher returns as soon as every worker has been launched. After
that it has no channel to the workers; all progress is read back from the
job directory.
"""

from __future__ import annotations

import logging
import os
import secrets
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from conclave.config import DispatchPlan, MemberDef
from conclave.state import (
    ensure_dir,
    ensure_member_layout,
    job_json_path,
    members_root,
    prompt_path,
    safe_member_name,
    write_json,
    write_text,
)
from conclave.status import QUEUED, StatusRecord, read_status, utc_now, write_status
from conclave.worker import SpawnError, terminal_record

logger = logging.getLogger("conclave.dispatch")


@dataclass
class DispatchedMember:
    name: str
    slug: str
    command: str
    emoji: str | None = None
    color: str | None = None
    pid: int | None = None


@dataclass
class Job:
    """A freshly created job directory and its metadata."""

    id: str
    job_dir: Path
    meta: dict[str, Any]
    timeout_sec: float | None = None
    members: list[DispatchedMember] = field(default_factory=list)


def generate_job_id(now: datetime | None = None) -> str:
    """Generate job ID in format: council-YYYYMMDD-HHMMSS-<6hex>."""
    stamp = (now or datetime.now(UTC)).strftime("%Y%m%d-%H%M%S")
    return f"council-{stamp}-{secrets.token_hex(3)}"


def default_jobs_dir() -> Path:
    from_env = os.environ.get("CONCLAVE_JOBS_DIR")
    if from_env:
        return Path(from_env)
    return Path.cwd() / ".conclave" / "jobs"


def unique_slugs(members: list[MemberDef]) -> list[str]:
    """Slug each member name, suffixing repeats so every member gets its own directory."""
    seen: dict[str, int] = {}
    slugs: list[str] = []
    for member in members:
        slug = safe_member_name(member.name)
        count = seen.get(slug, 0)
        seen[slug] = count + 1
        slugs.append(slug if count == 0 else f"{slug}-{count + 1}")
    return slugs


def create_job(
    jobs_dir: Path,
    prompt: str,
    plan: DispatchPlan,
    config_path: Path | None = None,
) -> Job:
    """Create the job directory, write job.json and prompt.txt, and queue every member.

    Nothing is launched here; see :func:`launch_job`.
    """
    job_id = generate_job_id()
    job_dir = (jobs_dir / job_id).resolve()
    ensure_dir(members_root(job_dir))

    write_text(prompt_path(job_dir), prompt)

    members = [
        DispatchedMember(name=m.name, slug=slug, command=m.command, emoji=m.emoji, color=m.color)
        for m, slug in zip(plan.members, unique_slugs(plan.members), strict=True)
    ]

    meta = {
        "id": job_id,
        "createdAt": utc_now(),
        "configPath": str(config_path) if config_path else None,
        "hostRole": plan.host_role,
        "chairmanRole": plan.chairman_role,
        "settings": {
            "excludeChairmanFromMembers": plan.exclude_chairman,
            "timeoutSec": plan.timeout_sec,
        },
        "members": [{"name": m.name, "command": m.command, "emoji": m.emoji, "color": m.color} for m in members],
    }
    write_json(job_json_path(job_dir), meta)

    for member in members:
        ensure_member_layout(job_dir, member.slug)
        write_status(
            job_dir,
            member.slug,
            StatusRecord(member=member.name, state=QUEUED, command=member.command, queued_at=utc_now()),
        )

    return Job(id=job_id, job_dir=job_dir, meta=meta, timeout_sec=plan.timeout_sec, members=members)


def worker_command(job: Job, member: DispatchedMember) -> list[str]:
    cmd = [
        sys.executable,
        "-m",
        "conclave.worker",
        "--job-dir",
        str(job.job_dir),
        f"--member={member.name}",
        "--safe-member",
        member.slug,
        f"--command={member.command}",
    ]
    if job.timeout_sec:
        cmd.extend(["--timeout", str(job.timeout_sec)])
    return cmd


def worker_env() -> dict[str, str]:
    """Environment for workers, with this copy of conclave importable first."""
    env = dict(os.environ)
    package_root = str(Path(__file__).resolve().parent.parent)
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = os.pathsep.join([package_root, existing]) if existing else package_root
    return env


def launch_worker(job: Job, member: DispatchedMember) -> int:
    """Launch the worker for *member* in its own session and return its PID.

    The worker outlives this process; it is never waited on.
    """
    proc = subprocess.Popen(
        worker_command(job, member),
        env=worker_env(),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        stdin=subprocess.DEVNULL,
        start_new_session=True,
    )
    return proc.pid


def launch_job(job: Job) -> Job:
    """Launch every member's worker. A failed launch is recorded on that member only."""
    for member in job.members:
        try:
            member.pid = launch_worker(job, member)
        except OSError as exc:
            logger.warning("Could not launch worker for %s: %s", member.name, exc)
            base = read_status(job.job_dir, member.slug) or StatusRecord(member=member.name, command=member.command)
            write_status(
                job.job_dir,
                member.slug,
                terminal_record(base, SpawnError(missing=False, message=f"Failed to launch worker: {exc}")),
            )
            continue
        logger.info("Launched worker for %s (pid %d)", member.name, member.pid)
    return job


def start_job(
    jobs_dir: Path,
    prompt: str,
    plan: DispatchPlan,
    config_path: Path | None = None,
) -> Job:
    """Create a job and launch all of its members without waiting for them."""
    job = create_job(jobs_dir, prompt, plan, config_path=config_path)
    return launch_job(job)
