"""Detached worker that runs one member's command to completion.

Launched once per member by ``conclave start``::

    python -m conclave.worker \\
        --job-dir /path/to/.conclave/jobs/council-20260101-120000-abc123 \\
        --member Claude \\
        --safe-member claude \\
        --command "claude -p" \\
        [--timeout 120]

The job prompt is appended as the last argument of the member's command.
The worker owns the member's ``status.json`` after dispatch and writes exactly
one terminal record. Exit status is 0 when the member finished ``done`` and 1
otherwise; the status record is authoritative.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass, replace
from pathlib import Path

from conclave.command import CommandSyntaxError, split_command
from conclave.state import ensure_member_layout, error_path, output_path, prompt_path, worker_log_path
from conclave.status import (
    CANCELED,
    DONE,
    ERROR,
    MISSING_CLI,
    QUEUED,
    RUNNING,
    TIMED_OUT,
    StatusRecord,
    read_status,
    utc_now,
    write_status,
)

logger = logging.getLogger("conclave.worker")

TERMINATE_SIGNAL = signal.SIGTERM

# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Exited:
    """The process exited on its own with a return code."""

    code: int


@dataclass(frozen=True)
class Signaled:
    """The process was killed by a signal other than the termination signal."""

    signum: int


@dataclass(frozen=True)
class Timeout:
    """The worker's own timer fired and terminated the process."""

    seconds: float


@dataclass(frozen=True)
class Canceled:
    """The process was terminated by someone other than this worker."""


@dataclass(frozen=True)
class SpawnError:
    """The process never started."""

    missing: bool
    message: str


Outcome = Exited | Signaled | Timeout | Canceled | SpawnError


def classify_exit(returncode: int, timed_out: bool, timeout: float | None = None) -> Outcome:
    """Classify a finished process.

    Timeouts and external stops both arrive as SIGTERM; only the local
    *timed_out* flag tells them apart.
    """
    if returncode < 0:
        signum = -returncode
        if signum == TERMINATE_SIGNAL:
            if timed_out:
                return Timeout(seconds=timeout or 0)
            return Canceled()
        return Signaled(signum=signum)
    return Exited(code=returncode)


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def format_seconds(seconds: float) -> str:
    if float(seconds).is_integer():
        return f"{int(seconds)}s"
    return f"{seconds}s"


def terminal_record(base: StatusRecord, outcome: Outcome) -> StatusRecord:
    """Fold an outcome into the member's final status record."""
    record = replace(base, finished_at=utc_now(), exit_code=None, signal=None, message=None)
    match outcome:
        case Exited(code=0):
            return replace(record, state=DONE, exit_code=0)
        case Exited(code=code):
            return replace(record, state=ERROR, exit_code=code, message=f"Exited with code {code}")
        case Timeout(seconds=seconds):
            return replace(
                record,
                state=TIMED_OUT,
                signal=signal_name(TERMINATE_SIGNAL),
                message=f"Timed out after {format_seconds(seconds)}",
            )
        case Canceled():
            return replace(record, state=CANCELED, signal=signal_name(TERMINATE_SIGNAL), message="Canceled")
        case Signaled(signum=signum):
            name = signal_name(signum)
            return replace(record, state=ERROR, signal=name, message=f"Killed by {name}")
        case SpawnError(missing=missing, message=message):
            return replace(record, state=MISSING_CLI if missing else ERROR, message=message)
    raise TypeError(f"Unknown outcome: {outcome!r}")


# ---------------------------------------------------------------------------
# Running
# ---------------------------------------------------------------------------


def member_env(member: str, job_dir: Path) -> dict[str, str]:
    """Return the environment for a member process.

    Strips ``CLAUDECODE`` so child ``claude`` processes don't refuse to start
    with a "nested session" error when the council is run from inside one.
    """
    env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}
    env["CONCLAVE_MEMBER"] = member
    env["CONCLAVE_JOB_DIR"] = str(job_dir)
    return env


def read_prompt(job_dir: Path) -> str:
    path = prompt_path(job_dir)
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8")


def run_member(
    job_dir: Path,
    member: str,
    slug: str,
    command: str,
    timeout: float | None = None,
) -> Outcome:
    """Run one member's command and record its lifecycle under *job_dir*.

    Writes ``queued`` (again, in case the dispatcher's write is not visible
    yet), then ``running`` with the real pid, then exactly one terminal
    record. Capture files are closed before the terminal record is written.
    """
    ensure_member_layout(job_dir, slug)
    previous = read_status(job_dir, slug)
    queued_at = previous.queued_at if previous and previous.queued_at else utc_now()
    base = StatusRecord(member=member, state=QUEUED, command=command, queued_at=queued_at)
    write_status(job_dir, slug, base)

    try:
        argv = split_command(command)
    except CommandSyntaxError as exc:
        logger.error("Invalid command for %s: %s", member, exc)
        outcome: Outcome = SpawnError(missing=False, message=f"Invalid command string: {exc}")
        write_status(job_dir, slug, terminal_record(base, outcome))
        return outcome

    argv.append(read_prompt(job_dir))
    timed_out = threading.Event()

    with (
        output_path(job_dir, slug).open("wb") as stdout_handle,
        error_path(job_dir, slug).open("wb") as stderr_handle,
    ):
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=stdout_handle,
                stderr=stderr_handle,
                env=member_env(member, job_dir),
            )
        except FileNotFoundError as exc:
            logger.warning("Could not launch %s for %s: %s", argv[0], member, exc)
            outcome = SpawnError(missing=True, message=f"Command not found: {argv[0]}")
        except OSError as exc:
            logger.warning("Spawn failed for %s: %s", member, exc)
            outcome = SpawnError(missing=False, message=str(exc) or "Failed to spawn command")
        else:
            base = replace(base, state=RUNNING, started_at=utc_now(), pid=process.pid)
            write_status(job_dir, slug, base)
            logger.info("Started %s (pid %d)", member, process.pid)

            timer = None
            if timeout and timeout > 0:

                def on_timeout() -> None:
                    timed_out.set()
                    logger.info("Timeout after %s for %s, sending %s", timeout, member, TERMINATE_SIGNAL.name)
                    try:
                        process.send_signal(TERMINATE_SIGNAL)
                    except ProcessLookupError:
                        pass

                timer = threading.Timer(timeout, on_timeout)
                timer.daemon = True
                timer.start()

            try:
                returncode = process.wait()
            finally:
                if timer is not None:
                    timer.cancel()

            outcome = classify_exit(returncode, timed_out.is_set(), timeout)
            logger.info("%s finished: %r", member, outcome)

    write_status(job_dir, slug, terminal_record(base, outcome))
    return outcome


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


class WorkerArgumentParser(argparse.ArgumentParser):
    """Argument parser that exits 1 (not argparse's default 2) on bad input."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def configure_logging(job_dir: Path, slug: str) -> None:
    """Log to ``members/<slug>/worker.log`` when ``CONCLAVE_LOG_LEVEL`` is set, else stderr."""
    level_name = os.environ.get("CONCLAVE_LOG_LEVEL", "")
    fmt = "%(asctime)s [%(levelname)s] %(message)s"
    if level_name:
        ensure_member_layout(job_dir, slug)
        logging.basicConfig(
            level=getattr(logging, level_name.upper(), logging.INFO),
            format=fmt,
            filename=str(worker_log_path(job_dir, slug)),
        )
    else:
        logging.basicConfig(level=logging.WARNING, format=fmt, stream=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = WorkerArgumentParser(prog="conclave.worker", description="Conclave member worker")
    parser.add_argument("--job-dir", required=True, type=Path)
    parser.add_argument("--member", required=True)
    parser.add_argument("--safe-member", required=True)
    parser.add_argument("--command", required=True)
    parser.add_argument("--timeout", type=float, default=None)
    args = parser.parse_args(argv)

    configure_logging(args.job_dir, args.safe_member)
    outcome = run_member(args.job_dir, args.member, args.safe_member, args.command, args.timeout)
    return 0 if outcome == Exited(code=0) else 1


if __name__ == "__main__":
    sys.exit(main())
