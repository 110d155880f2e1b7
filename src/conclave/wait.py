"""Long-poll a job until it makes visible progress.

Progress is compressed into a cursor::

    v2:<bucketSize>:<dispatchBucket>:<doneBucket>:<0|1>

``dispatchBucket`` flips to 1 once no member is queued, ``doneBucket`` is the
number of terminal members divided (floor) by the bucket size, and the last
field is 1 once the whole job is done. A wait call returns as soon as the
cursor differs from the caller's previous one, so a caller wakes roughly once
per bucket of finished members rather than on every state change.

The legacy ``v1:<bucketSize>:<doneBucket>:<0|1>`` form is still accepted and
is read with ``dispatchBucket = 0``.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from conclave.aggregate import JobStatus, compute_status
from conclave.state import wait_cursor_path, write_text
from conclave.ui import build_ui_payload

logger = logging.getLogger("conclave.wait")

DEFAULT_INTERVAL = 0.25
MIN_INTERVAL = 0.05
BUCKET_DIVISOR = 5


@dataclass(frozen=True)
class WaitCursor:
    bucket_size: int
    dispatch_bucket: int
    done_bucket: int
    is_done: bool

    def key(self) -> tuple[int, int, int, bool]:
        """The fields that decide whether two cursors are "the same"."""
        return (self.bucket_size, self.dispatch_bucket, self.done_bucket, self.is_done)

    def __str__(self) -> str:
        return format_cursor(self.bucket_size, self.dispatch_bucket, self.done_bucket, self.is_done)


def format_cursor(bucket_size: int, dispatch_bucket: int, done_bucket: int, is_done: bool) -> str:
    return f"v2:{bucket_size}:{dispatch_bucket}:{done_bucket}:{1 if is_done else 0}"


def parse_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def parse_cursor(raw: str | None) -> WaitCursor | None:
    """Parse a v1 or v2 cursor string; anything malformed yields None."""
    text = str(raw or "").strip()
    if not text:
        return None
    parts = text.split(":")
    version = parts[0]
    if version == "v1" and len(parts) == 4:
        bucket_size, done_bucket = parse_int(parts[1]), parse_int(parts[2])
        dispatch_bucket: int | None = 0
        is_done = parts[3] == "1"
    elif version == "v2" and len(parts) == 5:
        bucket_size, dispatch_bucket, done_bucket = parse_int(parts[1]), parse_int(parts[2]), parse_int(parts[3])
        is_done = parts[4] == "1"
    else:
        return None
    if bucket_size is None or bucket_size <= 0:
        return None
    if dispatch_bucket is None or dispatch_bucket < 0:
        return None
    if done_bucket is None or done_bucket < 0:
        return None
    return WaitCursor(bucket_size, dispatch_bucket, done_bucket, is_done)


def resolve_bucket_size(requested: str | int | None, total: int, previous: WaitCursor | None = None) -> int:
    """Pick the bucket size for this wait call.

    An explicit number wins; with nothing requested the previous cursor's size
    is reused so a polling sequence stays consistent; otherwise (or for
    ``"auto"``) it is ``max(1, ceil(total / 5))``.

    Raises:
        ValueError: If *requested* is neither ``"auto"`` nor a positive number.
    """
    if requested is None:
        if previous is not None:
            return previous.bucket_size
    elif str(requested).strip().lower() != "auto":
        try:
            size = int(float(str(requested).strip()))
        except (ValueError, OverflowError):
            raise ValueError(f"invalid bucket size: {requested}") from None
        if size <= 0:
            raise ValueError(f"invalid bucket size: {requested}")
        return size

    if total <= 0:
        return 1
    return max(1, math.ceil(total / BUCKET_DIVISOR))


def cursor_for(status: JobStatus, bucket_size: int) -> WaitCursor:
    dispatch_bucket = 1 if status.counts.get("queued", 0) == 0 and status.total > 0 else 0
    return WaitCursor(
        bucket_size=bucket_size,
        dispatch_bucket=dispatch_bucket,
        done_bucket=status.terminal // bucket_size,
        is_done=status.is_done,
    )


def read_saved_cursor(job_dir: Path) -> str:
    path = wait_cursor_path(job_dir)
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8").strip()


def save_cursor(job_dir: Path, cursor: WaitCursor) -> None:
    write_text(wait_cursor_path(job_dir), str(cursor))


@dataclass
class WaitResult:
    status: JobStatus
    cursor: WaitCursor
    changed: bool

    def to_dict(self) -> dict[str, Any]:
        """The JSON payload printed by ``conclave wait``."""
        status = self.status
        return {
            "jobDir": str(status.job_dir),
            "id": status.id,
            "chairmanRole": status.chairman_role,
            "overallState": status.overall_state,
            "counts": dict(status.counts),
            "members": [
                {"member": m.member, "state": m.state, "exitCode": m.exit_code, "message": m.message}
                for m in status.members
            ],
            "ui": build_ui_payload(status),
            "cursor": str(self.cursor),
        }


def wait_for_progress(
    job_dir: Path,
    cursor: str | None = None,
    bucket: str | int | None = None,
    interval: float = DEFAULT_INTERVAL,
    timeout: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> WaitResult:
    """Block until the job's cursor moves past *cursor*, or until *timeout* elapses.

    Args:
        job_dir: Job directory.
        cursor: Previous cursor string. When None, the job's ``.wait_cursor``
            file is used; an empty or unparseable value means "first call".
        bucket: Bucket size, ``"auto"``, or None to reuse the previous size.
        interval: Seconds between polls (floored at 50ms).
        timeout: Seconds to wait before returning unchanged; 0 waits forever.

    The first call in a sequence never blocks. A timeout is not an error: the
    latest status and cursor are returned with ``changed=False``. The returned
    cursor is always saved to ``.wait_cursor``.
    """
    job_dir = Path(job_dir).resolve()
    raw_previous = cursor if cursor is not None else read_saved_cursor(job_dir)
    previous = parse_cursor(raw_previous)
    interval = max(MIN_INTERVAL, float(interval))
    if timeout < 0:
        raise ValueError(f"invalid timeout: {timeout}")

    status = compute_status(job_dir)
    bucket_size = resolve_bucket_size(bucket, status.total, previous)
    current = cursor_for(status, bucket_size)

    if previous is None:
        save_cursor(job_dir, current)
        return WaitResult(status=status, cursor=current, changed=True)

    start = clock()
    while current.key() == previous.key():
        if timeout > 0 and clock() - start >= timeout:
            logger.debug("Wait timed out after %.2fs at %s", timeout, current)
            save_cursor(job_dir, current)
            return WaitResult(status=status, cursor=current, changed=False)
        sleep(interval)
        status = compute_status(job_dir)
        current = cursor_for(status, bucket_size)

    save_cursor(job_dir, current)
    return WaitResult(status=status, cursor=current, changed=True)
