"""Project job status into plan/todo widgets for agent host UIs.

Codex hosts get an ``update_plan`` plan and Claude hosts a ``todo_write``
todo list. Both share the same steps: prompt dispatch, one "Ask" step per
member, and a final synthesis step.
"""

from __future__ import annotations

from typing import Any

from conclave.aggregate import JobStatus
from conclave.status import RUNNING, is_terminal

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"

DISPATCH_STEP = "[Council] Prompt dispatch"
SYNTHESIZE_STEP = "[Council] Synthesize"


def ask_step(member: str) -> str:
    return f"[Council] Ask {member}"


def member_steps(status: JobStatus, dispatch_status: str) -> list[tuple[str, str]]:
    """Return ``(label, status)`` per member; at most one step is ever in progress."""
    has_in_progress = dispatch_status == IN_PROGRESS
    running = status.counts.get(RUNNING, 0)
    steps: list[tuple[str, str]] = []
    for m in sorted((m for m in status.members if m.member), key=lambda m: m.member):
        if is_terminal(m.state):
            step_status = COMPLETED
        elif not has_in_progress and running > 0 and m.state == RUNNING:
            step_status = IN_PROGRESS
            has_in_progress = True
        else:
            step_status = PENDING
        steps.append((ask_step(m.member), step_status))
    return steps


def build_ui_payload(status: JobStatus) -> dict[str, Any]:
    """Build the ``ui`` block embedded in ``conclave wait`` output."""
    is_done = status.is_done
    queued = status.counts.get("queued", 0)

    dispatch_status = COMPLETED if is_done or queued == 0 else IN_PROGRESS
    steps = member_steps(status, dispatch_status)
    any_in_progress = dispatch_status == IN_PROGRESS or any(s == IN_PROGRESS for _, s in steps)
    synth_status = (PENDING if any_in_progress else IN_PROGRESS) if is_done else PENDING

    plan = [
        {"step": DISPATCH_STEP, "status": dispatch_status},
        *({"step": label, "status": s} for label, s in steps),
        {"step": SYNTHESIZE_STEP, "status": synth_status},
    ]

    synth_active = {
        COMPLETED: "Council results ready",
        IN_PROGRESS: "Ready to synthesize",
    }.get(synth_status, "Waiting to synthesize")
    todos = [
        {
            "content": DISPATCH_STEP,
            "status": dispatch_status,
            "activeForm": "Dispatched council prompts" if dispatch_status == COMPLETED else "Dispatching council prompts",
        },
        *(
            {
                "content": label,
                "status": s,
                "activeForm": "Finished" if s == COMPLETED else "Awaiting response",
            }
            for label, s in steps
        ),
        {"content": SYNTHESIZE_STEP, "status": synth_status, "activeForm": synth_active},
    ]

    return {
        "progress": {"done": status.terminal, "total": status.total, "overallState": status.overall_state},
        "codex": {"update_plan": {"plan": plan}},
        "claude": {"todo_write": {"todos": todos}},
    }
