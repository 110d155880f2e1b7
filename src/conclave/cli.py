"""Command-line interface for Conclave.

Usage example:
    conclave start "Should we split the billing service?"
    conclave wait .conclave/jobs/council-20260101-120000-abc123
    conclave results .conclave/jobs/council-20260101-120000-abc123
"""

from __future__ import annotations

import dataclasses
import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from conclave.aggregate import JobNotFoundError, JobStatus, compute_status
from conclave.config import ConfigError, load_config, resolve_config_path, resolve_plan
from conclave.control import clean_job, collect_results, stop_job
from conclave.dispatch import default_jobs_dir, start_job
from conclave.status import DONE, QUEUED, RUNNING
from conclave.wait import DEFAULT_INTERVAL, wait_for_progress

error_console = Console(stderr=True)


def print_error(message: str) -> None:
    """Print a consistently styled error message to stderr."""
    error_console.print(f"[bold red]Error:[/bold red] {message}", highlight=False)


def echo_json(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


app = typer.Typer(
    name="conclave",
    help="Run a prompt past a council of agent CLIs in parallel.",
    add_completion=False,
)


@app.command(help="Dispatch a prompt to every council member and return immediately.")
def start(
    prompt_words: Annotated[list[str] | None, typer.Argument(help="Prompt to send to council members.")] = None,
    config: Annotated[Path | None, typer.Option("--config", help="Path to council.config.yaml.")] = None,
    chairman: Annotated[
        str | None, typer.Option("--chairman", help="Chairman role: auto, claude, codex, or a member name.")
    ] = None,
    jobs_dir: Annotated[Path | None, typer.Option("--jobs-dir", help="Directory to create the job in.")] = None,
    include_chairman: Annotated[
        bool, typer.Option("--include-chairman", help="Also ask the chairman as a member.")
    ] = False,
    exclude_chairman: Annotated[
        bool, typer.Option("--exclude-chairman", help="Never ask the chairman as a member.")
    ] = False,
    timeout: Annotated[float | None, typer.Option("--timeout", help="Per-member timeout in seconds.")] = None,
    from_stdin: Annotated[bool, typer.Option("--stdin", help="Read the prompt from stdin.")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Print job metadata as JSON.")] = False,
) -> None:
    """Create a job directory and launch one detached worker per member.

    Prints the job directory (or its metadata with --json) so later
    ``status``/``wait``/``results`` calls can find it.
    """
    prompt = sys.stdin.read() if from_stdin else " ".join(prompt_words or []).strip()
    if not prompt.strip():
        print_error("start: missing prompt")
        raise typer.Exit(code=1)

    if exclude_chairman:
        include: bool | None = False
    elif include_chairman:
        include = True
    else:
        include = None

    config_path = resolve_config_path(config)
    try:
        cfg = load_config(config_path)
        plan = resolve_plan(cfg, chairman=chairman, include_chairman=include, timeout=timeout)
    except ConfigError as exc:
        print_error(str(exc))
        raise typer.Exit(code=1) from None

    job = start_job(jobs_dir or default_jobs_dir(), prompt, plan, config_path=config_path)

    if json_output:
        echo_json({"jobDir": str(job.job_dir), **job.meta})
    else:
        typer.echo(str(job.job_dir))


def resolve_status(job_dir: Path) -> JobStatus:
    try:
        return compute_status(job_dir)
    except JobNotFoundError as exc:
        print_error(str(exc))
        raise typer.Exit(code=1) from None


def checklist_mark(state: str) -> str:
    if state == DONE:
        return "[x]"
    if state in (RUNNING, QUEUED) or not state:
        return "[ ]"
    return "[!]"


@app.command(help="Show per-member progress for a job.")
def status(
    job_dir: Annotated[Path, typer.Argument(help="Job directory printed by `conclave start`.")],
    json_output: Annotated[bool, typer.Option("--json", help="Output JSON (default).")] = False,
    text: Annotated[bool, typer.Option("--text", help="One-line text summary.")] = False,
    checklist: Annotated[bool, typer.Option("--checklist", help="Checklist view.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="With --text, list every member.")] = False,
) -> None:
    """Print counts and per-member state. JSON unless --text or --checklist is given."""
    payload = resolve_status(job_dir)
    counts = payload.counts

    if checklist and not json_output:
        header = f" ({payload.id})" if payload.id else ""
        typer.echo(f"Agent Council{header}")
        typer.echo(
            f"Progress: {payload.terminal}/{payload.total} done  "
            f"(running {counts.get(RUNNING, 0)}, queued {counts.get(QUEUED, 0)})"
        )
        for m in payload.members:
            exit_info = f" (exit {m.exit_code})" if m.exit_code is not None else ""
            typer.echo(f"{checklist_mark(m.state)} {m.member}: {m.state}{exit_info}")
        return

    if text and not json_output:
        typer.echo(
            f"members {payload.terminal}/{payload.total} done; "
            f"running={counts.get(RUNNING, 0)} queued={counts.get(QUEUED, 0)}"
        )
        if verbose:
            for m in payload.members:
                exit_info = f" (exit {m.exit_code})" if m.exit_code is not None else ""
                typer.echo(f"- {m.member}: {m.state}{exit_info}")
        return

    echo_json(payload.to_dict())


@app.command(help="Block until the job makes visible progress, then print status JSON.")
def wait(
    job_dir: Annotated[Path, typer.Argument(help="Job directory printed by `conclave start`.")],
    cursor: Annotated[
        str | None, typer.Option("--cursor", help="Cursor from the previous wait (default: the job's .wait_cursor).")
    ] = None,
    bucket: Annotated[str | None, typer.Option("--bucket", help="Bucket size: auto or a positive number.")] = None,
    interval_ms: Annotated[
        int, typer.Option("--interval-ms", help="Poll interval in milliseconds (min 50).")
    ] = int(DEFAULT_INTERVAL * 1000),
    timeout_ms: Annotated[
        int, typer.Option("--timeout-ms", help="Give up after this many milliseconds (0 = never).")
    ] = 0,
) -> None:
    """Long-poll the job.

    The first call returns immediately and establishes a cursor. Later calls
    return once a bucket of members has finished, dispatch completes, or the
    whole job is done; a timeout returns the latest state without error.
    """
    if timeout_ms < 0:
        print_error(f"wait: invalid --timeout-ms: {timeout_ms}")
        raise typer.Exit(code=1)
    try:
        result = wait_for_progress(
            job_dir,
            cursor=cursor,
            bucket=bucket,
            interval=interval_ms / 1000,
            timeout=timeout_ms / 1000,
        )
    except JobNotFoundError as exc:
        print_error(str(exc))
        raise typer.Exit(code=1) from None
    except ValueError as exc:
        print_error(f"wait: {exc}")
        raise typer.Exit(code=1) from None

    echo_json(result.to_dict())


@app.command(help="Print every member's output.")
def results(
    job_dir: Annotated[Path, typer.Argument(help="Job directory printed by `conclave start`.")],
    json_output: Annotated[bool, typer.Option("--json", help="Output JSON format.")] = False,
) -> None:
    """Show captured stdout per member (stderr when stdout is empty)."""
    try:
        job_results = collect_results(job_dir)
    except JobNotFoundError as exc:
        print_error(str(exc))
        raise typer.Exit(code=1) from None

    if json_output:
        echo_json(job_results.to_dict())
        return

    console = Console(highlight=False)
    for m in job_results.members:
        console.print(Rule(f"{m.member} ({m.state})"))
        if m.message:
            console.print(Text(m.message, style="yellow"))
        body = m.output or m.stderr
        if body:
            console.print(Text(body.rstrip("\n")))
        console.print()


@app.command(help="Send SIGTERM to every running member.")
def stop(
    job_dir: Annotated[Path, typer.Argument(help="Job directory printed by `conclave start`.")],
) -> None:
    """Stopped members are recorded as canceled by their workers."""
    try:
        stopped = stop_job(job_dir)
    except JobNotFoundError as exc:
        print_error(str(exc))
        raise typer.Exit(code=1) from None

    if stopped:
        typer.echo(f"stop: sent SIGTERM to {len(stopped)} running member(s): {', '.join(stopped)}")
    else:
        typer.echo("stop: no running members")


@app.command(help="Delete a job directory.")
def clean(
    job_dir: Annotated[Path, typer.Argument(help="Job directory printed by `conclave start`.")],
) -> None:
    removed = clean_job(job_dir)
    typer.echo(f"cleaned: {removed}")


@app.command("config", help="Print the effective council configuration.")
def config_show(
    config: Annotated[Path | None, typer.Option("--config", help="Path to council.config.yaml.")] = None,
) -> None:
    """Print the config file in use and the merged (defaults + overrides) configuration."""
    config_path = resolve_config_path(config)
    try:
        cfg = load_config(config_path)
    except ConfigError as exc:
        print_error(str(exc))
        raise typer.Exit(code=1) from None

    console = Console()
    table = Table(title="Council members")
    table.add_column("Name", style="cyan")
    table.add_column("Command")
    table.add_column("Emoji")
    for member in cfg.members:
        table.add_row(member.name, member.command, member.emoji or "")

    suffix = "" if config_path.exists() else " (not found, using defaults)"
    console.print(f"[dim]Config: {config_path}{suffix}[/dim]", soft_wrap=True)
    console.print(table)
    console.print_json(json.dumps(dataclasses.asdict(cfg), ensure_ascii=False))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
