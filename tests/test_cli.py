import json
import shlex
import sys
import time
from pathlib import Path
from unittest.mock import patch

import yaml
from typer.testing import CliRunner

from conclave import cli
from conclave.aggregate import compute_status
from conclave.state import job_json_path, members_root, output_path, write_json
from conclave.status import StatusRecord, write_status

runner = CliRunner()

PYTHON = shlex.quote(sys.executable)


def write_council(tmp_path: Path, members: list[dict], **settings: object) -> Path:
    path = tmp_path / "council.config.yaml"
    council: dict = {"chairman": {"role": "claude"}, "members": members}
    if settings:
        council["settings"] = settings
    path.write_text(yaml.safe_dump({"council": council}), encoding="utf-8")
    return path


def echo_member(name: str) -> dict:
    code = f"import sys; print({name!r}, sys.argv[-1])"
    return {"name": name, "command": f"{PYTHON} -c {shlex.quote(code)}"}


def make_job(tmp_path: Path, states: dict[str, str]) -> Path:
    job_dir = tmp_path / "council-cli"
    members_root(job_dir).mkdir(parents=True)
    write_json(job_json_path(job_dir), {"id": "council-cli", "chairmanRole": "claude"})
    for name, state in states.items():
        write_status(job_dir, name, StatusRecord(member=name, state=state, exit_code=0 if state == "done" else None))
    return job_dir


def wait_done(job_dir: Path, timeout: float = 30.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if compute_status(job_dir).is_done:
            return
        time.sleep(0.05)
    raise AssertionError("job did not finish")


def test_start_requires_prompt(tmp_path: Path) -> None:
    """Starting without a prompt is an error and creates nothing."""
    result = runner.invoke(cli.app, ["start", "--jobs-dir", str(tmp_path / "jobs")])
    assert result.exit_code == 1
    assert not (tmp_path / "jobs").exists()


def test_start_runs_full_job(tmp_path: Path) -> None:
    """start dispatches every member; results shows their output."""
    config = write_council(tmp_path, [echo_member("alpha"), echo_member("beta")])
    jobs_dir = tmp_path / "jobs"

    result = runner.invoke(
        cli.app, ["start", "--config", str(config), "--jobs-dir", str(jobs_dir), "--json", "Ship", "it?"]
    )
    assert result.exit_code == 0, result.output
    meta = json.loads(result.stdout)
    job_dir = Path(meta["jobDir"])
    assert job_dir.parent == jobs_dir.resolve()
    assert [m["name"] for m in meta["members"]] == ["alpha", "beta"]
    assert meta["chairmanRole"] == "claude"

    wait_done(job_dir)
    assert output_path(job_dir, "alpha").read_text(encoding="utf-8") == "alpha Ship it?\n"

    results = runner.invoke(cli.app, ["results", str(job_dir), "--json"])
    assert results.exit_code == 0
    data = json.loads(results.stdout)
    assert data["prompt"] == "Ship it?"
    assert [(m["member"], m["state"], m["output"]) for m in data["members"]] == [
        ("alpha", "done", "alpha Ship it?\n"),
        ("beta", "done", "beta Ship it?\n"),
    ]

    text = runner.invoke(cli.app, ["results", str(job_dir)])
    assert text.exit_code == 0
    assert "alpha (done)" in text.output
    assert "beta Ship it?" in text.output


def test_start_plain_output_is_job_dir(tmp_path: Path) -> None:
    """Without --json, start prints just the job directory."""
    config = write_council(tmp_path, [echo_member("solo")])
    result = runner.invoke(cli.app, ["start", "--config", str(config), "--jobs-dir", str(tmp_path), "hi"])
    assert result.exit_code == 0
    job_dir = Path(result.stdout.strip())
    assert job_json_path(job_dir).exists()
    wait_done(job_dir)


def test_start_reads_stdin(tmp_path: Path) -> None:
    """--stdin takes the prompt from standard input."""
    config = write_council(tmp_path, [echo_member("solo")])
    result = runner.invoke(
        cli.app,
        ["start", "--config", str(config), "--jobs-dir", str(tmp_path), "--stdin"],
        input="piped prompt\n",
    )
    assert result.exit_code == 0
    job_dir = Path(result.stdout.strip())
    assert (job_dir / "prompt.txt").read_text(encoding="utf-8") == "piped prompt\n"
    wait_done(job_dir)


def test_start_options_reach_plan(tmp_path: Path) -> None:
    """--chairman, --include-chairman and --timeout are applied before dispatch."""
    config = write_council(tmp_path, [echo_member("claude"), echo_member("codex")])
    with patch.object(cli, "start_job") as mock_start:
        mock_start.return_value.job_dir = tmp_path / "job"
        result = runner.invoke(
            cli.app,
            ["start", "--config", str(config), "--chairman", "codex", "--include-chairman", "--timeout", "7", "q"],
        )
    assert result.exit_code == 0, result.output
    plan = mock_start.call_args.args[2]
    assert plan.chairman_role == "codex"
    assert plan.exclude_chairman is False
    assert plan.timeout_sec == 7
    assert [m.name for m in plan.members] == ["claude", "codex"]


def test_start_no_members_left(tmp_path: Path) -> None:
    """Excluding the only member is a configuration error."""
    config = write_council(tmp_path, [echo_member("claude")])
    result = runner.invoke(cli.app, ["start", "--config", str(config), "--jobs-dir", str(tmp_path / "jobs"), "q"])
    assert result.exit_code == 1
    assert not (tmp_path / "jobs").exists()


def test_start_invalid_config(tmp_path: Path) -> None:
    """A config without a council key is rejected."""
    config = tmp_path / "council.config.yaml"
    config.write_text("members: []\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["start", "--config", str(config), "q"])
    assert result.exit_code == 1


def test_status_json_default(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "done", "b": "running"})
    result = runner.invoke(cli.app, ["status", str(job_dir)])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["overallState"] == "running"
    assert data["counts"]["done"] == 1


def test_status_text(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "done", "b": "running", "c": "queued"})
    result = runner.invoke(cli.app, ["status", str(job_dir), "--text", "-v"])
    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[0] == "members 1/3 done; running=1 queued=1"
    assert "- a: done (exit 0)" in lines
    assert "- b: running" in lines


def test_status_checklist(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "done", "b": "error", "c": "running"})
    result = runner.invoke(cli.app, ["status", str(job_dir), "--checklist"])
    assert result.exit_code == 0
    assert "Agent Council (council-cli)" in result.stdout
    assert "Progress: 2/3 done" in result.stdout
    assert "[x] a" in result.stdout
    assert "[!] b" in result.stdout
    assert "[ ] c" in result.stdout


def test_status_missing_job(tmp_path: Path) -> None:
    result = runner.invoke(cli.app, ["status", str(tmp_path / "missing")])
    assert result.exit_code == 1


def test_wait_first_call_and_timeout(tmp_path: Path) -> None:
    """The first wait returns at once; the next one times out with the same cursor."""
    job_dir = make_job(tmp_path, {"a": "running"})

    first = runner.invoke(cli.app, ["wait", str(job_dir)])
    assert first.exit_code == 0
    cursor = json.loads(first.stdout)["cursor"]
    assert cursor == "v2:1:1:0:0"
    assert "ui" in json.loads(first.stdout)

    second = runner.invoke(cli.app, ["wait", str(job_dir), "--timeout-ms", "100", "--interval-ms", "50"])
    assert second.exit_code == 0
    assert json.loads(second.stdout)["cursor"] == cursor


def test_wait_explicit_cursor(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "done"})
    result = runner.invoke(cli.app, ["wait", str(job_dir), "--cursor", "v2:1:1:0:0", "--timeout-ms", "100"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["cursor"] == "v2:1:1:1:1"
    assert data["overallState"] == "done"


def test_wait_invalid_bucket(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "running"})
    result = runner.invoke(cli.app, ["wait", str(job_dir), "--bucket", "zero"])
    assert result.exit_code == 1


def test_wait_negative_timeout(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "running"})
    result = runner.invoke(cli.app, ["wait", str(job_dir), "--timeout-ms", "-5"])
    assert result.exit_code != 0


def test_stop_reports_signaled_members(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {})
    write_status(job_dir, "a", StatusRecord(member="a", state="running", pid=4242))
    with patch("conclave.control.os.kill"):
        result = runner.invoke(cli.app, ["stop", str(job_dir)])
    assert result.exit_code == 0
    assert result.stdout.strip() == "stop: sent SIGTERM to 1 running member(s): a"


def test_stop_nothing_running(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "done"})
    result = runner.invoke(cli.app, ["stop", str(job_dir)])
    assert result.exit_code == 0
    assert result.stdout.strip() == "stop: no running members"


def test_clean(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "done"})
    result = runner.invoke(cli.app, ["clean", str(job_dir)])
    assert result.exit_code == 0
    assert result.stdout.strip() == f"cleaned: {job_dir.resolve()}"
    assert not job_dir.exists()


def test_config_shows_members(tmp_path: Path) -> None:
    config = write_council(tmp_path, [{"name": "local", "command": "llm -m local"}])
    result = runner.invoke(cli.app, ["config", "--config", str(config)])
    assert result.exit_code == 0
    assert "local" in result.output
    assert "llm -m local" in result.output


def test_config_defaults_when_missing(tmp_path: Path) -> None:
    result = runner.invoke(cli.app, ["config", "--config", str(tmp_path / "none.yaml")])
    assert result.exit_code == 0
    assert "not found, using defaults" in result.output
    assert "gemini" in result.output


def test_wait_infinite_bucket(tmp_path: Path) -> None:
    job_dir = make_job(tmp_path, {"a": "running"})
    result = runner.invoke(cli.app, ["wait", str(job_dir), "--bucket", "inf"])
    assert result.exit_code == 1
