"""Ensure tests import conclave from this checkout, not from an external editable install."""

import sys
from pathlib import Path

import pytest

# Prepend this checkout's src/ so tests always use local code,
# even when pytest is invoked by a Python from a different venv.
_src = str(Path(__file__).resolve().parent.parent / "src")
if _src not in sys.path:
    sys.path.insert(0, _src)

HOST_ENV_VARS = (
    "CLAUDECODE",
    "CODEX_SANDBOX",
    "CODEX_HOME",
    "CONCLAVE_CONFIG",
    "CONCLAVE_JOBS_DIR",
    "CONCLAVE_CHAIRMAN",
    "CONCLAVE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_host_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tests must not depend on which agent host (if any) launched pytest."""
    for name in HOST_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
