"""Configuration system for Conclave.

Loads the council composition (chairman role, members, settings) from a
``council.config.yaml`` file and resolves it into the final member list a job
is dispatched with. All fields are optional; a built-in council is used when
no file exists.

Example config::

    council:
      chairman:
        role: auto
      members:
        - name: claude
          command: "claude -p"
          emoji: "🧠"
          color: CYAN
      settings:
        exclude_chairman_from_members: true
        timeout: 120
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "council.config.yaml"


class ConfigError(ValueError):
    """The council configuration is unusable; no job should be created."""


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class MemberDef:
    """A council member as written in config."""

    name: str
    command: str
    emoji: str | None = None
    color: str | None = None


@dataclass
class ChairmanConfig:
    role: str = "auto"


@dataclass
class CouncilSettings:
    exclude_chairman_from_members: Any = True  # raw value, see normalize_bool
    timeout: Any = 120


@dataclass
class CouncilConfig:
    """Top-level configuration, loaded from council.config.yaml."""

    chairman: ChairmanConfig = field(default_factory=ChairmanConfig)
    members: list[MemberDef] = field(default_factory=list)
    settings: CouncilSettings = field(default_factory=CouncilSettings)


@dataclass
class DispatchPlan:
    """Everything the dispatcher needs, resolved from config and overrides."""

    chairman_role: str
    host_role: str
    exclude_chairman: bool
    timeout_sec: float | None
    members: list[MemberDef]


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_MEMBERS: list[MemberDef] = [
    MemberDef(name="claude", command="claude -p", emoji="🧠", color="CYAN"),
    MemberDef(name="codex", command="codex exec", emoji="🤖", color="BLUE"),
    MemberDef(name="gemini", command="gemini", emoji="💎", color="GREEN"),
]


def default_config() -> CouncilConfig:
    """Return the built-in default configuration."""
    return CouncilConfig(
        chairman=ChairmanConfig(role="auto"),
        members=[MemberDef(m.name, m.command, m.emoji, m.color) for m in DEFAULT_MEMBERS],
        settings=CouncilSettings(exclude_chairman_from_members=True, timeout=120),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def parse_member(data: Any) -> MemberDef | None:
    """Build a MemberDef from a raw list entry; entries without name/command are skipped."""
    if not isinstance(data, dict):
        return None
    name = data.get("name")
    command = data.get("command")
    if not name or not command:
        return None
    emoji = data.get("emoji")
    color = data.get("color")
    return MemberDef(
        name=str(name),
        command=str(command),
        emoji=str(emoji) if emoji else None,
        color=str(color) if color else None,
    )


def validate_config(data: Any, source: str = CONFIG_FILENAME) -> CouncilConfig:
    """Validate a parsed YAML document and merge it over the defaults.

    ``chairman`` and ``settings`` mappings are merged key by key; a provided
    ``members`` list replaces the default members wholesale.

    Raises:
        ConfigError: On a non-mapping root, a missing ``council`` key, or
            sections of the wrong type.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config in {source}: expected a YAML mapping at the document root")
    if not data.get("council"):
        raise ConfigError(f"Invalid config in {source}: missing required top-level key 'council:'")
    council = data["council"]
    if not isinstance(council, dict):
        raise ConfigError(f"Invalid config in {source}: 'council' must be a mapping")

    cfg = default_config()

    chairman = council.get("chairman")
    if chairman is not None:
        if not isinstance(chairman, dict):
            raise ConfigError(f"Invalid config in {source}: 'council.chairman' must be a mapping")
        if chairman.get("role") is not None:
            cfg.chairman = ChairmanConfig(role=str(chairman["role"]))

    if "members" in council:
        members = council["members"]
        if not isinstance(members, list):
            raise ConfigError(f"Invalid config in {source}: 'council.members' must be a list")
        cfg.members = [m for raw in members if (m := parse_member(raw)) is not None]

    settings = council.get("settings")
    if settings is not None:
        if not isinstance(settings, dict):
            raise ConfigError(f"Invalid config in {source}: 'council.settings' must be a mapping")
        if "exclude_chairman_from_members" in settings:
            cfg.settings.exclude_chairman_from_members = settings["exclude_chairman_from_members"]
        if "timeout" in settings:
            cfg.settings.timeout = settings["timeout"]

    return cfg


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def user_config_path() -> Path:
    root = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(root) / "conclave" / CONFIG_FILENAME


def resolve_config_path(explicit: str | Path | None = None) -> Path:
    """Pick the config file: option, ``$CONCLAVE_CONFIG``, ./, user config dir, else ./ (missing)."""
    if explicit:
        return Path(explicit)
    from_env = os.environ.get("CONCLAVE_CONFIG")
    if from_env:
        return Path(from_env)
    local = Path.cwd() / CONFIG_FILENAME
    if local.exists():
        return local
    user = user_config_path()
    if user.exists():
        return user
    return local


def load_config(path: Path) -> CouncilConfig:
    """Load configuration from *path*, falling back to defaults if it doesn't exist.

    Raises:
        ConfigError: If the file exists but contains invalid YAML or fails
            validation.
    """
    if not path.exists():
        return default_config()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    return validate_config(data, source=str(path))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def normalize_bool(value: Any) -> bool | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return None


def detect_host_role(location: str | Path | None = None) -> str:
    """Guess which agent host is invoking us: ``claude``, ``codex``, or ``unknown``.

    Checks whether the package lives inside a host's skills directory, then
    falls back to environment markers set by the host CLIs.
    """
    where = str(location if location is not None else Path(__file__).resolve()).replace("\\", "/")
    if "/.claude/skills/" in where:
        return "claude"
    if "/.codex/skills/" in where:
        return "codex"
    if os.environ.get("CLAUDECODE"):
        return "claude"
    if os.environ.get("CODEX_SANDBOX") or os.environ.get("CODEX_HOME"):
        return "codex"
    return "unknown"


def resolve_auto_role(role: str | None, host_role: str) -> str:
    role_lc = str(role or "").strip().lower()
    if role_lc and role_lc != "auto":
        return role_lc
    if host_role in ("claude", "codex"):
        return host_role
    return "claude"


def parse_timeout(value: Any) -> float | None:
    """Return a positive timeout in seconds, or None for "no timeout".

    Whole numbers come back as ``int`` so job.json records ``120``, not ``120.0``.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return int(seconds) if seconds.is_integer() else seconds


def resolve_plan(
    cfg: CouncilConfig,
    chairman: str | None = None,
    include_chairman: bool | None = None,
    timeout: float | None = None,
    host_role: str | None = None,
) -> DispatchPlan:
    """Resolve the chairman, exclusion rule, timeout, and final member list.

    Args:
        cfg: Loaded configuration.
        chairman: Chairman role override (beats ``$CONCLAVE_CHAIRMAN`` and config).
        include_chairman: True/False forces inclusion/exclusion of the
            chairman; None defers to config.
        timeout: Per-member timeout override in seconds.
        host_role: Detected host role; detected when omitted.

    Raises:
        ConfigError: If no members remain after filtering.
    """
    host = host_role or detect_host_role()
    raw_role = chairman or os.environ.get("CONCLAVE_CHAIRMAN") or cfg.chairman.role or "auto"
    chairman_role = resolve_auto_role(raw_role, host)

    if include_chairman is not None:
        exclude = not include_chairman
    else:
        setting = normalize_bool(cfg.settings.exclude_chairman_from_members)
        exclude = setting if setting is not None else True

    timeout_sec = parse_timeout(timeout) or parse_timeout(cfg.settings.timeout)

    members = [m for m in cfg.members if m.name and m.command]
    if exclude:
        members = [m for m in members if m.name.lower() != chairman_role]

    if not members:
        raise ConfigError("No council members to dispatch (check council.members and the chairman setting)")

    return DispatchPlan(
        chairman_role=chairman_role,
        host_role=host,
        exclude_chairman=exclude,
        timeout_sec=timeout_sec,
        members=members,
    )
