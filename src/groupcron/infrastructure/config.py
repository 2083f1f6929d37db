"""Process settings: environment variables first, then a few keys from .env."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

QUOTES = ("'", '"')


def read_env_file(keys: list[str]) -> dict[str, str]:
    """Return the requested keys from ./.env without touching os.environ.

    Secrets read this way never reach child process environments.
    """
    try:
        lines = (Path.cwd() / ".env").read_text().splitlines()
    except OSError:
        return {}

    found: dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if line.startswith("#") or "=" not in line:
            continue
        key, _, value = (part.strip() for part in line.partition("="))
        if key not in keys:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in QUOTES:
            value = value[1:-1]
        if value:
            found[key] = value
    return found


_dotenv = read_env_file(["ASSISTANT_NAME", "ISSUE_API_URL", "ISSUE_API_KEY"])


def _env(key: str, default: str) -> str:
    return os.environ.get(key) or _dotenv.get(key) or default


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _env_int(key: str, default: int) -> int:
    return int(_env(key, str(default)))


ASSISTANT_NAME = _env("ASSISTANT_NAME", "Andy")

# Seconds
SCHEDULER_POLL_INTERVAL = _env_float("SCHEDULER_POLL_INTERVAL", 60)
TASK_CLOSE_DELAY = _env_float("TASK_CLOSE_DELAY", 10)
GROUP_RETRY_DELAY = _env_float("GROUP_RETRY_DELAY", 300)

PROJECT_ROOT = Path.cwd()
STORE_DIR = (PROJECT_ROOT / "store").resolve()
GROUPS_DIR = (PROJECT_ROOT / "groups").resolve()
DATA_DIR = (PROJECT_ROOT / "data").resolve()
MAIN_GROUP_FOLDER = "main"

CONTAINER_RUNTIME = _env("CONTAINER_RUNTIME", "docker")
CONTAINER_IMAGE = _env("CONTAINER_IMAGE", "groupcron-agent:latest")
# Milliseconds
CONTAINER_TIMEOUT = _env_int("CONTAINER_TIMEOUT", 1_800_000)
IDLE_TIMEOUT = _env_int("IDLE_TIMEOUT", 1_800_000)
MAX_CONCURRENT_CONTAINERS = max(1, _env_int("MAX_CONCURRENT_CONTAINERS", 5))

# Issue logging is off while ISSUE_API_URL is empty
ISSUE_API_URL = _env("ISSUE_API_URL", "")
ISSUE_API_KEY = _env("ISSUE_API_KEY", "")
ISSUE_API_TIMEOUT = _env_float("ISSUE_API_TIMEOUT", 10)


def _system_timezone() -> str:
    """IANA name of the host zone, or "" when it cannot be determined."""
    etc_timezone = Path("/etc/timezone")
    if etc_timezone.is_file():
        return etc_timezone.read_text().strip()
    localtime = Path("/etc/localtime").resolve()
    if "zoneinfo" not in localtime.parts:
        return ""
    return "/".join(localtime.parts[localtime.parts.index("zoneinfo") + 1 :])


def _resolve_timezone() -> str:
    try:
        name = os.environ.get("TZ") or _system_timezone()
        if name:
            ZoneInfo(name)
            return name
    except (OSError, ValueError, ZoneInfoNotFoundError):
        pass
    return "UTC"


TIMEZONE = _resolve_timezone()


@dataclass(frozen=True)
class TimeoutConfig:
    """Container time limits in milliseconds."""

    container_timeout: int = CONTAINER_TIMEOUT
    idle_timeout: int = IDLE_TIMEOUT

    @property
    def hard_timeout_s(self) -> float:
        # The agent's own idle shutdown gets 30s before the hard kill
        return max(self.container_timeout, self.idle_timeout + 30_000) / 1000

    def for_group(self, group: object) -> TimeoutConfig:
        """Apply a group's container_config.timeout override, if it has one."""
        override = getattr(getattr(group, "container_config", None), "timeout", None)
        return replace(self, container_timeout=override) if override else self
