"""Configuration management for teamsync.

Settings are validated with Pydantic. All paths and limits can be
overridden via environment variables.
"""

import os
from pathlib import Path
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field, field_validator

# Custom fields created on every project board
TEAM_FIELD = "Team Name"
OWNER_FIELD = "Agent (Owner)"
TASK_ID_FIELD = "Task ID"
BLOCKED_BY_FIELD = "Blocked By"
ACTIVE_FORM_FIELD = "Active Form"
STATUS_FIELD = "Status"

CUSTOM_FIELDS: list[tuple[str, str]] = [
    (TEAM_FIELD, "TEXT"),
    (OWNER_FIELD, "SINGLE_SELECT"),
    (TASK_ID_FIELD, "TEXT"),
    (BLOCKED_BY_FIELD, "TEXT"),
    (ACTIVE_FORM_FIELD, "TEXT"),
]

# Task status -> project Status option name
STATUS_MAP: dict[str, str] = {
    "pending": "Todo",
    "in_progress": "In Progress",
    "completed": "Done",
}

UNASSIGNED_OWNER = "(unassigned)"
LABEL_PREFIX = "ccteams:"
LABEL_COLOR = "6f42c1"
OWNER_COLORS = ["BLUE", "GREEN", "YELLOW", "ORANGE", "RED", "PINK", "PURPLE", "GRAY"]


def get_claude_dir() -> Path:
    """Get the agent home directory holding teams/ and tasks/."""
    if path := os.environ.get("TEAMSYNC_CLAUDE_DIR"):
        return Path(path)
    return Path.home() / ".claude"


def get_state_dir() -> Path:
    """Get the directory holding per-team sync state and lock files."""
    if path := os.environ.get("TEAMSYNC_STATE_DIR"):
        return Path(path)
    return Path.cwd() / ".teamsync"


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def safe_name(name: str) -> str:
    """Encode a team name as a filename.

    Percent-encoding keeps distinct names distinct; see unsafe_name.
    """
    return quote(name, safe="")


def unsafe_name(filename_stem: str) -> str:
    """Recover the team name from a safe_name filename stem."""
    return unquote(filename_stem)


class SyncConfig(BaseModel):
    """teamsync configuration.

    Attributes:
        claude_dir: Root of teams/<name>/config.json and tasks/<name>/*.json
        state_dir: Directory for <name>.json state and <name>.lock files
        concurrency: Maximum in-flight GitHub mutations per batch
        max_retries: Retries after the first failed attempt of an API call
        retry_base_delay: Initial backoff delay in seconds (doubles per attempt)
    """

    claude_dir: Path = Field(default_factory=get_claude_dir)
    state_dir: Path = Field(default_factory=get_state_dir)
    concurrency: int = Field(
        default_factory=lambda: _env_int("TEAMSYNC_CONCURRENCY", 5), ge=1
    )
    max_retries: int = Field(
        default_factory=lambda: _env_int("TEAMSYNC_MAX_RETRIES", 3), ge=0
    )
    retry_base_delay: float = Field(
        default_factory=lambda: _env_float("TEAMSYNC_RETRY_BASE_DELAY", 1.0), ge=0
    )

    @field_validator("claude_dir", "state_dir", mode="before")
    @classmethod
    def parse_paths(cls, v):
        """Convert string to Path if needed."""
        if isinstance(v, str):
            return Path(v)
        return v

    @property
    def teams_dir(self) -> Path:
        return self.claude_dir / "teams"

    @property
    def tasks_dir(self) -> Path:
        return self.claude_dir / "tasks"

    def get_team_config_path(self, name: str) -> Path:
        return self.teams_dir / name / "config.json"

    def get_team_tasks_dir(self, name: str) -> Path:
        return self.tasks_dir / name

    def get_state_path(self, name: str) -> Path:
        return self.state_dir / f"{safe_name(name)}.json"

    def get_lock_path(self, name: str) -> Path:
        return self.state_dir / f"{safe_name(name)}.lock"
