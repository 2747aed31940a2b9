"""Read agent team task files.

Layout under the configured agent directory:
    teams/{team}/config.json   team config with a members list
    tasks/{team}/*.json        one task record per file

Some task records are not real work: team tooling also writes one task per
member (subject = member name) and role prompts ("You are the ..."). These
are filtered out.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import SyncConfig
from .errors import MalformedRecord
from .models import Task

logger = logging.getLogger(__name__)

# Descriptions of agent role assignments rather than work items
ROLE_ASSIGNMENT_PATTERNS = [
    re.compile(r"^You are the\b", re.IGNORECASE),
    re.compile(r"^You are a\b", re.IGNORECASE),
    re.compile(r"^Act as\b", re.IGNORECASE),
    re.compile(r"^당신은"),
    re.compile(r"에이전트입니다"),
]


def read_team_config(config: SyncConfig, collection: str) -> Optional[Dict[str, Any]]:
    """Read teams/{team}/config.json, returns None if missing or invalid."""
    path = config.get_team_config_path(collection)
    if not path.exists():
        logger.warning("Team config not found: %s", path)
        return None
    try:
        with open(path) as f:
            data = json.load(f)
        return data if isinstance(data, dict) else None
    except (json.JSONDecodeError, OSError) as e:
        logger.error("Failed to parse team config %s: %s", path, e)
        return None


def load_task_file(path: Path) -> Task:
    """Load a single task file.

    Raises:
        MalformedRecord: If the file isn't JSON or lacks id/subject
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedRecord(path, f"invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise MalformedRecord(path, "not a JSON object")
    try:
        return Task.from_dict(data)
    except ValueError as e:
        raise MalformedRecord(path, str(e)) from e


def is_role_assignment(task: Task) -> bool:
    """Check if the description is an agent role prompt."""
    if not task.description:
        return False
    return any(p.search(task.description) for p in ROLE_ASSIGNMENT_PATTERNS)


def filter_work_items(tasks: List[Task], member_names: set[str]) -> List[Task]:
    """Drop member-assignment and role-prompt records.

    A task is dropped if its subject equals a configured member name, equals
    the owner of any task in the batch, or its description is a role prompt.
    """
    owner_names = {t.owner for t in tasks if t.owner}
    result = []
    for task in tasks:
        if task.subject in member_names:
            logger.debug("Skipping member assignment task (config match): %s", task.subject)
            continue
        if task.subject in owner_names:
            logger.debug("Skipping member assignment task (owner match): %s", task.subject)
            continue
        if is_role_assignment(task):
            logger.debug("Skipping role assignment task: %s", task.subject)
            continue
        result.append(task)
    return result


def list_tasks(config: SyncConfig, collection: str) -> List[Task]:
    """Read all work-item tasks for a team.

    Malformed files are skipped with a warning. Tasks are returned sorted by
    filename so ordering is stable across runs.
    """
    tasks_dir = config.get_team_tasks_dir(collection)
    if not tasks_dir.is_dir():
        logger.warning("Tasks directory not found: %s", tasks_dir)
        return []

    member_names: set[str] = set()
    team_config = read_team_config(config, collection)
    if team_config:
        for member in team_config.get("members") or []:
            if isinstance(member, dict) and member.get("name"):
                member_names.add(member["name"])

    parsed: List[Task] = []
    for path in sorted(tasks_dir.glob("*.json")):
        try:
            parsed.append(load_task_file(path))
        except MalformedRecord as e:
            logger.warning("Skipping invalid task file %s", e)
        except OSError as e:
            logger.warning("Failed to read task file %s: %s", path, e)

    return filter_work_items(parsed, member_names)


def list_collection_names(config: SyncConfig) -> List[str]:
    """List active teams: those with both a tasks directory and a team config.

    Leftover task directories from old sessions have no config and are
    ignored.
    """
    if not config.tasks_dir.is_dir():
        return []
    return sorted(
        d.name
        for d in config.tasks_dir.iterdir()
        if d.is_dir() and config.get_team_config_path(d.name).exists()
    )
