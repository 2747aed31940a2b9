"""Map tasks onto GitHub issue text and project fields.

Everything here is pure: no I/O, no state.
"""

import hashlib
import json
from typing import Dict

from .config import (
    ACTIVE_FORM_FIELD,
    BLOCKED_BY_FIELD,
    OWNER_FIELD,
    STATUS_MAP,
    TASK_ID_FIELD,
    TEAM_FIELD,
)
from .models import Task


def map_title(task: Task) -> str:
    """Issue title: "[id] subject"."""
    return f"[{task.id}] {task.subject}"


def map_body(task: Task, collection: str) -> str:
    """Issue body: description followed by a metadata block."""
    lines: list[str] = []

    if task.description:
        lines.append(task.description)
        lines.append("")

    lines.append("---")
    lines.append(f"**Team:** {collection}")
    lines.append(f"**Task ID:** {task.id}")
    lines.append(f"**Status:** {task.status}")

    if task.owner:
        lines.append(f"**Owner:** {task.owner}")
    if task.active_form:
        lines.append(f"**Active Form:** {task.active_form}")
    if task.blocked_by:
        lines.append(f"**Blocked By:** {', '.join(task.blocked_by)}")
    if task.blocks:
        lines.append(f"**Blocks:** {', '.join(task.blocks)}")

    return "\n".join(lines)


def map_status(status: str) -> str:
    """Map task status to the project Status option name."""
    return STATUS_MAP.get(status, "Todo")


def map_custom_fields(task: Task, collection: str) -> Dict[str, str]:
    """Custom field name -> value for a task's project item."""
    return {
        TEAM_FIELD: collection,
        OWNER_FIELD: task.owner or "",
        TASK_ID_FIELD: task.id,
        BLOCKED_BY_FIELD: ", ".join(task.blocked_by),
        ACTIVE_FORM_FIELD: task.active_form or "",
    }


def compute_task_hash(task: Task, collection: str) -> str:
    """SHA-256 over the task fields that end up on GitHub.

    blockedBy and blocks are sorted, so their order doesn't matter.
    """
    normalized = {
        "subject": task.subject,
        "description": task.description or "",
        "status": task.status,
        "owner": task.owner or "",
        "activeForm": task.active_form or "",
        "blockedBy": sorted(task.blocked_by),
        "blocks": sorted(task.blocks),
        "teamName": collection,
    }
    payload = json.dumps(normalized, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
