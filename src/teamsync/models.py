"""Data classes for tasks, item mappings and per-team sync state.

Python attributes are snake_case; the on-disk JSON uses the camelCase keys
written by the agent tooling (task files) and by earlier state files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

TASK_STATUSES = ("pending", "in_progress", "completed")


def utc_now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Task:
    """A task record as written by the agent team tooling.

    Attributes:
        id: Task ID, unique within its team
        subject: Short title
        description: Longer free-form description
        status: pending, in_progress or completed
        owner: Agent name owning the task, if any
        active_form: Present-tense label shown while in progress
        blocked_by: IDs of tasks this one depends on (first one is the parent)
        blocks: IDs of tasks depending on this one
        metadata: Anything else found in the record (not synced)
    """

    id: str
    subject: str
    description: str = ""
    status: str = "pending"
    owner: Optional[str] = None
    active_form: Optional[str] = None
    blocked_by: List[str] = field(default_factory=list)
    blocks: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Build a Task from a task file's JSON object.

        Raises:
            ValueError: If id or subject is missing or empty, or if blockedBy
                or blocks is not a list
        """
        task_id = data.get("id")
        subject = data.get("subject")
        if task_id in (None, "") or not subject:
            raise ValueError("missing id or subject")
        for key in ("blockedBy", "blocks"):
            if not isinstance(data.get(key) or [], list):
                raise ValueError(f"{key} must be a list")
        return cls(
            id=str(task_id),
            subject=str(subject),
            description=data.get("description") or "",
            status=data.get("status") or "pending",
            owner=data.get("owner") or None,
            active_form=data.get("activeForm") or None,
            blocked_by=[str(t) for t in data.get("blockedBy") or []],
            blocks=[str(t) for t in data.get("blocks") or []],
            metadata=data.get("metadata") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "subject": self.subject,
            "description": self.description,
            "status": self.status,
            "blockedBy": list(self.blocked_by),
            "blocks": list(self.blocks),
        }
        if self.owner:
            data["owner"] = self.owner
        if self.active_form:
            data["activeForm"] = self.active_form
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass
class ItemMapping:
    """Durable link between one task and its GitHub issue / project item."""

    task_id: str
    collection_name: str
    remote_item_id: str
    remote_content_id: str
    remote_issue_id: str
    remote_issue_number: int
    last_hash: str
    last_synced_at: str
    last_owner: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.collection_name, self.task_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemMapping":
        return cls(
            task_id=str(data["taskId"]),
            collection_name=data["collectionName"],
            remote_item_id=data.get("remoteItemId", ""),
            remote_content_id=data.get("remoteContentId", ""),
            remote_issue_id=data.get("remoteIssueId", ""),
            remote_issue_number=int(data.get("remoteIssueNumber", 0)),
            last_hash=data.get("lastHash", ""),
            last_synced_at=data.get("lastSyncedAt", ""),
            last_owner=data.get("lastOwner") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "taskId": self.task_id,
            "collectionName": self.collection_name,
            "remoteItemId": self.remote_item_id,
            "remoteContentId": self.remote_content_id,
            "remoteIssueId": self.remote_issue_id,
            "remoteIssueNumber": self.remote_issue_number,
            "lastHash": self.last_hash,
            "lastSyncedAt": self.last_synced_at,
        }
        if self.last_owner:
            data["lastOwner"] = self.last_owner
        return data


@dataclass
class ProjectInfo:
    id: str
    number: int
    url: str
    title: str
    owner: str = ""


@dataclass
class RepositoryInfo:
    id: str
    owner: str
    name: str


@dataclass
class ReconciliationState:
    """Per-team sync state, persisted as a single JSON document.

    fields, status_options and owner_options cache server-assigned IDs.
    Option IDs change whenever a single-select field's options are replaced,
    so they are only trustworthy right after refresh_select_options().
    """

    project: ProjectInfo
    repository: RepositoryInfo
    fields: Dict[str, str] = field(default_factory=dict)
    status_options: Dict[str, str] = field(default_factory=dict)
    owner_options: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    items: List[ItemMapping] = field(default_factory=list)
    last_sync_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReconciliationState":
        project = data["project"]
        repository = data["repository"]
        return cls(
            project=ProjectInfo(
                id=project["id"],
                number=int(project.get("number", 0)),
                url=project.get("url", ""),
                title=project.get("title", ""),
                owner=project.get("owner", ""),
            ),
            repository=RepositoryInfo(
                id=repository["id"],
                owner=repository.get("owner", ""),
                name=repository.get("name", ""),
            ),
            fields=dict(data.get("fields") or {}),
            status_options=dict(data.get("statusOptions") or {}),
            owner_options=dict(data.get("ownerOptions") or {}),
            labels=dict(data.get("labels") or {}),
            items=[ItemMapping.from_dict(item) for item in data.get("items") or []],
            last_sync_at=data.get("lastSyncAt", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": {
                "id": self.project.id,
                "number": self.project.number,
                "url": self.project.url,
                "title": self.project.title,
                "owner": self.project.owner,
            },
            "repository": {
                "id": self.repository.id,
                "owner": self.repository.owner,
                "name": self.repository.name,
            },
            "fields": dict(self.fields),
            "statusOptions": dict(self.status_options),
            "ownerOptions": dict(self.owner_options),
            "labels": dict(self.labels),
            "items": [item.to_dict() for item in self.items],
            "lastSyncAt": self.last_sync_at,
        }


@dataclass
class SyncError:
    task_id: str
    error: str


@dataclass
class SyncResult:
    """Aggregate counts of one or more sync passes."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    archived: int = 0
    errors: List[SyncError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def merge(self, other: "SyncResult") -> None:
        """Add another result's counts and errors into this one."""
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.archived += other.archived
        self.errors.extend(other.errors)
