"""Shared fixtures: temp config, task file writers and an in-memory GitHub."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from teamsync.config import CUSTOM_FIELDS, STATUS_FIELD, UNASSIGNED_OWNER, SyncConfig
from teamsync.errors import RemoteError
from teamsync.github import CreatedIssue, LabelInfo, ProjectField, SelectOption
from teamsync.models import ProjectInfo, ReconciliationState, RepositoryInfo
from teamsync.state import create_initial_state, save_state


class FakeGitHubClient:
    """In-memory stand-in for GitHubProjectClient.

    Mirrors the GitHub behaviour the sync relies on, including new IDs for
    every option when a single-select field's options are replaced.
    Setting a single-select value with an unknown option ID fails, like
    the real API.
    """

    def __init__(self):
        self.calls: List[tuple[str, Dict[str, Any]]] = []
        self.failures: Dict[str, Callable[..., bool]] = {}
        self._counter = 0

        self.repo_id = "R_repo"
        self.project = ProjectInfo(id="PVT_1", number=1, url="https://github.com/p/1", title="")
        self.fields: Dict[str, Dict[str, Any]] = {
            STATUS_FIELD: {
                "id": "F_status",
                "type": "SINGLE_SELECT",
                "options": {"Todo": "S_todo", "In Progress": "S_prog", "Done": "S_done"},
            }
        }
        self.issues: Dict[str, Dict[str, Any]] = {}
        self.items: Dict[str, Dict[str, Any]] = {}
        self.labels: Dict[str, str] = {}
        self.project_closed = False
        self.project_deleted = False

    # -- helpers -------------------------------------------------------------

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append((method, kwargs))
        check = self.failures.get(method)
        if check is not None and check(**kwargs):
            raise RemoteError(f"{method} failed")

    def fail_on(self, method: str, when: Optional[Callable[..., bool]] = None) -> None:
        """Make a method raise RemoteError (always, or when `when(**kwargs)`)."""
        self.failures[method] = when or (lambda **kwargs: True)

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == method]

    def field_by_id(self, field_id: str) -> Optional[Dict[str, Any]]:
        return next((f for f in self.fields.values() if f["id"] == field_id), None)

    def option_name(self, field_name: str, option_id: str) -> Optional[str]:
        options = self.fields[field_name]["options"]
        return next((name for name, oid in options.items() if oid == option_id), None)

    def item_for_issue(self, issue_id: str) -> Optional[Dict[str, Any]]:
        return next((i for i in self.items.values() if i["content_id"] == issue_id), None)

    def issue_by_title(self, title: str) -> Optional[Dict[str, Any]]:
        return next((i for i in self.issues.values() if i["title"] == title), None)

    def bootstrap(self) -> None:
        """Create the custom fields the way `teamsync init` does."""
        for name, data_type in CUSTOM_FIELDS:
            options = {UNASSIGNED_OWNER: self._next("O")} if data_type == "SINGLE_SELECT" else None
            self.fields[name] = {"id": self._next("F"), "type": data_type, "options": options}

    # -- setup ---------------------------------------------------------------

    async def get_repo_id(self, owner: str, name: str) -> str:
        self._record("get_repo_id", owner=owner, name=name)
        return self.repo_id

    async def get_owner_node_id(self, login: str) -> str:
        self._record("get_owner_node_id", login=login)
        return f"U_{login}"

    async def create_project(self, owner_id: str, title: str) -> ProjectInfo:
        self._record("create_project", owner_id=owner_id, title=title)
        self.project.title = title
        return ProjectInfo(
            id=self.project.id, number=self.project.number, url=self.project.url, title=title
        )

    async def link_project_to_repo(self, project_id: str, repository_id: str) -> None:
        self._record("link_project_to_repo", project_id=project_id, repository_id=repository_id)

    async def close_project(self, project_id: str) -> None:
        self._record("close_project", project_id=project_id)
        self.project_closed = True

    async def delete_project(self, project_id: str) -> None:
        self._record("delete_project", project_id=project_id)
        self.project_deleted = True

    # -- fields --------------------------------------------------------------

    async def create_text_field(self, project_id: str, name: str) -> str:
        self._record("create_text_field", project_id=project_id, name=name)
        field_id = self._next("F")
        self.fields[name] = {"id": field_id, "type": "TEXT", "options": None}
        return field_id

    async def create_single_select_field(
        self, project_id: str, name: str, options: List[SelectOption]
    ) -> str:
        self._record("create_single_select_field", project_id=project_id, name=name)
        field_id = self._next("F")
        self.fields[name] = {
            "id": field_id,
            "type": "SINGLE_SELECT",
            "options": {o.name: self._next("O") for o in options},
        }
        return field_id

    async def update_field_options(self, field_id: str, options: List[SelectOption]) -> None:
        self._record("update_field_options", field_id=field_id, options=options)
        field = self.field_by_id(field_id)
        if field is None:
            raise RemoteError(f"field {field_id} not found")
        # Every option gets a fresh ID, including ones that already existed
        field["options"] = {o.name: self._next("O") for o in options}

    async def get_project_fields(self, project_id: str) -> List[ProjectField]:
        self._record("get_project_fields", project_id=project_id)
        return [
            ProjectField(
                id=f["id"],
                name=name,
                data_type=f["type"],
                options=dict(f["options"]) if f["options"] is not None else None,
            )
            for name, f in self.fields.items()
        ]

    # -- issues and items ----------------------------------------------------

    async def create_issue(
        self,
        repository_id: str,
        title: str,
        body: str,
        label_ids: Optional[List[str]] = None,
        project_ids: Optional[List[str]] = None,
        parent_issue_id: Optional[str] = None,
    ) -> CreatedIssue:
        self._record(
            "create_issue",
            title=title,
            body=body,
            label_ids=label_ids,
            project_ids=project_ids,
            parent_issue_id=parent_issue_id,
        )
        issue_id = self._next("I")
        number = len(self.issues) + 1
        self.issues[issue_id] = {
            "number": number,
            "title": title,
            "body": body,
            "labels": list(label_ids or []),
            "parent": parent_issue_id,
            "closed": False,
        }
        return CreatedIssue(id=issue_id, number=number, url=f"https://github.com/i/{number}", title=title)

    async def update_issue(self, issue_id: str, title: str, body: str) -> None:
        self._record("update_issue", issue_id=issue_id, title=title, body=body)
        self.issues[issue_id].update(title=title, body=body)

    async def close_issue(self, issue_id: str) -> None:
        self._record("close_issue", issue_id=issue_id)
        self.issues[issue_id]["closed"] = True

    async def add_item_to_project(self, project_id: str, content_id: str) -> str:
        self._record("add_item_to_project", project_id=project_id, content_id=content_id)
        for item_id, item in self.items.items():
            if item["content_id"] == content_id:
                return item_id
        item_id = self._next("PVTI")
        self.items[item_id] = {"content_id": content_id, "values": {}}
        return item_id

    async def update_text_field(
        self, project_id: str, item_id: str, field_id: str, value: str
    ) -> None:
        self._record(
            "update_text_field", project_id=project_id, item_id=item_id, field_id=field_id, value=value
        )
        self.items[item_id]["values"][field_id] = value

    async def update_single_select_field(
        self, project_id: str, item_id: str, field_id: str, option_id: str
    ) -> None:
        self._record(
            "update_single_select_field",
            project_id=project_id,
            item_id=item_id,
            field_id=field_id,
            option_id=option_id,
        )
        field = self.field_by_id(field_id)
        if field is None or option_id not in field["options"].values():
            raise RemoteError(f"option {option_id} not found on field {field_id}")
        self.items[item_id]["values"][field_id] = option_id

    # -- labels --------------------------------------------------------------

    async def create_label(self, repository_id: str, name: str, color: str) -> str:
        self._record("create_label", name=name, color=color)
        if name in self.labels:
            raise RemoteError(f"Name {name} already exists on this repository")
        self.labels[name] = self._next("LA")
        return self.labels[name]

    async def get_repo_labels(self, owner: str, name: str, prefix: str = "") -> List[LabelInfo]:
        self._record("get_repo_labels", owner=owner, name=name, prefix=prefix)
        return [
            LabelInfo(id=lid, name=lname)
            for lname, lid in self.labels.items()
            if lname.startswith(prefix)
        ]

    async def add_labels_to_issue(self, issue_id: str, label_ids: List[str]) -> None:
        self._record("add_labels_to_issue", issue_id=issue_id, label_ids=label_ids)
        labels = self.issues[issue_id]["labels"]
        labels.extend(lid for lid in label_ids if lid not in labels)

    # -- state ---------------------------------------------------------------

    def initial_state(self) -> ReconciliationState:
        """Sync state matching this fake project (after bootstrap())."""
        fields = {name: f["id"] for name, f in self.fields.items()}
        return create_initial_state(
            ProjectInfo(
                id=self.project.id,
                number=self.project.number,
                url=self.project.url,
                title="team tasks",
                owner="octo",
            ),
            RepositoryInfo(id=self.repo_id, owner="octo", name="repo"),
            fields,
            dict(self.fields[STATUS_FIELD]["options"]),
        )


@pytest.fixture
def config(tmp_path: Path) -> SyncConfig:
    """Config rooted in a temp dir, no retry delays."""
    return SyncConfig(
        claude_dir=tmp_path / "claude",
        state_dir=tmp_path / "state",
        concurrency=5,
        max_retries=0,
        retry_base_delay=0,
    )


@pytest.fixture
def fake_client() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def write_team(config: SyncConfig) -> Callable[..., Path]:
    """Write teams/<name>/config.json and create the tasks dir."""

    def _write(name: str, members: Optional[List[str]] = None) -> Path:
        path = config.get_team_config_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"name": name, "members": [{"name": m} for m in members or []]}))
        config.get_team_tasks_dir(name).mkdir(parents=True, exist_ok=True)
        return path

    return _write


@pytest.fixture
def write_task(config: SyncConfig) -> Callable[..., Path]:
    """Write tasks/<team>/<id>.json from keyword fields."""

    def _write(team: str, task_id: str, subject: str, **fields: Any) -> Path:
        tasks_dir = config.get_team_tasks_dir(team)
        tasks_dir.mkdir(parents=True, exist_ok=True)
        data = {"id": task_id, "subject": subject, "status": "pending", **fields}
        path = tasks_dir / f"{task_id}.json"
        path.write_text(json.dumps(data))
        return path

    return _write


@pytest.fixture
def initialized(config: SyncConfig, fake_client: FakeGitHubClient, write_team) -> str:
    """A team "alpha" with a bootstrapped fake project and saved state."""
    write_team("alpha")
    fake_client.bootstrap()
    save_state(config, "alpha", fake_client.initial_state())
    return "alpha"
