"""GitHub Issues and Projects V2 API client.

All calls go through the GraphQL API using the gh CLI, which takes care of
authentication. Each method is one remote operation wrapped in the retry
policy; the sync engine decides what to call and in which order.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import RemoteError
from .models import ProjectInfo
from .utils.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

GraphQLRunner = Callable[[str, Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass
class ProjectField:
    """A project field; options is set for single-select fields."""

    id: str
    name: str
    data_type: str = ""
    options: Optional[Dict[str, str]] = None  # option name -> option ID


@dataclass
class CreatedIssue:
    id: str
    number: int
    url: str
    title: str


@dataclass
class LabelInfo:
    id: str
    name: str


@dataclass
class SelectOption:
    """Input for a single-select option (IDs are assigned by GitHub)."""

    name: str
    color: str = "GRAY"
    description: str = ""

    def to_input(self) -> Dict[str, str]:
        return {"name": self.name, "color": self.color, "description": self.description}


async def _run_gh(args: List[str], stdin: Optional[bytes] = None) -> tuple[int, str, str]:
    try:
        process = await asyncio.create_subprocess_exec(
            "gh",
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise RemoteError("GitHub CLI (gh) not found. Install it from https://cli.github.com") from e
    stdout, stderr = await process.communicate(stdin)
    return process.returncode or 0, stdout.decode(), stderr.decode()


async def run_graphql(query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run a GraphQL query or mutation via `gh api graphql`.

    Returns:
        The response's data object

    Raises:
        RemoteError: On gh failure, unparsable output or GraphQL errors
    """
    body = json.dumps({"query": query, "variables": variables or {}}).encode()
    code, stdout, stderr = await _run_gh(["api", "graphql", "--input", "-"], stdin=body)
    if code != 0:
        raise RemoteError(stderr.strip() or f"gh exited with code {code}")
    try:
        result = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise RemoteError(f"Failed to parse GraphQL response: {stdout[:200]}") from e
    if result.get("errors"):
        raise RemoteError(", ".join(err.get("message", str(err)) for err in result["errors"]))
    data: Dict[str, Any] = result.get("data") or {}
    return data


async def check_gh_auth() -> bool:
    """Check that the gh CLI is installed and authenticated."""
    try:
        code, _, _ = await _run_gh(["auth", "status"])
    except RemoteError:
        return False
    return code == 0


class GitHubProjectClient:
    """Async client for the GitHub operations teamsync needs."""

    def __init__(
        self,
        retry: Optional[RetryConfig] = None,
        runner: GraphQLRunner = run_graphql,
    ):
        """Initialize client.

        Args:
            retry: Retry policy applied to every call
            runner: Function executing a GraphQL document (gh by default)
        """
        self.retry = retry or RetryConfig()
        self._runner = runner

    async def _call(self, label: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        return await with_retry(lambda: self._runner(query, variables), label, self.retry)

    # -------------------------------------------------------------------------
    # Repository / project setup
    # -------------------------------------------------------------------------

    async def get_repo_id(self, owner: str, name: str) -> str:
        data = await self._call(
            "Get repository ID",
            """
            query($owner: String!, $name: String!) {
              repository(owner: $owner, name: $name) { id }
            }
            """,
            {"owner": owner, "name": name},
        )
        repo_id: str = data["repository"]["id"]
        return repo_id

    async def get_owner_node_id(self, login: str) -> str:
        """Node ID of a user, falling back to an organization."""
        try:
            data = await self._runner(
                "query($login: String!) { user(login: $login) { id } }",
                {"login": login},
            )
            if data.get("user"):
                user_id: str = data["user"]["id"]
                return user_id
        except RemoteError:
            logger.debug("%s is not a user, trying organization", login)
        data = await self._call(
            "Get owner node ID",
            "query($login: String!) { organization(login: $login) { id } }",
            {"login": login},
        )
        org_id: str = data["organization"]["id"]
        return org_id

    async def create_project(self, owner_id: str, title: str) -> ProjectInfo:
        data = await self._call(
            "Create project",
            """
            mutation($ownerId: ID!, $title: String!) {
              createProjectV2(input: { ownerId: $ownerId, title: $title }) {
                projectV2 { id number url title }
              }
            }
            """,
            {"ownerId": owner_id, "title": title},
        )
        project = data["createProjectV2"]["projectV2"]
        return ProjectInfo(
            id=project["id"],
            number=project["number"],
            url=project["url"],
            title=project["title"],
        )

    async def link_project_to_repo(self, project_id: str, repository_id: str) -> None:
        await self._call(
            "Link project to repository",
            """
            mutation($projectId: ID!, $repositoryId: ID!) {
              linkProjectV2ToRepository(input: { projectId: $projectId, repositoryId: $repositoryId }) {
                repository { id }
              }
            }
            """,
            {"projectId": project_id, "repositoryId": repository_id},
        )

    async def close_project(self, project_id: str) -> None:
        """Mark a project closed (it stays on GitHub)."""
        await self._call(
            "Close project",
            """
            mutation($projectId: ID!) {
              updateProjectV2(input: { projectId: $projectId, closed: true }) {
                projectV2 { id }
              }
            }
            """,
            {"projectId": project_id},
        )

    async def delete_project(self, project_id: str) -> None:
        """Delete a project and its items (the issues themselves remain)."""
        await self._call(
            "Delete project",
            """
            mutation($projectId: ID!) {
              deleteProjectV2(input: { projectId: $projectId }) {
                projectV2 { id }
              }
            }
            """,
            {"projectId": project_id},
        )

    # -------------------------------------------------------------------------
    # Fields
    # -------------------------------------------------------------------------

    async def create_text_field(self, project_id: str, name: str) -> str:
        data = await self._call(
            f'Create field "{name}"',
            """
            mutation($projectId: ID!, $name: String!, $dataType: ProjectV2CustomFieldType!) {
              createProjectV2Field(input: { projectId: $projectId, name: $name, dataType: $dataType }) {
                projectV2Field { ... on ProjectV2Field { id } }
              }
            }
            """,
            {"projectId": project_id, "name": name, "dataType": "TEXT"},
        )
        field_id: str = data["createProjectV2Field"]["projectV2Field"]["id"]
        return field_id

    async def create_single_select_field(
        self, project_id: str, name: str, options: List[SelectOption]
    ) -> str:
        data = await self._call(
            f'Create single-select field "{name}"',
            """
            mutation($projectId: ID!, $name: String!, $dataType: ProjectV2CustomFieldType!,
                     $options: [ProjectV2SingleSelectFieldOptionInput!]) {
              createProjectV2Field(input: {
                projectId: $projectId, name: $name, dataType: $dataType,
                singleSelectOptions: $options
              }) {
                projectV2Field { ... on ProjectV2SingleSelectField { id } }
              }
            }
            """,
            {
                "projectId": project_id,
                "name": name,
                "dataType": "SINGLE_SELECT",
                "options": [o.to_input() for o in options],
            },
        )
        field_id: str = data["createProjectV2Field"]["projectV2Field"]["id"]
        return field_id

    async def update_field_options(self, field_id: str, options: List[SelectOption]) -> None:
        """Replace all options of a single-select field.

        GitHub assigns new IDs to every option, including existing ones.
        """
        await self._call(
            "Update field options",
            """
            mutation($fieldId: ID!, $options: [ProjectV2SingleSelectFieldOptionInput!]!) {
              updateProjectV2Field(input: { fieldId: $fieldId, singleSelectOptions: $options }) {
                projectV2Field { ... on ProjectV2SingleSelectField { id } }
              }
            }
            """,
            {"fieldId": field_id, "options": [o.to_input() for o in options]},
        )

    async def get_project_fields(self, project_id: str) -> List[ProjectField]:
        """All fields of a project, with current options of single-select fields."""
        data = await self._call(
            "Get project fields",
            """
            query($projectId: ID!) {
              node(id: $projectId) {
                ... on ProjectV2 {
                  fields(first: 50) {
                    nodes {
                      ... on ProjectV2Field { id name dataType }
                      ... on ProjectV2SingleSelectField { id name dataType options { id name } }
                    }
                  }
                }
              }
            }
            """,
            {"projectId": project_id},
        )
        fields: List[ProjectField] = []
        for node in data["node"]["fields"]["nodes"]:
            if not node or not node.get("id"):
                continue
            options = None
            if node.get("options") is not None:
                options = {opt["name"]: opt["id"] for opt in node["options"]}
            fields.append(
                ProjectField(
                    id=node["id"],
                    name=node["name"],
                    data_type=node.get("dataType", ""),
                    options=options,
                )
            )
        return fields

    # -------------------------------------------------------------------------
    # Issues and items
    # -------------------------------------------------------------------------

    async def create_issue(
        self,
        repository_id: str,
        title: str,
        body: str,
        label_ids: Optional[List[str]] = None,
        project_ids: Optional[List[str]] = None,
        parent_issue_id: Optional[str] = None,
    ) -> CreatedIssue:
        """Create an issue, optionally labelled, on projects and under a parent."""
        # Build the input dynamically to avoid sending nulls
        params = ["$repositoryId: ID!", "$title: String!", "$body: String!"]
        inputs = ["repositoryId: $repositoryId", "title: $title", "body: $body"]
        variables: Dict[str, Any] = {
            "repositoryId": repository_id,
            "title": title,
            "body": body,
        }
        if label_ids:
            params.append("$labelIds: [ID!]")
            inputs.append("labelIds: $labelIds")
            variables["labelIds"] = label_ids
        if project_ids:
            params.append("$projectIds: [ID!]")
            inputs.append("projectV2Ids: $projectIds")
            variables["projectIds"] = project_ids
        if parent_issue_id:
            params.append("$parentIssueId: ID!")
            inputs.append("parentIssueId: $parentIssueId")
            variables["parentIssueId"] = parent_issue_id

        mutation = f"""
            mutation({", ".join(params)}) {{
              createIssue(input: {{ {", ".join(inputs)} }}) {{
                issue {{ id number url title }}
              }}
            }}
        """
        data = await self._call("Create issue", mutation, variables)
        issue = data["createIssue"]["issue"]
        return CreatedIssue(
            id=issue["id"], number=issue["number"], url=issue["url"], title=issue["title"]
        )

    async def update_issue(self, issue_id: str, title: str, body: str) -> None:
        await self._call(
            "Update issue",
            """
            mutation($issueId: ID!, $title: String!, $body: String!) {
              updateIssue(input: { id: $issueId, title: $title, body: $body }) {
                issue { id }
              }
            }
            """,
            {"issueId": issue_id, "title": title, "body": body},
        )

    async def close_issue(self, issue_id: str) -> None:
        await self._call(
            "Close issue",
            """
            mutation($issueId: ID!, $stateReason: IssueClosedStateReason!) {
              closeIssue(input: { issueId: $issueId, stateReason: $stateReason }) {
                issue { id }
              }
            }
            """,
            {"issueId": issue_id, "stateReason": "COMPLETED"},
        )

    async def add_item_to_project(self, project_id: str, content_id: str) -> str:
        """Add an issue to a project, returns the project item ID.

        Adding an issue that is already on the project returns its existing
        item.
        """
        data = await self._call(
            "Add item to project",
            """
            mutation($projectId: ID!, $contentId: ID!) {
              addProjectV2ItemById(input: { projectId: $projectId, contentId: $contentId }) {
                item { id }
              }
            }
            """,
            {"projectId": project_id, "contentId": content_id},
        )
        item_id: str = data["addProjectV2ItemById"]["item"]["id"]
        return item_id

    async def update_text_field(
        self, project_id: str, item_id: str, field_id: str, value: str
    ) -> None:
        await self._call(
            "Update text field",
            """
            mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $value: String!) {
              updateProjectV2ItemFieldValue(input: {
                projectId: $projectId, itemId: $itemId, fieldId: $fieldId,
                value: { text: $value }
              }) {
                projectV2Item { id }
              }
            }
            """,
            {"projectId": project_id, "itemId": item_id, "fieldId": field_id, "value": value},
        )

    async def update_single_select_field(
        self, project_id: str, item_id: str, field_id: str, option_id: str
    ) -> None:
        await self._call(
            "Update single select field",
            """
            mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $optionId: String!) {
              updateProjectV2ItemFieldValue(input: {
                projectId: $projectId, itemId: $itemId, fieldId: $fieldId,
                value: { singleSelectOptionId: $optionId }
              }) {
                projectV2Item { id }
              }
            }
            """,
            {
                "projectId": project_id,
                "itemId": item_id,
                "fieldId": field_id,
                "optionId": option_id,
            },
        )

    # -------------------------------------------------------------------------
    # Labels
    # -------------------------------------------------------------------------

    async def create_label(self, repository_id: str, name: str, color: str) -> str:
        data = await self._call(
            f'Create label "{name}"',
            """
            mutation($repositoryId: ID!, $name: String!, $color: String!) {
              createLabel(input: { repositoryId: $repositoryId, name: $name, color: $color }) {
                label { id }
              }
            }
            """,
            {"repositoryId": repository_id, "name": name, "color": color},
        )
        label_id: str = data["createLabel"]["label"]["id"]
        return label_id

    async def get_repo_labels(self, owner: str, name: str, prefix: str = "") -> List[LabelInfo]:
        data = await self._call(
            "Get repo labels",
            """
            query($owner: String!, $name: String!) {
              repository(owner: $owner, name: $name) {
                labels(first: 100) { nodes { id name } }
              }
            }
            """,
            {"owner": owner, "name": name},
        )
        return [
            LabelInfo(id=node["id"], name=node["name"])
            for node in data["repository"]["labels"]["nodes"]
            if node["name"].startswith(prefix)
        ]

    async def add_labels_to_issue(self, issue_id: str, label_ids: List[str]) -> None:
        if not label_ids:
            return
        await self._call(
            "Add labels to issue",
            """
            mutation($labelableId: ID!, $labelIds: [ID!]!) {
              addLabelsToLabelable(input: { labelableId: $labelableId, labelIds: $labelIds }) {
                labelable { __typename }
              }
            }
            """,
            {"labelableId": issue_id, "labelIds": label_ids},
        )

