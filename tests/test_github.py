"""Tests for the GitHub client, with the GraphQL runner replaced."""

import pytest

from teamsync.errors import RemoteError
from teamsync.github import GitHubProjectClient, SelectOption
from teamsync.utils.retry import RetryConfig


class RecordingRunner:
    """GraphQL runner returning canned responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def __call__(self, query, variables=None):
        self.requests.append((query, variables))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(runner, retries=0):
    return GitHubProjectClient(retry=RetryConfig(max_retries=retries, base_delay=0), runner=runner)


@pytest.mark.asyncio
async def test_create_issue_omits_unset_inputs():
    runner = RecordingRunner(
        {"createIssue": {"issue": {"id": "I_1", "number": 5, "url": "u", "title": "t"}}}
    )
    client = make_client(runner)

    issue = await client.create_issue("R_1", "t", "body")

    assert issue.number == 5
    query, variables = runner.requests[0]
    assert "parentIssueId" not in query
    assert "labelIds" not in query
    assert variables == {"repositoryId": "R_1", "title": "t", "body": "body"}


@pytest.mark.asyncio
async def test_create_issue_with_parent_and_labels():
    runner = RecordingRunner(
        {"createIssue": {"issue": {"id": "I_2", "number": 6, "url": "u", "title": "t"}}}
    )
    client = make_client(runner)

    await client.create_issue(
        "R_1", "t", "b", label_ids=["LA_1"], project_ids=["PVT_1"], parent_issue_id="I_1"
    )

    query, variables = runner.requests[0]
    assert "parentIssueId: $parentIssueId" in query
    assert "projectV2Ids: $projectIds" in query
    assert variables["labelIds"] == ["LA_1"]
    assert variables["parentIssueId"] == "I_1"


@pytest.mark.asyncio
async def test_get_project_fields_parses_options():
    runner = RecordingRunner(
        {
            "node": {
                "fields": {
                    "nodes": [
                        {"id": "F_1", "name": "Title", "dataType": "TITLE"},
                        {},
                        {
                            "id": "F_2",
                            "name": "Status",
                            "dataType": "SINGLE_SELECT",
                            "options": [{"id": "S_1", "name": "Todo"}],
                        },
                    ]
                }
            }
        }
    )
    fields = await make_client(runner).get_project_fields("PVT_1")

    assert [f.name for f in fields] == ["Title", "Status"]
    assert fields[0].options is None
    assert fields[1].options == {"Todo": "S_1"}


@pytest.mark.asyncio
async def test_update_field_options_sends_full_list():
    runner = RecordingRunner({"updateProjectV2Field": {"projectV2Field": {"id": "F_1"}}})
    await make_client(runner).update_field_options(
        "F_1", [SelectOption(name="alice", color="BLUE")]
    )
    _, variables = runner.requests[0]
    assert variables["options"] == [{"name": "alice", "color": "BLUE", "description": ""}]


@pytest.mark.asyncio
async def test_calls_are_retried():
    runner = RecordingRunner(
        RemoteError("502 Bad Gateway"),
        {"repository": {"id": "R_1"}},
    )
    assert await make_client(runner, retries=3).get_repo_id("octo", "repo") == "R_1"
    assert len(runner.requests) == 2


@pytest.mark.asyncio
async def test_last_error_is_raised():
    runner = RecordingRunner(RemoteError("first"), RemoteError("second"))
    with pytest.raises(RemoteError, match="second"):
        await make_client(runner, retries=1).close_issue("I_1")


@pytest.mark.asyncio
async def test_owner_falls_back_to_organization():
    runner = RecordingRunner(
        RemoteError("Could not resolve to a User"),
        {"organization": {"id": "O_1"}},
    )
    assert await make_client(runner).get_owner_node_id("my-org") == "O_1"


@pytest.mark.asyncio
async def test_add_labels_skips_empty_list():
    runner = RecordingRunner()
    await make_client(runner).add_labels_to_issue("I_1", [])
    assert runner.requests == []
