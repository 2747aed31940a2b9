"""Tests for the teamsync CLI."""

import json
import logging
import os

import pytest
from click.testing import CliRunner

import teamsync.cli as cli_module
import teamsync.init as init_module
from teamsync.cli import cli, tasks_fingerprint
from teamsync.errors import RepositoryNotDetected
from teamsync.state import load_state


@pytest.fixture
def runner(config, fake_client, monkeypatch):
    """CliRunner wired to the temp config and the fake GitHub client."""
    monkeypatch.setenv("TEAMSYNC_CLAUDE_DIR", str(config.claude_dir))
    monkeypatch.setenv("TEAMSYNC_STATE_DIR", str(config.state_dir))
    monkeypatch.setenv("TEAMSYNC_MAX_RETRIES", "0")
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.setattr(cli_module, "make_client", lambda config: fake_client)
    yield CliRunner()
    # Handlers point at the runner's closed streams
    logging.getLogger("teamsync").handlers.clear()


class TestSync:
    def test_sync_team(self, runner, initialized, write_task, fake_client):
        write_task("alpha", "1", "First")

        result = runner.invoke(cli, ["sync", "--team", "alpha"])

        assert result.exit_code == 0, result.output
        assert "Created" in result.output
        assert len(fake_client.calls_to("create_issue")) == 1

    def test_sync_all_skips_uninitialized(self, runner, initialized, write_team, write_task):
        write_team("beta")
        write_task("alpha", "1", "First")

        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 0, result.output
        assert "'beta' is not initialized" in result.output

    def test_sync_uninitialized_team_fails(self, runner, write_team):
        write_team("beta")

        result = runner.invoke(cli, ["sync", "--team", "beta"])

        assert result.exit_code == 1
        assert "not initialized" in result.output

    def test_sync_errors_exit_nonzero(self, runner, initialized, write_task, fake_client):
        write_task("alpha", "1", "First")
        fake_client.fail_on("create_issue")

        result = runner.invoke(cli, ["sync", "--team", "alpha"])

        assert result.exit_code == 1
        assert "create_issue failed" in result.output

    def test_dry_run(self, runner, initialized, write_task, fake_client, config):
        write_task("alpha", "1", "First")

        result = runner.invoke(cli, ["sync", "--team", "alpha", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert fake_client.calls == []
        assert load_state(config, "alpha").items == []

    def test_quiet_prints_nothing_on_success(self, runner, initialized, write_task):
        write_task("alpha", "1", "First")

        result = runner.invoke(cli, ["sync", "--team", "alpha", "--quiet"])

        assert result.exit_code == 0
        assert result.output == ""


class TestInit:
    def test_init(self, runner, config, fake_client, monkeypatch):
        async def authed():
            return True

        monkeypatch.setattr(cli_module, "check_gh_auth", authed)

        result = runner.invoke(cli, ["init", "--repo", "octo/repo", "--team", "alpha"])

        assert result.exit_code == 0, result.output
        assert "Project created" in result.output
        assert load_state(config, "alpha") is not None

    def test_init_rejects_bad_repo(self, runner):
        result = runner.invoke(cli, ["init", "--repo", "nope", "--team", "alpha"])
        assert result.exit_code == 1
        assert "Invalid repository" in result.output

    def test_init_requires_auth(self, runner, monkeypatch):
        async def not_authed():
            return False

        monkeypatch.setattr(cli_module, "check_gh_auth", not_authed)

        result = runner.invoke(cli, ["init", "--repo", "octo/repo", "--team", "alpha"])
        assert result.exit_code == 1


class TestStatusAndClose:
    def test_status_empty(self, runner):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "No sync state" in result.output

    def test_status_lists_teams(self, runner, initialized):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "alpha" in result.output

    def test_close_declined(self, runner, initialized, config, fake_client):
        result = runner.invoke(cli, ["close", "--team", "alpha"], input="n\n")

        assert result.exit_code == 0
        assert "Skipped" in result.output
        assert load_state(config, "alpha") is not None
        assert not fake_client.project_closed

    def test_close_forced(self, runner, initialized, write_task, config, fake_client):
        write_task("alpha", "1", "First")
        runner.invoke(cli, ["sync", "--team", "alpha"])

        result = runner.invoke(cli, ["close", "--team", "alpha", "--force"])

        assert result.exit_code == 0, result.output
        assert "Closed 1 issue(s)" in result.output
        assert load_state(config, "alpha") is None

    def test_close_unknown_team(self, runner):
        result = runner.invoke(cli, ["close", "--team", "ghost", "--force"])
        assert result.exit_code == 1


class TestAutoInit:
    @pytest.fixture
    def authed(self, monkeypatch):
        async def yes():
            return True

        monkeypatch.setattr(cli_module, "check_gh_auth", yes)

    def test_sync_init_initializes_new_team(
        self, runner, authed, write_team, write_task, config, fake_client, monkeypatch
    ):
        async def detected():
            return ("octo", "repo")

        monkeypatch.setattr(init_module, "detect_repository", detected)
        write_team("alpha")
        write_task("alpha", "1", "First")

        result = runner.invoke(cli, ["sync", "--init"])

        assert result.exit_code == 0, result.output
        assert "Initialized team 'alpha'" in result.output
        assert load_state(config, "alpha").repository.owner == "octo"
        assert len(fake_client.calls_to("create_issue")) == 1

    def test_sync_init_without_remote_fails(self, runner, authed, write_team, monkeypatch):
        async def undetectable():
            raise RepositoryNotDetected("no 'origin' remote")

        monkeypatch.setattr(init_module, "detect_repository", undetectable)
        write_team("alpha")

        result = runner.invoke(cli, ["sync", "--init"])

        assert result.exit_code == 1
        assert "Could not detect the repository" in result.output

    def test_no_command_syncs_active_teams(self, runner, initialized, write_task, fake_client):
        write_task("alpha", "1", "First")

        result = runner.invoke(cli, [])

        assert result.exit_code == 0, result.output
        assert "Created" in result.output
        assert len(fake_client.calls_to("create_issue")) == 1


class TestReset:
    def test_reset_declined(self, runner, initialized, config, fake_client):
        result = runner.invoke(cli, ["reset", "--team", "alpha"], input="n\n")

        assert result.exit_code == 0
        assert "Aborted" in result.output
        assert load_state(config, "alpha") is not None
        assert not fake_client.project_deleted

    def test_reset_forced(self, runner, initialized, write_task, config, fake_client):
        write_task("alpha", "1", "First")
        runner.invoke(cli, ["sync", "--team", "alpha"])

        result = runner.invoke(cli, ["reset", "--team", "alpha", "--force"])

        assert result.exit_code == 0, result.output
        assert "deleted the project" in result.output
        assert fake_client.project_deleted
        assert load_state(config, "alpha") is None

    def test_reset_unknown_team(self, runner):
        result = runner.invoke(cli, ["reset", "--team", "ghost", "--force"])
        assert result.exit_code == 1


class TestWatch:
    def test_once_runs_single_sync(self, runner, initialized, write_task, fake_client):
        write_task("alpha", "1", "First")

        result = runner.invoke(cli, ["watch", "--once"])

        assert result.exit_code == 0, result.output
        assert "Sync complete: 1 created" in result.output

    def test_fingerprint_changes_on_write(self, config, write_task):
        assert tasks_fingerprint(config.tasks_dir) == frozenset()
        path = write_task("alpha", "1", "First")
        first = tasks_fingerprint(config.tasks_dir)
        assert len(first) == 1

        path.write_text(json.dumps({"id": "1", "subject": "Changed"}))
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))
        assert tasks_fingerprint(config.tasks_dir) != first

    def test_fingerprint_single_team(self, config, write_task):
        write_task("alpha", "1", "First")
        write_task("beta", "1", "Other")

        alpha = tasks_fingerprint(config.tasks_dir, "alpha")
        assert {name for name, _ in alpha} == {"alpha/1.json"}

        write_task("beta", "2", "Other again")
        assert tasks_fingerprint(config.tasks_dir, "alpha") == alpha

        write_task("alpha", "2", "Second")
        assert len(tasks_fingerprint(config.tasks_dir, "alpha")) == 2

    def test_fingerprint_unknown_team(self, config, write_task):
        write_task("alpha", "1", "First")
        assert tasks_fingerprint(config.tasks_dir, "ghost") == frozenset()


class TestHooks:
    def test_install_and_uninstall_local(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        result = runner.invoke(cli, ["hooks", "install", "--local"])
        assert result.exit_code == 0
        settings = json.loads((tmp_path / ".claude" / "settings.json").read_text())
        assert settings["hooks"]["PostToolUse"][0]["command"] == "teamsync sync --quiet"

        result = runner.invoke(cli, ["hooks", "install", "--local"])
        assert "already installed" in result.output

        result = runner.invoke(cli, ["hooks", "uninstall", "--local"])
        assert result.exit_code == 0
        assert json.loads((tmp_path / ".claude" / "settings.json").read_text()) == {}
