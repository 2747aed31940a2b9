"""teamsync command line interface.

Commands:
- (no command): initialize teams from the git remote as needed, then sync
- sync: push task changes to GitHub (one team or all)
- init: create the GitHub project for a team
- status: show sync state of all teams
- close: close a team's issues and project
- reset: close a team's issues and delete its project
- watch: sync whenever task files change
- hooks: install/uninstall the automatic sync hook
"""

import asyncio
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from teamsync.config import SyncConfig
from teamsync.engine import reconcile, reconcile_many
from teamsync.errors import TeamSyncError
from teamsync.github import GitHubProjectClient, check_gh_auth
from teamsync.hooks import get_settings_path, install_hook, uninstall_hook
from teamsync.init import initialize_collection, initialize_missing, parse_repo
from teamsync.models import SyncResult
from teamsync.reader import list_collection_names
from teamsync.state import list_synced_collection_names, load_state
from teamsync.teardown import close_collection, reset_collection
from teamsync.utils.logging import configure_logging
from teamsync.utils.retry import RetryConfig

console = Console()

DEFAULT_WATCH_INTERVAL = 2.0
DEFAULT_DEBOUNCE = 1.0


def make_client(config: SyncConfig) -> GitHubProjectClient:
    return GitHubProjectClient(
        retry=RetryConfig(max_retries=config.max_retries, base_delay=config.retry_base_delay)
    )


def fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(1)


def syncable_collections(config: SyncConfig) -> List[str]:
    """Active teams that have been initialized."""
    synced = set(list_synced_collection_names(config))
    names = []
    for name in list_collection_names(config):
        if name in synced:
            names.append(name)
        else:
            console.print(
                f"[yellow]Team '{name}' is not initialized, skipping "
                f"(run `teamsync init --team {name} --repo <owner/repo>`)[/]"
            )
    return names


def print_result(result: SyncResult) -> None:
    table = Table(title="Sync Results", show_header=False, title_style="bold")
    table.add_column("Category", style="bold")
    table.add_column("Count", justify="right")
    table.add_row("Created", str(result.created))
    table.add_row("Updated", str(result.updated))
    table.add_row("Archived", str(result.archived))
    table.add_row("Skipped", str(result.skipped))
    console.print(table)

    if result.errors:
        console.print(f"[red]Errors: {len(result.errors)}[/]")
        for error in result.errors:
            console.print(f"  [red]{error.task_id}[/]: {error.error}")


@click.group(invoke_without_command=True)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, verbose):
    """Sync agent team tasks to GitHub Projects.

    Without a command, every active team is synced, initializing teams
    without sync state against the git origin remote first.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(verbose=verbose)
    if ctx.invoked_subcommand is None:
        ctx.invoke(sync_, auto_init=True)


@cli.command("sync")
@click.option("--team", help="Only sync this team (default: all active teams)")
@click.option("--dry-run", is_flag=True, help="Show what would change without changing it")
@click.option(
    "--init",
    "auto_init",
    is_flag=True,
    help="Initialize teams without sync state from the git origin remote first",
)
@click.option("--quiet", "-q", is_flag=True, help="Only print errors")
@click.pass_context
def sync_(ctx, team: Optional[str], dry_run: bool, quiet: bool, auto_init: bool):
    """Sync tasks to their GitHub project."""
    if quiet:
        configure_logging(verbose=ctx.obj.get("verbose", False), quiet=True)

    config = SyncConfig()
    client = make_client(config)

    if dry_run and not quiet:
        console.print("[yellow]Dry run mode - no changes will be made.[/]")

    if auto_init and not dry_run:
        names = [team] if team else list_collection_names(config)
        needs_init = [name for name in names if load_state(config, name) is None]
        if needs_init and not asyncio.run(check_gh_auth()):
            fail("gh CLI is not authenticated. Run `gh auth login` (with the project scope).")
            return
        try:
            initialized = asyncio.run(initialize_missing(client, needs_init, config=config))
        except TeamSyncError as e:
            fail(str(e))
            return
        if not quiet:
            for name in initialized:
                console.print(f"[green]✓[/] Initialized team '{name}'")

    if team:
        try:
            result = asyncio.run(
                reconcile(team, dry_run=dry_run, quiet=quiet, config=config, client=client)
            )
        except TeamSyncError as e:
            fail(str(e))
            return
    else:
        teams = syncable_collections(config)
        if not teams:
            if not quiet:
                console.print("[yellow]No initialized teams found. Nothing to sync.[/]")
            return
        results = asyncio.run(
            reconcile_many(teams, dry_run=dry_run, quiet=quiet, config=config, client=client)
        )
        result = SyncResult()
        for team_result in results.values():
            result.merge(team_result)

    if not quiet:
        print_result(result)
    elif result.errors:
        for error in result.errors:
            console.print(f"[red]{error.task_id}[/]: {error.error}", highlight=False)

    if not result.ok:
        sys.exit(1)


@cli.command("init")
@click.option("--repo", required=True, help="Repository as owner/repo")
@click.option("--team", required=True, help="Team name")
@click.option("--owner", help="Project owner (default: repository owner)")
@click.option("--title", help='Project title (default: "<team> tasks")')
@click.option("--force", is_flag=True, help="Overwrite existing sync state")
def init_(repo: str, team: str, owner: Optional[str], title: Optional[str], force: bool):
    """Create a GitHub project for a team."""
    try:
        repo_owner, repo_name = parse_repo(repo)
    except ValueError as e:
        fail(str(e))
        return

    if not asyncio.run(check_gh_auth()):
        fail("gh CLI is not authenticated. Run `gh auth login` (with the project scope).")
        return

    config = SyncConfig()
    try:
        state = asyncio.run(
            initialize_collection(
                make_client(config),
                team,
                repo_owner,
                repo_name,
                owner=owner,
                title=title,
                config=config,
                force=force,
            )
        )
    except TeamSyncError as e:
        fail(str(e))
        return

    console.print(f"[green]✓[/] Project created: [bold]{state.project.title}[/]")
    console.print(f"  URL: {state.project.url}")
    console.print(f"  Repository: {repo_owner}/{repo_name} (linked)")
    console.print(f"\n[dim]Next: run `teamsync sync --team {team}`[/]")


@cli.command("status")
def status():
    """Show sync state of all initialized teams."""
    config = SyncConfig()
    names = list_synced_collection_names(config)
    if not names:
        console.print("[yellow]No sync state found. Run `teamsync init` first.[/]")
        return

    table = Table(title="[bold]Synced Teams[/]")
    table.add_column("Team", style="cyan", no_wrap=True)
    table.add_column("Project", style="white")
    table.add_column("Owner", style="blue")
    table.add_column("Items", justify="right", style="magenta")
    table.add_column("Last Sync", style="green")
    table.add_column("URL", style="dim")

    for name in names:
        state = load_state(config, name)
        if state is None:
            table.add_row(name, "[red]unreadable state[/]", "", "", "", "")
            continue
        table.add_row(
            name,
            state.project.title,
            state.project.owner,
            str(len(state.items)),
            state.last_sync_at,
            state.project.url,
        )

    console.print(table)


@cli.command("close")
@click.option("--team", required=True, help="Team to close")
@click.option("--force", is_flag=True, help="Don't ask for confirmation")
def close(team: str, force: bool):
    """Close all tracked issues and the project of a team.

    Issues and project stay on GitHub; the local sync state is removed.
    """
    config = SyncConfig()
    state = load_state(config, team)
    if state is None:
        fail(f"No sync state for team '{team}'. Nothing to close.")
        return

    console.print(f"Project: [bold]{state.project.title}[/] ({state.project.url})")
    console.print(f"Tracked issues: {len(state.items)}")

    if not force and not click.confirm(
        f'Close all tracked issues and the GitHub project for team "{team}"?'
    ):
        console.print("Skipped.")
        return

    try:
        closed = asyncio.run(close_collection(make_client(config), team, config=config))
    except TeamSyncError as e:
        fail(str(e))
        return

    console.print(f"[green]✓[/] Closed {closed} issue(s) and the project for team '{team}'.")


@cli.command("reset")
@click.option("--team", required=True, help="Team to reset")
@click.option("--force", is_flag=True, help="Don't ask for confirmation")
def reset(team: str, force: bool):
    """Close all tracked issues of a team and delete its project.

    The local sync state is removed, so the team can be initialized again.
    """
    config = SyncConfig()
    state = load_state(config, team)
    if state is None:
        fail(f"No sync state for team '{team}'. Nothing to reset.")
        return

    console.print(f"Project: [bold]{state.project.title}[/] ({state.project.url})")
    console.print(f"Tracked issues: {len(state.items)}")

    if not force and not click.confirm(
        "This will close all tracked issues, delete the GitHub project, "
        "and remove the sync state. Continue?"
    ):
        console.print("Aborted.")
        return

    try:
        closed = asyncio.run(reset_collection(make_client(config), team, config=config))
    except TeamSyncError as e:
        fail(str(e))
        return

    console.print(
        f"[green]✓[/] Closed {closed} issue(s) and deleted the project for team '{team}'."
    )


def tasks_fingerprint(tasks_dir: Path, team: Optional[str] = None) -> frozenset:
    """Names and modification times of the task files under tasks_dir.

    Task files live in tasks_dir/<team>/; with team given, only that team's
    directory is scanned.
    """
    if not tasks_dir.is_dir():
        return frozenset()
    paths = (tasks_dir / team).glob("*.json") if team else tasks_dir.glob("*/*.json")
    entries = set()
    for path in paths:
        try:
            entries.add((str(path.relative_to(tasks_dir)), path.stat().st_mtime_ns))
        except OSError:
            # Deleted between glob and stat
            continue
    return frozenset(entries)


@cli.command("watch")
@click.option("--team", help="Only sync this team (default: all active teams)")
@click.option(
    "--interval",
    "-i",
    type=float,
    default=DEFAULT_WATCH_INTERVAL,
    show_default=True,
    help="Seconds between checks for changes",
)
@click.option(
    "--debounce",
    type=float,
    default=DEFAULT_DEBOUNCE,
    show_default=True,
    help="Seconds the task files must stay unchanged before syncing",
)
@click.option("--once", is_flag=True, help="Sync once and exit")
def watch(team: Optional[str], interval: float, debounce: float, once: bool):
    """Sync whenever task files change.

    Polls the tasks directory; after a change has settled for --debounce
    seconds, every team (or --team) is synced.

    Examples:
        # Watch all teams
        teamsync watch

        # Single pass (useful for cron/testing)
        teamsync watch --once
    """
    config = SyncConfig()
    client = make_client(config)
    tasks_dir = config.tasks_dir
    running = True

    def signal_handler(sig, frame):
        nonlocal running
        console.print("\n[yellow]Received signal, stopping...[/]")
        running = False

    def run_sync() -> None:
        teams = [team] if team else syncable_collections(config)
        if not teams:
            console.print("[dim]No initialized teams to sync[/]")
            return
        results = asyncio.run(reconcile_many(teams, config=config, client=client))
        result = SyncResult()
        for team_result in results.values():
            result.merge(team_result)
        timestamp = time.strftime("%H:%M:%S")
        console.print(
            f"[cyan][{timestamp}][/] Sync complete: {result.created} created, "
            f"{result.updated} updated, {result.skipped} skipped"
        )
        if result.errors:
            console.print(f"[red]{len(result.errors)} error(s) during sync[/]")

    def sleep(seconds: float) -> None:
        # Sleep in small increments to handle signals promptly
        deadline = time.monotonic() + seconds
        while running and time.monotonic() < deadline:
            time.sleep(min(0.2, max(0.0, deadline - time.monotonic())))

    def watch_loop() -> None:
        last = tasks_fingerprint(tasks_dir, team)
        while running:
            sleep(interval)
            if not running:
                return
            current = tasks_fingerprint(tasks_dir, team)
            if current == last:
                continue

            # Wait for writes to settle
            while running:
                sleep(debounce)
                settled = tasks_fingerprint(tasks_dir, team)
                if settled == current:
                    break
                current = settled
            if not running:
                return

            console.print("[dim]Changes detected, syncing...[/]")
            run_sync()
            last = tasks_fingerprint(tasks_dir, team)

    watched = config.get_team_tasks_dir(team) if team else tasks_dir
    console.print("[bold]teamsync watch[/] - syncing on task changes")
    console.print(f"  Interval: {interval}s | Debounce: {debounce}s | Tasks: {watched}")

    run_sync()
    if once:
        return

    previous_handlers = {
        sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        watch_loop()
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    console.print("[dim]Watch stopped[/]")


@cli.group("hooks")
def hooks():
    """Manage the automatic sync hook."""


@hooks.command("install")
@click.option("--local", is_flag=True, help="Install in ./.claude/settings.json")
def hooks_install(local: bool):
    """Run `teamsync sync` after every task create/update."""
    path = get_settings_path(local)
    if install_hook(path):
        console.print(f"[green]✓[/] Hook installed in {path}")
    else:
        console.print(f"[yellow]Hook is already installed in {path}[/]")


@hooks.command("uninstall")
@click.option("--local", is_flag=True, help="Remove from ./.claude/settings.json")
def hooks_uninstall(local: bool):
    """Remove the automatic sync hook."""
    path = get_settings_path(local)
    if uninstall_hook(path):
        console.print(f"[green]✓[/] Hook removed from {path}")
    else:
        console.print(f"[yellow]No teamsync hook found in {path}[/]")


if __name__ == "__main__":
    cli()
