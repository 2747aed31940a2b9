"""Create a GitHub project for a team and write its initial sync state."""

import asyncio
import logging
import re
from typing import Dict, List, Optional

from .config import CUSTOM_FIELDS, OWNER_FIELD, STATUS_FIELD, UNASSIGNED_OWNER, SyncConfig
from .errors import AlreadyInitialized, RepositoryNotDetected
from .github import GitHubProjectClient, SelectOption
from .locks import ExclusiveLock
from .models import ReconciliationState, RepositoryInfo
from .state import create_initial_state, load_state, save_state

logger = logging.getLogger(__name__)


def parse_repo(repo: str) -> tuple[str, str]:
    """Split "owner/name" into its parts.

    Raises:
        ValueError: If the string is not of the form owner/name
    """
    parts = repo.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Invalid repository '{repo}', expected owner/repo")
    return parts[0], parts[1]


# git@github.com:owner/repo.git, ssh://git@host/owner/repo, https://github.com/owner/repo.git
GIT_REMOTE_PATTERNS = [
    re.compile(r"^[\w.-]+@[^:/]+:(?P<owner>[^/]+)/(?P<name>[^/]+?)(?:\.git)?/?$"),
    re.compile(r"^(?:https?|ssh|git)://[^/]+/(?P<owner>[^/]+)/(?P<name>[^/]+?)(?:\.git)?/?$"),
]


def parse_git_remote_url(url: str) -> tuple[str, str]:
    """Extract (owner, name) from an SSH or HTTPS git remote URL.

    Raises:
        ValueError: If the URL matches neither form
    """
    url = url.strip()
    for pattern in GIT_REMOTE_PATTERNS:
        match = pattern.match(url)
        if match:
            return match.group("owner"), match.group("name")
    raise ValueError(f"Could not parse git remote URL: {url}")


async def detect_repository(remote: str = "origin") -> tuple[str, str]:
    """Repository (owner, name) of the current directory's git remote.

    Raises:
        RepositoryNotDetected: If git or the remote is missing, or its URL
            doesn't look like owner/repo
    """
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            "remote",
            "get-url",
            remote,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise RepositoryNotDetected("git not found") from e
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise RepositoryNotDetected(stderr.decode().strip() or f"no '{remote}' remote")
    try:
        return parse_git_remote_url(stdout.decode())
    except ValueError as e:
        raise RepositoryNotDetected(str(e)) from e


async def initialize_collection(
    client: GitHubProjectClient,
    collection: str,
    repo_owner: str,
    repo_name: str,
    owner: Optional[str] = None,
    title: Optional[str] = None,
    *,
    config: Optional[SyncConfig] = None,
    force: bool = False,
) -> ReconciliationState:
    """Set up a GitHub project for a team.

    Creates the project under `owner` (defaults to the repository owner),
    links it to the repository, creates the custom fields and saves the
    resulting IDs as the team's sync state.

    Args:
        client: GitHub client
        collection: Team name
        repo_owner: Repository owner (user or organization)
        repo_name: Repository name
        owner: Project owner login
        title: Project title (defaults to "<team> tasks")
        config: Settings (defaults from the environment)
        force: Replace existing sync state for the team

    Returns:
        The saved sync state

    Raises:
        AlreadyInitialized: If the team has state and force is not set
        RemoteError: If a GitHub call fails
    """
    config = config or SyncConfig()
    owner = owner or repo_owner
    title = title or f"{collection} tasks"

    async with ExclusiveLock(config.get_lock_path(collection), collection):
        if load_state(config, collection) is not None and not force:
            raise AlreadyInitialized(collection)

        logger.info("Looking up repository %s/%s", repo_owner, repo_name)
        repository_id = await client.get_repo_id(repo_owner, repo_name)
        owner_id = await client.get_owner_node_id(owner)

        logger.info("Creating project: %s", title)
        project = await client.create_project(owner_id, title)
        project.owner = owner

        await client.link_project_to_repo(project.id, repository_id)

        fields: Dict[str, str] = {}
        for name, data_type in CUSTOM_FIELDS:
            logger.info("Creating field: %s (%s)", name, data_type)
            if data_type == "SINGLE_SELECT":
                fields[name] = await client.create_single_select_field(
                    project.id, name, [SelectOption(name=UNASSIGNED_OWNER)]
                )
            else:
                fields[name] = await client.create_text_field(project.id, name)

        # Status is built into every project; read it back with its options
        status_options: Dict[str, str] = {}
        owner_options: Dict[str, str] = {}
        for field in await client.get_project_fields(project.id):
            fields.setdefault(field.name, field.id)
            if field.name == STATUS_FIELD and field.options is not None:
                status_options = dict(field.options)
            elif field.name == OWNER_FIELD and field.options is not None:
                owner_options = dict(field.options)

        if not status_options:
            logger.warning("Project has no Status options, status will not be synced")

        state = create_initial_state(
            project,
            RepositoryInfo(id=repository_id, owner=repo_owner, name=repo_name),
            fields,
            status_options,
            owner_options,
        )
        path = save_state(config, collection, state)

    logger.info("Project created: %s", project.url)
    logger.debug("Sync state saved to %s", path)
    return state


async def initialize_missing(
    client: GitHubProjectClient,
    collections: List[str],
    *,
    config: Optional[SyncConfig] = None,
    repo: Optional[tuple[str, str]] = None,
) -> List[str]:
    """Initialize every team in collections that has no sync state yet.

    All of them get a project linked to repo, detected from the git origin
    remote when not given (only if some team actually needs it).

    Returns:
        Names of the teams initialized now
    """
    config = config or SyncConfig()
    missing = [name for name in collections if load_state(config, name) is None]
    if not missing:
        return []

    if repo is None:
        repo = await detect_repository()
        logger.info("Detected repository: %s/%s", *repo)

    initialized = []
    for name in missing:
        logger.info('No sync state for team "%s", initializing', name)
        try:
            await initialize_collection(client, name, repo[0], repo[1], config=config)
        except AlreadyInitialized:
            # Initialized by a concurrent run in the meantime
            continue
        initialized.append(name)
    return initialized
