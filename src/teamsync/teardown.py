"""Close or reset a team: close its issues, retire its project, forget its state.

close keeps the project on GitHub (marked closed) for reference; reset
deletes it. Issues are closed in both cases, never deleted. This is the only
place mappings are ever removed.
"""

import logging
from typing import Optional

from .config import SyncConfig
from .errors import NotInitialized, RemoteError
from .github import GitHubProjectClient
from .locks import ExclusiveLock
from .state import delete_state, load_state
from .utils.concurrency import bounded_gather

logger = logging.getLogger(__name__)


async def _teardown(
    client: GitHubProjectClient,
    collection: str,
    config: SyncConfig,
    delete_project: bool,
) -> int:
    async with ExclusiveLock(config.get_lock_path(collection), collection):
        state = load_state(config, collection)
        if state is None:
            raise NotInitialized(collection)

        items = [item for item in state.items if item.remote_issue_id]
        results = await bounded_gather(
            items,
            lambda item: client.close_issue(item.remote_issue_id),
            config.concurrency,
        )
        closed = 0
        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to close issue #%d: %s", item.remote_issue_number, result)
            else:
                closed += 1
        if closed:
            logger.info("Closed %d issue(s)", closed)

        try:
            if delete_project:
                await client.delete_project(state.project.id)
                logger.info("Deleted project: %s", state.project.title)
            else:
                await client.close_project(state.project.id)
                logger.info("Closed project: %s", state.project.title)
        except RemoteError as e:
            action = "delete" if delete_project else "close"
            logger.warning("Failed to %s project: %s", action, e)

        delete_state(config, collection)

    return closed


async def close_collection(
    client: GitHubProjectClient,
    collection: str,
    *,
    config: Optional[SyncConfig] = None,
) -> int:
    """Close every tracked issue and the project of a team.

    Failures to close single issues or the project are logged and don't stop
    the teardown; the state file is removed in any case.

    Returns:
        Number of issues closed

    Raises:
        NotInitialized: If the team has no sync state
    """
    closed = await _teardown(client, collection, config or SyncConfig(), delete_project=False)
    logger.info('Team "%s" closed. Issues and project are preserved on GitHub.', collection)
    return closed


async def reset_collection(
    client: GitHubProjectClient,
    collection: str,
    *,
    config: Optional[SyncConfig] = None,
) -> int:
    """Close every tracked issue and delete the project of a team.

    Same failure handling as close_collection. Afterwards the team can be
    initialized again from scratch.

    Returns:
        Number of issues closed

    Raises:
        NotInitialized: If the team has no sync state
    """
    closed = await _teardown(client, collection, config or SyncConfig(), delete_project=True)
    logger.info('Team "%s" reset.', collection)
    return closed
