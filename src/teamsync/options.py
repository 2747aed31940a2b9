"""Keep cached single-select option IDs in line with GitHub.

GitHub reassigns the ID of every option of a single-select field whenever
the option list is replaced, not only the IDs of new options. The cached
status_options / owner_options are therefore re-read at the start of each
sync pass, and again right after teamsync itself replaces the owner
options. Items whose owner was set with an old ID get their owner re-applied.
"""

import logging
from typing import Iterable, List

from .config import OWNER_COLORS, OWNER_FIELD, STATUS_FIELD
from .github import GitHubProjectClient, SelectOption
from .models import ReconciliationState, Task
from .state import find_mapping
from .utils.concurrency import DEFAULT_CONCURRENCY, bounded_gather

logger = logging.getLogger(__name__)


async def refresh_select_options(client: GitHubProjectClient, state: ReconciliationState) -> None:
    """Overwrite cached option IDs with the project's current ones."""
    fields = await client.get_project_fields(state.project.id)
    for field in fields:
        # Pick up fields added on GitHub after init
        state.fields.setdefault(field.name, field.id)
        if field.options is None:
            continue
        if field.name == OWNER_FIELD:
            state.owner_options = dict(field.options)
        elif field.name == STATUS_FIELD:
            state.status_options = dict(field.options)


def collect_owner_names(
    state: ReconciliationState, tasks: Iterable[Task], collection: str
) -> set[str]:
    """Owner names that need an option on the project.

    Includes each task's owner and, for tasks that no longer declare an
    owner, the last owner recorded in their mapping.
    """
    names: set[str] = set()
    for task in tasks:
        if task.owner:
            names.add(task.owner)
            continue
        mapping = find_mapping(state, task.id, collection)
        if mapping and mapping.last_owner:
            names.add(mapping.last_owner)
    return names


def build_owner_options(existing: List[str], new: List[str]) -> List[SelectOption]:
    """Option list keeping existing names in place and appending new ones."""
    names = list(existing) + [n for n in new if n not in existing]
    return [
        SelectOption(name=name, color=OWNER_COLORS[i % len(OWNER_COLORS)])
        for i, name in enumerate(names)
    ]


async def ensure_owner_options(
    client: GitHubProjectClient,
    state: ReconciliationState,
    tasks: Iterable[Task],
    collection: str,
) -> bool:
    """Register owner names missing from the owner field's options.

    Replacing the options invalidates every cached owner option ID, so the
    cache is refreshed immediately afterwards.

    Returns:
        True if options were added
    """
    field_id = state.fields.get(OWNER_FIELD)
    if not field_id:
        return False

    wanted = collect_owner_names(state, tasks, collection)
    new_owners = sorted(name for name in wanted if name not in state.owner_options)
    if not new_owners:
        return False

    logger.info("Adding owner options: %s", ", ".join(new_owners))
    options = build_owner_options(list(state.owner_options), new_owners)
    await client.update_field_options(field_id, options)
    await refresh_select_options(client, state)
    return True


async def set_owner_field(
    client: GitHubProjectClient, state: ReconciliationState, item_id: str, owner: str
) -> bool:
    """Set the owner field of one project item. Returns False if no option exists."""
    field_id = state.fields.get(OWNER_FIELD)
    option_id = state.owner_options.get(owner)
    if not field_id or not option_id:
        logger.warning('Owner option "%s" not found, skipping (will be set on next sync)', owner)
        return False
    await client.update_single_select_field(state.project.id, item_id, field_id, option_id)
    return True


async def reapply_owner_fields(
    client: GitHubProjectClient,
    state: ReconciliationState,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> int:
    """Re-set the owner field of every mapped item with a known last owner.

    Best effort: failures are logged and don't stop the other items.

    Returns:
        Number of items whose owner was re-applied
    """
    items = [item for item in state.items if item.last_owner and item.remote_item_id]
    if not items:
        return 0

    async def apply(item) -> bool:
        return await set_owner_field(client, state, item.remote_item_id, item.last_owner)

    results = await bounded_gather(items, apply, concurrency)
    applied = 0
    for item, result in zip(items, results):
        if isinstance(result, BaseException):
            logger.warning("Could not re-apply owner on task %s: %s", item.task_id, result)
        elif result:
            applied += 1
    return applied
