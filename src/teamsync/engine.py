"""Core sync algorithm: reconcile a team's tasks with its GitHub project.

One pass, all under the team lock:

1. load the team's sync state (NotInitialized if there is none)
2. read the current tasks
3. refresh cached option IDs, register new owners
4. split tasks into new / changed / unchanged by content hash
5. create issues for new tasks, parents first, level by level
6. update issues of changed tasks
7. save the state
8. return the counts

A failure on one task is recorded in the result and the pass goes on.
Tasks that disappeared locally keep their mapping and their issue stays
open; closing is an explicit `teamsync close`.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from .config import (
    LABEL_COLOR,
    LABEL_PREFIX,
    OWNER_FIELD,
    STATUS_FIELD,
    UNASSIGNED_OWNER,
    SyncConfig,
)
from .deptree import detect_circular_dependencies, group_by_level, parent_task_id
from .errors import NotInitialized, RemoteError, TeamSyncError
from .fields import compute_task_hash, map_body, map_custom_fields, map_status, map_title
from .github import GitHubProjectClient
from .locks import ExclusiveLock
from .models import ItemMapping, ReconciliationState, SyncError, SyncResult, Task, utc_now_iso
from .options import ensure_owner_options, reapply_owner_fields, refresh_select_options
from .reader import list_tasks
from .state import find_mapping, load_state, save_state, upsert_mapping
from .utils.concurrency import bounded_gather
from .utils.retry import RetryConfig

logger = logging.getLogger(__name__)


@dataclass
class TaskDiff:
    """Current tasks split by what a sync pass has to do with them."""

    new: List[Task]
    changed: List[tuple[Task, ItemMapping, str]]  # (task, mapping, new hash)
    unchanged: List[Task]


def diff_tasks(state: ReconciliationState, tasks: List[Task], collection: str) -> TaskDiff:
    """Partition tasks into new (unmapped), changed (hash differs) and unchanged."""
    diff = TaskDiff(new=[], changed=[], unchanged=[])
    for task in tasks:
        mapping = find_mapping(state, task.id, collection)
        if mapping is None:
            diff.new.append(task)
            continue
        task_hash = compute_task_hash(task, collection)
        if task_hash == mapping.last_hash:
            diff.unchanged.append(task)
        else:
            diff.changed.append((task, mapping, task_hash))
    return diff


def dedupe_tasks(tasks: List[Task]) -> List[Task]:
    """Drop repeated task IDs, keeping the first record."""
    seen: set[str] = set()
    result = []
    for task in tasks:
        if task.id in seen:
            logger.warning("Duplicate task ID %s, ignoring later record", task.id)
            continue
        seen.add(task.id)
        result.append(task)
    return result


class Reconciler:
    """State for one sync pass of one team."""

    def __init__(
        self,
        client: GitHubProjectClient,
        state: ReconciliationState,
        collection: str,
        dry_run: bool = False,
        quiet: bool = False,
        concurrency: int = 5,
    ):
        self.client = client
        self.state = state
        self.collection = collection
        self.dry_run = dry_run
        self.quiet = quiet
        self.concurrency = concurrency
        self.result = SyncResult()
        self._label_lock = asyncio.Lock()

    def _say(self, message: str, *args) -> None:
        logger.log(logging.DEBUG if self.quiet else logging.INFO, message, *args)

    def _record_error(self, task: Task, error: BaseException) -> None:
        self.result.errors.append(SyncError(task_id=task.id, error=str(error)))

    # -------------------------------------------------------------------------
    # Remote helpers
    # -------------------------------------------------------------------------

    async def ensure_team_label(self) -> str:
        """ID of the team's label, creating the label if needed."""
        label_name = f"{LABEL_PREFIX}{self.collection}"
        async with self._label_lock:
            if label_name in self.state.labels:
                return self.state.labels[label_name]

            repo = self.state.repository
            try:
                label_id = await self.client.create_label(repo.id, label_name, LABEL_COLOR)
            except RemoteError as e:
                if "already exists" not in str(e):
                    raise
                # Label exists but we don't have the ID, look it up
                labels = await self.client.get_repo_labels(repo.owner, repo.name, label_name)
                found = next((label for label in labels if label.name == label_name), None)
                if found is None:
                    raise
                label_id = found.id

            self.state.labels[label_name] = label_id
            return label_id

    async def _try_team_label(self) -> Optional[str]:
        try:
            return await self.ensure_team_label()
        except RemoteError as e:
            logger.warning('Could not create/find label for team "%s": %s', self.collection, e)
            return None

    async def apply_item_fields(self, item_id: str, task: Task, effective_owner: str = "") -> None:
        """Set custom fields, owner and status on a project item."""
        state = self.state
        project_id = state.project.id
        updates = []

        for field_name, value in map_custom_fields(task, self.collection).items():
            if field_name == OWNER_FIELD:
                continue
            field_id = state.fields.get(field_name)
            if field_id and value:
                updates.append(self.client.update_text_field(project_id, item_id, field_id, value))

        # Owner is a single-select; fall back to the last known owner, then to
        # "(unassigned)" when the project has that option
        owner = task.owner or effective_owner
        if not owner and UNASSIGNED_OWNER in state.owner_options:
            owner = UNASSIGNED_OWNER
        owner_field_id = state.fields.get(OWNER_FIELD)
        if owner and owner_field_id:
            option_id = state.owner_options.get(owner)
            if option_id:
                updates.append(
                    self.client.update_single_select_field(
                        project_id, item_id, owner_field_id, option_id
                    )
                )
            else:
                logger.warning(
                    'Owner option "%s" not found, skipping (will be set on next sync)', owner
                )

        status_field_id = state.fields.get(STATUS_FIELD)
        status_option_id = state.status_options.get(map_status(task.status))
        if status_field_id and status_option_id:
            updates.append(
                self.client.update_single_select_field(
                    project_id, item_id, status_field_id, status_option_id
                )
            )

        await asyncio.gather(*updates)

    # -------------------------------------------------------------------------
    # Create / update
    # -------------------------------------------------------------------------

    async def create_task(self, task: Task) -> None:
        """Create the issue and project item for a new task."""
        title = map_title(task)
        if self.dry_run:
            self._say("[dry-run] Would create: %s", title)
            self.result.created += 1
            return

        issue = None
        try:
            label_id = await self._try_team_label()

            parent_issue_id = None
            parent_id = parent_task_id(task)
            if parent_id:
                parent = find_mapping(self.state, parent_id, self.collection)
                if parent and parent.remote_issue_id:
                    parent_issue_id = parent.remote_issue_id

            issue = await self.client.create_issue(
                repository_id=self.state.repository.id,
                title=title,
                body=map_body(task, self.collection),
                label_ids=[label_id] if label_id else None,
                project_ids=[self.state.project.id],
                parent_issue_id=parent_issue_id,
            )

            item_id = await self.client.add_item_to_project(self.state.project.id, issue.id)
            await self.apply_item_fields(item_id, task, task.owner or "")
        except Exception as e:
            logger.error("Failed to create %s: %s", title, e)
            self._record_error(task, e)
            if issue is not None:
                # The issue exists; map it with an empty hash so the next pass
                # updates it instead of creating a duplicate
                self._record_mapping(task, issue.id, issue.number, "", last_hash="")
            return

        self._record_mapping(task, issue.id, issue.number, item_id)
        self.result.created += 1
        self._say("Created: %s (#%d)", title, issue.number)

    def _record_mapping(
        self,
        task: Task,
        issue_id: str,
        issue_number: int,
        item_id: str,
        last_hash: Optional[str] = None,
    ) -> None:
        upsert_mapping(
            self.state,
            ItemMapping(
                task_id=task.id,
                collection_name=self.collection,
                remote_item_id=item_id,
                remote_content_id=issue_id,
                remote_issue_id=issue_id,
                remote_issue_number=issue_number,
                last_hash=(
                    compute_task_hash(task, self.collection) if last_hash is None else last_hash
                ),
                last_synced_at=utc_now_iso(),
                last_owner=task.owner or None,
            ),
        )

    async def update_task(self, task: Task, mapping: ItemMapping, task_hash: str) -> None:
        """Push a changed task to its existing issue and project item."""
        title = map_title(task)
        if self.dry_run:
            self._say("[dry-run] Would update: %s", title)
            self.result.updated += 1
            return

        effective_owner = task.owner or mapping.last_owner or ""
        try:
            if mapping.remote_issue_id:
                await self.client.update_issue(
                    mapping.remote_issue_id, title, map_body(task, self.collection)
                )
                # Label may have been missed on creation
                label_id = await self._try_team_label()
                if label_id:
                    try:
                        await self.client.add_labels_to_issue(mapping.remote_issue_id, [label_id])
                    except RemoteError as e:
                        logger.warning("Could not label issue #%d: %s", mapping.remote_issue_number, e)

            item_id = mapping.remote_item_id
            if not item_id and mapping.remote_content_id:
                item_id = await self.client.add_item_to_project(
                    self.state.project.id, mapping.remote_content_id
                )
            if item_id:
                await self.apply_item_fields(item_id, task, effective_owner)
        except Exception as e:
            logger.error("Failed to update %s: %s", title, e)
            self._record_error(task, e)
            return

        upsert_mapping(
            self.state,
            replace(
                mapping,
                remote_item_id=item_id,
                last_hash=task_hash,
                last_synced_at=utc_now_iso(),
                last_owner=effective_owner or None,
            ),
        )
        self.result.updated += 1
        self._say("Updated: %s", title)

    # -------------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------------

    async def refresh_options(self, tasks: List[Task]) -> None:
        """Refresh option caches and register new owners before any mutation."""
        await refresh_select_options(self.client, self.state)
        if await ensure_owner_options(self.client, self.state, tasks, self.collection):
            # All owner option IDs changed; items keep pointing at dead ones
            await reapply_owner_fields(self.client, self.state, self.concurrency)

    async def run(self, tasks: List[Task]) -> SyncResult:
        tasks = dedupe_tasks(tasks)

        if not self.dry_run:
            await self.refresh_options(tasks)

        diff = diff_tasks(self.state, tasks, self.collection)
        self.result.skipped = len(diff.unchanged)

        cycles = detect_circular_dependencies(diff.new)
        if cycles:
            logger.warning(
                "Circular dependencies among new tasks: %s",
                "; ".join(" → ".join(c) for c in cycles),
            )

        # Parents before children: levels in order, tasks within a level in parallel
        for level in group_by_level(diff.new):
            await bounded_gather(level, self.create_task, self.concurrency)

        await bounded_gather(
            diff.changed,
            lambda entry: self.update_task(*entry),
            self.concurrency,
        )
        return self.result


async def reconcile(
    collection: str,
    dry_run: bool = False,
    quiet: bool = False,
    *,
    config: Optional[SyncConfig] = None,
    client: Optional[GitHubProjectClient] = None,
) -> SyncResult:
    """Sync one team's tasks to its GitHub project.

    Args:
        collection: Team name
        dry_run: Decide and log, but make no GitHub changes and save nothing
        quiet: Log per-task actions at debug level only
        config: Settings (defaults from the environment)
        client: GitHub client (defaults to gh-backed client)

    Returns:
        Counts of created / updated / skipped tasks and per-task errors

    Raises:
        NotInitialized: If the team has no sync state
        LockTimeout: If another pass holds the team lock too long
    """
    config = config or SyncConfig()
    if client is None:
        client = GitHubProjectClient(
            retry=RetryConfig(max_retries=config.max_retries, base_delay=config.retry_base_delay)
        )

    async with ExclusiveLock(config.get_lock_path(collection), collection):
        # Load inside the lock to see the previous pass's writes
        state = load_state(config, collection)
        if state is None:
            raise NotInitialized(collection)

        tasks = list_tasks(config, collection)
        reconciler = Reconciler(
            client,
            state,
            collection,
            dry_run=dry_run,
            quiet=quiet,
            concurrency=config.concurrency,
        )
        result = await reconciler.run(tasks)

        if not dry_run:
            save_state(config, collection, state)

    return result


async def reconcile_many(
    collections: List[str],
    dry_run: bool = False,
    quiet: bool = False,
    *,
    config: Optional[SyncConfig] = None,
    client: Optional[GitHubProjectClient] = None,
) -> Dict[str, SyncResult]:
    """Sync several teams one after another.

    A team that fails as a whole (not initialized, lock timeout) is
    reported as a single error for that team; the others still run.
    """
    results: Dict[str, SyncResult] = {}
    for collection in collections:
        try:
            results[collection] = await reconcile(
                collection, dry_run=dry_run, quiet=quiet, config=config, client=client
            )
        except TeamSyncError as e:
            logger.error("Sync of team %s failed: %s", collection, e)
            results[collection] = SyncResult(errors=[SyncError(task_id="*", error=str(e))])
    return results
