"""Per-team sync state persistence.

Each team has one JSON document in the state directory. It is loaded,
mutated in memory and rewritten wholesale; the team lock is what keeps
concurrent writers apart.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from .config import SyncConfig, unsafe_name
from .models import (
    ItemMapping,
    ProjectInfo,
    ReconciliationState,
    RepositoryInfo,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


def load_state(config: SyncConfig, collection: str) -> Optional[ReconciliationState]:
    """Load sync state for a team, returns None if missing or unreadable."""
    path = config.get_state_path(collection)
    if not path.exists():
        return None
    try:
        with open(path) as f:
            data = json.load(f)
        return ReconciliationState.from_dict(data)
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.error("Failed to parse sync state %s: %s", path, e)
        return None


def save_state(config: SyncConfig, collection: str, state: ReconciliationState) -> Path:
    """Write sync state atomically and stamp lastSyncAt.

    Returns:
        Path of the written state file
    """
    path = config.get_state_path(collection)
    path.parent.mkdir(parents=True, exist_ok=True)
    state.last_sync_at = utc_now_iso()

    # Write to temp file first, then rename for atomicity
    temp_path = path.with_suffix(".tmp")
    with open(temp_path, "w") as f:
        json.dump(state.to_dict(), f, indent=2)
        f.write("\n")
    temp_path.replace(path)
    logger.debug("Sync state saved to %s", path)
    return path


def delete_state(config: SyncConfig, collection: str) -> bool:
    """Remove a team's state file. Returns True if one existed."""
    path = config.get_state_path(collection)
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


def list_synced_collection_names(config: SyncConfig) -> List[str]:
    """List teams that have a sync state file."""
    if not config.state_dir.exists():
        return []
    return sorted(unsafe_name(p.stem) for p in config.state_dir.glob("*.json"))


def find_mapping(
    state: ReconciliationState, task_id: str, collection: str
) -> Optional[ItemMapping]:
    """Find an item mapping by task ID and team name."""
    for item in state.items:
        if item.task_id == task_id and item.collection_name == collection:
            return item
    return None


def upsert_mapping(state: ReconciliationState, mapping: ItemMapping) -> None:
    """Add a mapping, or replace the one with the same (team, task ID)."""
    for i, item in enumerate(state.items):
        if item.key == mapping.key:
            state.items[i] = mapping
            return
    state.items.append(mapping)


def create_initial_state(
    project: ProjectInfo,
    repository: RepositoryInfo,
    fields: Dict[str, str],
    status_options: Dict[str, str],
    owner_options: Optional[Dict[str, str]] = None,
) -> ReconciliationState:
    """Create the sync state for a freshly initialized project."""
    return ReconciliationState(
        project=project,
        repository=repository,
        fields=dict(fields),
        status_options=dict(status_options),
        owner_options=dict(owner_options or {}),
        labels={},
        items=[],
    )
