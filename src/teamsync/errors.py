"""
Error classes for teamsync.

Only NotInitialized and LockTimeout abort a sync pass. RemoteError is
recorded per task and the pass carries on, MalformedRecord makes the
reader skip a single task file.
"""

from pathlib import Path


class TeamSyncError(Exception):
    """Base exception for all teamsync errors."""


class NotInitialized(TeamSyncError):
    """Raised when a team has no sync state yet."""

    def __init__(self, collection: str):
        """
        Initialize not-initialized error.

        Args:
            collection: Team name that has no sync state
        """
        super().__init__(
            f"Team '{collection}' is not initialized. "
            f"Run `teamsync init --team {collection} --repo <owner/repo>` first."
        )
        self.collection = collection


class LockTimeout(TeamSyncError):
    """Raised when the team lock could not be acquired in time."""

    def __init__(self, name: str, waited: float):
        """
        Initialize lock timeout error.

        Args:
            name: Lock resource name (team name)
            waited: Seconds spent waiting
        """
        super().__init__(
            f"Could not acquire lock '{name}' after {waited:.0f}s. "
            "Another sync process may be running. "
            "Remove the lock file manually if this is an error."
        )
        self.name = name
        self.waited = waited


class RemoteError(TeamSyncError):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, label: str | None = None):
        """
        Initialize remote error.

        Args:
            message: Error message from gh / the GraphQL API
            label: Optional name of the operation that failed
        """
        super().__init__(message)
        self.label = label


class MalformedRecord(TeamSyncError):
    """Raised when a task file does not have the minimal task shape."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path.name}: {reason}")
        self.path = path
        self.reason = reason


class AlreadyInitialized(TeamSyncError):
    """Raised when init would overwrite an existing team's sync state."""

    def __init__(self, collection: str):
        super().__init__(
            f"Team '{collection}' is already initialized. Use --force to start over."
        )
        self.collection = collection


class RepositoryNotDetected(TeamSyncError):
    """Raised when no GitHub repository can be derived from the git remote."""

    def __init__(self, reason: str):
        super().__init__(
            f"Could not detect the repository: {reason}. "
            "Run inside a git repository with an 'origin' remote, "
            "or use `teamsync init --repo <owner/repo>`."
        )
        self.reason = reason
