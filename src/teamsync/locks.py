"""Per-team lock files preventing concurrent sync passes.

Locks live next to the state files as {team}.lock containing JSON:
{
    "pid": 12345,
    "acquiredAt": "2026-01-19T18:00:00+00:00"
}

The file is created with O_CREAT | O_EXCL, so only one process can own it.
A lock older than STALE_THRESHOLD_SECONDS is assumed to belong to a crashed
run and is reclaimed. Reclaiming happens under an flock on {team}.lock.guard
and only removes the exact record that was judged stale, so two waiters
cannot both take over the same stale lock. Waiting is bounded by
MAX_WAIT_SECONDS, after which LockTimeout is raised instead of blocking
forever.
"""

import asyncio
import fcntl
import json
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterator, Optional, Tuple, TypeVar

from .errors import LockTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

STALE_THRESHOLD_SECONDS = 2 * 60
POLL_INTERVAL_SECONDS = 1.0
MAX_WAIT_SECONDS = 30.0


@dataclass
class LockRecord:
    """Contents of a lock file."""

    pid: int
    acquired_at: str  # ISO 8601 format

    @classmethod
    def create(cls) -> "LockRecord":
        """Create a record for the current process with current timestamp."""
        return cls(pid=os.getpid(), acquired_at=datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_file(cls, path: Path) -> Optional["LockRecord"]:
        """Load lock record from file, returns None if invalid or missing."""
        try:
            data = json.loads(path.read_text())
            return cls(pid=int(data["pid"]), acquired_at=str(data["acquiredAt"]))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
            logger.debug("Failed to parse lock file %s: %s", path, e)
            return None

    def to_json(self) -> str:
        return json.dumps({"pid": self.pid, "acquiredAt": self.acquired_at})

    def age_seconds(self) -> float:
        """Get the age of the lock in seconds."""
        acquired = datetime.fromisoformat(self.acquired_at)
        if acquired.tzinfo is None:
            acquired = acquired.replace(tzinfo=timezone.utc)
        return (datetime.now(timezone.utc) - acquired).total_seconds()


def is_stale(path: Path, threshold: float = STALE_THRESHOLD_SECONDS) -> bool:
    """Check whether the lock file at path is older than threshold.

    Falls back to the file mtime when the record can't be parsed. A lock
    file that can't even be stat'ed is treated as stale.
    """
    record = LockRecord.from_file(path)
    if record is not None:
        try:
            return record.age_seconds() > threshold
        except ValueError:
            pass
    try:
        return time.time() - path.stat().st_mtime > threshold
    except OSError:
        return True


class ExclusiveLock:
    """Exclusive lock for one team, usable as an async context manager.

    Usage:
        async with ExclusiveLock(config.get_lock_path(team), team):
            ...  # only one sync pass for this team runs here
    """

    def __init__(
        self,
        path: Path,
        name: Optional[str] = None,
        stale_threshold: float = STALE_THRESHOLD_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_wait: float = MAX_WAIT_SECONDS,
    ):
        """Initialize lock.

        Args:
            path: Lock file path
            name: Resource name reported in LockTimeout (defaults to file stem)
            stale_threshold: Age in seconds after which a lock is reclaimed
            poll_interval: Seconds between acquisition attempts
            max_wait: Maximum seconds to wait before raising LockTimeout
        """
        self.path = Path(path)
        self.name = name or self.path.stem
        self.stale_threshold = stale_threshold
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.held = False

    def _try_create(self) -> bool:
        """Atomically create the lock file. Returns False if it exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(LockRecord.create().to_json())
        return True

    def _snapshot(self) -> Optional[Tuple[int, bytes]]:
        """Inode and raw contents of the lock file, or None if it is absent."""
        try:
            with open(self.path, "rb") as f:
                return os.fstat(f.fileno()).st_ino, f.read()
        except FileNotFoundError:
            return None

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Hold an exclusive flock on the sidecar guard file."""
        guard_path = self.path.with_name(self.path.name + ".guard")
        fd = os.open(str(guard_path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            # Closing the descriptor releases the flock
            os.close(fd)

    def _reclaim(self, judged: Tuple[int, bytes]) -> bool:
        """Replace the stale lock file judged earlier with our own.

        Runs under the guard, and only if the file still holds exactly what
        was judged stale. Another waiter that got there first has already
        written a fresh record, which must not be removed.
        """
        with self._guard():
            if self._snapshot() != judged:
                return False
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            logger.debug("Removed stale lock file %s", self.path)
            return self._try_create()

    async def acquire(self) -> None:
        """Acquire the lock, waiting up to max_wait seconds.

        Raises:
            LockTimeout: If another holder keeps the lock past max_wait
        """
        start = time.monotonic()
        while True:
            if self._try_create():
                self.held = True
                logger.debug("Acquired lock %s", self.path)
                return

            judged = self._snapshot()
            if judged is None:
                # Released between our create attempt and the read
                continue
            if is_stale(self.path, self.stale_threshold) and self._reclaim(judged):
                self.held = True
                logger.debug("Acquired lock %s after reclaiming it", self.path)
                return

            elapsed = time.monotonic() - start
            if elapsed >= self.max_wait:
                raise LockTimeout(self.name, elapsed)

            await asyncio.sleep(self.poll_interval)

    def release(self) -> None:
        """Release the lock. Releasing an absent lock is not an error."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        finally:
            self.held = False

    async def __aenter__(self) -> "ExclusiveLock":
        await self.acquire()
        return self

    async def __aexit__(self, *args) -> None:
        self.release()


async def with_lock(lock: ExclusiveLock, fn: Callable[[], Awaitable[T]]) -> T:
    """Await fn() while holding lock, releasing it on every exit path."""
    await lock.acquire()
    try:
        return await fn()
    finally:
        lock.release()
