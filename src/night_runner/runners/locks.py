"""Per-issue advisory locks shared between overlapping runner processes.

Each lock is one small file in the lock directory, named after the
(repository, issue) key and holding the owning process id. A lock whose owner
is no longer alive is stale and may be reclaimed by the next acquirer.
"""

from __future__ import annotations

import atexit
import fcntl
import os
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

import structlog

logger = structlog.get_logger(__name__)

LOCK_SUFFIX = ".lock"
GUARD_FILENAME = ".guard"


def pid_alive(pid: int) -> bool:
    """Check whether a process with this id exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, but owned by another user.
        return True
    return True


class LockManager:
    """File-backed key/owner store with a liveness check on the owner."""

    def __init__(
        self,
        lock_dir: Path,
        owner: int | None = None,
        is_alive: Callable[[int], bool] = pid_alive,
    ):
        """Initialize the lock manager.

        Args:
            lock_dir: Directory holding one file per locked issue
            owner: Owner id to record (defaults to this process id)
            is_alive: Predicate telling whether a recorded owner still runs
        """
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        self.owner = owner if owner is not None else os.getpid()
        self.is_alive = is_alive
        self._cleanup_installed = False

    def lock_path(self, repo: str, issue_number: int) -> Path:
        return self.lock_dir / f"{repo.replace('/', '-')}-{issue_number}{LOCK_SUFFIX}"

    def acquire(self, repo: str, issue_number: int) -> bool:
        """Take the lock for an issue.

        Returns False if another live process holds it. An absent lock, or
        one left behind by a dead process, is claimed for this owner.
        """
        path = self.lock_path(repo, issue_number)
        with self._guard():
            holder = self._read_owner(path)
            if holder == self.owner:
                return True
            if holder is not None and self.is_alive(holder):
                logger.info("issue_locked_by_other", repo=repo, issue=issue_number, owner=holder)
                return False

            created = self._create_exclusive(path)
            if not created and holder is not None:
                logger.info("stale_lock_reclaimed", repo=repo, issue=issue_number, owner=holder)
                path.unlink(missing_ok=True)
                created = self._create_exclusive(path)
        if not created:
            logger.info("issue_lock_race_lost", repo=repo, issue=issue_number)
            return False
        logger.debug("issue_lock_acquired", repo=repo, issue=issue_number, owner=self.owner)
        return True

    def release(self, repo: str, issue_number: int) -> None:
        """Drop the lock for an issue, but only if this owner holds it."""
        path = self.lock_path(repo, issue_number)
        with self._guard():
            if self._read_owner(path) == self.owner:
                path.unlink(missing_ok=True)
                logger.debug("issue_lock_released", repo=repo, issue=issue_number)

    def release_all_owned(self) -> int:
        """Remove every lock recorded for this owner. Returns how many."""
        removed = 0
        if not self.lock_dir.exists():
            return removed
        with self._guard():
            for path in self.lock_dir.glob(f"*{LOCK_SUFFIX}"):
                if self._read_owner(path) == self.owner:
                    path.unlink(missing_ok=True)
                    removed += 1
        if removed:
            logger.info("owned_locks_released", owner=self.owner, count=removed)
        return removed

    def holder(self, repo: str, issue_number: int) -> int | None:
        """Owner recorded for an issue lock, or None when unlocked."""
        return self._read_owner(self.lock_path(repo, issue_number))

    @contextmanager
    def hold(self, repo: str, issue_number: int) -> Iterator[bool]:
        """Context manager form: yields whether the lock was acquired."""
        acquired = self.acquire(repo, issue_number)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(repo, issue_number)

    def install_exit_cleanup(self) -> None:
        """Release this owner's locks on normal exit and on SIGTERM/SIGHUP."""
        if self._cleanup_installed:
            return
        atexit.register(self.release_all_owned)
        for signum in (signal.SIGTERM, signal.SIGHUP):
            signal.signal(signum, _exit_on_signal)
        self._cleanup_installed = True

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Serialize check-then-write across processes sharing the lock dir."""
        guard_path = self.lock_dir / GUARD_FILENAME
        with open(guard_path, "a+") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)

    def _create_exclusive(self, path: Path) -> bool:
        """Create the lock file with our owner id; False if it already exists."""
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(self.owner))
        return True

    def _read_owner(self, path: Path) -> int | None:
        try:
            raw = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return int(raw)
        except ValueError:
            # Unparseable content cannot name a live owner.
            logger.warning("lock_file_corrupt", path=str(path))
            return -1


def _exit_on_signal(signum, frame) -> None:
    raise SystemExit(128 + signum)
