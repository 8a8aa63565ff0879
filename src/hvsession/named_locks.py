"""Named exclusive locks serializing hypervisor commands.

The hypervisor CLI is not safe for overlapping invocations against the same
target. Commands are serialized through a table of exclusive locks keyed by
name:

- GENERIC guards target-independent queries (host CPU ids, extension packs)
- SESSION_UPDATE guards a whole registry reconciliation pass
- any other key (usually a VM uuid) guards identity-scoped commands

Example:
    >>> locks = NamedLockTable()
    >>> with locks.hold(NamedLockTable.GENERIC):
    ...     adapter.execute("list hostcpuids")
"""

import logging
import re
import threading
from collections.abc import Generator
from contextlib import ExitStack, contextmanager
from pathlib import Path

from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.file_lock_manager import LockTimeoutError, acquire_file_lock

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class NamedLockTable:
    """Table of exclusive locks keyed by name.

    Locks are re-entrant for the owning thread. When lock_dir is set, the
    outermost acquisition of a name also takes a file lock in that directory,
    making the lock system-wide instead of process-wide.
    """

    GENERIC = "generic"
    SESSION_UPDATE = "session-update"

    def __init__(self, lock_dir: Path | None = None, file_lock_timeout: float | None = None):
        """
        Args:
            lock_dir: Directory for cross-process lock files (None = in-process only)
            file_lock_timeout: Seconds to wait for another process (None = forever)
        """
        self.lock_dir = lock_dir
        self.file_lock_timeout = file_lock_timeout
        self._table_lock = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._depth: dict[str, int] = {}

    def _lock_for(self, name: str) -> threading.RLock:
        with self._table_lock:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.RLock()
                self._locks[name] = lock
                self._depth[name] = 0
            return lock

    def lock_file(self, name: str) -> Path | None:
        """Path of the cross-process lock file for name, if file locking is on."""
        if self.lock_dir is None:
            return None
        return self.lock_dir / f"{_UNSAFE_CHARS.sub('_', name)}.lock"

    @contextmanager
    def hold(self, name: str) -> Generator[None, None, None]:
        """Hold the lock called name for the duration of the block.

        The lock is released on every exit path, including exceptions.

        Raises:
            HypervisorError: IO_ERROR if the cross-process lock cannot be taken
        """
        lock = self._lock_for(name)
        with lock, ExitStack() as stack:
            self._depth[name] += 1
            try:
                lock_file = self.lock_file(name)
                if lock_file is not None and self._depth[name] == 1:
                    try:
                        stack.enter_context(
                            acquire_file_lock(
                                lock_file,
                                timeout=self.file_lock_timeout,
                                operation=f"named lock '{name}'",
                            )
                        )
                    except (OSError, LockTimeoutError) as e:
                        raise HypervisorError(
                            f"Unable to take lock '{name}' ({lock_file}): {e}",
                            HypervisorStatus.IO_ERROR,
                        ) from e
                yield
            finally:
                self._depth[name] -= 1

    def is_held(self, name: str) -> bool:
        """Whether any thread currently holds the lock called name."""
        with self._table_lock:
            return self._depth.get(name, 0) > 0


__all__ = ["NamedLockTable"]
