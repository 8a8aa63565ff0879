"""Cross-process backing for named locks.

VBoxManage does not tolerate overlapping invocations, and more than one
process (the CLI, an embedding host) may drive it. When a lock directory is
configured, every named lock is paired with an exclusive OS lock on
``<lock_dir>/<name>.lock`` so that serialization also holds across
processes.

The lock file records the pid of the current holder; it is informational
only and used in timeout messages.

Public API:
    acquire_file_lock: Context manager holding an exclusive file lock
    LockTimeoutError: Raised when the lock is not obtained in time

Example:
    >>> with acquire_file_lock(Path("~/.hvsession/locks/generic.lock").expanduser()):
    ...     adapter.execute("list vms")
"""

import logging
import os
import platform
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, TYPE_CHECKING

_system = platform.system()
if TYPE_CHECKING or _system == "Windows":
    import msvcrt  # type: ignore[import-not-found]
if TYPE_CHECKING or _system != "Windows":
    import fcntl  # type: ignore[import-not-found]

logger = logging.getLogger(__name__)

INITIAL_POLL = 0.1
MAX_POLL = 2.0


class LockTimeoutError(Exception):
    """Raised when a file lock cannot be obtained before the deadline."""


def _try_lock(handle: IO[str]) -> None:
    """Lock handle without blocking; raises BlockingIOError/PermissionError if held."""
    if _system == "Windows":
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(handle: IO[str]) -> None:
    try:
        if _system == "Windows":
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        else:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        logger.debug(f"Ignoring unlock failure: {e}")


def _read_holder(file_path: Path) -> str:
    try:
        return file_path.read_text().strip() or "unknown"
    except OSError:
        return "unknown"


def _prepare_lock_file(file_path: Path) -> None:
    file_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    if not file_path.exists():
        file_path.touch(mode=0o600)
        os.chmod(file_path, 0o600)


def _wait_for_lock(
    handle: IO[str], file_path: Path, timeout: float | None, operation: str
) -> None:
    """Poll for the lock, doubling the pause (capped at MAX_POLL) between tries.

    A PermissionError on the very first try is a genuine access problem on
    Unix and is raised as is; later ones are treated as contention.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    pause = INITIAL_POLL
    first_try = True

    while True:
        try:
            _try_lock(handle)
            return
        except (BlockingIOError, PermissionError) as e:
            if isinstance(e, PermissionError) and first_try and _system != "Windows":
                raise
        first_try = False

        if deadline is None:
            time.sleep(pause)
        else:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockTimeoutError(
                    f"Timed out after {timeout} seconds waiting for {operation} "
                    f"({file_path}, held by pid {_read_holder(file_path)})"
                )
            time.sleep(min(pause, remaining))
        pause = min(pause * 2, MAX_POLL)


@contextmanager
def acquire_file_lock(
    file_path: Path,
    timeout: float | None = 60.0,
    operation: str = "hypervisor command",
) -> Generator[None, None, None]:
    """Hold an exclusive lock on file_path for the duration of the block.

    The lock file and its directory are created with owner-only permissions
    when missing.

    Args:
        file_path: Lock file location
        timeout: Seconds to wait for the lock; None waits forever
        operation: What the lock protects, used in error messages

    Raises:
        LockTimeoutError: If the lock is not obtained within timeout
        PermissionError: If the lock file cannot be locked at all
    """
    _prepare_lock_file(file_path)

    with open(file_path, "r+") as handle:
        _wait_for_lock(handle, file_path, timeout, operation)
        try:
            handle.seek(0)
            handle.truncate()
            handle.write(str(os.getpid()))
            handle.flush()
            yield
        finally:
            _unlock(handle)


__all__ = ["LockTimeoutError", "acquire_file_lock"]
