"""Unit tests for named_locks module."""

import platform
import threading
import time
from unittest.mock import patch

import pytest

from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.file_lock_manager import LockTimeoutError
from hvsession.named_locks import NamedLockTable


class TestNamedLockTable:
    """Tests for in-process named locks."""

    def test_reserved_names(self):
        assert NamedLockTable.GENERIC == "generic"
        assert NamedLockTable.SESSION_UPDATE == "session-update"

    def test_hold_and_release(self):
        locks = NamedLockTable()
        with locks.hold("generic"):
            assert locks.is_held("generic")
        assert not locks.is_held("generic")

    def test_released_on_exception(self):
        locks = NamedLockTable()
        with pytest.raises(RuntimeError):
            with locks.hold("vm-1"):
                raise RuntimeError("command blew up")
        assert not locks.is_held("vm-1")

    def test_reentrant_for_same_thread(self):
        locks = NamedLockTable()
        with locks.hold("session-update"):
            with locks.hold("session-update"):
                assert locks.is_held("session-update")
            assert locks.is_held("session-update")
        assert not locks.is_held("session-update")

    def test_different_names_are_independent(self):
        locks = NamedLockTable()
        acquired = threading.Event()

        def other():
            with locks.hold("vm-2"):
                acquired.set()

        with locks.hold("vm-1"):
            thread = threading.Thread(target=other)
            thread.start()
            assert acquired.wait(timeout=2)
            thread.join()

    def test_same_name_serializes_threads(self):
        locks = NamedLockTable()
        order = []
        entered = threading.Event()

        def other():
            entered.set()
            with locks.hold("generic"):
                order.append("other")

        with locks.hold("generic"):
            thread = threading.Thread(target=other)
            thread.start()
            assert entered.wait(timeout=2)
            time.sleep(0.1)
            order.append("owner")
        thread.join(timeout=2)

        assert order == ["owner", "other"]

    def test_no_lock_file_without_directory(self):
        assert NamedLockTable().lock_file("generic") is None


@pytest.mark.skipif(platform.system() == "Windows", reason="fcntl-based tests")
class TestCrossProcessLocks:
    """Tests for file-backed named locks."""

    def test_lock_file_name_is_sanitized(self, tmp_path):
        locks = NamedLockTable(lock_dir=tmp_path)
        assert locks.lock_file("../etc/passwd") == tmp_path / ".._etc_passwd.lock"
        assert locks.lock_file("0b7a2d71-6a1f") == tmp_path / "0b7a2d71-6a1f.lock"

    def test_outermost_hold_creates_lock_file(self, tmp_path):
        locks = NamedLockTable(lock_dir=tmp_path)
        with locks.hold("generic"):
            with locks.hold("generic"):
                pass
        assert (tmp_path / "generic.lock").exists()

    def test_second_table_is_blocked(self, tmp_path):
        """Two tables on one lock directory behave like two processes."""
        first = NamedLockTable(lock_dir=tmp_path)
        second = NamedLockTable(lock_dir=tmp_path, file_lock_timeout=0.3)
        errors = []

        def contend():
            try:
                with second.hold("session-update"):
                    pass
            except HypervisorError as e:
                errors.append(e)

        with first.hold("session-update"):
            thread = threading.Thread(target=contend)
            thread.start()
            thread.join(timeout=5)

        assert len(errors) == 1
        assert errors[0].status == HypervisorStatus.IO_ERROR
        assert isinstance(errors[0].__cause__, LockTimeoutError)

    def test_second_table_proceeds_after_release(self, tmp_path):
        first = NamedLockTable(lock_dir=tmp_path)
        second = NamedLockTable(lock_dir=tmp_path, file_lock_timeout=1.0)

        with first.hold("generic"):
            pass
        with second.hold("generic"):
            assert second.is_held("generic")

    def test_unwritable_lock_directory_is_io_error(self, tmp_path):
        locks = NamedLockTable(lock_dir=tmp_path)

        with patch(
            "hvsession.named_locks.acquire_file_lock", side_effect=PermissionError("denied")
        ):
            with pytest.raises(HypervisorError, match="Unable to take lock 'generic'") as exc_info:
                with locks.hold("generic"):
                    pass

        assert exc_info.value.status == HypervisorStatus.IO_ERROR
        assert not locks.is_held("generic")
