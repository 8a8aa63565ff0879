"""VM query module.

Identity-scoped read operations against the hypervisor: guest properties,
machine information and the VM process id. Every query targeting a VM is
serialized on that VM's named lock.
"""

import logging
from pathlib import Path

from hvsession.modules.subprocess_helper import CommandAdapter, ExecConfig
from hvsession.named_locks import NamedLockTable
from hvsession.text_parsing import (
    parse_guest_properties,
    parse_key_value_blocks,
    parse_key_value_lines,
    parse_pid_line,
)

logger = logging.getLogger(__name__)

# Sentinel key returned by get_machine_info when the query itself fails
MACHINE_INFO_ERROR_KEY = ":ERROR:"
MACHINE_INFO_TIMEOUT = "timeout"
# VBoxManage exits 1 for an unknown VM
VM_NOT_FOUND_EXIT_CODE = 1
LOG_FILE_NAME = "VBox.log"


class VMQueries:
    """Read-only queries about individual VMs."""

    def __init__(
        self,
        adapter: CommandAdapter,
        locks: NamedLockTable,
        exec_config: ExecConfig | None = None,
    ):
        self.adapter = adapter
        self.locks = locks
        self.exec_config = exec_config or adapter.default_config

    def get_property(self, external_id: str, name: str) -> str | None:
        """Get a single guest property.

        Args:
            external_id: Hypervisor VM identity
            name: Property name (e.g. "/VirtualBox/GuestInfo/Net/0/V4/IP")

        Returns:
            Property value, or None if unset or the query failed
        """
        with self.locks.hold(external_id):
            result = self.adapter.execute(
                ["guestproperty", "get", external_id, name], self.exec_config
            )
        if result.exit_code != 0 or not result.stdout_lines:
            return None

        first = result.stdout_lines[0]
        if first.startswith("Value:"):
            return first[len("Value:") :].strip()
        return None

    def get_all_properties(self, external_id: str) -> dict[str, str]:
        """Enumerate all guest properties of a VM.

        Lines missing any of the "Name: ", ", value:" or ", timestamp:"
        anchors are skipped.

        Returns:
            Mapping of property name to value (empty if the query failed)
        """
        with self.locks.hold(external_id):
            result = self.adapter.execute(["guestproperty", "enumerate", external_id], self.exec_config)
        if result.exit_code != 0:
            logger.debug(f"guestproperty enumerate failed for {external_id}: {result.exit_code}")
            return {}
        return parse_guest_properties(result.stdout_lines)

    def get_machine_info(self, external_id: str, timeout: float | None = None) -> dict[str, str]:
        """Get the machine information dump of a VM.

        Args:
            external_id: Hypervisor VM identity
            timeout: Override for the command timeout

        Returns:
            "Key: Value" mapping of the dump. If the command exits non-zero the
            mapping holds only MACHINE_INFO_ERROR_KEY with the exit code (or
            MACHINE_INFO_TIMEOUT), so callers can tell "not found" from a
            failure of the tool itself.
        """
        config = self.exec_config.with_timeout(timeout) if timeout is not None else self.exec_config
        with self.locks.hold(external_id):
            result = self.adapter.execute(["showvminfo", external_id], config)
        if result.timed_out:
            return {MACHINE_INFO_ERROR_KEY: MACHINE_INFO_TIMEOUT}
        if result.exit_code != 0:
            return {MACHINE_INFO_ERROR_KEY: str(result.exit_code)}
        return parse_key_value_lines(result.stdout_lines)

    def get_disk_list(self) -> list[dict[str, str]]:
        """List the disk media registered with the hypervisor.

        Returns:
            One mapping per medium (empty list if the query failed)
        """
        with self.locks.hold(NamedLockTable.GENERIC):
            result = self.adapter.execute("list hdds", self.exec_config)
        if result.exit_code != 0 or not result.stdout_lines:
            return []
        return parse_key_value_blocks(result.stdout_lines)

    @staticmethod
    def get_pid_from_log(log_dir: str | Path) -> int | None:
        """Find the VM process id recorded in the VM's log file.

        Args:
            log_dir: The VM's log folder

        Returns:
            Process id, or None if the log is missing or has no PID line
        """
        log_file = Path(log_dir) / LOG_FILE_NAME
        logger.debug(f"Looking for PID in {log_file}")
        if not log_file.exists():
            return None

        pid = None
        with open(log_file, encoding="utf-8", errors="replace", newline="") as f:
            for line in f:
                pid = parse_pid_line(line)
                if pid is not None:
                    break

        logger.debug(f"PID extracted from file: {pid}")
        return pid


def machine_info_failed(info: dict[str, str]) -> bool:
    """Whether a get_machine_info result is the error sentinel."""
    return MACHINE_INFO_ERROR_KEY in info


def machine_not_found(info: dict[str, str]) -> bool:
    """Whether a get_machine_info result means the VM does not exist."""
    return info.get(MACHINE_INFO_ERROR_KEY) == str(VM_NOT_FOUND_EXIT_CODE)


__all__ = [
    "MACHINE_INFO_ERROR_KEY",
    "MACHINE_INFO_TIMEOUT",
    "VMQueries",
    "machine_info_failed",
    "machine_not_found",
]
