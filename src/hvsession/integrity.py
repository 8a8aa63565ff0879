"""Hypervisor integrity validation.

Confirms the hypervisor CLI is reachable and healthy before any other
operation runs against it, and extracts the installed version and the
location of the guest additions image.
"""

import logging
import re
from dataclasses import dataclass

from hvsession.modules.cli_detector import HypervisorDetector
from hvsession.modules.subprocess_helper import CommandAdapter, ExecConfig
from hvsession.text_parsing import parse_key_value_lines

logger = logging.getLogger(__name__)

# Recoverable: the host kernel driver can be rebuilt/loaded with privileges
DRIVER_NOT_LOADED_MARKER = "vboxdrv kernel module is not loaded"
GUEST_ADDITIONS_KEY = "Default Guest Additions ISO"

_VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?(?:[^\d\s]*?r(\d+))?")


@dataclass
class HypervisorVersion:
    """Installed hypervisor version."""

    major: int = 0
    minor: int = 0
    build: int = 0
    revision: int = 0
    ver_string: str = ""

    @classmethod
    def parse(cls, text: str) -> "HypervisorVersion":
        """Parse a version string such as "6.1.38r153438" or "7.0.10_Ubuntur158379"."""
        text = text.strip()
        match = _VERSION_PATTERN.search(text)
        if not match:
            return cls(ver_string=text)
        major, minor, build, revision = match.groups()
        return cls(
            major=int(major),
            minor=int(minor),
            build=int(build or 0),
            revision=int(revision or 0),
            ver_string=text,
        )

    def compare(self, other: "HypervisorVersion") -> int:
        """Return -1, 0 or 1 comparing (major, minor, build)."""
        mine = (self.major, self.minor, self.build)
        theirs = (other.major, other.minor, other.build)
        return (mine > theirs) - (mine < theirs)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}"


class IntegrityValidator:
    """Validate the hypervisor installation.

    After validate() the attributes describe what was found:
        valid: the hypervisor can be used
        driver_not_loaded: a recoverable kernel driver problem was detected
        version: parsed version of the installed tool
        guest_additions_path: guest additions image (empty if unknown)
    """

    def __init__(
        self,
        adapter: CommandAdapter,
        detector: HypervisorDetector | None = None,
        exec_config: ExecConfig | None = None,
    ):
        self.adapter = adapter
        self.detector = detector or HypervisorDetector(adapter.binary_path)
        self.exec_config = exec_config or adapter.default_config
        self.valid = False
        self.driver_not_loaded = False
        self.version = HypervisorVersion()
        self.guest_additions_path = ""

    def validate(self) -> bool:
        """Check that the hypervisor is reachable and healthy.

        Returns:
            True if the hypervisor can be used
        """
        if not self.detector.is_available():
            logger.warning(f"Hypervisor binary not found: {self.adapter.binary_path}")
            self.valid = False
            return False

        self.valid = False
        self.driver_not_loaded = False

        result = self.adapter.execute("--version", self.exec_config)

        for line in result.stdout_lines:
            if "WARNING" in line:
                if DRIVER_NOT_LOADED_MARKER in line:
                    logger.warning("Hypervisor kernel driver is not loaded")
                    self.driver_not_loaded = True
                else:
                    logger.warning(f"Warning keyword in the hypervisor version: {line}")
                    return False
            if "ERROR" in line:
                logger.warning(f"Error keyword in the hypervisor version: {line}")
                return False

        if result.stderr_lines:
            logger.warning(f"Error message in the hypervisor version: {result.stderr_lines[0]}")
            return False

        if result.stdout_lines:
            self.version = HypervisorVersion.parse(result.stdout_lines[-1])
            logger.debug(f"Hypervisor version {self.version} ({self.version.ver_string})")

        self.guest_additions_path = ""
        properties = self.adapter.execute("list systemproperties", self.exec_config)
        if properties.exit_code == 0:
            data = parse_key_value_lines(properties.stdout_lines)
            self.guest_additions_path = data.get(GUEST_ADDITIONS_KEY, "")

        self.valid = True
        return True


__all__ = ["DRIVER_NOT_LOADED_MARKER", "HypervisorVersion", "IntegrityValidator"]
