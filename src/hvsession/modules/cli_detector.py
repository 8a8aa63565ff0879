"""Hypervisor CLI detection.

Philosophy:
- Single responsibility: find the hypervisor command-line tool
- Standard library only (no external dependencies)
- Read-only system checks (no subprocess)

Public API (the "studs"):
    HypervisorDetector: Locates the hypervisor binary
"""

import logging
import platform
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class HypervisorDetector:
    """Detects the VirtualBox command-line tool."""

    # Standard installation locations, checked when the binary is not on PATH
    KNOWN_LOCATIONS = {
        "Linux": [
            Path("/usr/bin/VBoxManage"),
            Path("/usr/local/bin/VBoxManage"),
            Path("/opt/VirtualBox/VBoxManage"),
        ],
        "Darwin": [
            Path("/usr/local/bin/VBoxManage"),
            Path("/Applications/VirtualBox.app/Contents/MacOS/VBoxManage"),
        ],
        "Windows": [
            Path("C:/Program Files/Oracle/VirtualBox/VBoxManage.exe"),
        ],
    }

    def __init__(self, binary_name: str = "VBoxManage"):
        self.binary_name = binary_name

    def find_binary(self) -> Path | None:
        """
        Locate the hypervisor binary.

        An explicit path is accepted as-is when it exists. A bare name is
        looked up on PATH first and then in the platform's known locations.

        Returns:
            Path to the binary, or None if not found

        Example:
            >>> detector = HypervisorDetector()
            >>> binary = detector.find_binary()
            >>> if binary:
            ...     print(f"VBoxManage at: {binary}")
        """
        candidate = Path(self.binary_name).expanduser()
        if candidate.is_absolute() or candidate.parent != Path("."):
            if candidate.is_file():
                return candidate
            logger.debug(f"Configured hypervisor binary does not exist: {candidate}")
            return None

        found = shutil.which(self.binary_name)
        if found:
            logger.debug(f"Found {self.binary_name} at {found}")
            return Path(found)

        for location in self.KNOWN_LOCATIONS.get(platform.system(), []):
            if location.exists() and location.is_file():
                logger.debug(f"Found {self.binary_name} at known location {location}")
                return location

        logger.debug(f"Hypervisor binary not found: {self.binary_name}")
        return None

    def is_available(self) -> bool:
        """Check whether the hypervisor binary can be located."""
        return self.find_binary() is not None


__all__ = ["HypervisorDetector"]
