"""Persisted session descriptor store.

One TOML file per session in the runtime directory, named
vmsess-<internal_id>.toml:

    internal_id = "4f0c0e6a-..."
    external_id = "0b7a2d71-..."
    name = "session-4f0c0e6a"
    state = "created"

    [parameters]
    memory = "2048"

Philosophy:
- TOML format for human-readable descriptors
- Security: file permissions 0600, directory 0700
- Atomic writes (temp file + rename)
- A malformed descriptor never breaks enumeration of the others
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit

from hvsession.errors import HypervisorError, HypervisorStatus

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("internal_id", "name")


@dataclass
class SessionDescriptor:
    """Persisted form of a session."""

    internal_id: str
    name: str
    external_id: str | None = None
    state: str = "missing"
    parameters: dict[str, str] = field(default_factory=dict)

    def to_toml(self) -> str:
        """Serialize to TOML string."""
        doc = tomlkit.document()
        doc.add("internal_id", self.internal_id)
        if self.external_id:
            doc.add("external_id", self.external_id)
        doc.add("name", self.name)
        doc.add("state", self.state)
        parameters = tomlkit.table()
        for key, value in sorted(self.parameters.items()):
            parameters.add(key, str(value))
        doc.add("parameters", parameters)
        return tomlkit.dumps(doc)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionDescriptor":
        """Build a descriptor from parsed TOML.

        Raises:
            HypervisorError: MISSING_FIELD if internal_id or name is absent
        """
        for field_name in REQUIRED_FIELDS:
            if not data.get(field_name):
                raise HypervisorError(
                    f"Missing required field: {field_name}", HypervisorStatus.MISSING_FIELD
                )
        parameters = data.get("parameters") or {}
        return cls(
            internal_id=str(data["internal_id"]),
            name=str(data["name"]),
            external_id=data.get("external_id") or None,
            state=str(data.get("state", "missing")),
            parameters={str(k): str(v) for k, v in parameters.items()},
        )

    @classmethod
    def from_toml(cls, toml_str: str) -> "SessionDescriptor":
        """Deserialize from TOML string.

        Raises:
            HypervisorError: IO_ERROR for invalid TOML, MISSING_FIELD for
                absent required fields
        """
        try:
            data = tomllib.loads(toml_str)
        except (tomllib.TOMLDecodeError, ValueError) as e:
            raise HypervisorError(f"Invalid TOML format: {e}", HypervisorStatus.IO_ERROR) from e
        return cls.from_dict(data)


class SessionStore:
    """Directory of session descriptors."""

    PREFIX = "vmsess-"
    SUFFIX = ".toml"

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()

    def path_for(self, internal_id: str) -> Path:
        """Descriptor path for a session."""
        return self.directory / f"{self.PREFIX}{internal_id}{self.SUFFIX}"

    def _ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)

    def enumerate(self) -> list[Path]:
        """List descriptor files, sorted by name."""
        if not self.directory.exists():
            return []
        return sorted(self.directory.glob(f"{self.PREFIX}*{self.SUFFIX}"))

    def load(self, path: Path) -> SessionDescriptor:
        """Read one descriptor.

        Raises:
            HypervisorError: IO_ERROR if unreadable, MISSING_FIELD if incomplete
        """
        try:
            content = path.read_text()
        except OSError as e:
            raise HypervisorError(
                f"Failed to read descriptor {path.name}: {e}", HypervisorStatus.IO_ERROR
            ) from e
        return SessionDescriptor.from_toml(content)

    def load_all(self) -> list[SessionDescriptor]:
        """Read every readable descriptor; broken ones are skipped with a warning."""
        descriptors = []
        for path in self.enumerate():
            try:
                descriptors.append(self.load(path))
            except HypervisorError as e:
                logger.warning(f"Skipping session descriptor {path.name}: {e.message}")
        return descriptors

    def save(self, descriptor: SessionDescriptor) -> Path:
        """Write a descriptor atomically.

        Raises:
            HypervisorError: IO_ERROR if writing fails
        """
        path = self.path_for(descriptor.internal_id)
        temp_path = path.with_suffix(".tmp")
        try:
            self._ensure_directory()
            temp_path.write_text(descriptor.to_toml())
            os.chmod(temp_path, 0o600)
            temp_path.replace(path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise HypervisorError(
                f"Failed to save descriptor {path.name}: {e}", HypervisorStatus.IO_ERROR
            ) from e
        logger.debug(f"Saved session descriptor: {path}")
        return path

    def remove(self, internal_id: str) -> bool:
        """Delete a descriptor.

        Returns:
            True if a file was removed, False if none existed
        """
        path = self.path_for(internal_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise HypervisorError(
                f"Failed to remove descriptor {path.name}: {e}", HypervisorStatus.IO_ERROR
            ) from e
        logger.debug(f"Removed session descriptor: {path}")
        return True


__all__ = ["SessionDescriptor", "SessionStore"]
