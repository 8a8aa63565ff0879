"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores where the hypervisor CLI lives, where session descriptors are kept,
and how the extension pack configuration is fetched.

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
"""

import logging
import os
import platform
import shlex
import tempfile
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import tomlkit

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


def _default_elevation_command() -> str:
    # Windows elevation goes through UAC prompts raised by the installer itself
    return "" if platform.system() == "Windows" else "sudo"


@dataclass
class HypervisorSettings:
    """hvsession configuration data."""

    binary_path: str = "VBoxManage"
    hypervisor_name: str = "vbox"
    default_timeout: int = 30  # seconds per CLI command
    machine_info_timeout: int = 10  # seconds for showvminfo during state refresh
    runtime_dir: str = "~/.hvsession/runtime"
    lock_dir: str | None = None  # set to enable cross-process locking
    elevation_command: str = _default_elevation_command()
    driver_repair_command: str = "/sbin/vboxconfig"
    extpack_marker: str = "Oracle VM VirtualBox Extension Pack"
    config_url: str | None = None
    config_checksum: str | None = None
    download_timeout: int = 60

    @property
    def runtime_path(self) -> Path:
        """Resolved directory holding session descriptors."""
        return Path(self.runtime_dir).expanduser()

    @property
    def lock_path(self) -> Path | None:
        """Resolved cross-process lock directory, if configured."""
        return Path(self.lock_dir).expanduser() if self.lock_dir else None

    @property
    def elevation_prefix(self) -> list[str]:
        """Elevation command split into argv form."""
        return shlex.split(self.elevation_command) if self.elevation_command else []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # Filter out None values as TOML doesn't support them
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HypervisorSettings":
        """Create from dictionary, ignoring unknown keys."""
        defaults = cls()
        known = {k: v for k, v in data.items() if k in asdict(defaults)}
        for key in data.keys() - known.keys():
            logger.warning(f"Unknown config key: {key}")
        return cls(**{**asdict(defaults), **known})


class ConfigManager:
    """Manage hvsession configuration file.

    Configuration is stored at ~/.hvsession/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".hvsession"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _allowed_dirs(cls) -> list[Path]:
        # tempdir is allowed so that tests can point at tmp_path
        return [
            cls.DEFAULT_CONFIG_DIR.resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),
        ]

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Resolve path and refuse anything outside the allowed directories.

        Raises:
            ConfigError: If path escapes ~/.hvsession, the cwd and the tempdir
        """
        resolved = path.resolve()
        allowed = cls._allowed_dirs()
        if any(resolved.is_relative_to(d) for d in allowed):
            return resolved
        listing = "\n".join(f"  - {d}" for d in allowed)
        raise ConfigError(
            f"Config path outside allowed directories: {resolved}\n"
            f"Allowed directories:\n{listing}"
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If path is invalid or outside allowed directories
        """
        if custom_path:
            path = cls._validate_config_path(Path(custom_path).expanduser())
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure config directory exists with secure permissions.

        Raises:
            ConfigError: If directory creation fails
        """
        try:
            cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)
            logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
            return cls.DEFAULT_CONFIG_DIR
        except OSError as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

    @classmethod
    def load_settings(cls, custom_path: str | None = None) -> HypervisorSettings:
        """Load settings from file, or defaults when no file exists.

        Raises:
            ConfigError: If loading fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return HypervisorSettings()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:  # Check if group/other have any permissions
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomllib.load(f)

            logger.debug(f"Loaded config from: {config_path}")
            return HypervisorSettings.from_dict(data)

        except (OSError, tomllib.TOMLDecodeError, TypeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

    @staticmethod
    def _write_atomically(config_path: Path, settings: HypervisorSettings) -> None:
        """Merge settings into the existing document, keeping its comments, and
        move the result into place through a 0600 temp file."""
        if config_path.exists():
            doc = tomlkit.parse(config_path.read_text())
        else:
            doc = tomlkit.document()
        for key, value in settings.to_dict().items():
            doc[key] = value

        temp_path = config_path.with_suffix(".tmp")
        try:
            temp_path.write_text(tomlkit.dumps(doc))
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    @classmethod
    def save_settings(cls, settings: HypervisorSettings, custom_path: str | None = None) -> None:
        """Persist settings.

        Raises:
            ConfigError: If saving fails or path is outside allowed directories
        """
        try:
            if custom_path:
                config_path = cls._validate_config_path(Path(custom_path).expanduser())
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                config_path = cls.ensure_config_dir() / cls.DEFAULT_CONFIG_FILE.name
            cls._write_atomically(config_path, settings)
        except OSError as e:
            raise ConfigError(f"Failed to save config: {e}") from e
        logger.debug(f"Saved config to: {config_path}")

    @classmethod
    def get_binary_path(cls, cli_value: str | None = None, custom_path: str | None = None) -> str:
        """Get hypervisor binary path with CLI override."""
        if cli_value:
            return cli_value
        return cls.load_settings(custom_path).binary_path


__all__ = ["ConfigError", "ConfigManager", "HypervisorSettings"]
