"""Extension pack installation pipeline.

Philosophy:
- Single responsibility: get the vendor extension pack installed
- Trust nothing downloaded: the artifact must match the checksum published
  by the trusted configuration source before it is installed
- Every outcome is an InstallResult; nothing escapes unstructured

Public API (the "studs"):
    InstallResult: Installation result dataclass
    ExtensionPackInstaller: has_extension_pack() and install()

Pipeline:
    Preparing → FetchConfig → Download → Verify → Install → Cleanup → Done

The downloaded artifact is removed only after a successful install; on
every failure path it is left on disk for inspection.
"""

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

from hvsession.download_provider import (
    ConfigSource,
    DownloadProvider,
    sha256_file,
    url_filename,
)
from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.integrity import HypervisorVersion
from hvsession.modules.progress import FiniteTask
from hvsession.modules.subprocess_helper import CommandAdapter, ExecConfig
from hvsession.named_locks import NamedLockTable

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "Oracle VM VirtualBox Extension Pack"
DEFAULT_ARTIFACT_NAME = "extension.vbox-extpack"


@dataclass
class InstallResult:
    """Result of an installation attempt."""

    status: HypervisorStatus
    message: str = ""
    artifact_path: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded


class ExtensionPackInstaller:
    """Download, verify and install the hypervisor extension pack."""

    def __init__(
        self,
        adapter: CommandAdapter,
        locks: NamedLockTable,
        config_source: ConfigSource | None = None,
        download_provider: DownloadProvider | None = None,
        version: HypervisorVersion | None = None,
        hypervisor_name: str = "vbox",
        marker: str = DEFAULT_MARKER,
        tmp_dir: Path | None = None,
        exec_config: ExecConfig | None = None,
    ):
        """
        Args:
            adapter: Hypervisor command adapter
            locks: Named lock table
            config_source: Trusted configuration source
            download_provider: Artifact transport
            version: Installed hypervisor version (selects the artifact)
            hypervisor_name: Prefix of the configuration keys
            marker: Text identifying the pack in `list extpacks`
            tmp_dir: Download directory (default: system temp dir)
            exec_config: Base execution settings
        """
        self.adapter = adapter
        self.locks = locks
        self.config_source = config_source
        self.download_provider = download_provider
        self.version = version or HypervisorVersion()
        self.hypervisor_name = hypervisor_name
        self.marker = marker
        self.tmp_dir = Path(tmp_dir) if tmp_dir else Path(tempfile.gettempdir())
        self.exec_config = exec_config or adapter.default_config

    @property
    def version_key(self) -> str:
        """Configuration key prefix for the installed version, e.g. "vbox-6.1.38"."""
        return f"{self.hypervisor_name}-{self.version}"

    def has_extension_pack(self) -> bool:
        """Check if the extension pack is installed."""
        with self.locks.hold(NamedLockTable.GENERIC):
            result = self.adapter.execute("list extpacks", self.exec_config)
        return any(self.marker in line for line in result.stdout_lines)

    def install(self, progress: FiniteTask | None = None) -> InstallResult:
        """Install the extension pack.

        Returns:
            InstallResult with status OK, ALREADY_EXISTS or the failure status

        Example:
            >>> result = installer.install(FiniteTask("Extension pack"))
            >>> if result.succeeded:
            ...     print(result.message)
        """
        progress = progress or FiniteTask("Installing extension pack")
        progress.set_max(5)
        progress.doing("Preparing for extension pack installation")

        if self.has_extension_pack():
            progress.complete("Already installed")
            return InstallResult(HypervisorStatus.ALREADY_EXISTS, "Already installed")

        # Trusted configuration
        config_task = progress.begin("Downloading hypervisor configuration")
        if self.config_source is None:
            return self._failed(
                progress, "Unable to fetch hypervisor configuration", HypervisorStatus.EXTERNAL_ERROR
            )
        try:
            config = self.config_source.fetch()
        except HypervisorError as e:
            logger.error(f"Configuration fetch failed: {e.message}")
            if e.status in (HypervisorStatus.NOT_VALIDATED, HypervisorStatus.NOT_TRUSTED):
                return self._failed(
                    progress, "Hypervisor configuration integrity check failed", e.status
                )
            return self._failed(
                progress, "Unable to fetch hypervisor configuration", HypervisorStatus.EXTERNAL_ERROR
            )
        config_task.complete("Hypervisor configuration downloaded")

        url_key = f"{self.version_key}-extpack"
        checksum_key = f"{self.version_key}-extpackChecksum"
        logger.info(f"Version key: '{self.version_key}' from '{self.version.ver_string}'")
        for key in (url_key, checksum_key):
            if key not in config:
                return self._failed(
                    progress,
                    f"No extension pack entry '{key}' in hypervisor configuration",
                    HypervisorStatus.EXTERNAL_ERROR,
                )
        url = config[url_key]
        expected_checksum = config[checksum_key]

        # Download
        if self.download_provider is None:
            return self._failed(
                progress, "Unable to download extension pack", HypervisorStatus.EXTERNAL_ERROR
            )
        artifact = self.tmp_dir / (url_filename(url) or DEFAULT_ARTIFACT_NAME)
        download_task = progress.begin("Downloading extension pack")
        try:
            self.download_provider.download_file(url, artifact, download_task)
        except HypervisorError as e:
            return self._failed(progress, "Unable to download extension pack", e.status)

        # Verify
        progress.doing("Validating extension pack integrity")
        try:
            checksum = sha256_file(artifact)
        except OSError as e:
            logger.error(f"Unable to read {artifact}: {e}")
            return self._failed(
                progress, "Unable to read extension pack", HypervisorStatus.IO_ERROR, artifact
            )
        logger.info(f"File checksum {checksum} <-> {expected_checksum}")
        if checksum != expected_checksum:
            return self._failed(
                progress,
                "Extension pack integrity was not validated",
                HypervisorStatus.NOT_VALIDATED,
                artifact,
            )
        progress.done("Extension pack integrity validated")

        # Install (may prompt for credentials and the license; no timeout)
        progress.doing("Installing extension pack")
        progress.mark_lengthy(True)
        install_config = self.exec_config.with_interactive(True).with_timeout(None)
        try:
            with self.locks.hold(NamedLockTable.GENERIC):
                result = self.adapter.execute(["extpack", "install", str(artifact)], install_config)
        finally:
            progress.mark_lengthy(False)
        if result.exit_code != 0:
            if result.stderr_lines:
                logger.error(f"extpack install: {result.stderr_lines[0]}")
            return self._failed(
                progress,
                "Extension pack failed to install",
                HypervisorStatus.EXTERNAL_ERROR,
                artifact,
            )
        progress.done("Installed extension pack")

        # Cleanup
        progress.doing("Cleaning-up")
        try:
            artifact.unlink()
        except OSError as e:
            logger.warning(f"Unable to remove {artifact}: {e}")
        progress.done("Cleaned-up")

        progress.complete("Extension pack installed successfully")
        return InstallResult(HypervisorStatus.OK, "Extension pack installed successfully")

    @staticmethod
    def _failed(
        progress: FiniteTask,
        message: str,
        status: HypervisorStatus,
        artifact: Path | None = None,
    ) -> InstallResult:
        logger.error(f"{message} ({status.value})")
        progress.fail(message, status)
        return InstallResult(status, message, artifact)


__all__ = ["ExtensionPackInstaller", "InstallResult"]
