"""Hypervisor orchestrator.

Composes the command adapter, integrity validator, capability probe,
session registry and extension pack installer into the single object an
external control surface talks to.

Example:
    >>> settings = ConfigManager.load_settings()
    >>> hv = Hypervisor.from_settings(settings)
    >>> if hv.validate() and hv.ensure_ready(FiniteTask("Startup"), CLIInteractionHandler()):
    ...     session = hv.session_open({"name": "build-vm"})
"""

import logging
import shlex

from hvsession.capabilities import CapabilityProbe, HypervisorCapabilities
from hvsession.config_manager import HypervisorSettings
from hvsession.download_provider import (
    ConfigSource,
    DownloadProvider,
    HttpConfigSource,
    HttpDownloadProvider,
)
from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.extpack_installer import ExtensionPackInstaller, InstallResult
from hvsession.integrity import HypervisorVersion, IntegrityValidator
from hvsession.modules.cli_detector import HypervisorDetector
from hvsession.modules.interaction_handler import InteractionHandler
from hvsession.modules.progress import FiniteTask
from hvsession.modules.subprocess_helper import CommandAdapter, ExecConfig
from hvsession.named_locks import NamedLockTable
from hvsession.session import Session, SessionContext
from hvsession.session_registry import SessionRegistry
from hvsession.session_store import SessionStore
from hvsession.vm_queries import VMQueries

logger = logging.getLogger(__name__)

DRIVER_PROBLEM_TITLE = "Hypervisor kernel driver problem"
DRIVER_FIX_FAILED_TITLE = "Could not fix the problem"
LICENSE_TITLE = "VirtualBox Personal Use and Evaluation License (PUEL)"
LICENSE_TEXT = (
    "The VirtualBox Extension Pack is released under the VirtualBox Personal Use\n"
    "and Evaluation License (PUEL). The full license text is available at\n"
    "https://www.virtualbox.org/wiki/VirtualBox_PUEL\n\n"
    "Do you accept the terms of this license?"
)


class Hypervisor:
    """Entry point for hypervisor and session operations.

    Every operation except validate() requires a validated hypervisor and
    raises HypervisorError(NOT_READY) otherwise.
    """

    def __init__(
        self,
        settings: HypervisorSettings,
        adapter: CommandAdapter,
        locks: NamedLockTable | None = None,
        detector: HypervisorDetector | None = None,
        config_source: ConfigSource | None = None,
        download_provider: DownloadProvider | None = None,
    ):
        self.settings = settings
        self.adapter = adapter
        self.locks = locks or NamedLockTable(settings.lock_path)
        self.exec_config = adapter.default_config

        self.validator = IntegrityValidator(adapter, detector, self.exec_config)
        self.probe = CapabilityProbe(adapter, self.locks, self.exec_config)
        self.queries = VMQueries(adapter, self.locks, self.exec_config)
        self.store = SessionStore(settings.runtime_path)
        self.registry = SessionRegistry(
            SessionContext(
                adapter=adapter,
                locks=self.locks,
                store=self.store,
                queries=self.queries,
                exec_config=self.exec_config,
                machine_info_timeout=settings.machine_info_timeout,
            )
        )
        self.installer = ExtensionPackInstaller(
            adapter,
            self.locks,
            config_source=config_source,
            download_provider=download_provider,
            hypervisor_name=settings.hypervisor_name,
            marker=settings.extpack_marker,
            exec_config=self.exec_config,
        )
        self.sessions_loaded = False

    @classmethod
    def from_settings(
        cls,
        settings: HypervisorSettings,
        config_source: ConfigSource | None = None,
        download_provider: DownloadProvider | None = None,
    ) -> "Hypervisor":
        """Build a fully wired orchestrator from settings.

        The binary is resolved through PATH and the platform's known install
        locations; the HTTP transports are used unless others are given.
        """
        detector = HypervisorDetector(settings.binary_path)
        binary = detector.find_binary() or settings.binary_path
        adapter = CommandAdapter(
            binary,
            elevation_prefix=settings.elevation_prefix,
            default_config=ExecConfig(timeout=settings.default_timeout),
        )
        if config_source is None and settings.config_url:
            config_source = HttpConfigSource(
                settings.config_url,
                checksum=settings.config_checksum,
                timeout=settings.download_timeout,
            )
        if download_provider is None:
            download_provider = HttpDownloadProvider(timeout=settings.download_timeout)
        return cls(
            settings,
            adapter,
            locks=NamedLockTable(settings.lock_path),
            detector=HypervisorDetector(str(binary)),
            config_source=config_source,
            download_provider=download_provider,
        )

    @property
    def valid(self) -> bool:
        return self.validator.valid

    @property
    def version(self) -> HypervisorVersion:
        return self.validator.version

    @property
    def driver_not_loaded(self) -> bool:
        return self.validator.driver_not_loaded

    def _require_valid(self) -> None:
        if not self.validator.valid:
            raise HypervisorError(
                "Hypervisor is not installed or failed validation", HypervisorStatus.NOT_READY
            )

    def validate(self) -> bool:
        """Validate the hypervisor installation (see IntegrityValidator)."""
        valid = self.validator.validate()
        self.installer.version = self.validator.version
        return valid

    # Readiness

    def ensure_ready(
        self,
        progress: FiniteTask | None = None,
        interaction: InteractionHandler | None = None,
    ) -> bool:
        """Bring the hypervisor to a usable state.

        Phases: kernel driver repair, one-time session loading, extension
        pack installation. A failing phase stops the workflow and is
        reported on the progress task.

        Returns:
            True if the hypervisor is ready
        """
        self._require_valid()
        progress = progress or FiniteTask("Preparing hypervisor")
        progress.set_max(4)

        try:
            if self.validator.driver_not_loaded and not self._repair_driver(progress, interaction):
                return False
            progress.done("Hypervisor driver in place")

            if not self.sessions_loaded:
                loading = progress.begin("Loading sessions")
                status = self.registry.load_sessions(loading)
                if status != HypervisorStatus.OK:
                    progress.fail("Unable to load sessions", status)
                    return False
                self.sessions_loaded = True
                loading.complete("Sessions loaded")
            else:
                progress.done("Sessions are loaded")

            if not self.installer.has_extension_pack():
                if interaction is None or not interaction.confirm_license(LICENSE_TITLE, LICENSE_TEXT):
                    progress.fail("User denied extension pack license", HypervisorStatus.USER_DENIED)
                    return False
                result = self.installer.install(progress.begin("Installing extension pack"))
                if not result.succeeded:
                    progress.fail(result.message, result.status)
                    return False
            else:
                progress.done("Extension pack is installed")

        except HypervisorError as e:
            logger.error(f"Hypervisor readiness check failed: {e.message}")
            progress.fail(e.message, e.status)
            return False

        progress.complete("Hypervisor is ready")
        return True

    def _repair_driver(self, progress: FiniteTask, interaction: InteractionHandler | None) -> bool:
        repair_command = self.settings.driver_repair_command
        manual_command = " ".join([*self.settings.elevation_prefix, repair_command])

        if interaction is None:
            progress.fail(
                "No interactive channel available to repair the hypervisor driver",
                HypervisorStatus.EXTERNAL_ERROR,
            )
            return False

        if not interaction.confirm(
            DRIVER_PROBLEM_TITLE,
            "It seems the hypervisor did not manage to install its kernel driver. "
            "Do you want to try and fix this? (It will require root privileges)",
        ):
            interaction.alert(
                DRIVER_PROBLEM_TITLE,
                f"Try to run the following command and then try again:\n\n{manual_command}",
            )
            progress.fail("Hypervisor kernel driver is not loaded", HypervisorStatus.USER_DENIED)
            return False

        progress.doing("Repairing hypervisor kernel driver")
        progress.mark_lengthy(True)
        try:
            result = self.adapter.run(
                shlex.split(repair_command),
                self.exec_config.with_interactive(True).with_timeout(None),
            )
        finally:
            progress.mark_lengthy(False)

        if result.exit_code != 0:
            interaction.alert(
                DRIVER_FIX_FAILED_TITLE,
                "Unable to install the hypervisor kernel driver. Please make sure your "
                "kernel headers are installed and try again.",
            )
            progress.fail("Hypervisor driver installation failed", HypervisorStatus.EXTERNAL_ERROR)
            return False

        if not self.validate() or self.validator.driver_not_loaded:
            interaction.alert(
                DRIVER_FIX_FAILED_TITLE,
                "Unable to install the hypervisor kernel driver. Please try to uninstall "
                "and re-install the hypervisor manually!",
            )
            progress.fail(
                "Could not validate hypervisor integrity after install",
                HypervisorStatus.EXTERNAL_ERROR,
            )
            return False

        return True

    # Sessions

    def load_sessions(self, progress: FiniteTask | None = None) -> HypervisorStatus:
        self._require_valid()
        status = self.registry.load_sessions(progress)
        self.sessions_loaded = status == HypervisorStatus.OK
        return status

    def session_open(
        self, parameters: dict[str, str] | None = None, progress: FiniteTask | None = None
    ) -> Session:
        self._require_valid()
        return self.registry.open(parameters, progress)

    def session_close(self, session: Session) -> None:
        self._require_valid()
        self.registry.close(session)

    def session_delete(self, session: Session) -> None:
        self._require_valid()
        self.registry.delete(session)

    def find_session(self, external_id: str) -> Session | None:
        self._require_valid()
        return self.registry.find_by_external_id(external_id)

    def find_session_by_name(self, name: str) -> Session | None:
        self._require_valid()
        return self.registry.find_by_name(name)

    # Host information

    def get_capabilities(self) -> HypervisorCapabilities:
        self._require_valid()
        return self.probe.probe()

    def get_disk_list(self) -> list[dict[str, str]]:
        self._require_valid()
        return self.queries.get_disk_list()

    # Extension pack

    def has_extension_pack(self) -> bool:
        self._require_valid()
        return self.installer.has_extension_pack()

    def install_extension_pack(self, progress: FiniteTask | None = None) -> InstallResult:
        self._require_valid()
        return self.installer.install(progress)

    def abort(self) -> None:
        """Abort all open sessions and forget loaded state (shutdown)."""
        self.registry.abort()
        self.sessions_loaded = False


__all__ = ["Hypervisor"]
