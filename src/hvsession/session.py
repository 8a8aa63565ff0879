"""Per-VM session lifecycle.

A Session tracks one virtual machine through its lifecycle:

    MISSING ──create──► CREATED ──start──► RUNNING ──pause──► PAUSED
       ▲                  │ ▲                │  ▲               │
       └─────destroy──────┘ └──────stop──────┘  └────resume─────┘
                                     RUNNING/PAUSED ──save_state──► SAVED

Every transition runs one hypervisor command under the VM's identity lock,
is checked against TRANSITIONS first, and is persisted through the session
store once the command succeeds.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.modules.progress import FiniteTask
from hvsession.modules.subprocess_helper import CommandAdapter, CommandResult, ExecConfig
from hvsession.named_locks import NamedLockTable
from hvsession.session_store import SessionDescriptor, SessionStore
from hvsession.text_parsing import parse_key_value_lines
from hvsession.vm_queries import (
    MACHINE_INFO_ERROR_KEY,
    VMQueries,
    machine_info_failed,
    machine_not_found,
)

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle state of a session."""

    MISSING = "missing"
    CREATED = "created"
    RUNNING = "running"
    SAVED = "saved"
    PAUSED = "paused"
    ABORTED = "aborted"

    @classmethod
    def from_value(cls, value: str) -> "SessionState":
        """Parse a persisted state; unknown values map to MISSING."""
        try:
            return cls(value.lower())
        except ValueError:
            logger.warning(f"Unknown session state '{value}', assuming missing")
            return cls.MISSING


TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.MISSING: frozenset({SessionState.CREATED}),
    SessionState.CREATED: frozenset({SessionState.RUNNING, SessionState.MISSING}),
    SessionState.RUNNING: frozenset(
        {SessionState.PAUSED, SessionState.SAVED, SessionState.CREATED}
    ),
    SessionState.PAUSED: frozenset(
        {SessionState.RUNNING, SessionState.SAVED, SessionState.CREATED}
    ),
    SessionState.SAVED: frozenset({SessionState.RUNNING, SessionState.CREATED}),
    SessionState.ABORTED: frozenset(
        {SessionState.RUNNING, SessionState.CREATED, SessionState.MISSING}
    ),
}

# Leading words of the showvminfo "State:" line
_MACHINE_STATES = (
    ("powered off", SessionState.CREATED),
    ("running", SessionState.RUNNING),
    ("starting", SessionState.RUNNING),
    ("restoring", SessionState.RUNNING),
    ("paused", SessionState.PAUSED),
    ("saved", SessionState.SAVED),
    ("saving", SessionState.SAVED),
    ("aborted", SessionState.ABORTED),
)

FRONTENDS = ("headless", "gui")
LOG_FOLDER_KEY = "Log folder"


def can_transition(source: SessionState, target: SessionState) -> bool:
    """Whether the lifecycle allows moving from source to target."""
    return target in TRANSITIONS[source]


def map_machine_state(text: str) -> SessionState | None:
    """Map a showvminfo "State:" value to a SessionState (None if unknown)."""
    text = text.strip().lower()
    for prefix, state in _MACHINE_STATES:
        if text.startswith(prefix):
            return state
    return None


@dataclass
class SessionContext:
    """Collaborators shared by all sessions of a registry."""

    adapter: CommandAdapter
    locks: NamedLockTable
    store: SessionStore
    queries: VMQueries
    exec_config: ExecConfig
    machine_info_timeout: float | None = 10


class Session:
    """One virtual machine managed through the hypervisor CLI.

    Attributes:
        internal_id: Identity assigned by hvsession (stable, unique)
        external_id: Identity assigned by the hypervisor (None until created)
        name: Display name, also the hypervisor VM name
        state: Current SessionState
        parameters: Free-form string parameters (memory, cpus, ostype, frontend)
        open_count: Number of outstanding checkouts by callers
    """

    def __init__(
        self,
        context: SessionContext,
        internal_id: str,
        name: str,
        external_id: str | None = None,
        state: SessionState = SessionState.MISSING,
        parameters: dict[str, str] | None = None,
    ):
        self.context = context
        self.internal_id = internal_id
        self.name = name
        self.external_id = external_id
        self.state = state
        self.parameters: dict[str, str] = dict(parameters or {})
        self.open_count = 0
        self.aborted = False
        self.progress: FiniteTask | None = None

    @classmethod
    def from_descriptor(cls, context: SessionContext, descriptor: SessionDescriptor) -> "Session":
        return cls(
            context,
            internal_id=descriptor.internal_id,
            name=descriptor.name,
            external_id=descriptor.external_id,
            state=SessionState.from_value(descriptor.state),
            parameters=descriptor.parameters,
        )

    def to_descriptor(self) -> SessionDescriptor:
        return SessionDescriptor(
            internal_id=self.internal_id,
            name=self.name,
            external_id=self.external_id,
            state=self.state.value,
            parameters=dict(self.parameters),
        )

    def rebind(self, descriptor: SessionDescriptor) -> None:
        """Refresh persisted fields from a descriptor, keeping checkout state."""
        self.name = descriptor.name
        self.external_id = descriptor.external_id
        self.state = SessionState.from_value(descriptor.state)
        self.parameters = dict(descriptor.parameters)

    def persist(self) -> None:
        """Write this session's descriptor to the store."""
        self.context.store.save(self.to_descriptor())

    def __repr__(self) -> str:
        return (
            f"Session(internal_id={self.internal_id!r}, name={self.name!r}, "
            f"external_id={self.external_id!r}, state={self.state.value})"
        )

    # Checkout lifecycle

    def open(self, progress: FiniteTask | None = None) -> SessionState:
        """Start a checkout: clear the abort flag and refresh the state."""
        self.aborted = False
        self.progress = progress
        if progress is not None:
            progress.doing("Updating VM information")
        state = self.refresh_state()
        if progress is not None:
            progress.done("VM information updated")
        return state

    def abort(self) -> None:
        """Stop accepting transitions until the next open()."""
        logger.debug(f"Aborting session {self.internal_id}")
        self.aborted = True
        self.progress = None

    def notify_destroyed(self) -> None:
        """The VM has disappeared from the hypervisor."""
        logger.info(f"Session {self.name} ({self.internal_id}) was destroyed")
        self.state = SessionState.MISSING

    # Queries

    def refresh_state(self) -> SessionState:
        """Re-read the VM state from the hypervisor.

        Unknown "State:" values keep the current state, as does a failed
        query other than "VM not found" (a timeout, a tool crash).
        """
        if not self.external_id:
            new_state = SessionState.MISSING
        else:
            info = self.context.queries.get_machine_info(
                self.external_id, timeout=self.context.machine_info_timeout
            )
            if machine_not_found(info):
                new_state = SessionState.MISSING
            elif machine_info_failed(info):
                logger.warning(
                    f"Unable to query VM {self.external_id} for {self.name} "
                    f"({info[MACHINE_INFO_ERROR_KEY]}), keeping state {self.state.value}"
                )
                new_state = self.state
            else:
                mapped = map_machine_state(info.get("State", ""))
                if mapped is None:
                    logger.warning(
                        f"Unrecognized machine state '{info.get('State', '')}' for {self.name}"
                    )
                    mapped = self.state
                new_state = mapped

        if new_state != self.state:
            logger.debug(f"Session {self.name}: {self.state.value} -> {new_state.value}")
            self.state = new_state
            self.persist()
        return self.state

    def get_property(self, name: str) -> str | None:
        if not self.external_id:
            return None
        return self.context.queries.get_property(self.external_id, name)

    def get_all_properties(self) -> dict[str, str]:
        if not self.external_id:
            return {}
        return self.context.queries.get_all_properties(self.external_id)

    def get_machine_info(self) -> dict[str, str]:
        if not self.external_id:
            return {}
        info = self.context.queries.get_machine_info(
            self.external_id, timeout=self.context.machine_info_timeout
        )
        return {} if machine_info_failed(info) else info

    def get_process_id(self) -> int | None:
        """Process id of the running VM, read from its log folder."""
        log_folder = self.get_machine_info().get(LOG_FOLDER_KEY)
        if not log_folder:
            return None
        return self.context.queries.get_pid_from_log(log_folder)

    # Transitions

    def create(self) -> str:
        """Register a new VM named after the session and apply its parameters.

        Returns:
            The hypervisor-assigned identity

        Raises:
            HypervisorError: INVALID_STATE or EXTERNAL_ERROR
        """
        self._require(SessionState.CREATED, needs_vm=False)
        self._doing(f"Creating VM {self.name}")

        args = ["createvm", "--name", self.name, "--register"]
        if self.parameters.get("ostype"):
            args += ["--ostype", self.parameters["ostype"]]
        result = self._execute(self.internal_id, args)
        if result.exit_code != 0:
            self._fail(f"Unable to create VM {self.name}", result)

        external_id = parse_key_value_lines(result.stdout_lines).get("UUID")
        if not external_id:
            self._fail(f"Hypervisor did not report an identity for {self.name}", result)

        self.external_id = external_id
        self.state = SessionState.CREATED
        self.persist()

        modify = ["modifyvm", external_id]
        for key in ("memory", "cpus"):
            if self.parameters.get(key):
                modify += [f"--{key}", self.parameters[key]]
        if len(modify) > 2:
            result = self._execute(external_id, modify)
            if result.exit_code != 0:
                self._fail(f"Unable to configure VM {self.name}", result)

        self._done("VM created")
        return external_id

    def start(self) -> None:
        frontend = self.parameters.get("frontend", "headless")
        if frontend not in FRONTENDS:
            raise HypervisorError(
                f"Unknown frontend '{frontend}' (expected one of {', '.join(FRONTENDS)})",
                HypervisorStatus.INVALID_STATE,
            )
        self._transition(
            SessionState.RUNNING,
            ["startvm", self.external_id, "--type", frontend],
            "Starting VM",
            "VM started",
        )

    def pause(self) -> None:
        self._transition(
            SessionState.PAUSED,
            ["controlvm", self.external_id, "pause"],
            "Pausing VM",
            "VM paused",
        )

    def resume(self) -> None:
        if self.state == SessionState.SAVED:
            raise HypervisorError(
                "A saved VM is resumed with start()", HypervisorStatus.INVALID_STATE
            )
        self._transition(
            SessionState.RUNNING,
            ["controlvm", self.external_id, "resume"],
            "Resuming VM",
            "VM resumed",
        )

    def save_state(self) -> None:
        self._transition(
            SessionState.SAVED,
            ["controlvm", self.external_id, "savestate"],
            "Saving VM state",
            "VM state saved",
        )

    def stop(self) -> None:
        """Power the VM off; a saved VM has its saved state discarded instead."""
        if self.state == SessionState.SAVED:
            args = ["discardstate", self.external_id]
        else:
            args = ["controlvm", self.external_id, "poweroff"]
        self._transition(SessionState.CREATED, args, "Stopping VM", "VM stopped")

    def destroy(self) -> None:
        """Unregister the VM and delete its files."""
        self._transition(
            SessionState.MISSING,
            ["unregistervm", self.external_id, "--delete"],
            "Destroying VM",
            "VM destroyed",
        )
        self.external_id = None
        self.persist()

    def _transition(
        self, target: SessionState, args: list, doing: str, done: str
    ) -> None:
        self._require(target)
        self._doing(doing)
        result = self._execute(self.external_id, args)
        if result.exit_code != 0:
            self._fail(f"{doing} failed for {self.name}", result)
        self.state = target
        self.persist()
        self._done(done)

    def _require(self, target: SessionState, needs_vm: bool = True) -> None:
        if self.aborted:
            raise HypervisorError(
                f"Session {self.name} was aborted", HypervisorStatus.INVALID_STATE
            )
        if not can_transition(self.state, target):
            raise HypervisorError(
                f"Cannot move session {self.name} from {self.state.value} to {target.value}",
                HypervisorStatus.INVALID_STATE,
            )
        if needs_vm and not self.external_id:
            raise HypervisorError(
                f"Session {self.name} has no VM", HypervisorStatus.INVALID_STATE
            )

    def _execute(self, lock_name: str, args: list) -> CommandResult:
        with self.context.locks.hold(lock_name):
            return self.context.adapter.execute(args, self.context.exec_config)

    def _doing(self, message: str) -> None:
        logger.debug(f"{message}: {self.name}")
        if self.progress is not None:
            self.progress.doing(message)

    def _done(self, message: str) -> None:
        if self.progress is not None:
            self.progress.done(message)

    def _fail(self, message: str, result: CommandResult) -> None:
        if result.stderr_lines:
            message = f"{message}: {result.stderr_lines[0]}"
        logger.error(message)
        if self.progress is not None:
            self.progress.fail(message, HypervisorStatus.EXTERNAL_ERROR)
        raise HypervisorError(message, HypervisorStatus.EXTERNAL_ERROR)


__all__ = [
    "TRANSITIONS",
    "Session",
    "SessionContext",
    "SessionState",
    "can_transition",
    "map_machine_state",
]
