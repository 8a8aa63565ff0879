"""Session registry.

Owns every Session known to hvsession and keeps the persisted descriptors
consistent with the hypervisor's own list of VMs.

Public API (the "studs"):
    SessionRegistry: load_sessions, allocate, open, close, delete,
        find_by_external_id, find_by_name, abort

Mutating methods are not internally locked; callers serialize them
(load_sessions takes the session-update lock itself).
"""

import logging
import uuid

from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.modules.progress import FiniteTask
from hvsession.named_locks import NamedLockTable
from hvsession.session import Session, SessionContext, SessionState
from hvsession.text_parsing import build_live_vm_map

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Mapping of internal id to Session, plus the ordered open list."""

    def __init__(self, context: SessionContext):
        self.context = context
        self._sessions: dict[str, Session] = {}
        self._open: list[Session] = []

    @property
    def sessions(self) -> list[Session]:
        """All registered sessions."""
        return list(self._sessions.values())

    @property
    def open_sessions(self) -> list[Session]:
        """Currently checked-out sessions, in open order."""
        return list(self._open)

    def get(self, internal_id: str) -> Session | None:
        return self._sessions.get(internal_id)

    def find_by_external_id(self, external_id: str) -> Session | None:
        for session in self._sessions.values():
            if session.external_id == external_id:
                return session
        return None

    def find_by_name(self, name: str) -> Session | None:
        for session in self._sessions.values():
            if session.name == name:
                return session
        return None

    def _find_open(self, internal_id: str) -> Session | None:
        for session in self._open:
            if session.internal_id == internal_id:
                return session
        return None

    def load_sessions(self, progress: FiniteTask | None = None) -> HypervisorStatus:
        """Reload descriptors and reconcile them with the hypervisor.

        Steps:
            1. Replace the registry with the persisted descriptors
            2. Read the live VM list
            3. Drop sessions whose VM no longer exists
            4. Release open sessions that are no longer registered

        Returns:
            OK, or QUERY_ERROR if the VM list could not be read
        """
        with self.context.locks.hold(NamedLockTable.SESSION_UPDATE):
            if progress is not None:
                progress.set_max(4)
                progress.doing("Loading sessions from disk")

            self._sessions.clear()
            bound: dict[str, str] = {}
            for descriptor in self.context.store.load_all():
                if descriptor.external_id:
                    owner = bound.setdefault(descriptor.external_id, descriptor.internal_id)
                    if owner != descriptor.internal_id:
                        logger.warning(
                            f"Session {descriptor.name} ({descriptor.internal_id}) is bound to "
                            f"VM {descriptor.external_id} already owned by {owner}, removing it"
                        )
                        self._remove_descriptor(descriptor.internal_id, descriptor.name)
                        continue
                session = self._find_open(descriptor.internal_id)
                if session is not None:
                    session.rebind(descriptor)
                else:
                    session = Session.from_descriptor(self.context, descriptor)
                self._sessions[session.internal_id] = session

            if progress is not None:
                progress.done("Sessions loaded")
                progress.doing("Loading sessions from hypervisor")

            with self.context.locks.hold(NamedLockTable.GENERIC):
                result = self.context.adapter.execute("list vms", self.context.exec_config)
            if result.exit_code != 0:
                logger.error(f"Unable to list VMs (exit code {result.exit_code})")
                if progress is not None:
                    progress.fail("Unable to list hypervisor VMs", HypervisorStatus.QUERY_ERROR)
                return HypervisorStatus.QUERY_ERROR
            live = build_live_vm_map(result.stdout_lines)

            if progress is not None:
                progress.done("Hypervisor VMs listed")
                progress.doing("Cleaning-up expired sessions")

            while True:
                expired = [s for s in self._sessions.values() if s.external_id not in live]
                if not expired:
                    break
                for session in expired:
                    logger.info(f"Session {session.name} has no VM any more, removing it")
                    self.delete(session)

            if progress is not None:
                progress.done("Sessions cleaned-up")
                progress.doing("Releasing old open sessions")

            while True:
                lost = [s for s in self._open if s.internal_id not in self._sessions]
                if not lost:
                    break
                for session in lost:
                    session.notify_destroyed()
                    self._open.remove(session)

            if progress is not None:
                progress.done("Old open sessions released")

        logger.debug(f"Loaded {len(self._sessions)} sessions ({len(live)} live VMs)")
        return HypervisorStatus.OK

    def allocate(self, name: str | None = None) -> Session:
        """Create, persist and register a new session.

        Raises:
            HypervisorError: IO_ERROR if the descriptor cannot be written
        """
        internal_id = str(uuid.uuid4())
        session = Session(
            self.context,
            internal_id=internal_id,
            name=name or f"session-{internal_id[:8]}",
        )
        session.persist()
        self._sessions[internal_id] = session
        logger.debug(f"Allocated session {session.name} ({internal_id})")
        return session

    def open(
        self, parameters: dict[str, str] | None = None, progress: FiniteTask | None = None
    ) -> Session:
        """Check out a session, reusing an existing one with the same name.

        Args:
            parameters: Session parameters; "name" selects the session
            progress: Progress task for the state refresh

        Returns:
            The opened session
        """
        parameters = dict(parameters or {})
        name = parameters.get("name")

        session = self.find_by_name(name) if name else None
        if session is None:
            session = self.allocate(name)
            session.parameters.update({k: v for k, v in parameters.items() if k != "name"})
            session.persist()

        if self._find_open(session.internal_id) is None:
            self._open.append(session)
        session.open_count += 1

        session.open(progress)
        return session

    def close(self, session: Session) -> None:
        """Release one checkout; the last release aborts and may delete the session."""
        if session.open_count <= 0:
            logger.warning(f"Session {session.name} closed more times than opened")
            return

        session.open_count -= 1
        if session.open_count > 0:
            return

        session.abort()
        opened = self._find_open(session.internal_id)
        if opened is not None:
            self._open.remove(opened)

        if session.state == SessionState.MISSING:
            self.delete(session)

    def delete(self, session: Session) -> None:
        """Remove a session from the registry, the open list and the store."""
        registered = self._sessions.pop(session.internal_id, None)
        if registered is None:
            return

        opened = self._find_open(session.internal_id)
        if opened is not None:
            self._open.remove(opened)
            opened.notify_destroyed()

        self._remove_descriptor(session.internal_id, session.name)

    def _remove_descriptor(self, internal_id: str, name: str) -> None:
        try:
            self.context.store.remove(internal_id)
        except HypervisorError as e:
            logger.warning(f"Session {name} removed but descriptor remains: {e.message}")

    def abort(self) -> None:
        """Abort every open session and forget all sessions (shutdown)."""
        for session in self._open:
            session.abort()
        self._open.clear()
        self._sessions.clear()


__all__ = ["SessionRegistry"]
