"""Status codes and the error type shared by the session engine.

Every pipeline in hvsession ends in a HypervisorStatus. Components that
cannot return a status (queries, state transitions) raise HypervisorError,
which carries the same status so callers can report it on a progress channel.
"""

from enum import Enum


class HypervisorStatus(Enum):
    """Outcome of a hypervisor operation."""

    OK = "ok"
    ALREADY_EXISTS = "already_exists"
    QUERY_ERROR = "query_error"
    EXTERNAL_ERROR = "external_error"
    NOT_VALIDATED = "not_validated"
    NOT_TRUSTED = "not_trusted"
    USER_DENIED = "user_denied"
    MISSING_FIELD = "missing_field"
    INVALID_STATE = "invalid_state"
    NOT_READY = "not_ready"
    IO_ERROR = "io_error"

    @property
    def succeeded(self) -> bool:
        """OK and ALREADY_EXISTS both leave the system in the requested state."""
        return self in (HypervisorStatus.OK, HypervisorStatus.ALREADY_EXISTS)


class HypervisorError(Exception):
    """Raised when a hypervisor operation fails."""

    def __init__(self, message: str, status: HypervisorStatus = HypervisorStatus.EXTERNAL_ERROR):
        super().__init__(message)
        self.message = message
        self.status = status


__all__ = ["HypervisorError", "HypervisorStatus"]
