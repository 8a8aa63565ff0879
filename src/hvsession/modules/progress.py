"""
Progress Tracking Module

Report discrete progress transitions for multi-step hypervisor operations.

A FiniteTask is the progress collaborator handed to long operations
(session loading, extension pack installation, readiness checks). It
records every transition and forwards it to an optional listener, so the
same task drives console output in the CLI and assertions in tests.
"""

import logging
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ProgressStage(Enum):
    """Progress stage indicators."""

    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    DONE = "done"
    LENGTHY = "lengthy"


@dataclass
class ProgressUpdate:
    """Progress update information."""

    stage: ProgressStage
    message: str
    timestamp: float
    operation: str
    current: int = 0
    maximum: int = 0
    code: Any = None


ProgressListener = Callable[[ProgressUpdate], None]


class FiniteTask:
    """
    Progress collaborator with a known number of steps.

    Each done() advances the task by one step. begin() creates a child task
    for a nested operation; the child counts as one step of its parent and
    shares the parent's listener and update log.

    Example:
        >>> task = FiniteTask("Loading sessions")
        >>> task.set_max(2)
        >>> task.doing("Reading descriptors")
        >>> task.done("Descriptors read")
        >>> task.complete("All sessions loaded")
    """

    def __init__(
        self,
        name: str,
        listener: Optional[ProgressListener] = None,
        parent: Optional["FiniteTask"] = None,
    ):
        self.name = name
        self.listener = listener
        self.parent = parent
        self.maximum = 0
        self.current = 0
        self.lengthy = False
        self.failed = False
        self.completed = False
        self.failure_code: Any = None
        self.updates: list[ProgressUpdate] = parent.updates if parent else []

    def set_max(self, maximum: int) -> None:
        """Set the number of steps this task will report."""
        self.maximum = maximum
        self.current = 0

    def doing(self, message: str) -> None:
        """Report that a step has started."""
        self._emit(ProgressStage.IN_PROGRESS, message)

    def done(self, message: str) -> None:
        """Report that a step finished and advance the task."""
        if self.maximum and self.current < self.maximum:
            self.current += 1
        self._emit(ProgressStage.DONE, message)

    def update(self, current: int) -> None:
        """Report a new absolute position (e.g. downloaded bytes)."""
        self.current = current
        self._emit(ProgressStage.IN_PROGRESS, f"{current}/{self.maximum}")

    def fail(self, message: str, code: Any = None) -> None:
        """Report that the task failed; the failure propagates to the parent."""
        self.failed = True
        self.failure_code = code
        self._emit(ProgressStage.FAILED, message, code)
        if self.parent is not None and not self.parent.failed:
            self.parent.failed = True
            self.parent.failure_code = code

    def complete(self, message: str) -> None:
        """Report that the task finished successfully."""
        self.current = self.maximum
        self.completed = True
        self._emit(ProgressStage.COMPLETED, message)
        if self.parent is not None and self.parent.maximum:
            self.parent.current = min(self.parent.current + 1, self.parent.maximum)

    def mark_lengthy(self, lengthy: bool) -> None:
        """Flag the current step as having unbounded or interactive duration."""
        self.lengthy = lengthy
        self._emit(ProgressStage.LENGTHY, "lengthy" if lengthy else "not lengthy")

    def begin(self, name: str) -> "FiniteTask":
        """Start a child task for a nested operation."""
        child = FiniteTask(name, listener=self.listener, parent=self)
        child._emit(ProgressStage.STARTED, name)
        return child

    def messages(self, stage: Optional[ProgressStage] = None) -> list[str]:
        """Messages recorded so far, optionally filtered by stage."""
        return [u.message for u in self.updates if stage is None or u.stage == stage]

    def _emit(self, stage: ProgressStage, message: str, code: Any = None) -> None:
        update = ProgressUpdate(
            stage=stage,
            message=message,
            timestamp=time.time(),
            operation=self.name,
            current=self.current,
            maximum=self.maximum,
            code=code,
        )
        self.updates.append(update)
        if self.listener is not None:
            self.listener(update)


class ConsoleProgressDisplay:
    """
    Console listener for FiniteTask updates.

    Features:
    - Stage-based symbols
    - Step counters
    - Optional ASCII fallback
    """

    # Stage symbols (Unicode)
    SYMBOLS = {
        ProgressStage.STARTED: "►",
        ProgressStage.IN_PROGRESS: "...",
        ProgressStage.DONE: "✓",
        ProgressStage.COMPLETED: "✓",
        ProgressStage.FAILED: "✗",
    }

    # Fallback ASCII symbols (if Unicode not supported)
    ASCII_SYMBOLS = {
        ProgressStage.STARTED: ">",
        ProgressStage.IN_PROGRESS: "...",
        ProgressStage.DONE: "OK",
        ProgressStage.COMPLETED: "OK",
        ProgressStage.FAILED: "FAIL",
    }

    def __init__(self, use_unicode: bool = True, output_file=None):
        """
        Initialize progress display.

        Args:
            use_unicode: Use Unicode symbols (True) or ASCII (False)
            output_file: Output file object (default: sys.stdout)
        """
        self.use_unicode = use_unicode
        self.output_file = output_file or sys.stdout

    def __call__(self, update: ProgressUpdate) -> None:
        # Byte counters and lengthy markers are too chatty for a terminal
        if update.stage == ProgressStage.LENGTHY:
            return
        if update.stage == ProgressStage.IN_PROGRESS and update.message.startswith(
            f"{update.current}/"
        ):
            return
        self._print(self._format_update(update))

    def _format_update(self, update: ProgressUpdate) -> str:
        symbols = self.SYMBOLS if self.use_unicode else self.ASCII_SYMBOLS
        symbol = symbols.get(update.stage, "")
        message = f"{symbol} {update.message}"
        if update.stage == ProgressStage.FAILED and update.code is not None:
            code = getattr(update.code, "value", update.code)
            message += f" ({code})"
        return message

    def _print(self, message: str) -> None:
        print(message, file=self.output_file, flush=True)


__all__ = [
    "ConsoleProgressDisplay",
    "FiniteTask",
    "ProgressListener",
    "ProgressStage",
    "ProgressUpdate",
]
