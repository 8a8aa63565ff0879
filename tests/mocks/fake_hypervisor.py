"""
Fake hypervisor command adapter for testing.

FakeCommandAdapter is a drop-in CommandAdapter that never spawns a
process: it records every command and answers with responses configured
per command pattern.
"""

from collections.abc import Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from hvsession.modules.subprocess_helper import CommandAdapter, CommandResult, ExecConfig


def make_result(exit_code: int = 0, stdout: str = "", stderr: str = "") -> CommandResult:
    """Build a CommandResult from raw output text."""
    return CommandResult(
        exit_code=exit_code,
        stdout_lines=stdout.splitlines(),
        stderr_lines=stderr.splitlines(),
    )


class FakeCommandAdapter(CommandAdapter):
    """Capture and answer hypervisor commands.

    Responses are matched by substring against the full command line. The
    most recently configured matching pattern wins. A pattern configured
    with a sequence answers with each result in turn and then keeps
    repeating the last one.
    """

    def __init__(self, binary_path: str = "VBoxManage", elevation_prefix=None, default_config=None):
        super().__init__(binary_path, elevation_prefix or ["sudo"], default_config)
        self.calls: list[dict[str, Any]] = []
        self._responses: list[tuple[str, list[CommandResult]]] = []
        self._default_response = make_result()

    def run(self, argv: Sequence[str], config: ExecConfig | None = None) -> CommandResult:
        config = config or self.default_config
        cmd = list(argv)
        self.calls.append({"cmd": cmd, "config": config})

        cmd_str = " ".join(cmd)
        for pattern, results in reversed(self._responses):
            if pattern in cmd_str:
                if len(results) > 1:
                    return results.pop(0)
                return results[0]
        return self._default_response

    def configure_response(
        self, command_pattern: str, exit_code: int = 0, stdout: str = "", stderr: str = ""
    ) -> None:
        """Configure response for commands matching pattern."""
        self._responses.append((command_pattern, [make_result(exit_code, stdout, stderr)]))

    def configure_sequence(self, command_pattern: str, results: list[CommandResult]) -> None:
        """Configure successive responses for commands matching pattern."""
        self._responses.append((command_pattern, list(results)))

    def commands(self) -> list[str]:
        """All recorded command lines, binary included."""
        return [" ".join(call["cmd"]) for call in self.calls]

    def get_calls_matching(self, pattern: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if pattern in " ".join(call["cmd"])]

    def assert_called_with_command(self, command: str) -> None:
        if not self.get_calls_matching(command):
            raise AssertionError(f"Expected command '{command}' not found in {self.commands()}")

    def assert_not_called_with_command(self, command: str) -> None:
        if self.get_calls_matching(command):
            raise AssertionError(f"Unexpected command '{command}' was called")

    def reset(self) -> None:
        """Clear all captured calls."""
        self.calls.clear()


class RecordingLockTable:
    """Wrap a NamedLockTable and record which lock each command ran under."""

    def __init__(self, locks, adapter: FakeCommandAdapter):
        self._locks = locks
        self._adapter = adapter
        self.held: list[str] = []
        self.log: list[tuple[tuple[str, ...], str]] = []
        original_run = adapter.run

        def run(argv, config=None):
            self.log.append((tuple(self.held), " ".join(argv)))
            return original_run(argv, config)

        adapter.run = run  # type: ignore[method-assign]

    def __getattr__(self, name):
        return getattr(self._locks, name)

    @contextmanager
    def hold(self, name: str):
        with self._locks.hold(name):
            self.held.append(name)
            try:
                yield
            finally:
                self.held.pop()

    def locks_for_command(self, pattern: str) -> tuple[str, ...] | None:
        """Locks held (outermost first) when a command matching pattern ran."""
        for held, cmd in self.log:
            if pattern in cmd:
                return held
        return None


class FakeDownloadProvider:
    """DownloadProvider that writes a fixed payload instead of downloading."""

    def __init__(self, payload: bytes = b"", error=None):
        self.payload = payload
        self.error = error
        self.requests: list[tuple[str, Path]] = []

    def download_file(self, url: str, destination: Path, progress=None) -> None:
        self.requests.append((url, Path(destination)))
        if self.error is not None:
            if progress is not None:
                progress.fail(self.error.message, self.error.status)
            raise self.error
        Path(destination).write_bytes(self.payload)
        if progress is not None:
            progress.complete("Download completed")
