"""Hypervisor command execution with pipe deadlock prevention.

Philosophy:
- Single responsibility: run one hypervisor command and report what happened
- Standard library only (no external dependencies)
- Non-zero exit codes are results, not exceptions
- No retries: callers decide what a failure means

Public API (the "studs"):
    ExecConfig: Per-call timeout and interactive flag
    CommandResult: Result dataclass
    CommandAdapter: Executes hypervisor commands
"""

import logging
import shlex
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path

logger = logging.getLogger(__name__)

# Seconds to wait after terminate() before falling back to kill()
TERMINATE_GRACE_PERIOD = 5


@dataclass(frozen=True)
class ExecConfig:
    """Execution settings for a single command.

    Instances are immutable; operations that need different settings derive
    a copy with with_timeout() or with_interactive().
    """

    timeout: float | None = 30
    interactive: bool = False

    def with_timeout(self, timeout: float | None) -> "ExecConfig":
        """Return a copy with a different timeout (None = unbounded)."""
        return replace(self, timeout=timeout)

    def with_interactive(self, interactive: bool = True) -> "ExecConfig":
        """Return a copy with the interactive/elevated flag set."""
        return replace(self, interactive=interactive)


@dataclass
class CommandResult:
    """Result of a hypervisor command."""

    exit_code: int
    stdout_lines: list[str] = field(default_factory=list)
    stderr_lines: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


def _split_lines(data: bytes | None) -> list[str]:
    if not data:
        return []
    return data.decode("utf-8", errors="replace").splitlines()


class CommandAdapter:
    """Run commands against the hypervisor command-line tool.

    Example:
        >>> adapter = CommandAdapter("VBoxManage")
        >>> result = adapter.execute("list vms", ExecConfig(timeout=10))
        >>> for line in result.stdout_lines:
        ...     print(line)
    """

    def __init__(
        self,
        binary_path: str | Path,
        elevation_prefix: Sequence[str] | None = None,
        default_config: ExecConfig | None = None,
    ):
        """
        Args:
            binary_path: Path (or PATH name) of the hypervisor CLI
            elevation_prefix: Command prepended for interactive executions
                (e.g. ["sudo"]); empty or None runs unelevated
            default_config: Config used when execute() gets none
        """
        self.binary_path = str(binary_path)
        self.elevation_prefix = list(elevation_prefix or [])
        self.default_config = default_config or ExecConfig()

    def execute(
        self, command_line: str | Sequence[str], config: ExecConfig | None = None
    ) -> CommandResult:
        """Run a hypervisor sub-command.

        Args:
            command_line: Sub-command as a shell-style string ("list vms") or
                an argument list (["showvminfo", uuid])
            config: Execution settings (default: adapter default)

        Returns:
            CommandResult with exit code and captured output lines
        """
        if isinstance(command_line, str):
            args = shlex.split(command_line)
        else:
            args = list(command_line)
        return self.run([self.binary_path, *args], config)

    def run(self, argv: Sequence[str], config: ExecConfig | None = None) -> CommandResult:
        """Run an arbitrary command line with the adapter's execution model.

        Interactive executions are prefixed with the elevation command and
        inherit stdin/stdout so that OS-level prompts reach the user; only
        stderr is captured for them.
        """
        config = config or self.default_config
        cmd = list(argv)
        if config.interactive and self.elevation_prefix:
            cmd = [*self.elevation_prefix, *cmd]

        logger.debug(f"Executing: {' '.join(cmd)} (timeout={config.timeout})")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=None if config.interactive else subprocess.DEVNULL,
                stdout=None if config.interactive else subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError:
            # Command not found - standard exit code 127
            return CommandResult(
                exit_code=127,
                stderr_lines=[f"Command not found: {cmd[0] if cmd else 'unknown'}"],
            )
        except (PermissionError, OSError) as e:
            return CommandResult(exit_code=1, stderr_lines=[f"Error executing command: {e!s}"])

        stdout_data: list[bytes] = []
        stderr_data: list[bytes] = []

        def drain_pipe(pipe, storage):
            """Read from pipe until EOF, store in list."""
            try:
                data = pipe.read()
                if data:
                    storage.append(data)
            except OSError:
                # Pipe closed - normal during process termination
                pass

        threads = []
        if process.stdout is not None:
            threads.append(
                threading.Thread(target=drain_pipe, args=(process.stdout, stdout_data), daemon=True)
            )
        threads.append(
            threading.Thread(target=drain_pipe, args=(process.stderr, stderr_data), daemon=True)
        )
        for thread in threads:
            thread.start()

        timed_out = False
        try:
            process.wait(timeout=config.timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning(f"Command timed out after {config.timeout}s: {' '.join(cmd)}")
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_GRACE_PERIOD)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()

        for thread in threads:
            thread.join(timeout=1)

        exit_code = process.returncode if process.returncode is not None else -1
        result = CommandResult(
            exit_code=exit_code,
            stdout_lines=_split_lines(stdout_data[0] if stdout_data else None),
            stderr_lines=_split_lines(stderr_data[0] if stderr_data else None),
            timed_out=timed_out,
        )
        logger.debug(f"Exit code {result.exit_code} from {cmd[0]}")
        return result


__all__ = ["CommandAdapter", "CommandResult", "ExecConfig"]
