"""Command-line interface for hvsession.

Commands:
    status      Validate the hypervisor installation
    ready       Run the readiness workflow (driver, sessions, extension pack)
    caps        Show host CPU features and guest resource limits
    sessions    List known sessions
    session     Session lifecycle (open, create, start, stop, ...)
    extpack     Extension pack status and installation
    disks       List registered disk media
"""

import functools
import logging
import sys
from collections.abc import Callable
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from hvsession import __version__
from hvsession.config_manager import ConfigError, ConfigManager, HypervisorSettings
from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.hypervisor import LICENSE_TEXT, LICENSE_TITLE, Hypervisor
from hvsession.modules.interaction_handler import CLIInteractionHandler
from hvsession.modules.progress import ConsoleProgressDisplay, FiniteTask
from hvsession.session import Session

logger = logging.getLogger(__name__)

console = Console()


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn hvsession errors into a red message and a non-zero exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except HypervisorError as e:
            console.print(f"[red]Error:[/red] {e.message} ({e.status.value})")
            sys.exit(1)
        except ConfigError as e:
            console.print(f"[red]Config error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Cancelled by user[/yellow]")
            sys.exit(130)

    return wrapper


def _progress(name: str) -> FiniteTask:
    return FiniteTask(name, listener=ConsoleProgressDisplay())


def _settings(ctx: click.Context) -> HypervisorSettings:
    settings = ConfigManager.load_settings(ctx.obj.get("config"))
    settings.binary_path = ConfigManager.get_binary_path(
        ctx.obj.get("binary"), ctx.obj.get("config")
    )
    return settings


def _hypervisor(ctx: click.Context) -> Hypervisor:
    """Build and validate the hypervisor for this invocation."""
    hv = Hypervisor.from_settings(_settings(ctx))
    if not hv.validate():
        raise HypervisorError(
            f"Hypervisor at '{hv.adapter.binary_path}' is not usable", HypervisorStatus.NOT_READY
        )
    return hv


def _loaded_hypervisor(ctx: click.Context) -> Hypervisor:
    hv = _hypervisor(ctx)
    status = hv.load_sessions()
    if status != HypervisorStatus.OK:
        raise HypervisorError("Unable to load sessions", status)
    return hv


def _run_on_session(
    ctx: click.Context, name: str, action: Callable[[Session], None], must_exist: bool = True
) -> Session:
    """Check out the named session, apply action, and release it again."""
    hv = _loaded_hypervisor(ctx)
    if must_exist and hv.find_session_by_name(name) is None:
        raise HypervisorError(f"No session named '{name}'", HypervisorStatus.INVALID_STATE)
    session = hv.session_open({"name": name}, _progress(f"Session {name}"))
    try:
        action(session)
    finally:
        hv.session_close(session)
    return session


def _parse_params(values: tuple[str, ...]) -> dict[str, str]:
    params = {}
    for value in values:
        key, found, item = value.partition("=")
        if not found or not key:
            raise click.BadParameter(f"Expected key=value, got '{value}'", param_hint="--param")
        params[key.strip()] = item.strip()
    return params


def _print_mapping(title: str, data: dict[str, str]) -> None:
    if not data:
        console.print(f"[yellow]No {title.lower()} found.[/yellow]")
        return
    table = Table(title=title)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in data.items():
        table.add_row(key, value)
    console.print(table)


@click.group()
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--binary", help="Hypervisor CLI path (overrides config)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config: str | None, binary: str | None, verbose: bool) -> None:
    """hvsession - manage virtual machine sessions through the hypervisor CLI.

    \b
    CONFIGURATION:
        Config file: ~/.hvsession/config.toml
        Session descriptors: ~/.hvsession/runtime/
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["binary"] = binary


@main.command()
@click.pass_context
@handle_errors
def status(ctx: click.Context) -> None:
    """Validate the hypervisor installation."""
    hv = Hypervisor.from_settings(_settings(ctx))
    valid = hv.validate()

    console.print(f"Binary:         {hv.adapter.binary_path}")
    if not valid:
        console.print("Status:         [red]not usable[/red]")
        sys.exit(1)

    console.print("Status:         [green]valid[/green]")
    console.print(f"Version:        {hv.version} ({hv.version.ver_string})")
    if hv.driver_not_loaded:
        console.print("Kernel driver:  [yellow]not loaded[/yellow] (run 'hvsession ready')")
    else:
        console.print("Kernel driver:  [green]loaded[/green]")
    if hv.validator.guest_additions_path:
        console.print(f"Guest additions: {hv.validator.guest_additions_path}")
    extpack = "[green]installed[/green]" if hv.has_extension_pack() else "[yellow]missing[/yellow]"
    console.print(f"Extension pack: {extpack}")


@main.command()
@click.pass_context
@handle_errors
def ready(ctx: click.Context) -> None:
    """Make the hypervisor ready: repair the driver, load sessions, install the extension pack."""
    hv = _hypervisor(ctx)
    if not hv.ensure_ready(_progress("Preparing hypervisor"), CLIInteractionHandler()):
        sys.exit(1)


@main.command()
@click.pass_context
@handle_errors
def caps(ctx: click.Context) -> None:
    """Show host CPU features and guest resource limits."""
    capabilities = _hypervisor(ctx).get_capabilities()
    cpu, limits = capabilities.cpu, capabilities.limits

    table = Table(title="Host Capabilities")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("CPU vendor", cpu.vendor)
    table.add_row("Family / model / stepping", f"{cpu.family} / {cpu.model} / {cpu.stepping}")
    table.add_row("Extended family / model", f"{cpu.ex_family} / {cpu.ex_model}")
    table.add_row("Hardware virtualization", "yes" if cpu.has_vt else "no")
    table.add_row("64-bit guests", "yes" if cpu.has_64bit else "no")
    table.add_row("Max guest CPUs", str(limits.max_cpus))
    table.add_row("Max guest memory", f"{limits.max_memory_mb} MB")
    table.add_row("Max disk size", f"{limits.max_disk_mb} MB")
    console.print(table)


@main.command()
@click.pass_context
@handle_errors
def sessions(ctx: click.Context) -> None:
    """List known sessions."""
    hv = _loaded_hypervisor(ctx)
    known = hv.registry.sessions
    if not known:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    table = Table(title="Sessions")
    table.add_column("Name", style="green")
    table.add_column("Session ID", style="cyan")
    table.add_column("VM ID", style="blue")
    table.add_column("State", style="yellow")
    for session in sorted(known, key=lambda s: s.name):
        table.add_row(session.name, session.internal_id, session.external_id or "-", session.state.value)
    console.print(table)


@main.group(name="session")
def session_group() -> None:
    """Manage a single session."""
    pass


@session_group.command(name="open")
@click.argument("name")
@click.option("--param", "params", multiple=True, help="Session parameter key=value")
@click.pass_context
@handle_errors
def session_open(ctx: click.Context, name: str, params: tuple[str, ...]) -> None:
    """Open (or allocate) a session and show its state."""
    hv = _loaded_hypervisor(ctx)
    session = hv.session_open({**_parse_params(params), "name": name}, _progress(f"Session {name}"))
    console.print(f"[green]{session.name}[/green] ({session.internal_id}): {session.state.value}")
    hv.session_close(session)


@session_group.command(name="create")
@click.argument("name")
@click.option("--memory", help="Memory in MB")
@click.option("--cpus", help="Number of virtual CPUs")
@click.option("--ostype", help="Guest OS type (e.g. Ubuntu_64)")
@click.option("--param", "params", multiple=True, help="Extra session parameter key=value")
@click.pass_context
@handle_errors
def session_create(
    ctx: click.Context,
    name: str,
    memory: str | None,
    cpus: str | None,
    ostype: str | None,
    params: tuple[str, ...],
) -> None:
    """Create a VM for a new session."""
    parameters = _parse_params(params)
    for key, value in (("memory", memory), ("cpus", cpus), ("ostype", ostype)):
        if value:
            parameters[key] = value
    parameters["name"] = name

    hv = _loaded_hypervisor(ctx)
    session = hv.session_open(parameters, _progress(f"Session {name}"))
    try:
        external_id = session.create()
    finally:
        hv.session_close(session)
    console.print(f"[green]Created {name}[/green] (VM {external_id})")


def _lifecycle_command(command_name: str, method: str, help_text: str) -> None:
    @session_group.command(name=command_name, help=help_text)
    @click.argument("name")
    @click.pass_context
    @handle_errors
    def command(ctx: click.Context, name: str) -> None:
        session = _run_on_session(ctx, name, lambda s: getattr(s, method)())
        console.print(f"[green]{name}[/green]: {session.state.value}")


_lifecycle_command("stop", "stop", "Power off a session's VM.")
_lifecycle_command("pause", "pause", "Pause a running session.")
_lifecycle_command("resume", "resume", "Resume a paused session.")
_lifecycle_command("save", "save_state", "Save a session's VM state to disk.")
_lifecycle_command("destroy", "destroy", "Unregister and delete a session's VM.")


@session_group.command(name="start")
@click.argument("name")
@click.option(
    "--frontend",
    type=click.Choice(["headless", "gui"]),
    default=None,
    help="VM frontend (default: session parameter or headless)",
)
@click.pass_context
@handle_errors
def session_start(ctx: click.Context, name: str, frontend: str | None) -> None:
    """Start a session's VM."""

    def start(session: Session) -> None:
        if frontend:
            session.parameters["frontend"] = frontend
        session.start()

    session = _run_on_session(ctx, name, start)
    console.print(f"[green]{name}[/green]: {session.state.value}")


@session_group.command(name="delete")
@click.argument("name")
@click.pass_context
@handle_errors
def session_delete(ctx: click.Context, name: str) -> None:
    """Forget a session without touching its VM."""
    hv = _loaded_hypervisor(ctx)
    session = hv.find_session_by_name(name)
    if session is None:
        console.print(f"[yellow]No session named '{name}'[/yellow]")
        return
    hv.session_delete(session)
    console.print(f"[green]Deleted session {name}[/green]")


@session_group.command(name="info")
@click.argument("name")
@click.option("--pid", is_flag=True, help="Also show the VM process id")
@click.pass_context
@handle_errors
def session_info(ctx: click.Context, name: str, pid: bool) -> None:
    """Show a session's machine information."""
    hv = _loaded_hypervisor(ctx)
    session = hv.find_session_by_name(name)
    if session is None:
        raise HypervisorError(f"No session named '{name}'", HypervisorStatus.INVALID_STATE)
    _print_mapping(f"Machine information: {name}", session.get_machine_info())
    if pid:
        process_id = session.get_process_id()
        console.print(f"Process ID: {process_id if process_id is not None else '-'}")


@session_group.command(name="props")
@click.argument("name")
@click.option("--key", help="Show a single guest property")
@click.pass_context
@handle_errors
def session_props(ctx: click.Context, name: str, key: str | None) -> None:
    """Show a session's guest properties."""
    hv = _loaded_hypervisor(ctx)
    session = hv.find_session_by_name(name)
    if session is None:
        raise HypervisorError(f"No session named '{name}'", HypervisorStatus.INVALID_STATE)
    if key:
        value = session.get_property(key)
        console.print(f"{key}: {value if value is not None else '-'}")
        return
    _print_mapping(f"Guest properties: {name}", session.get_all_properties())


@main.group(name="extpack")
def extpack_group() -> None:
    """Manage the hypervisor extension pack."""
    pass


@extpack_group.command(name="status")
@click.pass_context
@handle_errors
def extpack_status(ctx: click.Context) -> None:
    """Show whether the extension pack is installed."""
    if _hypervisor(ctx).has_extension_pack():
        console.print("[green]Extension pack is installed[/green]")
    else:
        console.print("[yellow]Extension pack is not installed[/yellow]")


@extpack_group.command(name="install")
@click.option("--yes", "-y", is_flag=True, help="Accept the extension pack license")
@click.pass_context
@handle_errors
def extpack_install(ctx: click.Context, yes: bool) -> None:
    """Download, verify and install the extension pack."""
    hv = _hypervisor(ctx)
    if not yes and not hv.has_extension_pack():
        if not CLIInteractionHandler().confirm_license(LICENSE_TITLE, LICENSE_TEXT):
            raise HypervisorError("User denied extension pack license", HypervisorStatus.USER_DENIED)

    result = hv.install_extension_pack(_progress("Extension pack"))
    if not result.succeeded:
        if result.artifact_path:
            console.print(f"Downloaded file kept at {result.artifact_path}")
        raise HypervisorError(result.message, result.status)


@main.command()
@click.pass_context
@handle_errors
def disks(ctx: click.Context) -> None:
    """List disk media registered with the hypervisor."""
    media = _hypervisor(ctx).get_disk_list()
    if not media:
        console.print("[yellow]No disks found.[/yellow]")
        return

    table = Table(title="Disks")
    table.add_column("UUID", style="cyan")
    table.add_column("Location", style="green")
    table.add_column("State", style="yellow")
    table.add_column("Capacity", style="blue")
    for medium in media:
        table.add_row(
            medium.get("UUID", "-"),
            medium.get("Location", "-"),
            medium.get("State", "-"),
            medium.get("Capacity", "-"),
        )
    console.print(table)


__all__ = ["main"]


if __name__ == "__main__":
    main()
