from __future__ import annotations

import logging

import pyperclip
import typer
from InquirerPy import inquirer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import storage
from .config import HostKeyPolicy, Settings
from .connections import ConnectionManager
from .encryption import find_ssh_key_for_encryption
from .errors import CommandError, RemoteExecError
from .executor import SSHCommandExecutor
from .models import Server
from .resolver import RemoteFileResolver
from .ssh import check_server_availability


class OrderCommands(typer.core.TyperGroup):
    """Custom group to sort commands alphabetically in help."""

    def list_commands(self, ctx):
        return sorted(super().list_commands(ctx))


app = typer.Typer(
    help="Remote Exec: run commands and read files on SSH servers.",
    cls=OrderCommands,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()
err_console = Console(stderr=True)

ACCEPT_ANY_HOST = typer.Option(False, "--accept-any-host", help="Skip host key verification (insecure)")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    # paramiko is chatty at INFO
    logging.getLogger("paramiko").setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.callback()
def configure(verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable debug logging")) -> None:
    setup_logging(verbose)


def _build_engine(settings: Settings, accept_any_host: bool) -> tuple[ConnectionManager, SSHCommandExecutor]:
    policy = HostKeyPolicy.ACCEPT_ANY if accept_any_host else settings.host_key_policy
    manager = ConnectionManager(
        policy,
        connect_timeout=settings.connect_timeout,
        known_hosts_file=settings.known_hosts_file,
    )
    executor = SSHCommandExecutor(manager, pty=settings.pty, session_timeout=settings.session_timeout)
    return manager, executor


def _close_all(manager: ConnectionManager) -> None:
    for connection in manager.list().values():
        manager.close(connection)


def _select_server(query: str | None, message: str) -> Server:
    """Find a server by query, or ask interactively when no query is given."""
    if query is not None:
        srv = storage.find_server(query)
        if not srv:
            console.print("[red]Server not found[/red]")
            raise typer.Exit(1)
        return srv

    servers = sorted(storage.load_servers(), key=lambda s: s.name.lower())
    if not servers:
        console.print("[yellow]No servers found. Add one: remote-exec add[/yellow]")
        raise typer.Exit(1)
    try:
        selected = inquirer.select(
            message=message,
            choices=[s.display() for s in servers],
            cycle=True,
            vi_mode=False,
            instruction="↑↓ navigate, search by name",
        ).execute()
    except KeyboardInterrupt:
        console.print("\n[dim]Cancelled.[/dim]")
        raise typer.Exit(0)
    return next(s for s in servers if s.display() == selected)


@app.command("list", help="Show list of servers. Alias: ls")
@app.command("ls", hidden=True)
def list_servers() -> None:
    servers = storage.load_servers()
    if not servers:
        console.print("[yellow]No servers found. Add one: remote-exec add[/yellow]")
        return

    table = Table(title="Servers")
    table.add_column("Name", style="bold")
    table.add_column("Connection")
    table.add_column("Auth", justify="center", no_wrap=True)
    table.add_column("Sudo", justify="center", no_wrap=True)
    table.add_column("Tags", style="dim")
    for s in servers:
        auth = "key" if s.key_path else ("pwd" if s.password else "---")
        table.add_row(s.name, f"{s.user}@{s.full_address()}", auth, "yes" if s.sudo_password else "no", ", ".join(s.tags))
    console.print(table)


@app.command("add", help="Add a new server. Alias: a")
@app.command("a", hidden=True)
def add_server(
    name: str = typer.Option(..., prompt=True, help="Server name (unique)"),
    address: str = typer.Option(..., prompt=True, help="Hostname or IP address"),
    port: int = typer.Option(22, prompt=True),
    user: str = typer.Option(..., prompt=True),
    key_path: str | None = typer.Option(None, "--key", help="Path to private key"),
    with_password: bool = typer.Option(False, "--password", help="Save login password"),
    with_sudo: bool = typer.Option(False, "--sudo-password", help="Save sudo password"),
    tags: list[str] = typer.Option([], "--tag", help="Tag (repeatable)"),
):
    try:
        password = None
        sudo_password = None
        if with_password:
            password = typer.prompt("Password", hide_input=True, confirmation_prompt=True)
        if with_sudo:
            sudo_password = typer.prompt("Sudo password", hide_input=True, confirmation_prompt=True)
        server = Server(
            name=name,
            address=address,
            port=port,
            user=user,
            password=password,
            key_path=key_path,
            sudo_password=sudo_password,
            tags=tags,
        )
    except (KeyboardInterrupt, typer.Abort):
        console.print("\n[dim]Cancelled.[/dim]")
        raise typer.Exit(0)

    storage.upsert_server(server)
    console.print(f"[green]Added:[/green] {server.display()}")


@app.command("remove", help="Remove a server. Alias: rm")
@app.command("rm", hidden=True)
def remove(query: str | None = typer.Argument(None, help="Name/partial name (optional)")):
    srv = _select_server(query, "Select server to remove:")
    try:
        if not typer.confirm(f"Remove '{srv.name}' ({srv.user}@{srv.full_address()})?"):
            raise typer.Exit(1)
    except typer.Abort:
        console.print("\n[dim]Cancelled.[/dim]")
        raise typer.Exit(0)

    if storage.remove_server(srv.name):
        console.print("[green]Removed.[/green]")
    else:
        console.print("[yellow]Nothing to remove.[/yellow]")


@app.command("run", help="Run a command on a server. Alias: r")
@app.command("r", hidden=True)
def run_command(
    query: str = typer.Argument(..., help="Name/partial name"),
    command: str = typer.Argument(..., help="Shell command"),
    accept_any_host: bool = ACCEPT_ANY_HOST,
):
    srv = _select_server(query, "Select server:")
    manager, executor = _build_engine(storage.load_settings(), accept_any_host)
    try:
        manager.open(srv)
        result = executor.execute(command, srv)
    except RemoteExecError as e:
        err_console.print(f"[red]SSH Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    finally:
        _close_all(manager)

    if result.stdout:
        console.out(result.stdout, end="" if result.stdout.endswith("\n") else "\n", highlight=False)
    if result.stderr:
        err_console.out(result.stderr, end="", highlight=False)
    if not result.exit_status_received:
        err_console.print("[yellow]Remote side reported no exit status.[/yellow]")
    raise typer.Exit(result.exit_code)


@app.command("cat", help="Show identity and content of a remote file.")
def cat_file(
    query: str = typer.Argument(..., help="Name/partial name"),
    path: str = typer.Argument(..., help="Path on the remote host"),
    privileged: bool = typer.Option(False, "--privileged", help="Read the file with sudo"),
    sensitive: bool = typer.Option(False, "--sensitive", help="Hide content from output"),
    copy: bool = typer.Option(False, "--copy", help="Copy content to clipboard"),
    accept_any_host: bool = ACCEPT_ANY_HOST,
):
    srv = _select_server(query, "Select server:")
    manager, executor = _build_engine(storage.load_settings(), accept_any_host)
    resolver = RemoteFileResolver(manager, executor)
    try:
        state = resolver.resolve(path, privileged, sensitive, srv)
    except CommandError as e:
        err_console.print(f"[red]Command Error:[/red] Unable to get file info: {escape(str(e))}")
        raise typer.Exit(1)
    except RemoteExecError as e:
        err_console.print(f"[red]SSH Error:[/red] Unable to execute commands: {escape(str(e))}")
        raise typer.Exit(1)
    finally:
        _close_all(manager)

    console.print(f"[bold]id:[/bold] {escape(state.id)}")
    if sensitive:
        console.print(f"[dim]content: {state.sensitive_content}[/dim]")
    else:
        console.out(state.content, highlight=False)

    if copy:
        try:
            pyperclip.copy(state.value)
            console.print("[green]Content copied to clipboard.[/green]")
        except pyperclip.PyperclipException as e:
            console.print(f"[yellow]Failed to copy content: {e}[/yellow]")


@app.command("ping", help="Check server availability. Alias: p")
@app.command("p", hidden=True)
def ping_server(query: str | None = typer.Argument(None, help="Name/partial name (optional)")):
    srv = _select_server(query, "Select server to ping:")
    console.print(f"Checking [bold]{srv.name}[/bold] ({srv.full_address()})...")
    is_available, message, response_time = check_server_availability(srv)

    style = "green" if is_available else "red"
    console.print(f"{srv.user}@{srv.full_address()} - [{style}]{message}[/{style}] [dim]({response_time:.0f}ms)[/dim]")
    if not is_available:
        raise typer.Exit(1)


@app.command("health", help="Authenticate to all servers. Alias: h")
@app.command("h", hidden=True)
def health_check(accept_any_host: bool = ACCEPT_ANY_HOST):
    servers = sorted(storage.load_servers(), key=lambda s: s.name.lower())
    if not servers:
        console.print("[yellow]No servers found.[/yellow]")
        raise typer.Exit(1)

    console.print(f"Connecting to {len(servers)} server(s)...\n")
    manager, _ = _build_engine(storage.load_settings(), accept_any_host)
    failures = manager.open_all(servers)
    _close_all(manager)

    table = Table(title="Server Health Check")
    table.add_column("Name", style="bold")
    table.add_column("Connection")
    table.add_column("Status")
    for srv in servers:
        error = failures.get(srv.name)
        status = "[green]ok[/green]" if error is None else f"[red]{escape(str(error))}[/red]"
        table.add_row(srv.name, f"{srv.user}@{srv.full_address()}", status)
    console.print(table)

    connected = len(servers) - len(failures)
    console.print(f"\n[bold]Summary:[/bold] {connected}/{len(servers)} servers connected")
    if failures:
        raise typer.Exit(1)


@app.command("encrypt")
def enable_encryption():
    """Encrypt stored passwords with a key derived from your SSH key."""
    settings = storage.load_settings()
    if settings.encryption_enabled:
        console.print("[yellow]Encryption is already enabled.[/yellow]")
        return

    ssh_key = find_ssh_key_for_encryption()
    if not ssh_key:
        console.print("[red]Error: no SSH key (id_ed25519, id_ecdsa, id_rsa) in ~/.ssh/[/red]")
        raise typer.Exit(1)

    console.print(
        Panel(
            f"Login and sudo passwords will be encrypted with a key derived from [cyan]{ssh_key}[/cyan].\n"
            "If that key is changed or deleted the stored passwords are [bold red]lost[/bold red].",
            title="Password Encryption",
            border_style="yellow",
        )
    )
    try:
        if not typer.confirm("Continue?", default=False):
            raise typer.Exit(0)
    except typer.Abort:
        console.print("\n[dim]Cancelled.[/dim]")
        raise typer.Exit(0)

    servers = storage.load_servers()
    settings.encryption_enabled = True
    settings.encryption_key_source = str(ssh_key)
    storage.save_settings(settings)
    storage.save_servers(servers)
    console.print(f"[bold green]✓ Encryption enabled[/bold green] ({len(servers)} server(s) rewritten)")


@app.command("decrypt")
def disable_encryption():
    """Store passwords in plaintext again."""
    settings = storage.load_settings()
    if not settings.encryption_enabled:
        console.print("[yellow]Encryption is already disabled.[/yellow]")
        return

    try:
        if not typer.confirm("Store all passwords in plaintext?", default=False):
            raise typer.Exit(0)
    except typer.Abort:
        console.print("\n[dim]Cancelled.[/dim]")
        raise typer.Exit(0)

    servers = storage.load_servers()
    settings.encryption_enabled = False
    storage.save_settings(settings)
    storage.save_servers(servers)
    console.print("[bold yellow]Encryption disabled.[/bold yellow] Passwords are stored in plaintext.")


@app.command("encryption-status")
def encryption_status():
    """Show encryption status."""
    settings = storage.load_settings()
    if settings.encryption_enabled:
        console.print(
            Panel(
                f"[bold green]✓ Encryption enabled[/bold green]\nSSH key: [cyan]{settings.encryption_key_source}[/cyan]",
                title="Encryption Status",
                border_style="green",
            )
        )
    else:
        console.print(
            Panel(
                "[bold yellow]✗ Encryption disabled[/bold yellow]\nEnable with: [cyan]remote-exec encrypt[/cyan]",
                title="Encryption Status",
                border_style="yellow",
            )
        )


def main():
    app()


if __name__ == "__main__":
    main()
