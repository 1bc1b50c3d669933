"""imapcmd CLI - run commands sent by email."""

import json
import signal
import threading
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ReceiverConfig, load_config, save_password
from .errors import ConfigError
from .grammar import normalize_subject, parse_subject
from .logging_config import setup_logging
from .models import ExitCode, ListenOutcome
from .runner import describe
from .session import SessionController, exit_code_for

app = typer.Typer(
    name="imapcmd",
    help="Run home automation commands sent by email.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Config file (default: $IMAPCMD_CONFIG or ~/.config/imapcmd/config.yaml)"),
]


def output_json(data: dict | list) -> None:
    """Output data as JSON."""
    print(json.dumps(data, default=str, indent=2))


def exit_with_code(code: ExitCode, message: str | None = None) -> None:
    """Exit with a specific exit code and optional message."""
    if message:
        err_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code.value)


def load_or_exit(config_path: Path | None, configure_logging: bool = True) -> ReceiverConfig:
    """Load configuration, exiting with CONFIG_ERROR if it is unusable."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        exit_with_code(ExitCode.CONFIG_ERROR, str(e))
    if configure_logging:
        setup_logging(config.logging.level, config.logging.file, config.logging.protocol)
    return config


def install_signal_handlers(cancel: threading.Event) -> None:
    """Set ``cancel`` on SIGINT/SIGTERM."""

    def handle(signum: int, frame: object) -> None:
        cancel.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


# ============================================================================
# Mailbox Commands
# ============================================================================


@app.command()
def run(config_path: ConfigOption = None) -> None:
    """Scan the mailbox once, run any commands found, then exit."""
    config = load_or_exit(config_path)
    code = SessionController(config).run()
    raise typer.Exit(code.value)


@app.command()
def listen(
    config_path: ConfigOption = None,
    reconnect: Annotated[
        Optional[bool],
        typer.Option("--reconnect/--no-reconnect", help="Reconnect after the connection drops"),
    ] = None,
    reconnect_delay: Annotated[
        Optional[float],
        typer.Option("--reconnect-delay", help="Seconds to wait before reconnecting"),
    ] = None,
) -> None:
    """Stay connected and run commands as they arrive (IMAP IDLE)."""
    config = load_or_exit(config_path)

    cancel = threading.Event()
    install_signal_handlers(cancel)

    session = SessionController(config)
    outcome = session.listen(cancel, reconnect=reconnect, reconnect_delay=reconnect_delay)

    if outcome == ListenOutcome.CANCELLED:
        raise typer.Exit(ExitCode.SUCCESS.value)
    if session.last_error is None:
        raise typer.Exit(ExitCode.CONNECTION_ERROR.value)
    raise typer.Exit(exit_code_for(session.last_error).value)


@app.command()
def parse(
    subject: Annotated[str, typer.Argument(help="Subject line to parse")],
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show the commands a subject line would trigger, without running them."""
    commands = parse_subject(subject)

    if as_json:
        output_json([c.model_dump(mode="json") for c in commands])
        return

    if not commands:
        console.print(f"[dim]No command in: {normalize_subject(subject)!r}[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Kind", width=8)
    table.add_column("Command")

    for command in commands:
        table.add_row(command.kind.value, describe(command))

    console.print(table)


# ============================================================================
# Configuration Commands
# ============================================================================


@app.command(name="check-config")
def check_config(
    config_path: ConfigOption = None,
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Validate the configuration and show the effective settings."""
    config = load_or_exit(config_path, configure_logging=False)
    data = config.model_dump(mode="json")

    if as_json:
        output_json(data)
        return

    console.print("[green]Configuration OK[/green]")
    console.print(f"[bold]Server:[/bold] {config.imap.host}:{config.imap.port} (ssl={config.imap.ssl})")
    console.print(f"[bold]Username:[/bold] {config.imap.username}")
    console.print(f"[bold]Trusted sender:[/bold] {config.trusted_sender}")
    console.print(f"[bold]Scripts:[/bold] {config.actions.script_dir}")
    console.print(f"[bold]Listen folder:[/bold] {config.listen.folder}")


@app.command(name="set-password")
def set_password(config_path: ConfigOption = None) -> None:
    """Store the IMAP password in the system keyring."""
    config = load_or_exit(config_path, configure_logging=False)
    password = typer.prompt(f"Password for {config.imap.username}", hide_input=True)
    save_password(config.imap.username, password)
    console.print(f"[green]Password saved for {config.imap.username}.[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"imapcmd {__version__}")


if __name__ == "__main__":
    app()
