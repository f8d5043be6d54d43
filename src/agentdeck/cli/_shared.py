"""
Shared CLI state: Typer apps, console, factories and error reporting.
"""

from typing import NoReturn

import typer
from rich import print as rprint
from rich.console import Console

from ..exceptions import AgentDeckError
from ..registry import SessionRegistry
from ..session_service import SessionService
from ..tmux_client import TmuxClient

# Main app
app = typer.Typer(
    name="agentdeck",
    help="Run and track coding-agent sessions in tmux",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode="rich",
)

# Sessions subcommand group
sessions_app = typer.Typer(
    name="sessions",
    help="Manage sessions in the registry and in tmux.",
    no_args_is_help=True,
)
app.add_typer(sessions_app, name="sessions")

# Hooks subcommand group
hooks_app = typer.Typer(
    name="hooks",
    help="Inspect the agent hook configuration.",
    no_args_is_help=True,
)
app.add_typer(hooks_app, name="hooks")

# Config subcommand group
config_app = typer.Typer(
    name="config",
    help="Manage configuration",
    no_args_is_help=False,
    invoke_without_command=True,
)
app.add_typer(config_app, name="config")

# Console for rich output
console = Console()


def make_registry() -> SessionRegistry:
    return SessionRegistry()


def make_tmux_client() -> TmuxClient:
    return TmuxClient()


def make_service() -> SessionService:
    return SessionService(make_tmux_client(), make_registry())


def fail(error: AgentDeckError) -> NoReturn:
    """Report an error and exit with status 1."""
    rprint(f"[red]Error:[/red] {error}")
    raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context):
    """Open the interactive session list when no command is given."""
    from ..logging_config import setup_cli_logging

    setup_cli_logging()
    if ctx.invoked_subcommand is None:
        from ..controller import SessionListController
        from ..dependency_check import require_tmux
        from ..exceptions import TmuxNotFoundError
        from ..tui import run_tui

        try:
            require_tmux()
        except TmuxNotFoundError as e:
            fail(e)

        registry = make_registry()
        tmux = make_tmux_client()
        controller = SessionListController(registry, tmux, SessionService(tmux, registry))
        run_tui(controller)
