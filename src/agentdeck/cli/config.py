"""
Config commands: init, show, path.
"""

from typing import Annotated

import typer
from rich import print as rprint

from ._shared import config_app


CONFIG_TEMPLATE = """\
# agentdeck configuration
# Location: $AGENTDECK_STATE_DIR/config.yaml (default ~/.agentdeck/config.yaml)

# Command used to start the agent inside each session
# agent_command: claude

# Where tmux draws its status line in agentdeck sessions (top or bottom)
# tmux_status_position: bottom

# Implementation statuses a session can be tagged with
# statuses:
#   - spec
#   - plan
#   - implement
#   - review
#   - done

# Ignore hook events whose execution ID differs from the session's
# strict_execution_id: false

# Watch session panes for prompts waiting on the user
# prompt_monitor: false

# Seconds an error stays in the session list
# error_clear_delay: 10
"""


@config_app.callback(invoke_without_command=True)
def config_default(ctx: typer.Context):
    """Show current configuration (default when no subcommand given)."""
    if ctx.invoked_subcommand is None:
        _config_show()


@config_app.command("init")
def config_init(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Overwrite existing config file")
    ] = False,
):
    """Create a config file with documented defaults.

    All options are commented out. Use --force to overwrite an existing file.
    """
    from ..settings import get_config_path

    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    if config_path.exists() and not force:
        rprint(f"[yellow]Config file already exists:[/yellow] {config_path}")
        rprint("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(1)

    config_path.write_text(CONFIG_TEMPLATE)
    rprint(f"[green]✓[/green] Created config file: [bold]{config_path}[/bold]")


@config_app.command("show")
def config_show():
    """Show current configuration."""
    _config_show()


def _config_show():
    from ..config import (
        get_agent_command,
        get_error_clear_delay,
        get_prompt_monitor_enabled,
        get_statuses,
        get_strict_execution_id,
        get_tmux_status_position,
        load_config,
    )
    from ..settings import get_config_path

    config_path = get_config_path()
    if not config_path.exists():
        rprint(f"[dim]No config file found at {config_path}[/dim]")
        rprint("[dim]Run 'agentdeck config init' to create one[/dim]")

    config = load_config()
    rprint(f"[bold]Configuration[/bold] ({config_path}):\n")
    rprint(f"  agent_command: {get_agent_command(config)}")
    rprint(f"  tmux_status_position: {get_tmux_status_position(config) or 'default'}")
    rprint(f"  statuses: {', '.join(get_statuses(config))}")
    rprint(f"  strict_execution_id: {get_strict_execution_id(config)}")
    rprint(f"  prompt_monitor: {get_prompt_monitor_enabled(config)}")
    rprint(f"  error_clear_delay: {get_error_clear_delay(config)}s")
    _dependencies_show(get_agent_command(config))


def _dependencies_show(agent_command: str):
    from ..dependency_check import check_claude, check_tmux

    rprint("\n[bold]Dependencies[/bold]:\n")
    for label, (available, path, version) in (
        ("tmux", check_tmux()),
        (agent_command, check_claude(agent_command)),
    ):
        if available:
            rprint(f"  [green]✓[/green] {label}: {path} ({version or 'unknown version'})")
        else:
            rprint(f"  [red]✗[/red] {label}: not found")


@config_app.command("path")
def config_path():
    """Show the config file path."""
    from ..settings import get_config_path

    print(get_config_path())
