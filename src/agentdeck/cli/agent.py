"""
Agent launch command: start.
"""

import typer
from rich import print as rprint

from ._shared import app


@app.command(
    "start",
    hidden=True,
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def start(ctx: typer.Context):
    """Start the agent inside the current session (internal).

    Typed into new tmux sessions by agentdeck. Extra arguments are passed
    through to the agent.
    """
    from ..exceptions import ClaudeNotFoundError
    from ..launcher import start_agent
    from . import _shared

    try:
        start_agent(_shared.make_registry(), extra_args=list(ctx.args))
    except ClaudeNotFoundError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
