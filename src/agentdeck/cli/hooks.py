"""
Hooks commands: show, logs.
"""

import json
from datetime import datetime
from typing import Annotated, Optional

import typer
from rich import print as rprint
from rich.table import Table

from ._shared import console, hooks_app


@hooks_app.command("show")
def hooks_show(
    session: Annotated[str, typer.Argument(help="Session name")],
    execution_id: Annotated[
        Optional[str], typer.Option("--execution-id", help="Execution ID to embed (defaults to the registry's)")
    ] = None,
):
    """Print the --settings document the agent is started with.

    Every hook runs 'agentdeck notify <session> <event> --execution-id=<id>'.
    """
    from ..hook_handler import UNKNOWN_EXECUTION_ID, build_hooks_settings
    from ..tmux_client import agentdeck_executable
    from . import _shared

    if execution_id is None:
        session_obj = _shared.make_registry().get(session)
        execution_id = (session_obj.execution_id if session_obj else None) or UNKNOWN_EXECUTION_ID

    settings = build_hooks_settings(agentdeck_executable(), session, execution_id)
    print(json.dumps(settings, indent=2))


def _truncate(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return text[: width - 3] + "..."


@hooks_app.command("logs")
def hooks_logs(
    session: Annotated[
        Optional[str], typer.Argument(help="Only show this session's hook log")
    ] = None,
    since: Annotated[
        str, typer.Option("--since", help="Show entries newer than this (e.g. 30m, 1h, 2d)")
    ] = "1h",
    output_format: Annotated[
        str, typer.Option("--format", "-f", help="Output format: table or json")
    ] = "table",
):
    """Show what the hook re-entry command recorded, newest first."""
    from ..hook_logs import parse_duration, read_hook_logs

    if output_format not in ("table", "json"):
        rprint(f"[red]Error:[/red] invalid format '{output_format}' (use table or json)")
        raise typer.Exit(code=1)
    try:
        cutoff = datetime.now() - parse_duration(since)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    entries = read_hook_logs(session=session, since=cutoff)

    if output_format == "json":
        print(json.dumps([e.to_dict() for e in entries], indent=2))
        return

    if not entries:
        rprint("[dim]No hook logs found for the specified criteria[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Time")
    table.add_column("Session")
    table.add_column("Event")
    table.add_column("Level")
    table.add_column("Message")
    for e in entries:
        table.add_row(
            e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            _truncate(e.session, 15),
            _truncate(e.event, 20),
            e.level,
            _truncate(e.message, 60),
        )
    console.print(table)
    rprint(f"\nTotal: {len(entries)} log entries")
