"""
Session commands: list, add, duplicate, view, del, archive, flag, comment,
status, rename, move, capture, send, attach.
"""

import json
from typing import Annotated, Optional

import typer
from rich import print as rprint
from rich.table import Table

from ..exceptions import AgentDeckError, SessionNotFoundError
from ..session import STATE_IDLE, VALID_STATES, Session
from . import _shared
from ._shared import console, fail, sessions_app


FormatOption = Annotated[
    str,
    typer.Option("--format", "-f", help="Output format: table or json"),
]


def _check_format(output_format: str) -> None:
    if output_format not in ("table", "json"):
        rprint(f"[red]Error:[/red] invalid format '{output_format}' (use table or json)")
        raise typer.Exit(code=1)


def _require(name: str) -> Session:
    try:
        session = _shared.make_registry().get(name)
    except AgentDeckError as e:
        fail(e)
    if session is None:
        fail(SessionNotFoundError(name))
    return session


@sessions_app.command("list")
def sessions_list(
    show_all: Annotated[
        bool, typer.Option("--all", "-a", help="Include archived sessions")
    ] = False,
    output_format: FormatOption = "table",
):
    """List sessions in manual order."""
    _check_format(output_format)
    try:
        sessions = _shared.make_registry().list(include_archived=show_all)
    except AgentDeckError as e:
        fail(e)

    if output_format == "json":
        print(json.dumps([s.to_dict() for s in sessions], indent=2))
        return

    if not sessions:
        rprint("[dim]No sessions[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Display Name")
    table.add_column("State")
    table.add_column("Status")
    table.add_column("Flags")
    table.add_column("Comment")
    for s in sessions:
        flags = []
        if s.is_flagged:
            flags.append("flagged")
        if s.is_archived:
            flags.append("archived")
        if s.is_companion:
            flags.append(f"shell of {s.parent_name}")
        table.add_row(s.name, s.display_name, s.state, s.status or "", ", ".join(flags), s.comment)
    console.print(table)


@sessions_app.command("add")
def sessions_add(
    name: Annotated[str, typer.Argument(help="Session name")],
    display_name: Annotated[
        Optional[str], typer.Option("--display-name", help="Label shown in the session list")
    ] = None,
    state: Annotated[
        str, typer.Option("--state", help="Initial state (working, idle, waiting_user, exited)")
    ] = STATE_IDLE,
    repo_path: Annotated[Optional[str], typer.Option("--repo-path", help="Repository path")] = None,
    repo_info: Annotated[Optional[str], typer.Option("--repo-info", help="Repository owner/name")] = None,
    repo_source: Annotated[
        Optional[str], typer.Option("--repo-source", help="Where the repository came from (path or URL)")
    ] = None,
    branch_name: Annotated[Optional[str], typer.Option("--branch-name", help="Branch name")] = None,
    worktree_path: Annotated[Optional[str], typer.Option("--worktree-path", help="Worktree path")] = None,
    start: Annotated[
        bool, typer.Option("--start", help="Also create the tmux session and start the agent")
    ] = False,
    prompt: Annotated[
        Optional[str], typer.Option("--prompt", "-p", help="Initial prompt to send (with --start)")
    ] = None,
    directory: Annotated[
        Optional[str], typer.Option("--directory", "-d", help="Working directory (with --start)")
    ] = None,
    allow_dangerously_skip_permissions: Annotated[
        bool,
        typer.Option(
            "--allow-dangerously-skip-permissions",
            help="Start the agent with --allow-dangerously-skip-permissions",
        ),
    ] = False,
):
    """Add a session at the top of the list."""
    from ..naming import validate_session_name

    if state not in VALID_STATES:
        rprint(f"[red]Error:[/red] invalid state '{state}' (use {', '.join(VALID_STATES)})")
        raise typer.Exit(code=1)

    try:
        if start:
            session = _shared.make_service().create_session(
                display_name or name,
                workdir=directory,
                repo_path=repo_path,
                repo_info=repo_info,
                repo_source=repo_source,
                branch_name=branch_name,
                worktree=worktree_path,
                initial_prompt=prompt,
                allow_dangerously_skip_permissions=allow_dangerously_skip_permissions,
            )
        else:
            session = _shared.make_service().add_session(Session(
                name=validate_session_name(name),
                display_name=display_name or name,
                state=state,
                repo_path=repo_path,
                repo_info=repo_info,
                repo_source=repo_source or repo_path,
                branch_name=branch_name,
                worktree_path=worktree_path,
                allow_dangerously_skip_permissions=allow_dangerously_skip_permissions,
            ))
    except AgentDeckError as e:
        fail(e)

    rprint(f"[green]✓[/green] Session '[bold]{session.name}[/bold]' added")


@sessions_app.command("duplicate")
def sessions_duplicate(
    name: Annotated[str, typer.Argument(help="Source session name")],
    new_name: Annotated[str, typer.Option("--new-name", help="Name of the new session")],
    branch: Annotated[
        Optional[str], typer.Option("--branch", help="Branch for the new session")
    ] = None,
):
    """Start a new session from an existing session's repository."""
    try:
        session = _shared.make_service().duplicate_session(name, new_name, branch_name=branch)
    except AgentDeckError as e:
        fail(e)

    rprint(f"[green]✓[/green] Session '[bold]{session.name}[/bold]' created from '{name}'")
    if session.worktree_path:
        rprint(f"  Worktree: {session.worktree_path}")


@sessions_app.command("view")
def sessions_view(
    name: Annotated[str, typer.Argument(help="Session name")],
    output_format: FormatOption = "table",
):
    """Show one session."""
    _check_format(output_format)
    session = _require(name)

    if output_format == "json":
        print(json.dumps(session.to_dict(), indent=2))
        return

    print(f"Name: {session.name}")
    print(f"Display Name: {session.display_name}")
    print(f"State: {session.state}")
    print(f"Execution ID: {session.execution_id or '-'}")
    print(f"Status: {session.status or '-'}")
    print(f"Flagged: {'yes' if session.is_flagged else 'no'}")
    print(f"Archived: {'yes' if session.is_archived else 'no'}")
    if session.comment:
        print(f"Comment: {session.comment}")
    for label, value in (
        ("Repo Path", session.repo_path),
        ("Repo Info", session.repo_info),
        ("Repo Source", session.repo_source),
        ("Branch", session.branch_name),
        ("Worktree", session.worktree_path),
        ("Shell Session", session.shell_session),
        ("Parent Session", session.parent_name),
    ):
        if value:
            print(f"{label}: {value}")
    print(f"Last Updated: {session.last_updated}")


@sessions_app.command("del")
def sessions_del(
    name: Annotated[str, typer.Argument(help="Session name")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Do not ask for confirmation")] = False,
    skip_kill_tmux: Annotated[
        bool, typer.Option("--skip-kill-tmux", help="Leave the tmux session running")
    ] = False,
    skip_remove_worktree: Annotated[
        bool, typer.Option("--skip-remove-worktree", help="Keep the session's worktree")
    ] = False,
):
    """Delete a session from the registry and kill its tmux session."""
    _require(name)
    if not force and not typer.confirm(f"Delete session '{name}'?"):
        rprint("[dim]Cancelled[/dim]")
        raise typer.Exit(code=1)

    try:
        _shared.make_service().delete_session(
            name, kill_tmux=not skip_kill_tmux, remove_worktree=not skip_remove_worktree
        )
    except AgentDeckError as e:
        fail(e)
    rprint(f"[green]✓[/green] Session '[bold]{name}[/bold]' deleted")


@sessions_app.command("archive")
def sessions_archive(
    name: Annotated[str, typer.Argument(help="Session name")],
    remove_worktree: Annotated[
        bool, typer.Option("--remove-worktree", help="Also remove the session's worktree")
    ] = False,
):
    """Archive (or unarchive) a session."""
    try:
        archived = _shared.make_service().archive_session(name, remove_worktree=remove_worktree)
    except AgentDeckError as e:
        fail(e)
    rprint(f"[green]✓[/green] Session '[bold]{name}[/bold]' {'archived' if archived else 'unarchived'}")


@sessions_app.command("flag")
def sessions_flag(name: Annotated[str, typer.Argument(help="Session name")]):
    """Toggle a session's flag."""
    try:
        flagged = _shared.make_registry().toggle_flag(name)
    except AgentDeckError as e:
        fail(e)
    rprint(f"[green]✓[/green] Session '[bold]{name}[/bold]' {'flagged' if flagged else 'unflagged'}")


@sessions_app.command("comment")
def sessions_comment(
    name: Annotated[str, typer.Argument(help="Session name")],
    comment: Annotated[
        str, typer.Option("--comment", "-c", help="Comment text (omit to clear)")
    ] = "",
):
    """Set or clear a session's comment."""
    try:
        _shared.make_registry().set_comment(name, comment)
    except AgentDeckError as e:
        fail(e)
    if comment.strip():
        rprint(f"[green]✓[/green] Comment set for '[bold]{name}[/bold]'")
    else:
        rprint(f"[green]✓[/green] Comment cleared for '[bold]{name}[/bold]'")


@sessions_app.command("status")
def sessions_status(
    name: Annotated[str, typer.Argument(help="Session name")],
    status: Annotated[
        Optional[str], typer.Option("--status", "-s", help="Status to set (omit to clear)")
    ] = None,
    list_statuses: Annotated[
        bool, typer.Option("--list", "-l", help="List the configured statuses")
    ] = False,
):
    """Set or clear a session's implementation status."""
    from ..config import get_statuses

    statuses = get_statuses()
    if list_statuses:
        for s in statuses:
            print(s)
        return

    if status and status not in statuses:
        rprint(f"[red]Error:[/red] unknown status '{status}' (use {', '.join(statuses)})")
        raise typer.Exit(code=1)

    try:
        _shared.make_registry().set_status(name, status)
    except AgentDeckError as e:
        fail(e)
    if status:
        rprint(f"[green]✓[/green] Status of '[bold]{name}[/bold]' set to {status}")
    else:
        rprint(f"[green]✓[/green] Status of '[bold]{name}[/bold]' cleared")


@sessions_app.command("rename")
def sessions_rename(
    name: Annotated[str, typer.Argument(help="Session name")],
    display_name: Annotated[str, typer.Option("--display-name", "-n", help="New display name")],
):
    """Rename a session (tmux session and registry key follow the new label)."""
    try:
        session = _shared.make_service().rename_session(name, display_name)
    except AgentDeckError as e:
        fail(e)
    rprint(f"[green]✓[/green] Renamed '[bold]{name}[/bold]' to '[bold]{session.name}[/bold]'")


@sessions_app.command("move")
def sessions_move(
    name: Annotated[str, typer.Argument(help="Session name")],
    direction: Annotated[str, typer.Argument(help="up or down")],
):
    """Move a session one place up or down in the list."""
    if direction not in ("up", "down"):
        rprint(f"[red]Error:[/red] direction must be 'up' or 'down', not '{direction}'")
        raise typer.Exit(code=1)

    registry = _shared.make_registry()
    try:
        names = registry.load().ordered_names
    except AgentDeckError as e:
        fail(e)
    if name not in names:
        fail(SessionNotFoundError(name, "session list"))

    index = names.index(name)
    target = index - 1 if direction == "up" else index + 1
    if target < 0 or target >= len(names):
        rprint(f"[dim]'{name}' is already at the {'top' if direction == 'up' else 'bottom'}[/dim]")
        return

    try:
        registry.swap_positions(name, names[target])
    except AgentDeckError as e:
        fail(e)
    rprint(f"[green]✓[/green] Moved '[bold]{name}[/bold]' {direction}")


@sessions_app.command("capture")
def sessions_capture(
    name: Annotated[str, typer.Argument(help="Session name")],
    lines: Annotated[int, typer.Option("--lines", "-n", help="Number of lines to capture")] = 50,
):
    """Print the last lines of a session's pane."""
    try:
        content = _shared.make_service().capture(name, lines)
    except AgentDeckError as e:
        fail(e)
    print(content)


@sessions_app.command("send")
def sessions_send(
    name: Annotated[str, typer.Argument(help="Session name")],
    text: Annotated[str, typer.Argument(help="Text to type into the session")],
):
    """Type text into a session and press Enter."""
    _require(name)
    try:
        _shared.make_service().send_text(name, text)
    except AgentDeckError as e:
        fail(e)
    rprint(f"[green]✓[/green] Sent to '[bold]{name}[/bold]'")


@sessions_app.command("attach")
def sessions_attach(
    name: Annotated[str, typer.Argument(help="Session name")],
    shell: Annotated[bool, typer.Option("--shell", help="Attach to the companion shell")] = False,
):
    """Attach to a session (Ctrl+Q detaches)."""
    from ..dependency_check import require_tmux

    try:
        require_tmux()
        service = _shared.make_service()
        target = service.get_or_create_shell_session(name) if shell else name
        service.ensure_running(target)
        done = service.tmux.attach(target)
        done.wait()
    except AgentDeckError as e:
        fail(e)
