"""
Setup command: add agentdeck's tmux settings to the user's tmux config.
"""

from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich import print as rprint

from ._shared import app


TMUX_CONF_HEADER = "# agentdeck status bar configuration"

# (text that marks the setting as present, line to append)
TMUX_SETTINGS = [
    ("status-left-length", "set -g status-left-length 50  # room for long session names"),
    ("status-interval", "set -g status-interval 1"),
]


def missing_tmux_settings(existing: str) -> List[str]:
    """Lines of TMUX_SETTINGS not already present in a tmux config."""
    return [line for marker, line in TMUX_SETTINGS if marker not in existing]


@app.command("setup")
def setup(
    tmux_conf: Annotated[
        Optional[Path],
        typer.Option("--tmux-conf", help="tmux config file to update (default ~/.tmux.conf)"),
    ] = None,
):
    """Add agentdeck's settings to the tmux config and reload it.

    Only missing settings are appended, so running it twice is harmless.
    """
    from ..exceptions import AgentDeckError
    from . import _shared

    path = tmux_conf or Path.home() / ".tmux.conf"
    try:
        existing = path.read_text() if path.exists() else ""
    except OSError as e:
        rprint(f"[red]Error:[/red] cannot read {path}: {e}")
        raise typer.Exit(1)

    missing = missing_tmux_settings(existing)
    if not missing:
        rprint(f"[green]✓[/green] tmux configuration is up to date in {path}")
        return

    lines = list(missing)
    if TMUX_CONF_HEADER not in existing:
        lines.insert(0, TMUX_CONF_HEADER)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a") as f:
            f.write("\n" + "\n".join(lines) + "\n")
    except OSError as e:
        rprint(f"[red]Error:[/red] cannot write {path}: {e}")
        raise typer.Exit(1)
    rprint(f"[green]✓[/green] Added {len(missing)} setting(s) to {path}")

    try:
        _shared.make_tmux_client().source_file(str(path))
    except AgentDeckError:
        rprint("  [dim]tmux is not running; the settings apply when it starts[/dim]")
    else:
        rprint("[green]✓[/green] Reloaded tmux configuration")
