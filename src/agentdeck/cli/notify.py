"""
Hook re-entry command: notify.
"""

from typing import Annotated, Optional

import typer

from ._shared import app


@app.command("notify", hidden=True)
def notify(
    session: Annotated[str, typer.Argument(help="Session name")],
    event: Annotated[
        Optional[str], typer.Argument(help="Hook event (start, prompt, stop, end, ...)")
    ] = None,
    execution_id: Annotated[
        Optional[str], typer.Option("--execution-id", help="Execution ID of the agent run")
    ] = None,
):
    """Apply an agent hook event to the registry (internal).

    Called by the agent's hooks, not by users directly. Never writes to the
    terminal; a session missing from the registry is not an error.
    """
    from ..exceptions import PersistenceError
    from ..hook_handler import NotifyHandler, normalize_event
    from ..logging_config import setup_hook_logging
    from . import _shared

    logger = setup_hook_logging(session, normalize_event(event))
    registry = _shared.make_registry()
    handler = NotifyHandler(registry)
    try:
        exec_id = handler.resolve_execution_id(session, execution_id)
        handler.handle(session, event, exec_id)
    except PersistenceError as e:
        logger.error("failed to apply %s for %s: %s", event, session, e)
        raise typer.Exit(code=1)
