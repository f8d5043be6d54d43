"""
CLI interface for agentdeck using Typer.
"""

# Import shared state (apps, factories) first
from ._shared import app, main_callback  # noqa: F401

# Import submodules to register their commands with the Typer apps
from . import sessions  # noqa: F401
from . import notify  # noqa: F401
from . import agent  # noqa: F401
from . import hooks  # noqa: F401
from . import config  # noqa: F401
from . import setup  # noqa: F401


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
