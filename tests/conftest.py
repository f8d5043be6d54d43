"""
Pytest configuration for agentdeck tests.

Every test runs against a private state directory so the registry, config
and logs never touch ~/.agentdeck.
"""

import logging

import pytest


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "slow: tests that sleep or spawn threads for a while"
    )
    config.addinivalue_line(
        "markers", "requires_pty: tests that need os.openpty"
    )


@pytest.fixture(autouse=True)
def isolated_state_dir(tmp_path, monkeypatch):
    """Point AGENTDECK_STATE_DIR at a temp directory and clear agentdeck env."""
    state_dir = tmp_path / "state"
    monkeypatch.setenv("AGENTDECK_STATE_DIR", str(state_dir))
    for var in (
        "AGENTDECK_TMUX_SOCKET",
        "AGENTDECK_SESSION_NAME",
        "AGENTDECK_EXECUTION_ID",
        "AGENTDECK_DEBUG",
        "AGENTDECK_DEBUG_FILE",
    ):
        monkeypatch.delenv(var, raising=False)
    yield state_dir
    # CLI invocations attach handlers to the agentdeck logger
    logger = logging.getLogger("agentdeck")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
