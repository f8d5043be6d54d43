"""
Unit tests for config module.
"""

from agentdeck import config


def _write(isolated_state_dir, text):
    isolated_state_dir.mkdir(parents=True, exist_ok=True)
    path = isolated_state_dir / "config.yaml"
    path.write_text(text)
    return path


class TestLoadConfig:
    """Test config loading functionality."""

    def test_returns_empty_dict_when_no_file(self):
        assert config.load_config() == {}

    def test_loads_valid_yaml(self, isolated_state_dir):
        _write(isolated_state_dir, "agent_command: claude-beta\nprompt_monitor: true\n")

        result = config.load_config()

        assert result == {"agent_command": "claude-beta", "prompt_monitor": True}

    def test_returns_empty_dict_on_invalid_yaml(self, isolated_state_dir):
        _write(isolated_state_dir, "invalid: yaml: content: [")

        assert config.load_config() == {}

    def test_returns_empty_dict_when_yaml_is_not_dict(self, isolated_state_dir):
        _write(isolated_state_dir, "- item1\n- item2\n")

        assert config.load_config() == {}

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "other.yaml"
        path.write_text("statuses: [todo, done]\n")

        assert config.load_config(path) == {"statuses": ["todo", "done"]}


class TestGetters:

    def test_defaults(self):
        assert config.get_agent_command({}) == "claude"
        assert config.get_tmux_status_position({}) is None
        assert config.get_statuses({}) == ["spec", "plan", "implement", "review", "done"]
        assert config.get_strict_execution_id({}) is False
        assert config.get_prompt_monitor_enabled({}) is False
        assert config.get_error_clear_delay({}) == 10.0

    def test_agent_command(self):
        assert config.get_agent_command({"agent_command": " claude-beta "}) == "claude-beta"
        assert config.get_agent_command({"agent_command": ""}) == "claude"

    def test_status_position_validated(self):
        assert config.get_tmux_status_position({"tmux_status_position": "top"}) == "top"
        assert config.get_tmux_status_position({"tmux_status_position": "left"}) is None

    def test_statuses(self):
        assert config.get_statuses({"statuses": ["todo", " doing ", ""]}) == ["todo", "doing"]
        assert config.get_statuses({"statuses": "todo"}) == config.DEFAULT_STATUSES

    def test_statuses_default_is_a_copy(self):
        statuses = config.get_statuses({})
        statuses.append("extra")

        assert "extra" not in config.DEFAULT_STATUSES

    def test_strict_execution_id_requires_true(self):
        assert config.get_strict_execution_id({"strict_execution_id": True}) is True
        assert config.get_strict_execution_id({"strict_execution_id": "yes"}) is False

    def test_error_clear_delay(self):
        assert config.get_error_clear_delay({"error_clear_delay": 3}) == 3.0
        assert config.get_error_clear_delay({"error_clear_delay": -1}) == 10.0
        assert config.get_error_clear_delay({"error_clear_delay": True}) == 10.0

    def test_getters_read_file_when_no_config_given(self, isolated_state_dir):
        _write(isolated_state_dir, "agent_command: my-agent\n")

        assert config.get_agent_command() == "my-agent"
