"""Tests for the CLI module."""

import json

import pytest
from pathlib import Path
from unittest.mock import patch
from click.testing import CliRunner

from conftest import ScriptedClient, text_turn, tool_turn
from pairagent.cli import main
from pairagent.config import Settings
from pairagent.services import build_services, set_services


@pytest.fixture
def scripts():
    return []


@pytest.fixture
def services(tmp_path, tmp_workspace, scripts, monkeypatch):
    """Install services backed by a scripted client for the CLI."""
    settings = Settings(
        work_dir=tmp_workspace,
        session_storage_dir=tmp_path / "sessions",
        anthropic_api_key="test-key",
    )
    monkeypatch.setattr("pairagent.config._settings", settings)
    services = build_services(settings, client_factory=lambda session: ScriptedClient(scripts.pop(0)))
    set_services(services)
    yield services
    set_services(None)


class TestCLI:
    """Test CLI commands."""

    @pytest.fixture
    def runner(self):
        """Create CLI test runner."""
        return CliRunner()

    def test_main_help(self, runner):
        """Main command shows help."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "PairAgent" in result.output
        assert "Instructor" in result.output

    def test_version(self, runner):
        """Version flag works."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestChatCommand:
    """Test chat command."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_chat_new_session(self, runner, services, scripts, sample_python_files):
        """chat creates a session and prints the run."""
        scripts.append([
            tool_turn("glob", {"pattern": "*.py"}),
            text_turn("Only main.py here."),
        ])

        result = runner.invoke(main, ["chat", "list python files", "--dir", str(sample_python_files)])

        assert result.exit_code == 0
        assert "Instructor: Only main.py here." in result.output
        assert "-> glob" in result.output
        assert "round 1 complete" in result.output
        assert "[waiting_input]" in result.output

    def test_chat_continue_session(self, runner, services, scripts, tmp_workspace):
        """--session continues an existing session."""
        session = services.registry.create(str(tmp_workspace))
        scripts.append([text_turn("Continuing.")])

        result = runner.invoke(main, ["chat", "carry on", "--session", session.session_id])

        assert result.exit_code == 0
        assert "Continuing." in result.output
        assert session.history[0].content == "carry on"

    def test_chat_unknown_session(self, runner, services):
        """Unknown sessions exit with an error."""
        result = runner.invoke(main, ["chat", "hi", "--session", "missing"])
        assert result.exit_code == 1
        assert "Session not found" in result.output


class TestSessionCommands:
    """Test sessions, show, end, delete and permissions."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_sessions_empty(self, runner, services):
        """An empty store prints a hint."""
        result = runner.invoke(main, ["sessions"])
        assert result.exit_code == 0
        assert "No sessions found" in result.output

    def test_sessions_raw(self, runner, services, tmp_workspace):
        """--raw prints JSON."""
        session = services.registry.create(str(tmp_workspace))

        result = runner.invoke(main, ["sessions", "--raw"])

        data = json.loads(result.output)
        assert data[0]["session_id"] == session.session_id

    def test_show(self, runner, services, tmp_workspace):
        """show prints the history."""
        session = services.registry.create(str(tmp_workspace))
        services.registry.add_user_message(session.session_id, "remember this")

        result = runner.invoke(main, ["show", session.session_id])

        assert result.exit_code == 0
        assert "[user] remember this" in result.output

    def test_end(self, runner, services, tmp_workspace):
        """end marks the session ended."""
        session = services.registry.create(str(tmp_workspace))

        result = runner.invoke(main, ["end", session.session_id])

        assert result.exit_code == 0
        assert services.registry.load(session.session_id).status.value == "ended"

    def test_end_twice(self, runner, services, tmp_workspace):
        """Ending an ended session is reported, not an error."""
        session = services.registry.create(str(tmp_workspace))
        services.registry.end(session.session_id)

        result = runner.invoke(main, ["end", session.session_id])

        assert result.exit_code == 0
        assert "already ended" in result.output

    def test_delete_with_confirmation(self, runner, services, tmp_workspace):
        """delete asks for confirmation."""
        session = services.registry.create(str(tmp_workspace))

        result = runner.invoke(main, ["delete", session.session_id], input="y\n")

        assert result.exit_code == 0
        assert "Deleted session" in result.output
        assert services.registry.exists(session.session_id) is False

    def test_delete_aborted(self, runner, services, tmp_workspace):
        """Declining keeps the session."""
        session = services.registry.create(str(tmp_workspace))

        result = runner.invoke(main, ["delete", session.session_id], input="n\n")

        assert result.exit_code == 1
        assert services.registry.exists(session.session_id) is True

    def test_permissions(self, runner, services):
        """permissions lists each tool's level."""
        result = runner.invoke(main, ["permissions"])
        assert "bash_command" in result.output
        assert "ask_user" in result.output


class TestServeAndMcp:
    """Test server entry points."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    @patch("uvicorn.run")
    def test_serve(self, mock_run, runner, services):
        """serve starts uvicorn with the broker app."""
        result = runner.invoke(main, ["serve", "--port", "4000"])

        assert result.exit_code == 0
        args, kwargs = mock_run.call_args
        assert args[0] == "pairagent.broker:app"
        assert kwargs["port"] == 4000
        assert kwargs["host"] == "127.0.0.1"

    def test_init_writes_mcp_json(self, runner, tmp_path):
        """init registers the MCP server."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["init"])
            config = json.loads(Path(".mcp.json").read_text())

        assert result.exit_code == 0
        assert config["mcpServers"]["pairagent"]["args"] == ["mcp"]

    def test_init_keeps_existing(self, runner, tmp_path):
        """init leaves an existing entry alone."""
        with runner.isolated_filesystem(temp_dir=tmp_path):
            Path(".mcp.json").write_text(json.dumps({"mcpServers": {"pairagent": {"command": "custom"}}}))
            result = runner.invoke(main, ["init"])
            config = json.loads(Path(".mcp.json").read_text())

        assert "skipping" in result.output
        assert config["mcpServers"]["pairagent"]["command"] == "custom"
