"""CLI for PairAgent - broker server, local chat and session management."""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

import click

from pairagent import __version__
from pairagent.config import configure_logging, get_settings
from pairagent.schemas import (
    ErrorMessage,
    InstructorMessage,
    RoundCompleteMessage,
    ServerMessage,
    SessionStatus,
    SystemMessage,
    ThinkingMessage,
    ToolResultMessage,
    ToolUseMessage,
    WaitingInputMessage,
    WorkerMessage,
)

# Characters of tool output shown by `chat`
TOOL_OUTPUT_PREVIEW = 300


@click.group()
@click.version_option(version=__version__, prog_name="pairagent")
def main() -> None:
    """PairAgent - Instructor/Worker coding sessions.

    Run the broker for browser clients, or chat with a session directly.
    """
    pass


@main.command()
@click.option("--port", default=None, type=int, help="Port to run the broker on (defaults to PORT)")
@click.option("--host", default=None, help="Host to bind to (defaults to HOST)")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(port: int | None, host: str | None, reload: bool) -> None:
    """Start the PairAgent HTTP/WebSocket broker."""
    import uvicorn

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    click.echo(f"Starting PairAgent broker on {host}:{port}")
    uvicorn.run(
        "pairagent.broker:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def _format_message(message: ServerMessage) -> str | None:
    """Render a sink message for the terminal; None hides it."""
    if isinstance(message, InstructorMessage):
        return click.style("Instructor: ", fg="cyan", bold=True) + message.content
    if isinstance(message, WorkerMessage):
        return click.style("Worker: ", fg="magenta", bold=True) + message.content
    if isinstance(message, ThinkingMessage):
        return click.style(message.content, dim=True)
    if isinstance(message, ToolUseMessage):
        return click.style(f"-> {message.tool} ", fg="yellow") + json.dumps(message.input)
    if isinstance(message, ToolResultMessage):
        output = message.output
        if len(output) > TOOL_OUTPUT_PREVIEW:
            output = output[:TOOL_OUTPUT_PREVIEW] + "..."
        color = "green" if message.success else "red"
        return click.style(f"<- {message.tool} ", fg=color) + output
    if isinstance(message, RoundCompleteMessage):
        return click.style(f"-- round {message.round} complete --", dim=True)
    if isinstance(message, SystemMessage):
        color = {"info": "blue", "warning": "yellow", "error": "red"}[message.level]
        return click.style(message.content, fg=color)
    if isinstance(message, ErrorMessage):
        return click.style(message.message, fg="red", bold=True)
    if isinstance(message, WaitingInputMessage):
        return None
    return None


def _print_message(message: ServerMessage) -> None:
    rendered = _format_message(message)
    if rendered is not None:
        click.echo(rendered)


@main.command()
@click.argument("instruction")
@click.option(
    "--dir", "-d",
    "directory",
    default=".",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, resolve_path=True),
    help="Working directory for a new session",
)
@click.option("--session", "-s", "session_id", default=None, help="Continue an existing session")
@click.option("--model", "-m", default=None, help="Model for a new session")
def chat(instruction: str, directory: str, session_id: str | None, model: str | None) -> None:
    """Send an instruction and stream the run to the terminal.

    \b
    Example:
        pairagent chat "add type hints to utils.py" --dir ./myproject
        pairagent chat "now run the tests" --session 3f9a1c0b2d4e
    """
    from pairagent.services import get_services

    settings = get_settings()
    configure_logging(settings.log_level)
    services = get_services()
    registry = services.registry

    if session_id is None:
        session = registry.create(directory, model=model)
        click.echo(f"Session {session.session_id} in {session.work_dir}")
    else:
        session = registry.load(session_id)
        if session is None:
            click.echo(f"Session not found: {session_id}", err=True)
            sys.exit(1)

    registry.add_user_message(session.session_id, instruction)
    outcome = asyncio.run(services.orchestrator.run(session.session_id, observer=_print_message))
    click.echo(f"\n[{outcome.value}] session {session.session_id}, round {session.round_count}")


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")


@main.command()
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def sessions(raw: bool) -> None:
    """List sessions, most recently active first."""
    from pairagent.services import get_services

    infos = get_services().registry.list_sessions()

    if raw:
        click.echo(json.dumps([info.model_dump(mode="json") for info in infos], indent=2))
        return

    if not infos:
        click.echo("No sessions found. Start one with 'pairagent chat'.")
        return

    for info in infos:
        click.echo(
            f"{info.session_id}  {info.status.value:<12} rounds={info.round_count:<3} "
            f"{_format_time(info.last_activity)}  {info.work_dir}"
        )


@main.command()
@click.argument("session_id")
def show(session_id: str) -> None:
    """Show a session's history."""
    from pairagent.services import get_services

    session = get_services().registry.load(session_id)
    if session is None:
        click.echo(f"Session not found: {session_id}", err=True)
        sys.exit(1)

    click.echo(f"Session {session.session_id} ({session.status.value}, {session.round_count} rounds)")
    click.echo(f"Working directory: {session.work_dir}")
    click.echo(f"Model: {session.model}\n")

    for message in session.history:
        if isinstance(message.content, str):
            click.echo(f"[{message.role}] {message.content}")
            continue
        for block in message.content:
            if block.type == "text":
                click.echo(f"[{message.role}] {block.text}")
            elif block.type == "tool_use":
                click.echo(f"[{message.role}] tool_use {block.name} {json.dumps(block.input)}")
            elif block.type == "tool_result":
                marker = "error" if block.is_error else "ok"
                click.echo(f"[{message.role}] tool_result ({marker}) {block.content[:TOOL_OUTPUT_PREVIEW]}")


@main.command()
@click.argument("session_id")
def end(session_id: str) -> None:
    """Mark a session as ended."""
    from pairagent.services import get_services

    registry = get_services().registry
    session = registry.load(session_id)
    if session is None:
        click.echo(f"Session not found: {session_id}", err=True)
        sys.exit(1)
    if session.status == SessionStatus.ENDED:
        click.echo(f"Session already ended: {session_id}")
        return
    registry.end(session_id)
    click.echo(f"Ended session: {session_id}")


@main.command()
@click.argument("session_id")
@click.confirmation_option(prompt="Are you sure you want to delete this session's history?")
def delete(session_id: str) -> None:
    """Delete a session and its event log.

    \b
    Example:
        pairagent delete 3f9a1c0b2d4e
    """
    from pairagent.services import get_services

    registry = get_services().registry
    if not registry.exists(session_id):
        click.echo(f"Session not found: {session_id}", err=True)
        sys.exit(1)
    registry.delete(session_id)
    click.echo(f"Deleted session: {session_id}")


@main.command()
def permissions() -> None:
    """Show the permission level of each tool."""
    from pairagent.services import get_services

    for name, level in get_services().policy.snapshot().items():
        click.echo(f"  {name:<14} {level.value}")


@main.command()
def mcp() -> None:
    """Run the MCP server that fronts a running broker.

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "pairagent": {
                    "command": "pairagent",
                    "args": ["mcp"]
                }
            }
        }
    """
    from mcp_pairagent.server import mcp as mcp_server
    mcp_server.run()


@main.command()
def init() -> None:
    """Register the PairAgent MCP server in ./.mcp.json."""
    import shutil

    mcp_json_path = Path.cwd() / ".mcp.json"
    executable = shutil.which("pairagent") or "pairagent"

    if mcp_json_path.exists():
        try:
            mcp_config = json.loads(mcp_json_path.read_text())
        except json.JSONDecodeError:
            mcp_config = {"mcpServers": {}}
    else:
        mcp_config = {"mcpServers": {}}

    mcp_config.setdefault("mcpServers", {})
    if "pairagent" in mcp_config["mcpServers"]:
        click.echo(".mcp.json already has pairagent config, skipping...")
        return

    mcp_config["mcpServers"]["pairagent"] = {"command": executable, "args": ["mcp"]}
    mcp_json_path.write_text(json.dumps(mcp_config, indent=2) + "\n")
    click.echo("Updated .mcp.json with pairagent MCP server")


if __name__ == "__main__":
    main()
