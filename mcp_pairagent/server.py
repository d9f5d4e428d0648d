"""MCP server exposing PairAgent sessions to other agents via the broker."""

import os

from mcp.server.fastmcp import FastMCP
import httpx

mcp = FastMCP("pairagent")
BROKER = os.environ.get("PAIRAGENT_BROKER_URL", "http://localhost:3000")
TOKEN = os.environ.get("AUTH_TOKEN")

# Runs can take many rounds
RUN_TIMEOUT = 600.0


def _headers() -> dict:
    return {"Authorization": f"Bearer {TOKEN}"} if TOKEN else {}


@mcp.tool()
async def create_session(work_dir: str, instruction: str | None = None, model: str | None = None) -> dict:
    """Create a coding session in work_dir; optionally run a first instruction.

    Returns the session info and, when an instruction was given, the run result
    (final Instructor response, tool calls, status).
    """
    async with httpx.AsyncClient(timeout=RUN_TIMEOUT) as client:
        r = await client.post(
            f"{BROKER}/api/sessions",
            json={"work_dir": work_dir, "instruction": instruction, "model": model},
            headers=_headers(),
        )
        return r.json()


@mcp.tool()
async def send_message(session_id: str, content: str) -> dict:
    """Send a message to a session and wait for the run to finish."""
    async with httpx.AsyncClient(timeout=RUN_TIMEOUT) as client:
        r = await client.post(
            f"{BROKER}/api/sessions/{session_id}/messages",
            json={"content": content},
            headers=_headers(),
        )
        data = r.json()
        # The full message stream is noisy for an agent caller
        data.pop("messages", None)
        return data


@mcp.tool()
async def list_sessions() -> list:
    """List sessions, most recently active first."""
    async with httpx.AsyncClient(timeout=30.0) as client:
        r = await client.get(f"{BROKER}/api/sessions", headers=_headers())
        return r.json()


if __name__ == "__main__":
    mcp.run()
