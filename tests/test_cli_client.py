"""Tests for the CLI-backed agent client using a fake claude executable."""

import json
import stat
import sys
from pathlib import Path

import pytest

from pairagent.agents.base import AgentError, CancellationToken
from pairagent.agents.cli_client import CliAgentClient
from pairagent.schemas import Message, ToolResultBlock

FAKE_CLAUDE = '''
import json
import os
import sys

record = {"argv": sys.argv[1:], "model": os.environ.get("ANTHROPIC_MODEL"), "cwd": os.getcwd()}
incoming = json.loads(sys.stdin.readline())
record["prompt"] = incoming["message"]["content"]
with open(os.path.join(os.path.dirname(sys.argv[0]), "record.json"), "w") as f:
    json.dump(record, f)

mode = os.environ.get("FAKE_CLAUDE_MODE", "ok")
if mode == "error":
    print(json.dumps({"type": "result", "is_error": True, "result": "quota exceeded"}))
    sys.exit(1)

print(json.dumps({"type": "system", "subtype": "init", "session_id": "cli-abc"}))
print(json.dumps({
    "type": "assistant",
    "session_id": "cli-abc",
    "message": {
        "content": [
            {"type": "thinking", "thinking": "Planning"},
            {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}},
        ],
        "stop_reason": "tool_use",
    },
}))
print("not json")
print(json.dumps({
    "type": "assistant",
    "session_id": "cli-abc",
    "message": {"content": [{"type": "text", "text": "Listed the files."}], "stop_reason": None},
}))
print(json.dumps({"type": "result", "is_error": False, "result": "Listed the files.", "session_id": "cli-abc"}))
'''


@pytest.fixture
def fake_claude(tmp_path: Path) -> Path:
    """Write an executable stand-in for the claude CLI."""
    script = tmp_path / "bin" / "claude"
    script.parent.mkdir()
    script.write_text(f"#!{sys.executable}\n{FAKE_CLAUDE}")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return script


def read_record(fake_claude: Path) -> dict:
    return json.loads((fake_claude.parent / "record.json").read_text())


class TestCliAgentClient:
    """Test the CLI subprocess contract."""

    def test_build_args(self):
        """Pipe mode flags, resume token and permission bypass."""
        client = CliAgentClient(work_dir="/tmp", model="m", resume_token="cli-1")
        args = client.build_args()

        assert args[:5] == ["--print", "--input-format", "stream-json", "--output-format", "stream-json"]
        assert "--verbose" in args
        assert args[args.index("--resume") + 1] == "cli-1"
        assert args[-1] == "--dangerously-skip-permissions"

    def test_no_resume_without_token(self):
        """--resume is omitted for a new conversation."""
        assert "--resume" not in CliAgentClient(work_dir="/tmp", model="m").build_args()

    @pytest.mark.asyncio
    async def test_converse(self, fake_claude, tmp_workspace):
        """The last user message is sent and the result returned."""
        client = CliAgentClient(work_dir=str(tmp_workspace), model="cli-model", claude_path=str(fake_claude))
        events = []

        response = await client.converse(
            system="ignored",
            history=[Message(role="user", content="old"), Message(role="user", content="list files")],
            tools=[],
            signal=CancellationToken(),
            on_stream=events.append,
        )

        assert response.text == "Listed the files."
        assert response.stop_reason == "end_turn"
        assert response.resume_token == "cli-abc"
        assert response.tool_calls == []
        assert client.resume_token == "cli-abc"
        assert [e.type for e in events] == ["thinking", "tool_use", "text"]

        record = read_record(fake_claude)
        assert record["prompt"] == "list files"
        assert record["model"] == "cli-model"
        assert Path(record["cwd"]).resolve() == tmp_workspace.resolve()

    @pytest.mark.asyncio
    async def test_tool_results_sent_as_json(self, fake_claude, tmp_workspace):
        """A tool-result user turn is serialized for the CLI."""
        client = CliAgentClient(work_dir=str(tmp_workspace), model="m", claude_path=str(fake_claude))
        history = [Message(role="user", content=[ToolResultBlock(tool_use_id="t1", content="ok")])]

        await client.converse("s", history, [], CancellationToken())

        assert json.loads(read_record(fake_claude)["prompt"])[0]["tool_use_id"] == "t1"

    @pytest.mark.asyncio
    async def test_error_result(self, fake_claude, tmp_workspace, monkeypatch):
        """An is_error result raises a cli AgentError."""
        monkeypatch.setenv("FAKE_CLAUDE_MODE", "error")
        client = CliAgentClient(work_dir=str(tmp_workspace), model="m", claude_path=str(fake_claude))

        with pytest.raises(AgentError) as exc_info:
            await client.converse("s", [Message(role="user", content="hi")], [], CancellationToken())

        assert exc_info.value.error_type == "cli"
        assert "quota exceeded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_workspace):
        """A missing CLI raises a cli AgentError."""
        client = CliAgentClient(work_dir=str(tmp_workspace), model="m", claude_path="/nonexistent/claude")

        with pytest.raises(AgentError) as exc_info:
            await client.converse("s", [Message(role="user", content="hi")], [], CancellationToken())
        assert exc_info.value.error_type == "cli"

    @pytest.mark.asyncio
    async def test_no_user_message(self, tmp_workspace):
        """A history without user turns is rejected."""
        client = CliAgentClient(work_dir=str(tmp_workspace), model="m")

        with pytest.raises(AgentError):
            await client.converse("s", [], [], CancellationToken())
