"""Agent client that drives the external claude CLI in stream-json pipe mode."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal as signals
from typing import Any

from pairagent.agents.base import AgentError, CancellationToken, StreamCallback, run_cancellable
from pairagent.schemas import AgentResponse, Message, StreamEvent, TextBlock, ToolUseBlock

logger = logging.getLogger(__name__)

# Seconds to wait for the CLI to exit after SIGINT before killing it
INTERRUPT_GRACE = 5.0


class CliAgentClient:
    """Runs one CLI process per turn; the CLI executes its own tools.

    The CLI keeps its own conversation state, so only the latest user
    message is sent and continuity comes from the resume token.
    """

    supports_workers = False
    executes_tools = True

    def __init__(
        self,
        work_dir: str,
        model: str,
        claude_path: str = "claude",
        resume_token: str | None = None,
        skip_permissions: bool = True,
    ):
        self.work_dir = work_dir
        self.model = model
        self.claude_path = claude_path
        self.resume_token = resume_token
        self.skip_permissions = skip_permissions

    def build_args(self) -> list[str]:
        args = [
            "--print",
            "--input-format", "stream-json",
            "--output-format", "stream-json",
            "--verbose",
        ]
        if self.resume_token:
            args += ["--resume", self.resume_token]
        if self.skip_permissions:
            args.append("--dangerously-skip-permissions")
        return args

    async def converse(
        self,
        system: str,
        history: list[Message],
        tools: list[dict[str, Any]],
        signal: CancellationToken,
        on_stream: StreamCallback | None = None,
    ) -> AgentResponse:
        """Send the latest user message to the CLI.

        ``system`` and ``tools`` are ignored; the CLI brings its own.

        Raises:
            AgentError: If the CLI fails or reports an error result
            RunAborted: If the token fires while the CLI is running
        """
        prompt = _last_user_prompt(history)
        return await run_cancellable(self._run(prompt, on_stream), signal)

    async def _run(self, prompt: str, on_stream: StreamCallback | None) -> AgentResponse:
        args = self.build_args()
        logger.debug(f"Spawning CLI: {self.claude_path} {' '.join(args)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                self.claude_path,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.work_dir,
                env={**os.environ, "ANTHROPIC_MODEL": self.model},
            )
        except FileNotFoundError as e:
            raise AgentError(f"CLI not found: {self.claude_path}", "cli") from e

        stderr_task: asyncio.Future[bytes] | None = None
        try:
            message = {"type": "user", "message": {"role": "user", "content": prompt}}
            proc.stdin.write((json.dumps(message) + "\n").encode("utf-8"))
            await proc.stdin.drain()
            proc.stdin.close()

            stderr_task = asyncio.ensure_future(proc.stderr.read())
            result_text = ""
            stop_reason: str | None = None
            session_id: str | None = self.resume_token

            async for raw in proc.stdout:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"Non-JSON line from CLI: {line}")
                    continue

                msg_type = msg.get("type")
                if msg_type == "assistant":
                    body = msg.get("message") or {}
                    text = _relay_assistant(body.get("content") or [], on_stream)
                    if text:
                        result_text = text
                    stop_reason = body.get("stop_reason")
                    session_id = msg.get("session_id") or session_id
                elif msg_type == "result":
                    if msg.get("is_error"):
                        detail = msg.get("error") or msg.get("result") or "Unknown CLI error"
                        raise AgentError(f"CLI error: {detail}", "cli")
                    result_text = msg.get("result") or result_text
                    session_id = msg.get("session_id") or session_id
                else:
                    logger.debug(f"Unhandled CLI message type: {msg_type}")

            returncode = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
            if returncode != 0 and not result_text:
                raise AgentError(f"CLI exited with code {returncode}: {stderr.strip()}", "cli")

        finally:
            if proc.returncode is None:
                await _interrupt(proc)
            if stderr_task is not None and not stderr_task.done():
                stderr_task.cancel()

        self.resume_token = session_id
        content = [TextBlock(text=result_text)] if result_text else []
        # The CLI only returns once its own tool loop has finished
        if stop_reason in (None, "tool_use"):
            stop_reason = "end_turn"
        return AgentResponse(content=content, stop_reason=stop_reason, resume_token=session_id)


def _last_user_prompt(history: list[Message]) -> str:
    for message in reversed(history):
        if message.role != "user":
            continue
        if isinstance(message.content, str):
            return message.content
        return json.dumps([block.model_dump() for block in message.content])
    raise AgentError("No user message in conversation", "invalid_request")


def _relay_assistant(blocks: list[dict[str, Any]], on_stream: StreamCallback | None) -> str:
    """Forward assistant blocks as stream events; returns their joined text."""
    texts = []
    for block in blocks:
        block_type = block.get("type")
        if block_type == "text" and block.get("text"):
            texts.append(block["text"])
            event = StreamEvent(type="text", content=block["text"])
        elif block_type == "thinking" and block.get("thinking"):
            event = StreamEvent(type="thinking", content=block["thinking"])
        elif block_type == "tool_use":
            event = StreamEvent(
                type="tool_use",
                tool_use=ToolUseBlock(
                    id=block.get("id", ""),
                    name=block.get("name", ""),
                    input=block.get("input") or {},
                ),
            )
        else:
            continue
        if on_stream is not None:
            on_stream(event)
    return "".join(texts)


async def _interrupt(proc: asyncio.subprocess.Process) -> None:
    """SIGINT the CLI, then kill it if it does not exit."""
    try:
        proc.send_signal(signals.SIGINT)
        await asyncio.wait_for(proc.wait(), timeout=INTERRUPT_GRACE)
    except ProcessLookupError:
        return
    except asyncio.TimeoutError:
        logger.warning("CLI did not exit after SIGINT, killing it")
        proc.kill()
        await proc.wait()
