"""Tool executor: permission check, dispatch and result normalization."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field, ValidationError

from pairagent.policies import PermissionPolicy
from pairagent.schemas import COORDINATION_TOOLS, ToolCall, ToolName, ToolOutput, ToolResult
from pairagent.tools.bash_runner import (
    DEFAULT_TIMEOUT,
    MAX_OUTPUT_BYTES,
    CommandBlockedError,
    run_bash,
)
from pairagent.tools.file_tools import edit_file, glob_files, grep_search, read_file, write_file
from pairagent.tools.git_tools import git_commit, git_status

logger = logging.getLogger(__name__)

# Awaited for ask_user tools; returning False declines the call.
ConfirmCallback = Callable[[ToolCall], Awaitable[bool]]


# --- Tool Inputs ---


class ReadFileInput(BaseModel):
    path: str
    offset: int | None = Field(default=None, ge=1)
    limit: int | None = Field(default=None, ge=1)


class WriteFileInput(BaseModel):
    path: str
    content: str


class EditFileInput(BaseModel):
    path: str
    old_string: str
    new_string: str


class GlobInput(BaseModel):
    pattern: str
    path: str | None = None


class GrepInput(BaseModel):
    pattern: str
    path: str | None = None
    glob: str | None = None
    output_mode: str = "files_with_matches"


class BashInput(BaseModel):
    command: str
    timeout: int | None = Field(default=None, ge=1)


class GitStatusInput(BaseModel):
    command: str = "status"


class GitCommitInput(BaseModel):
    message: str
    files: list[str] | None = None


def coordination_marker(call: ToolCall) -> str:
    """Result content for a coordination tool reaching the executor."""
    return json.dumps({"type": "worker_coordination", "tool": call.name, "input": call.input})


def normalize_output(tool_use_id: str, result: ToolOutput) -> ToolResult:
    """Convert a {success, output|error} tool output into a ToolResult."""
    if result.success:
        output = result.output
        if output is None:
            content = "Success"
        elif isinstance(output, str):
            content = output
        else:
            content = json.dumps(output, indent=2)
        return ToolResult(tool_use_id=tool_use_id, content=content)

    content = result.error or "Tool execution failed"
    if result.output is not None:
        partial = result.output if isinstance(result.output, str) else json.dumps(result.output, indent=2)
        content = f"{content}\n{partial}"
    return ToolResult(tool_use_id=tool_use_id, content=content, is_error=True)


class ToolExecutor:
    """Runs tool calls for one session working directory."""

    def __init__(
        self,
        work_dir: str | Path,
        policy: PermissionPolicy | None = None,
        bash_timeout_seconds: int = DEFAULT_TIMEOUT,
        bash_max_output_bytes: int = MAX_OUTPUT_BYTES,
        confirm: ConfirmCallback | None = None,
    ):
        """Initialize the executor.

        Args:
            work_dir: Session working directory
            policy: Permission policy (defaults when omitted)
            bash_timeout_seconds: Default and upper bound for bash timeouts
            bash_max_output_bytes: Output limit per stream for bash
            confirm: Optional hook consulted for ask_user tools. Without it,
                ask_user tools run immediately.
        """
        self.work_dir = str(work_dir)
        self.policy = policy or PermissionPolicy()
        self.bash_timeout_seconds = bash_timeout_seconds
        self.bash_max_output_bytes = bash_max_output_bytes
        self.confirm = confirm

        self._handlers: dict[str, tuple[type[BaseModel], Callable[[Any], ToolOutput]]] = {
            ToolName.READ_FILE.value: (ReadFileInput, self._read_file),
            ToolName.WRITE_FILE.value: (WriteFileInput, self._write_file),
            ToolName.EDIT_FILE.value: (EditFileInput, self._edit_file),
            ToolName.GLOB.value: (GlobInput, self._glob),
            ToolName.GREP.value: (GrepInput, self._grep),
            ToolName.BASH_COMMAND.value: (BashInput, self._bash),
            ToolName.GIT_STATUS.value: (GitStatusInput, self._git_status),
            ToolName.GIT_COMMIT.value: (GitCommitInput, self._git_commit),
        }

    async def execute(self, call: ToolCall, allowed: frozenset[str] | None = None) -> ToolResult:
        """Execute one tool call. Never raises for tool failures.

        Args:
            call: The tool call
            allowed: Tool names available to the caller; None allows all

        Returns:
            ToolResult with the same tool_use_id
        """
        if call.name in COORDINATION_TOOLS:
            return ToolResult(tool_use_id=call.id, content=coordination_marker(call))

        if allowed is not None and call.name not in allowed:
            return self._error(call, f'Tool "{call.name}" is not available here')

        check = self.policy.check(call.name)
        if not check.allowed:
            logger.info(f"Tool {call.name} denied by policy")
            return self._error(call, f'Tool "{call.name}" is not allowed: {check.reason}')

        if check.needs_confirmation and self.confirm is not None:
            try:
                approved = await self.confirm(call)
            except Exception as e:
                logger.error(f"Confirmation hook failed for {call.name}: {e}", exc_info=True)
                return self._error(call, f"Could not confirm {call.name}: {e}")
            if not approved:
                return self._error(call, f'Tool "{call.name}" was declined by the user')

        handler = self._handlers.get(call.name)
        if handler is None:
            return self._error(call, f"Unknown tool: {call.name}")

        input_model, run = handler
        try:
            params = input_model.model_validate(call.input)
        except ValidationError as e:
            return self._error(call, f"Invalid input for {call.name}: {e}")

        logger.debug(f"Executing {call.name} ({call.id})")
        try:
            output = await asyncio.to_thread(run, params)
        except CommandBlockedError as e:
            return self._error(call, f"Command blocked: {e}")
        except Exception as e:
            logger.error(f"Tool {call.name} failed: {e}", exc_info=True)
            return self._error(call, f"Tool execution failed: {e}")

        return normalize_output(call.id, output)

    def _error(self, call: ToolCall, message: str) -> ToolResult:
        return ToolResult(tool_use_id=call.id, content=message, is_error=True)

    # --- Dispatch ---

    def _read_file(self, params: ReadFileInput) -> ToolOutput:
        return read_file(params.path, self.work_dir, offset=params.offset, limit=params.limit)

    def _write_file(self, params: WriteFileInput) -> ToolOutput:
        return write_file(params.path, params.content, self.work_dir)

    def _edit_file(self, params: EditFileInput) -> ToolOutput:
        return edit_file(params.path, params.old_string, params.new_string, self.work_dir)

    def _glob(self, params: GlobInput) -> ToolOutput:
        return glob_files(params.pattern, self.work_dir, path=params.path)

    def _grep(self, params: GrepInput) -> ToolOutput:
        return grep_search(
            params.pattern,
            self.work_dir,
            path=params.path,
            glob=params.glob,
            output_mode=params.output_mode,
        )

    def _bash(self, params: BashInput) -> ToolOutput:
        timeout = min(params.timeout or self.bash_timeout_seconds, self.bash_timeout_seconds)
        result = run_bash(
            params.command,
            work_dir=self.work_dir,
            timeout_seconds=timeout,
            max_output_bytes=self.bash_max_output_bytes,
        )
        output = {"stdout": result.stdout, "stderr": result.stderr, "exit_code": result.exit_code}
        if result.timed_out:
            return ToolOutput(success=False, error=f"Command timed out after {timeout} seconds", output=output)
        if result.exit_code != 0:
            return ToolOutput(success=False, error=f"Command exited with code {result.exit_code}", output=output)
        return ToolOutput(success=True, output=output)

    def _git_status(self, params: GitStatusInput) -> ToolOutput:
        return git_status(params.command, self.work_dir)

    def _git_commit(self, params: GitCommitInput) -> ToolOutput:
        return git_commit(params.message, self.work_dir, files=params.files)
