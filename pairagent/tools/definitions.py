"""Tool schemas advertised to the Instructor and Worker models."""

from __future__ import annotations

from typing import Any

from pairagent.schemas import ToolName

READ_FILE = {
    "name": ToolName.READ_FILE.value,
    "description": (
        "Read the contents of a file. Returns numbered lines. "
        "Use offset and limit for large files."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path relative to the working directory"},
            "offset": {"type": "integer", "description": "1-based line number to start from"},
            "limit": {"type": "integer", "description": "Maximum number of lines to read"},
        },
        "required": ["path"],
    },
}

WRITE_FILE = {
    "name": ToolName.WRITE_FILE.value,
    "description": "Write content to a file, creating it and any parent directories.",
    "input_schema": {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path relative to the working directory"},
            "content": {"type": "string", "description": "Full file content"},
        },
        "required": ["path", "content"],
    },
}

EDIT_FILE = {
    "name": ToolName.EDIT_FILE.value,
    "description": (
        "Replace one exact occurrence of old_string with new_string. "
        "Fails if the text is missing or appears more than once."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "path": {"type": "string"},
            "old_string": {"type": "string", "description": "Exact text to replace"},
            "new_string": {"type": "string", "description": "Replacement text"},
        },
        "required": ["path", "old_string", "new_string"],
    },
}

GLOB = {
    "name": ToolName.GLOB.value,
    "description": "Find files by glob pattern, e.g. '**/*.py'. Hidden and ignored files are skipped.",
    "input_schema": {
        "type": "object",
        "properties": {
            "pattern": {"type": "string"},
            "path": {"type": "string", "description": "Directory to search (defaults to working directory)"},
        },
        "required": ["pattern"],
    },
}

GREP = {
    "name": ToolName.GREP.value,
    "description": "Search file contents with a regular expression.",
    "input_schema": {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Regular expression"},
            "path": {"type": "string", "description": "File or directory to search"},
            "glob": {"type": "string", "description": "Filter files, e.g. '**/*.ts'"},
            "output_mode": {
                "type": "string",
                "enum": ["files_with_matches", "content", "count"],
            },
        },
        "required": ["pattern"],
    },
}

BASH_COMMAND = {
    "name": ToolName.BASH_COMMAND.value,
    "description": "Run a shell command in the working directory. Output is truncated.",
    "input_schema": {
        "type": "object",
        "properties": {
            "command": {"type": "string"},
            "timeout": {"type": "integer", "description": "Timeout in seconds"},
        },
        "required": ["command"],
    },
}

GIT_STATUS = {
    "name": ToolName.GIT_STATUS.value,
    "description": "Run a read-only git command such as 'status', 'diff' or 'log --oneline -10'.",
    "input_schema": {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "Git subcommand and arguments"},
        },
        "required": ["command"],
    },
}

GIT_COMMIT = {
    "name": ToolName.GIT_COMMIT.value,
    "description": "Stage the given files and create a commit.",
    "input_schema": {
        "type": "object",
        "properties": {
            "message": {"type": "string"},
            "files": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["message"],
    },
}

CALL_WORKER = {
    "name": ToolName.CALL_WORKER.value,
    "description": (
        "Start a new Worker with a fresh context and give it a task. "
        "Returns the Worker's final report."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "system_prompt": {"type": "string", "description": "Role and constraints for the Worker"},
            "instruction": {"type": "string", "description": "The task to carry out"},
            "model": {"type": "string"},
        },
        "required": ["instruction"],
    },
}

TELL_WORKER = {
    "name": ToolName.TELL_WORKER.value,
    "description": "Send a follow-up message to the current Worker, keeping its context.",
    "input_schema": {
        "type": "object",
        "properties": {
            "message": {"type": "string"},
            "model": {"type": "string"},
        },
        "required": ["message"],
    },
}

WORKER_TOOLS: list[dict[str, Any]] = [
    READ_FILE,
    WRITE_FILE,
    EDIT_FILE,
    GLOB,
    GREP,
    BASH_COMMAND,
    GIT_STATUS,
]

INSTRUCTOR_TOOLS: list[dict[str, Any]] = WORKER_TOOLS + [GIT_COMMIT, CALL_WORKER, TELL_WORKER]


def tool_names(tools: list[dict[str, Any]]) -> frozenset[str]:
    return frozenset(tool["name"] for tool in tools)


WORKER_TOOL_NAMES = tool_names(WORKER_TOOLS)
INSTRUCTOR_TOOL_NAMES = tool_names(INSTRUCTOR_TOOLS)
