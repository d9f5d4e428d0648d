"""Bash runner for shell commands in the session working directory."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path

from pairagent.schemas import BashResult

logger = logging.getLogger(__name__)

# Output limits
MAX_OUTPUT_BYTES = 10 * 1024  # 10KB

# Default timeout
DEFAULT_TIMEOUT = 30  # seconds

SHELL = shutil.which("bash") or "/bin/sh"


class CommandBlockedError(Exception):
    """Raised when a command matches the denylist."""

    pass


# Universal denylist (always rejected). Best effort only.
BLOCKLIST = [
    r"\brm\s+(-[a-zA-Z]*r[a-zA-Z]*f|-[a-zA-Z]*f[a-zA-Z]*r)[a-zA-Z]*\s+(/|~/?)(\s|$|\*)",  # rm -rf / or ~
    r"\brm\s+(-[a-zA-Z]*r[a-zA-Z]*f|-[a-zA-Z]*f[a-zA-Z]*r)[a-zA-Z]*\s+/\*",
    r"\bdd\b.*\bof=/dev/",
    r">\s*/dev/sd[a-z]",
    r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",  # Fork bomb
    r"\b(curl|wget)\b[^|]*\|\s*(ba|z)?sh\b",  # Pipe download to shell
    r"\bmkfs(\.\w+)?\b",
    r"\bshutdown\b",
    r"\breboot\b",
    r"\bgit\s+push\b.*(--force\b|\s-f\b)",
    r"\bgit\s+reset\s+--hard\b",
]


def validate_command(command: str) -> tuple[bool, str]:
    """Validate command against the denylist.

    Args:
        command: The command to validate

    Returns:
        Tuple of (allowed, reason)
    """
    command = command.strip()
    if not command:
        return False, "Empty command"

    for pattern in BLOCKLIST:
        if re.search(pattern, command, re.IGNORECASE):
            return False, f"Blocked: matches dangerous pattern '{pattern}'"

    return True, "Allowed"


def _truncate_output(output: str, max_bytes: int = MAX_OUTPUT_BYTES) -> str:
    """Truncate output to max_bytes."""
    if len(output.encode("utf-8", errors="replace")) <= max_bytes:
        return output

    # Truncate by bytes, preserving valid UTF-8
    encoded = output.encode("utf-8", errors="replace")[:max_bytes]
    truncated = encoded.decode("utf-8", errors="ignore")
    return truncated + "\n... (output truncated)"


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def run_bash(
    command: str,
    work_dir: str | None = None,
    timeout_seconds: int = DEFAULT_TIMEOUT,
    max_output_bytes: int = MAX_OUTPUT_BYTES,
) -> BashResult:
    """Execute a shell command.

    Args:
        command: The command to execute
        work_dir: Working directory (defaults to current directory)
        timeout_seconds: Timeout in seconds
        max_output_bytes: Per-stream output limit

    Returns:
        BashResult with stdout, stderr, exit code; on timeout the partial
        output captured so far and ``timed_out`` set

    Raises:
        CommandBlockedError: If the command matches the denylist
    """
    command = command.strip()
    work_dir = work_dir or str(Path.cwd())

    allowed, reason = validate_command(command)
    if not allowed:
        logger.warning(f"Command blocked: {command} - {reason}")
        raise CommandBlockedError(reason)

    logger.info(f"Executing command: {command} (cwd: {work_dir})")

    try:
        result = subprocess.run(
            [SHELL, "-c", command],
            capture_output=True,
            timeout=timeout_seconds,
            text=True,
            cwd=work_dir,
        )
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command timed out after {timeout_seconds}s: {command}")
        return BashResult(
            stdout=_truncate_output(_as_text(e.stdout), max_output_bytes),
            stderr=_truncate_output(_as_text(e.stderr), max_output_bytes),
            exit_code=-1,
            command_executed=command,
            timed_out=True,
        )

    return BashResult(
        stdout=_truncate_output(result.stdout, max_output_bytes),
        stderr=_truncate_output(result.stderr, max_output_bytes),
        exit_code=result.returncode,
        command_executed=command,
    )
