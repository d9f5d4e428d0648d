"""Git tools: read-only inspection and commit."""

from __future__ import annotations

import logging
import shlex
import subprocess

from pairagent.schemas import ToolOutput
from pairagent.tools.bash_runner import _truncate_output
from pairagent.tools.paths import validate_path

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30  # seconds

READ_ONLY_COMMANDS = [
    "status",
    "log",
    "diff",
    "show",
    "branch",
    "remote",
    "tag",
    "describe",
    "rev-parse",
    "ls-files",
    "ls-tree",
    "blame",
    "shortlog",
    "config --list",
    "stash list",
]

# Always rejected, whatever the permission level
FORBIDDEN_COMMANDS = [
    "push",
    "push --force",
    "push -f",
    "reset --hard",
    "clean -fd",
    "filter-branch",
]

# Arguments that turn an allowlisted subcommand into a write
MUTATING_ARGUMENTS = {
    "branch": {
        "-d", "-D", "--delete", "-m", "-M", "--move", "-c", "-C", "--copy",
        "-f", "--force", "-u", "--set-upstream-to", "--unset-upstream", "--edit-description",
    },
    "tag": {"-d", "--delete", "-a", "--annotate", "-s", "--sign", "-u", "--local-user", "-f", "--force", "-m", "-F"},
    "remote": {"add", "remove", "rm", "rename", "set-url", "set-head", "set-branches", "prune", "update"},
}

# A bare name after these creates a ref unless listing is requested
REF_CREATING_COMMANDS = {"branch", "tag"}
LIST_FLAGS = {"-l", "--list"}


def _normalize(command: str) -> str:
    command = command.strip()
    if command.startswith("git "):
        command = command[4:].strip()
    return " ".join(command.split())


def _mutating_reason(tokens: list[str]) -> str | None:
    """Reason an allowlisted command would still write, or None."""
    subcommand, args = tokens[0], tokens[1:]
    names = [arg.split("=", 1)[0] for arg in args]
    if "--output" in names:
        return f"git {subcommand} --output writes files"

    mutating = MUTATING_ARGUMENTS.get(subcommand, set())
    for arg, name in zip(args, names):
        if name in mutating:
            return f"git {subcommand} {arg} modifies the repository"

    if subcommand in REF_CREATING_COMMANDS and not LIST_FLAGS & set(args):
        if any(not arg.startswith("-") for arg in args):
            return f"git {subcommand} with a name creates a ref; add --list to filter"
    return None


def validate_git_command(command: str) -> tuple[bool, str]:
    """Check a git subcommand against the forbidden list and read-only allowlist.

    Allowlisted subcommands are still rejected when their arguments write,
    e.g. "branch -D x" or "diff --output=FILE".

    Args:
        command: Subcommand with arguments, with or without a leading "git"

    Returns:
        Tuple of (allowed, reason)
    """
    normalized = _normalize(command)
    if not normalized:
        return False, "Empty git command"

    tokens = normalized.split()
    for forbidden in FORBIDDEN_COMMANDS:
        needle = forbidden.split()
        for i in range(len(tokens) - len(needle) + 1):
            if tokens[i:i + len(needle)] == needle:
                return False, f"Git command '{forbidden}' is forbidden"

    for allowed in READ_ONLY_COMMANDS:
        if normalized == allowed or normalized.startswith(allowed + " "):
            reason = _mutating_reason(tokens)
            if reason:
                return False, reason
            return True, "Read-only command"

    return False, f"Only read-only git commands are allowed: {normalized.split()[0]}"


def _run_git(args: list[str], work_dir: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        timeout=GIT_TIMEOUT,
        cwd=work_dir,
    )


def git_status(command: str, work_dir: str) -> ToolOutput:
    """Run a read-only git command.

    Args:
        command: Git subcommand, e.g. "status" or "log --oneline -5"
        work_dir: Session working directory

    Returns:
        ToolOutput with the command's stdout
    """
    allowed, reason = validate_git_command(command)
    if not allowed:
        logger.warning(f"Git command rejected: {command} - {reason}")
        return ToolOutput(success=False, error=reason)

    try:
        args = shlex.split(_normalize(command))
    except ValueError as e:
        return ToolOutput(success=False, error=f"Could not parse git command: {e}")

    try:
        result = _run_git(args, work_dir)
    except subprocess.TimeoutExpired:
        return ToolOutput(success=False, error=f"git {args[0]} timed out after {GIT_TIMEOUT} seconds")
    except FileNotFoundError:
        return ToolOutput(success=False, error="git is not installed")

    if result.returncode != 0:
        return ToolOutput(success=False, error=result.stderr.strip() or f"git exited with {result.returncode}")

    return ToolOutput(success=True, output=_truncate_output(result.stdout) or "(no output)")


def git_commit(message: str, work_dir: str, files: list[str] | None = None) -> ToolOutput:
    """Stage the given files and commit.

    Args:
        message: Commit message
        work_dir: Session working directory
        files: Paths to stage; when omitted, only already staged changes are committed

    Returns:
        ToolOutput with the commit summary
    """
    if not message.strip():
        return ToolOutput(success=False, error="Commit message must not be empty")

    staged: list[str] = []
    for path in files or []:
        resolved, reason = validate_path(path, work_dir)
        if resolved is None:
            return ToolOutput(success=False, error=reason)
        staged.append(str(resolved))

    try:
        if staged:
            added = _run_git(["add", "--", *staged], work_dir)
            if added.returncode != 0:
                return ToolOutput(success=False, error=f"git add failed: {added.stderr.strip()}")

        result = _run_git(["commit", "-m", message], work_dir)
    except subprocess.TimeoutExpired:
        return ToolOutput(success=False, error=f"git commit timed out after {GIT_TIMEOUT} seconds")
    except FileNotFoundError:
        return ToolOutput(success=False, error="git is not installed")

    if result.returncode != 0:
        detail = result.stderr.strip() or result.stdout.strip()
        return ToolOutput(success=False, error=f"git commit failed: {detail}")

    logger.info(f"Committed in {work_dir}: {message.splitlines()[0]}")
    return ToolOutput(success=True, output=result.stdout.strip())
