"""Path guard for file tools.

Resolves tool-supplied paths against the session working directory and
rejects anything that escapes it or looks like a credential file. This is a
best-effort check on the normalized path string; symlinks are not followed.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

SENSITIVE_PATTERNS = [
    r"/\.env$",
    r"/\.env\.",
    r"/\.git/config$",
    r"/\.ssh/",
    r"/id_rsa$",
    r"/\.aws/",
    r"/\.anthropic/",
    r"password",
]


class PathValidationError(Exception):
    """Raised when a path is outside the working directory or sensitive."""

    pass


def is_sensitive(path: str) -> bool:
    """Check a normalized path against the sensitive-file denylist."""
    posix = path.replace(os.sep, "/")
    return any(re.search(pattern, posix, re.IGNORECASE) for pattern in SENSITIVE_PATTERNS)


def validate_path(path: str, work_dir: str | Path) -> tuple[Path | None, str]:
    """Resolve a path relative to the working directory.

    Args:
        path: Absolute or work-dir relative path from the tool input
        work_dir: Session working directory

    Returns:
        Tuple of (resolved path or None, reason)
    """
    root = os.path.normpath(os.path.abspath(str(work_dir)))
    candidate = os.path.normpath(os.path.join(root, os.path.expanduser(path or ".")))

    try:
        inside = os.path.commonpath([root, candidate]) == root
    except ValueError:
        inside = False

    if not inside:
        logger.warning(f"Path outside working directory rejected: {path}")
        return None, f"Path is outside the working directory: {path}"

    relative = "/" + os.path.relpath(candidate, root)
    if is_sensitive(relative):
        logger.warning(f"Sensitive path rejected: {path}")
        return None, f"Access to sensitive file is not allowed: {path}"

    return Path(candidate), "ok"


def resolve_path(path: str, work_dir: str | Path) -> Path:
    """Like validate_path but raises PathValidationError."""
    resolved, reason = validate_path(path, work_dir)
    if resolved is None:
        raise PathValidationError(reason)
    return resolved
