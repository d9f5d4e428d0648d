"""File and search tools: read, write, edit, glob and grep."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

import pathspec

from pairagent.schemas import ToolOutput
from pairagent.tools.paths import validate_path

logger = logging.getLogger(__name__)

# Default exclusion patterns (directories)
DEFAULT_EXCLUDES = {".venv", "venv", "node_modules", "__pycache__", ".git", ".tox", "dist", "build"}

# Binary file detection: check for null bytes in first 8KB
BINARY_CHECK_SIZE = 8192

DEFAULT_READ_LIMIT = 2000
MAX_GREP_FILES = 100
MAX_CONTENT_RESULTS = 20

# Files searched by grep when no glob is given
DEFAULT_GREP_EXTENSIONS = {
    ".py", ".js", ".ts", ".tsx", ".jsx", ".vue", ".json", ".md", ".txt",
    ".yaml", ".yml", ".toml", ".cfg", ".ini", ".html", ".css", ".sh",
    ".go", ".rs", ".java", ".c", ".h", ".cpp", ".rb",
}


def _is_binary(content: bytes) -> bool:
    """Check if content appears to be binary (contains null bytes)."""
    return b"\x00" in content[:BINARY_CHECK_SIZE]


def _load_gitignore(root: Path) -> pathspec.PathSpec | None:
    """Load .gitignore patterns if present."""
    gitignore_path = root / ".gitignore"
    if gitignore_path.exists():
        try:
            patterns = gitignore_path.read_text().splitlines()
            return pathspec.PathSpec.from_lines("gitignore", patterns)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to parse .gitignore: {e}")
    return None


def _work_root(work_dir: str | Path) -> Path:
    return Path(os.path.normpath(os.path.abspath(str(work_dir))))


def _should_skip(path: Path, work_root: Path, gitignore: pathspec.PathSpec | None) -> bool:
    """Hidden files, default excludes and .gitignore matches are skipped."""
    relative = path.relative_to(work_root)
    for part in relative.parts:
        if part in DEFAULT_EXCLUDES or part.startswith("."):
            return True
    if gitignore is not None and gitignore.match_file(relative.as_posix()):
        return True
    return False


def _iter_files(root: Path, pattern: str, work_root: Path) -> list[Path]:
    """Files under root matching a glob pattern, sorted."""
    gitignore = _load_gitignore(work_root)
    matches = []
    for path in root.glob(pattern):
        if not path.is_file():
            continue
        if _should_skip(path, work_root, gitignore):
            continue
        matches.append(path)
    return sorted(matches)


def read_file(
    path: str,
    work_dir: str,
    offset: int | None = None,
    limit: int | None = None,
) -> ToolOutput:
    """Read a text file with numbered lines.

    Args:
        path: File path, relative to the working directory
        work_dir: Session working directory
        offset: 1-based line to start from
        limit: Maximum number of lines to return

    Returns:
        ToolOutput with the numbered content and line totals
    """
    resolved, reason = validate_path(path, work_dir)
    if resolved is None:
        return ToolOutput(success=False, error=reason)
    if not resolved.is_file():
        return ToolOutput(success=False, error=f"File not found: {path}")

    raw = resolved.read_bytes()
    if _is_binary(raw):
        return ToolOutput(success=False, error=f"Cannot read binary file: {path}")

    lines = raw.decode("utf-8", errors="replace").splitlines()
    start = max((offset or 1) - 1, 0)
    end = start + (limit or DEFAULT_READ_LIMIT)
    selected = lines[start:end]

    numbered = "\n".join(
        f"{str(start + i + 1).rjust(6)}│{line}" for i, line in enumerate(selected)
    )
    return ToolOutput(
        success=True,
        output={
            "content": numbered,
            "total_lines": len(lines),
            "displayed_lines": len(selected),
            "start_line": start + 1,
            "end_line": start + len(selected),
        },
    )


def write_file(path: str, content: str, work_dir: str) -> ToolOutput:
    """Write a file, creating parent directories."""
    resolved, reason = validate_path(path, work_dir)
    if resolved is None:
        return ToolOutput(success=False, error=reason)

    resolved.parent.mkdir(parents=True, exist_ok=True)
    resolved.write_text(content, encoding="utf-8")
    logger.info(f"Wrote {len(content)} chars to {resolved}")
    return ToolOutput(
        success=True,
        output=f"Successfully wrote {len(content.splitlines())} lines to {path}",
    )


def edit_file(path: str, old_string: str, new_string: str, work_dir: str) -> ToolOutput:
    """Replace exactly one occurrence of old_string.

    Zero or multiple matches leave the file untouched.
    """
    resolved, reason = validate_path(path, work_dir)
    if resolved is None:
        return ToolOutput(success=False, error=reason)
    if not resolved.is_file():
        return ToolOutput(success=False, error=f"File not found: {path}")
    if not old_string:
        return ToolOutput(success=False, error="old_string must not be empty")

    content = resolved.read_text(encoding="utf-8")
    occurrences = content.count(old_string)

    if occurrences == 0:
        return ToolOutput(
            success=False,
            error="Could not find the specified text in the file. Make sure old_string matches exactly.",
        )
    if occurrences > 1:
        return ToolOutput(
            success=False,
            error=f"Found {occurrences} occurrences of the text. Provide more context to make it unique.",
        )

    resolved.write_text(content.replace(old_string, new_string, 1), encoding="utf-8")
    logger.info(f"Edited {resolved}")
    return ToolOutput(success=True, output=f"Successfully edited {path}")


def glob_files(pattern: str, work_dir: str, path: str | None = None) -> ToolOutput:
    """Find files matching a glob pattern.

    Returns work-dir relative paths; hidden files, default excluded
    directories and .gitignore matches are left out.
    """
    root, reason = validate_path(path or ".", work_dir)
    if root is None:
        return ToolOutput(success=False, error=reason)
    if not root.is_dir():
        return ToolOutput(success=False, error=f"Directory not found: {path}")

    if not pattern:
        return ToolOutput(success=False, error="Glob pattern must not be empty")
    try:
        files = _iter_files(root, pattern, _work_root(work_dir))
    except (ValueError, NotImplementedError) as e:
        return ToolOutput(success=False, error=f"Invalid glob pattern: {e}")

    matches = [f.relative_to(root).as_posix() for f in files]
    return ToolOutput(
        success=True,
        output={"pattern": pattern, "matches": matches, "count": len(matches)},
    )


def grep_search(
    pattern: str,
    work_dir: str,
    path: str | None = None,
    glob: str | None = None,
    output_mode: str = "files_with_matches",
) -> ToolOutput:
    """Regex search over file contents.

    Args:
        pattern: Regular expression
        work_dir: Session working directory
        path: File or directory to search (defaults to the working directory)
        glob: Optional glob filter, e.g. "**/*.py"
        output_mode: "files_with_matches", "content" or "count"

    Returns:
        ToolOutput with the mode-specific result
    """
    try:
        regex = re.compile(pattern)
    except re.error as e:
        return ToolOutput(success=False, error=f"Invalid regex pattern: {e}")

    if output_mode not in ("files_with_matches", "content", "count"):
        return ToolOutput(success=False, error=f"Unknown output_mode: {output_mode}")

    root, reason = validate_path(path or ".", work_dir)
    if root is None:
        return ToolOutput(success=False, error=reason)

    if root.is_file():
        root_dir = root.parent
        candidates = [root]
    elif root.is_dir():
        root_dir = root
        try:
            if glob:
                candidates = _iter_files(root, glob, _work_root(work_dir))
            else:
                candidates = [
                    f for f in _iter_files(root, "**/*", _work_root(work_dir))
                    if f.suffix in DEFAULT_GREP_EXTENSIONS
                ]
        except (ValueError, NotImplementedError) as e:
            return ToolOutput(success=False, error=f"Invalid glob pattern: {e}")
    else:
        return ToolOutput(success=False, error=f"Path not found: {path}")

    files_with_matches: list[str] = []
    counts: dict[str, int] = {}
    content_results: list[dict[str, object]] = []

    for file_path in candidates[:MAX_GREP_FILES]:
        try:
            raw = file_path.read_bytes()
        except OSError as e:
            logger.debug(f"Skipping unreadable file {file_path}: {e}")
            continue
        if _is_binary(raw):
            continue

        relative = file_path.relative_to(root_dir).as_posix()
        hits = 0
        for line_number, line in enumerate(raw.decode("utf-8", errors="replace").splitlines(), 1):
            if regex.search(line):
                hits += 1
                if output_mode == "content" and len(content_results) < MAX_CONTENT_RESULTS:
                    content_results.append({"file": relative, "line": line_number, "text": line})
        if hits:
            files_with_matches.append(relative)
            counts[relative] = hits

    if output_mode == "count":
        output: dict[str, object] = {"pattern": pattern, "counts": counts, "total": sum(counts.values())}
    elif output_mode == "content":
        output = {"pattern": pattern, "matches": content_results, "count": len(content_results)}
    else:
        output = {"pattern": pattern, "files": files_with_matches, "count": len(files_with_matches)}

    return ToolOutput(success=True, output=output)
