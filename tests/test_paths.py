"""Tests for the working-directory path guard."""

import pytest
from pathlib import Path

from pairagent.tools.paths import (
    PathValidationError,
    is_sensitive,
    resolve_path,
    validate_path,
)


class TestValidatePath:
    """Test path resolution against the working directory."""

    def test_relative_path_resolves_inside(self, tmp_workspace):
        """Relative paths resolve under the working directory."""
        resolved, reason = validate_path("src/app.py", tmp_workspace)
        assert resolved == tmp_workspace / "src" / "app.py"
        assert reason == "ok"

    def test_absolute_path_inside_allowed(self, tmp_workspace):
        """Absolute paths inside the working directory are allowed."""
        target = str(tmp_workspace / "notes.txt")
        resolved, _ = validate_path(target, tmp_workspace)
        assert resolved == Path(target)

    def test_parent_escape_rejected(self, tmp_workspace):
        """../ escapes are rejected."""
        resolved, reason = validate_path("../outside.txt", tmp_workspace)
        assert resolved is None
        assert "outside the working directory" in reason

    def test_absolute_outside_rejected(self, tmp_workspace):
        """Absolute paths elsewhere are rejected."""
        resolved, reason = validate_path("/etc/hosts", tmp_workspace)
        assert resolved is None
        assert "outside" in reason

    def test_sibling_prefix_rejected(self, tmp_path, tmp_workspace):
        """A sibling directory sharing the name prefix is outside."""
        sibling = tmp_path / "workspace-other"
        sibling.mkdir()
        resolved, _ = validate_path(str(sibling / "file.txt"), tmp_workspace)
        assert resolved is None

    def test_dot_is_work_dir(self, tmp_workspace):
        """'.' resolves to the working directory itself."""
        resolved, _ = validate_path(".", tmp_workspace)
        assert resolved == tmp_workspace

    def test_normalizes_inner_dotdot(self, tmp_workspace):
        """Inner .. segments that stay inside are accepted."""
        resolved, _ = validate_path("a/../b.txt", tmp_workspace)
        assert resolved == tmp_workspace / "b.txt"


class TestSensitivePaths:
    """Test the credential-file denylist."""

    @pytest.mark.parametrize("path", [
        ".env",
        ".env.production",
        ".git/config",
        ".ssh/known_hosts",
        "keys/id_rsa",
        ".aws/credentials",
        "config/passwords.txt",
        "PASSWORD.md",
    ])
    def test_sensitive_rejected(self, tmp_workspace, path):
        """Sensitive files are rejected even inside the working directory."""
        resolved, reason = validate_path(path, tmp_workspace)
        assert resolved is None
        assert "sensitive" in reason

    def test_env_example_allowed_by_name(self):
        """Names merely containing 'env' are not sensitive."""
        assert is_sensitive("/environment.py") is False
        assert is_sensitive("/src/envelope.txt") is False

    def test_work_dir_name_not_checked(self, tmp_path):
        """Only the part below the working directory is checked."""
        work_dir = tmp_path / "password-manager"
        work_dir.mkdir()
        resolved, _ = validate_path("main.py", work_dir)
        assert resolved == work_dir / "main.py"


class TestResolvePath:
    """Test the raising variant."""

    def test_raises_on_escape(self, tmp_workspace):
        """resolve_path raises PathValidationError."""
        with pytest.raises(PathValidationError):
            resolve_path("../../etc/passwd", tmp_workspace)

    def test_returns_path(self, tmp_workspace):
        """resolve_path returns the resolved path."""
        assert resolve_path("a.txt", tmp_workspace) == tmp_workspace / "a.txt"
