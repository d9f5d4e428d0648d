"""Tests for git tools."""

import shutil
import subprocess

import pytest

from pairagent.tools.git_tools import git_commit, git_status, validate_git_command

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def git_repo(tmp_workspace):
    """Initialize a git repository with one commit."""
    def git(*args):
        subprocess.run(["git", *args], cwd=tmp_workspace, check=True, capture_output=True)

    git("init", "-q")
    git("config", "user.email", "dev@example.com")
    git("config", "user.name", "Dev")
    (tmp_workspace / "README.md").write_text("# Repo\n")
    git("add", "README.md")
    git("commit", "-q", "-m", "Initial commit")
    return tmp_workspace


class TestValidateGitCommand:
    """Test the read-only allowlist and forbidden list."""

    @pytest.mark.parametrize("command", [
        "status",
        "git status",
        "log --oneline -5",
        "diff HEAD~1",
        "show HEAD",
        "branch -a",
        "stash list",
    ])
    def test_read_only_allowed(self, command):
        """Read-only commands pass."""
        allowed, _ = validate_git_command(command)
        assert allowed is True

    @pytest.mark.parametrize("command", [
        "push",
        "push origin main",
        "reset --hard",
        "clean -fd",
        "filter-branch --tree-filter x",
    ])
    def test_forbidden(self, command):
        """Forbidden commands are rejected."""
        allowed, reason = validate_git_command(command)
        assert allowed is False
        assert "forbidden" in reason

    def test_mutating_not_in_allowlist(self):
        """Mutating commands outside the allowlist are rejected."""
        allowed, reason = validate_git_command("checkout -b feature")
        assert allowed is False
        assert "read-only" in reason

    def test_prefix_is_not_a_match(self):
        """'statusx' is not 'status'."""
        allowed, _ = validate_git_command("statusx")
        assert allowed is False

    @pytest.mark.parametrize("command", [
        "branch -D feature",
        "branch --delete feature",
        "branch -m old new",
        "branch --set-upstream-to=origin/main",
        "branch feature",
        "tag -d v1",
        "tag v1",
        "tag -a v1 -m release",
        "remote add origin https://example.com/repo.git",
        "remote set-url origin https://example.com/other.git",
        "diff --output=patch.diff",
        "log --output out.txt",
    ])
    def test_writing_arguments_rejected(self, command):
        """Allowlisted subcommands with writing arguments are rejected."""
        allowed, reason = validate_git_command(command)
        assert allowed is False
        assert "read-only" not in reason

    @pytest.mark.parametrize("command", [
        "branch",
        "branch -vv",
        "branch --list feat*",
        "tag",
        "tag -l v1*",
        "remote -v",
        "remote show origin",
    ])
    def test_listing_forms_allowed(self, command):
        """Listing forms of branch, tag and remote pass."""
        allowed, _ = validate_git_command(command)
        assert allowed is True


@requires_git
class TestGitStatus:
    """Test read-only git execution."""

    def test_status(self, git_repo):
        """git status runs in the working directory."""
        (git_repo / "new.txt").write_text("x")
        result = git_status("status --short", str(git_repo))
        assert result.success is True
        assert "new.txt" in result.output

    def test_log(self, git_repo):
        """git log shows the initial commit."""
        result = git_status("log --oneline", str(git_repo))
        assert "Initial commit" in result.output

    def test_rejected(self, git_repo):
        """Rejected commands never run."""
        result = git_status("push", str(git_repo))
        assert result.success is False

    def test_branch_creation_rejected(self, git_repo):
        """A bare branch name is refused and no branch appears."""
        result = git_status("branch feature", str(git_repo))
        assert result.success is False

        listing = git_status("branch --list", str(git_repo))
        assert "feature" not in listing.output


@requires_git
class TestGitCommit:
    """Test staging and committing."""

    def test_commit_files(self, git_repo):
        """Listed files are staged and committed."""
        (git_repo / "feature.py").write_text("x = 1\n")

        result = git_commit("Add feature", str(git_repo), files=["feature.py"])

        assert result.success is True
        log = git_status("log --oneline -1", str(git_repo))
        assert "Add feature" in log.output

    def test_empty_message(self, git_repo):
        """Empty messages are rejected."""
        result = git_commit("  ", str(git_repo))
        assert result.success is False

    def test_file_outside_rejected(self, git_repo):
        """Files outside the working directory are refused."""
        result = git_commit("Sneaky", str(git_repo), files=["../elsewhere.txt"])
        assert result.success is False
        assert "outside" in result.error

    def test_nothing_to_commit(self, git_repo):
        """A commit with nothing staged fails."""
        result = git_commit("Nothing", str(git_repo))
        assert result.success is False
        assert "git commit failed" in result.error
