"""Per-tool permission policy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Iterable

from pairagent.schemas import PermissionLevel

logger = logging.getLogger(__name__)

# Default levels before configured overrides
DEFAULT_PERMISSIONS: dict[str, PermissionLevel] = {
    "read_file": PermissionLevel.ALWAYS_ALLOWED,
    "write_file": PermissionLevel.ALWAYS_ALLOWED,
    "edit_file": PermissionLevel.ALWAYS_ALLOWED,
    "glob": PermissionLevel.ALWAYS_ALLOWED,
    "grep": PermissionLevel.ALWAYS_ALLOWED,
    "git_status": PermissionLevel.ALWAYS_ALLOWED,
    "git_diff": PermissionLevel.ALWAYS_ALLOWED,
    "bash_command": PermissionLevel.ASK_USER,
    "git_commit": PermissionLevel.ASK_USER,
    "git_push": PermissionLevel.DENIED,
}

UNKNOWN_TOOL_LEVEL = PermissionLevel.ASK_USER


@dataclass
class PermissionCheck:
    """Outcome of a permission lookup."""

    allowed: bool
    needs_confirmation: bool = False
    reason: str | None = None


class PermissionPolicy:
    """Mutable mapping of tool name to permission level."""

    def __init__(self, levels: dict[str, PermissionLevel] | None = None):
        self._levels: dict[str, PermissionLevel] = dict(DEFAULT_PERMISSIONS)
        if levels:
            self._levels.update(levels)
        self._lock = Lock()

    @classmethod
    def from_lists(
        cls,
        allowed: Iterable[str] = (),
        ask_user: Iterable[str] = (),
        denied: Iterable[str] = (),
    ) -> PermissionPolicy:
        """Build a policy from configured overrides.

        Overrides are applied allowed, then ask_user, then denied, so a tool
        named in several lists ends up with the most restrictive level.
        """
        policy = cls()
        for name in allowed:
            policy._levels[name] = PermissionLevel.ALWAYS_ALLOWED
        for name in ask_user:
            policy._levels[name] = PermissionLevel.ASK_USER
        for name in denied:
            policy._levels[name] = PermissionLevel.DENIED
        return policy

    def level(self, tool_name: str) -> PermissionLevel:
        """Get the level for a tool; unknown tools need confirmation."""
        with self._lock:
            return self._levels.get(tool_name, UNKNOWN_TOOL_LEVEL)

    def check(self, tool_name: str) -> PermissionCheck:
        level = self.level(tool_name)
        if level == PermissionLevel.DENIED:
            return PermissionCheck(allowed=False, reason="Tool is disabled by policy")
        if level == PermissionLevel.ASK_USER:
            return PermissionCheck(allowed=True, needs_confirmation=True)
        return PermissionCheck(allowed=True)

    def set_level(self, tool_name: str, level: PermissionLevel) -> None:
        with self._lock:
            self._levels[tool_name] = level
        logger.info(f"Permission for {tool_name} set to {level.value}")

    def grant(self, tool_name: str) -> None:
        """Always allow a tool from now on."""
        self.set_level(tool_name, PermissionLevel.ALWAYS_ALLOWED)

    def revoke(self, tool_name: str) -> None:
        """Deny a tool from now on."""
        self.set_level(tool_name, PermissionLevel.DENIED)

    def snapshot(self) -> dict[str, PermissionLevel]:
        with self._lock:
            return dict(sorted(self._levels.items()))
