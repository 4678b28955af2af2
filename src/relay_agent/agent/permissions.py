"""
Permission System - Rule-based permission gate.

Decides whether a requested tool call may run.
- Permission enum: ALLOW, DENY, ASK
- PermissionRule: tool name pattern plus optional argument patterns
- PermissionManager: first-match rule evaluation, ASK delegated to a
  confirmation callback, DENY when nothing matches
"""

from __future__ import annotations

import asyncio
import fnmatch
import inspect
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from rich.console import Console

if TYPE_CHECKING:
    from relay_agent.config import Config

_console = Console(stderr=True)


class Permission(Enum):
    """Permission decision type."""

    ALLOW = auto()  # Auto approve
    DENY = auto()   # Auto deny
    ASK = auto()    # Ask the confirmation callback


ConfirmationResult = Union[Permission, bool]
ConfirmationCallback = Callable[
    [str, dict[str, Any], str],
    Union[ConfirmationResult, Awaitable[ConfirmationResult]],
]


@dataclass
class PermissionRule:
    """Permission rule definition."""

    # Matching conditions
    tool_pattern: str = "*"                          # "write", "web_*", "*"
    argument_patterns: dict[str, str] | None = None  # {"path": "/tmp/*"}

    # Decision
    permission: Permission = Permission.ASK

    # Metadata
    description: str = ""

    def matches(self, tool_name: str, arguments: dict[str, Any]) -> bool:
        """Check if the rule applies to this call."""
        if not fnmatch.fnmatchcase(tool_name, self.tool_pattern):
            return False

        # Every listed argument must be present and match its pattern
        for arg_name, pattern in (self.argument_patterns or {}).items():
            if arg_name not in arguments:
                return False
            value = arguments[arg_name]
            if not isinstance(value, str):
                value = str(value)
            if not fnmatch.fnmatchcase(value, pattern):
                return False

        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_pattern": self.tool_pattern,
            "argument_patterns": self.argument_patterns,
            "permission": self.permission.name.lower(),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PermissionRule:
        permission_str = data.get("permission", "ask").upper()
        permission = Permission[permission_str]

        return cls(
            tool_pattern=data.get("tool_pattern", "*"),
            argument_patterns=data.get("argument_patterns"),
            permission=permission,
            description=data.get("description", ""),
        )


class PermissionManager:
    """Rule-based permission gate.

    Rules are evaluated in the order they were added and the first match
    wins. A call that matches no rule is denied. ASK is resolved by the
    confirmation callback; without one it is denied.
    """

    def __init__(
        self,
        rules: list[PermissionRule] | None = None,
        confirm: ConfirmationCallback | None = None,
        enabled: bool = True,
    ) -> None:
        """
        Args:
            rules: Rules in evaluation order
            confirm: Callback resolving ASK decisions
            enabled: When False every call is allowed
        """
        self.enabled = enabled
        self.rules: list[PermissionRule] = list(rules or [])
        self.confirm = confirm

        # (tool_name, session_id, decision)
        self.history: list[tuple[str, str, Permission]] = []

        # One confirmation at a time per tool name
        self._ask_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def add_rule(self, rule: PermissionRule) -> None:
        """Append a rule; it is evaluated after every existing rule."""
        self.rules.append(rule)

    def allow(self, tool_pattern: str, **argument_patterns: str) -> PermissionManager:
        self.add_rule(PermissionRule(tool_pattern, argument_patterns or None, Permission.ALLOW))
        return self

    def deny(self, tool_pattern: str, **argument_patterns: str) -> PermissionManager:
        self.add_rule(PermissionRule(tool_pattern, argument_patterns or None, Permission.DENY))
        return self

    def ask(self, tool_pattern: str, **argument_patterns: str) -> PermissionManager:
        self.add_rule(PermissionRule(tool_pattern, argument_patterns or None, Permission.ASK))
        return self

    def evaluate(self, tool_name: str, arguments: dict[str, Any]) -> Permission:
        """Static rule evaluation, without consulting the callback."""
        for rule in self.rules:
            if rule.matches(tool_name, arguments):
                return rule.permission
        return Permission.DENY

    async def check(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        session_id: str = "",
    ) -> Permission:
        """Decide a call. Always returns ALLOW or DENY."""
        if not self.enabled:
            return Permission.ALLOW

        permission = self.evaluate(tool_name, arguments)
        if permission is Permission.ASK:
            permission = await self._ask(tool_name, arguments, session_id)

        self.history.append((tool_name, session_id, permission))
        return permission

    async def _ask(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        session_id: str,
    ) -> Permission:
        if self.confirm is None:
            return Permission.DENY

        async with self._ask_locks[tool_name]:
            try:
                answer = self.confirm(tool_name, arguments, session_id)
                if inspect.isawaitable(answer):
                    answer = await answer
            except Exception as e:
                _console.print(
                    f"[yellow][PermissionManager][/yellow] Confirmation for {tool_name} failed, denying: {e}"
                )
                return Permission.DENY

        if answer is True or answer is Permission.ALLOW:
            return Permission.ALLOW
        return Permission.DENY

    def get_history(self) -> list[tuple[str, str, Permission]]:
        return self.history.copy()

    def clear_history(self) -> None:
        self.history.clear()

    @classmethod
    def from_config(
        cls,
        config: Config,
        confirm: ConfirmationCallback | None = None,
    ) -> PermissionManager:
        """Create a PermissionManager from config."""
        enabled = config.get("permissions_enabled", True)
        rules_data = config.get("permission_rules", [])
        rules = [PermissionRule.from_dict(r) for r in rules_data]

        return cls(rules=rules, confirm=confirm, enabled=enabled)
