"""
Console confirmation callback.

Resolves ASK permission decisions by prompting on a rich console.
- Not a tool (the model never calls it)
- Injected into PermissionManager as its confirm callback
- Shows the tool name and its arguments, then asks y/n
"""

import asyncio
import json
from typing import Any, Callable

from rich.console import Console
from rich.prompt import Confirm

from .permissions import Permission


class ConsoleConfirmation:
    """Interactive y/n confirmation for tool calls."""

    def __init__(
        self,
        console: Console | None = None,
        max_argument_chars: int = 500,
    ) -> None:
        """
        Args:
            console: Console to prompt on (stderr console by default)
            max_argument_chars: Longer argument dumps are truncated
        """
        self.console = console or Console(stderr=True)
        self.max_argument_chars = max_argument_chars
        # (tool_name, approved)
        self.history: list[tuple[str, bool]] = []
        # Spinner control callbacks (set by the embedding UI)
        self.pause_spinner: Callable[[], None] | None = None
        self.resume_spinner: Callable[[], None] | None = None

    def _format_arguments(self, arguments: dict[str, Any]) -> str:
        text = json.dumps(arguments, indent=2, ensure_ascii=False, default=str)
        if len(text) > self.max_argument_chars:
            omitted = len(text) - self.max_argument_chars
            text = text[: self.max_argument_chars] + f"\n... ({omitted:,} characters omitted)"
        return text

    def request(self, tool_name: str, arguments: dict[str, Any], session_id: str) -> bool:
        """Prompt and block until the user answers.

        Returns:
            True: approved
            False: denied (also on EOF or Ctrl+C)
        """
        if self.pause_spinner:
            self.pause_spinner()

        self.console.print(f"\n[yellow]Permission required:[/yellow] [bold]{tool_name}[/bold]")
        if arguments:
            self.console.print(self._format_arguments(arguments), markup=False, highlight=False)

        try:
            try:
                approved = Confirm.ask("   Approve?", console=self.console, default=False)
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n   Cancelled. Denying permission.")
                approved = False
            self.history.append((tool_name, approved))
            return approved
        finally:
            if self.resume_spinner:
                self.resume_spinner()

    async def __call__(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        session_id: str,
    ) -> Permission:
        approved = await asyncio.to_thread(self.request, tool_name, arguments, session_id)
        return Permission.ALLOW if approved else Permission.DENY

    def get_history(self) -> list[tuple[str, bool]]:
        return self.history.copy()

    def clear_history(self) -> None:
        self.history.clear()
