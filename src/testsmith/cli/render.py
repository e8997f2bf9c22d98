"""CLI renderer for testsmith."""

from __future__ import annotations

import threading

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape

from testsmith.client.conversation import Conversation, Role, TranscriptEntry

_ROLE_STYLES: dict[Role, str] = {
    Role.USER: "[bold cyan]You:[/bold cyan] ",
    Role.ASSISTANT: "[bold yellow]testsmith:[/bold yellow] ",
    Role.SYSTEM: "[dim]",
    Role.TOOL: "[green]",
}


class Renderer:
    """Print transcript entries once they can no longer change."""

    def __init__(self, console: Console | None = None) -> None:
        self.console: Console = console or Console()
        self._prompt_session: PromptSession[str] | None = None
        self._print_lock = threading.Lock()
        self._rendered = 0

    @property
    def prompt_session(self) -> PromptSession[str]:
        if self._prompt_session is None:
            self._prompt_session = PromptSession()
        return self._prompt_session

    def welcome(self, workspace: str, model: str) -> None:
        self._print("[bold blue]testsmith[/bold blue] - generate and verify Go unit tests")
        self._print(f"[bold]Working directory:[/bold] [cyan]{escape(workspace)}[/cyan]")
        self._print(f"[bold]Model:[/bold] [magenta]{escape(model)}[/magenta]")
        self._print("[dim]Type /quit or press Ctrl+D to exit.[/dim]")

    def info(self, message: str) -> None:
        self._print(f"[dim]{escape(message)}[/dim]")

    def error(self, message: str) -> None:
        self._print(f"[bold red]Error:[/bold red] {escape(message)}")

    def flush(self, conversation: Conversation) -> None:
        """Render new entries; a trailing assistant entry waits until its turn settles."""
        entries = conversation.transcript
        end = len(entries)
        if end and entries[-1].role is Role.ASSISTANT and conversation.is_processing:
            end -= 1
        for entry in entries[self._rendered : end]:
            self.entry(entry)
        self._rendered = max(self._rendered, end)

    def entry(self, entry: TranscriptEntry) -> None:
        if entry.is_error:
            self.error(entry.content)
            return
        prefix = _ROLE_STYLES[entry.role]
        suffix = "[/dim]" if entry.role is Role.SYSTEM else "[/green]" if entry.role is Role.TOOL else ""
        self._print(f"{prefix}{escape(entry.content)}{suffix}")

    async def read_line(self, message: str = "> ") -> str:
        with patch_stdout(raw=True):
            return await self.prompt_session.prompt_async(message)

    async def read_api_key(self) -> str:
        with patch_stdout(raw=True):
            return await self.prompt_session.prompt_async("API key: ", is_password=True)

    def _print(self, message: str) -> None:
        with self._print_lock:
            self.console.print(message)
