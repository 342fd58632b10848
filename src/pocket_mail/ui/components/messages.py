"""Inline status lines printed by the shell."""

from typing import Optional

from rich.console import Console
from rich.markup import escape

from pocket_mail.utils.console import get_console


class StatusMessage:
    """One-line inline feedback."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓ {escape(message)}[/green]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗ {escape(message)}[/red]")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠ {escape(message)}[/yellow]")

    def info(self, message: str) -> None:
        self.console.print(f"[cyan]ℹ {escape(message)}[/cyan]")
