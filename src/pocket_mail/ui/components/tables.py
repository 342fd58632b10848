"""Message list table component."""

from typing import Optional, Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from pocket_mail.core.models import MessageDescriptor
from pocket_mail.utils.console import get_console


class MessageTable:
    """Numbered table of the listed window.

    Row numbers start at 1 and are what the shell's ``v``/``d`` commands take.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()

    def display(self, messages: Sequence[MessageDescriptor], title: str = "Messages") -> None:
        if not messages:
            self.console.print("[yellow]No messages to display[/yellow]")
            return

        table = Table(title=title)
        table.add_column("#", style="cyan", justify="right", no_wrap=True)
        table.add_column("UID", style="dim", justify="right", no_wrap=True)
        table.add_column("From", style="magenta", min_width=20)
        table.add_column("Subject", style="green", min_width=20)

        for position, message in enumerate(messages, start=1):
            table.add_row(
                str(position),
                str(message.uid),
                Text(self._truncate(message.sender or "Unknown", 30)),
                Text(self._truncate(message.subject or "(no subject)", 50)),
            )

        self.console.print(table)

    @staticmethod
    def _truncate(text: str, max_length: int) -> str:
        """Truncate text with ellipsis."""
        if len(text) <= max_length:
            return text
        return text[: max_length - 3] + "..."
