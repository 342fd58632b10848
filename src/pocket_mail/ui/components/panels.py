from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from pocket_mail.core.models import MessageContent
from pocket_mail.utils.console import get_console


class MessagePanel:
    """Display one fetched message as header and body panels."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()

    def display(self, message: MessageContent, uid: Optional[int] = None) -> None:
        header = Text()
        header.append("From: ", style="bold")
        header.append(message.sender or "Unknown")
        header.append("\nSubject: ", style="bold")
        header.append(message.subject or "(no subject)")

        title = f"[bold]Message {uid}[/bold]" if uid is not None else "[bold]Message[/bold]"
        self.console.print(Panel(header, title=title, border_style="cyan", padding=(1, 2)))

        # Text() so message bodies are never read as markup
        body = Text(message.body) if message.body.strip() else Text("No content", style="italic dim")
        self.console.print(
            Panel(body, title="[bold]Body[/bold]", border_style="cyan dim", padding=(1, 2))
        )
