"""Blocking prompts for the shell.

Both prompts treat Ctrl-C and Ctrl-D as a cancelled answer instead of
letting the interrupt escape into the command loop. Prompt text is printed
verbatim, never parsed as markup.
"""

from typing import Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.text import Text

from pocket_mail.utils.console import get_console


class _Prompt:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()


class ConfirmPrompt(_Prompt):
    """y/n question asked before a message is deleted."""

    def ask(self, message: str, default: bool = False) -> bool:
        try:
            return Confirm.ask(Text(message), default=default, console=self.console)
        except (KeyboardInterrupt, EOFError):
            return False


class InputPrompt(_Prompt):
    """Free-text question; ``password=True`` hides what is typed."""

    def ask(self, message: str, default: str = "", password: bool = False) -> Optional[str]:
        """Return the answer, or None when the user backs out."""
        try:
            answer = Prompt.ask(
                Text(message), default=default or None, password=password, console=self.console
            )
        except (KeyboardInterrupt, EOFError):
            return None
        return answer
