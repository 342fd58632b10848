"""Interactive shell: log in, list the recent window, view and delete."""

from __future__ import annotations

import asyncio
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pocket_mail.core.imap.session import MailSession, SessionState
from pocket_mail.ui.components import (
    ConfirmPrompt,
    InputPrompt,
    MessagePanel,
    MessageTable,
    StatusMessage,
)
from pocket_mail.utils.console import get_console
from pocket_mail.utils.errors import (
    ErrorHandler,
    ExpungeError,
    MailConnectionError,
    MailError,
    NotFoundError,
    format_error_message,
)
from pocket_mail.utils.logging import get_logger

logger = get_logger(__name__)

MAX_LOGIN_ATTEMPTS = 3

built_in_commands = {
    "v <n>": "view message number <n>",
    "d <n>": "delete message number <n> (asks first)",
    "r": "refresh the message list",
    "help": "show this help message",
    "?": "show this help message",
    "q": "log out and exit",
}


class MailShell:
    """REPL over one :class:`MailSession`."""

    PROMPT = "mail > "

    def __init__(
        self,
        mail: MailSession,
        *,
        console: Optional[Console] = None,
        confirm: Optional[ConfirmPrompt] = None,
        inputs: Optional[InputPrompt] = None,
    ) -> None:
        self.mail = mail
        self.console = console or get_console()
        self.confirm = confirm or ConfirmPrompt(self.console)
        self.inputs = inputs or InputPrompt(self.console)
        self.status = StatusMessage(self.console)
        self.table = MessageTable(self.console)
        self.panel = MessagePanel(self.console)
        self._prompt_session: Optional[PromptSession] = None

    def _print_help(self) -> None:
        table = Table(title="Commands", show_lines=True)
        table.add_column("Command", style="cyan", no_wrap=True)
        table.add_column("Description", style="magenta")
        for cmd, desc in built_in_commands.items():
            table.add_row(cmd, desc)
        self.console.print(table)

    def _report(self, error: Exception, context: str) -> None:
        """Show ``error`` to the user; unexpected ones are logged in full."""
        if isinstance(error, MailError):
            logger.warning(f"{context} failed: {error.message}", extra={"details": error.details})
            message = format_error_message(error)
            if isinstance(error, (NotFoundError, ExpungeError)):
                message += " - refresh with 'r' to see the current list"
            self.status.error(message)
        else:
            ErrorHandler.handle(error, context)
            self.status.error(format_error_message(error))

    ## Login

    async def login(self) -> bool:
        """Prompt for credentials until connected.

        Returns:
            True once connected with the default mailbox selected
        """
        for _ in range(MAX_LOGIN_ATTEMPTS):
            email = await asyncio.to_thread(self.inputs.ask, "Email")
            if not email:
                return False
            password = await asyncio.to_thread(self.inputs.ask, "Password", password=True)
            if password is None:
                return False

            try:
                with self.console.status("Connecting...", spinner="dots"):
                    info = await self.mail.connect(email, password)
                    mailbox = await self.mail.select_mailbox()
            except MailConnectionError as e:
                self._report(e, "connect")
                continue
            except MailError as e:
                self._report(e, "connect")
                await self.mail.disconnect()
                continue

            self.status.success(f"Connected to {info.host} ({mailbox.name}: {mailbox.total} messages)")
            return True

        self.status.error("Too many failed attempts")
        return False

    ## Commands

    async def refresh(self) -> None:
        try:
            with self.console.status("Fetching messages...", spinner="dots"):
                messages = await self.mail.list_recent()
        except MailError as e:
            self._report(e, "refresh")
            return

        self.table.display(messages, title=self.mail.mailbox or "Messages")

    def _resolve(self, argument: str) -> Optional[int]:
        """Map a row number from the table to a UID."""
        try:
            position = int(argument)
        except ValueError:
            self.status.error(f"Not a message number: {argument}")
            return None

        index = self.mail.index
        if not index.is_valid:
            self.status.warning("The message list is out of date - refresh with 'r'")
            return None
        if not 1 <= position <= len(index):
            self.status.error(f"No message number {position}")
            return None

        return index[position - 1].uid

    async def view(self, argument: str) -> None:
        uid = self._resolve(argument)
        if uid is None:
            return

        try:
            message = await self.mail.fetch_one(uid)
        except MailError as e:
            self._report(e, "view")
            return

        self.panel.display(message, uid=uid)

    async def delete(self, argument: str) -> None:
        uid = self._resolve(argument)
        if uid is None:
            return

        descriptor = self.mail.index.find(uid)
        label = descriptor.subject if descriptor and descriptor.subject else f"UID {uid}"
        confirmed = await asyncio.to_thread(
            self.confirm.ask, f"Permanently delete '{label}'?"
        )
        if not confirmed:
            self.status.info("Delete cancelled")
            return

        try:
            await self.mail.delete_one(uid)
        except MailError as e:
            self._report(e, "delete")
        else:
            self.status.success("Message deleted")

        if self.mail.state is SessionState.SELECTED:
            await self.refresh()

    async def dispatch(self, command: str) -> bool:
        """Run one command line.

        Returns:
            False if the shell should stop, True otherwise
        """
        parts = command.strip().split()
        if not parts:
            return True

        name, args = parts[0].lower(), parts[1:]

        if name in {"q", "quit", "exit"}:
            return False

        if name in {"help", "?"}:
            self._print_help()
            return True

        if name == "r" and not args:
            await self.refresh()
            return True

        if name in {"v", "d"} and len(args) == 1:
            if name == "v":
                await self.view(args[0])
            else:
                await self.delete(args[0])
            return True

        self.status.error(f"Unknown command: {command.strip()} (type 'help')")
        return True

    async def _read_command(self) -> str:
        if self._prompt_session is None:
            self._prompt_session = PromptSession(
                completer=WordCompleter(["v", "d", "r", "q", "help"]),
            )
        return await self._prompt_session.prompt_async(self.PROMPT)

    async def run(self) -> int:
        """Run the interactive shell.

        Returns:
            Exit code (0 for success, 1 if login was abandoned)
        """
        self.console.print(Panel(
            Align.center(
                Text.from_markup(
                    "[bold cyan]pocket-mail[/bold cyan]\n\n"
                    "Type [bold]help[/bold] or [bold]?[/bold] for a list of commands.",
                    justify="center",
                )
            ),
            border_style="dim cyan",
            padding=(1, 2),
        ))

        try:
            while True:
                if not await self.login():
                    return 1
                await self.refresh()

                while self.mail.state is not SessionState.DISCONNECTED:
                    try:
                        command = await self._read_command()
                    except EOFError:
                        return 0
                    except KeyboardInterrupt:
                        self.console.print("")
                        continue

                    if not await self.dispatch(command):
                        return 0

                self.status.warning("The connection was lost - please log in again")

        finally:
            await self.mail.disconnect()
            self.console.print(Panel(
                Align.center("Logged out - [bold green]Goodbye![/]"),
                border_style="dim cyan",
                padding=(1, 2),
            ))
