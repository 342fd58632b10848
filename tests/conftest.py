"""
Shared test fixtures and configuration for pytest
"""
import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

# Logs and config go to a throwaway home; must be set before pocket_mail is imported
os.environ["POCKET_MAIL_HOME"] = tempfile.mkdtemp(prefix="pocket_mail_tests_")

import pytest
from aioimaplib import Response

from pocket_mail.core.imap.connection import IMAPConnection
from pocket_mail.core.imap.session import MailSession
from pocket_mail.core.models import Credentials, ServerAddress
from pocket_mail.utils.config import AppConfig, TimeoutConfig


def build_raw_message(sender: str, subject: str, body: str, charset: str = "utf-8") -> bytes:
    """Minimal RFC 822 message."""
    return (
        f"From: {sender}\r\n"
        f"To: me@example.com\r\n"
        f"Subject: {subject}\r\n"
        f"Message-ID: <{abs(hash((sender, subject)))}@example.com>\r\n"
        f"MIME-Version: 1.0\r\n"
        f"Content-Type: text/plain; charset={charset}\r\n"
        f"\r\n"
        f"{body}\r\n"
    ).encode(charset)


def _quote(text: Optional[str]) -> str:
    if text is None:
        return "NIL"
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


@dataclass
class FakeMessage:
    """One message held by the fake server."""

    uid: int
    mailbox: Optional[str] = "sender"
    host: Optional[str] = "example.com"
    subject: Optional[str] = "Subject"
    raw: bytes = b""
    deleted: bool = False

    def envelope(self) -> str:
        if self.mailbox is None and self.host is None:
            sender = "NIL"
        else:
            sender = f"((NIL NIL {_quote(self.mailbox)} {_quote(self.host)}))"
        return (
            f'("Mon, 1 Jan 2024 10:00:00 +0000" {_quote(self.subject)} '
            f"{sender} {sender} {sender} ((NIL NIL \"me\" \"example.com\")) "
            f'NIL NIL NIL "<{self.uid}@example.com>")'
        )


@dataclass
class FakeServer:
    """Scripted in-memory IMAP server.

    Every transport call is recorded as a ``("start", name)`` /
    ``("end", name)`` pair in :attr:`calls`. ``results`` overrides the
    completion status of a command, ``gates`` holds a command until the event
    is set, and ``delays`` sleeps before answering. ``requests`` keeps the
    message set sent with each FETCH and STORE; ``reverse_fetch`` answers a
    FETCH with its records in descending sequence order.
    """

    mailboxes: Dict[str, List[FakeMessage]] = field(default_factory=dict)
    password: str = "secret"
    open_error: Optional[BaseException] = None
    results: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)
    gates: Dict[str, asyncio.Event] = field(default_factory=dict)
    delays: Dict[str, float] = field(default_factory=dict)
    extra_fetch_lines: List[bytes] = field(default_factory=list)
    reverse_fetch: bool = False
    calls: list = field(default_factory=list)
    requests: List[Tuple[str, str]] = field(default_factory=list)
    opened: list = field(default_factory=list)
    closed: int = 0
    selected: Optional[str] = None

    def transport(self) -> "FakeTransport":
        return FakeTransport(self)

    def commands(self) -> List[str]:
        """Names of the commands that started, in order."""
        return [name for event, name in self.calls if event == "start"]

    def messages(self, mailbox: str = "INBOX") -> List[FakeMessage]:
        return self.mailboxes.setdefault(mailbox, [])

    def add_messages(self, count: int, mailbox: str = "INBOX", first_uid: int = 101):
        for offset in range(count):
            uid = first_uid + offset
            subject = f"Subject {uid}"
            self.messages(mailbox).append(
                FakeMessage(
                    uid=uid,
                    mailbox=f"sender{uid}",
                    subject=subject,
                    raw=build_raw_message(
                        f"Sender {uid} <sender{uid}@example.com>", subject, f"Body of {uid}"
                    ),
                )
            )

    async def _run(self, name: str):
        self.calls.append(("start", name))
        if name in self.gates:
            await self.gates[name].wait()
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.errors:
            self.calls.append(("end", name))
            raise self.errors[name]

    def _finish(self, name: str, lines: List[bytes], done: str) -> Response:
        self.calls.append(("end", name))
        result = self.results.get(name, "OK")
        if result != "OK":
            return Response(result, lines + [f"{name.upper()} rejected".encode()])
        return Response("OK", lines + [done.encode()])


class FakeTransport:
    """In-memory stand-in for AioImapTransport."""

    def __init__(self, server: FakeServer):
        self.server = server

    async def open(self, host, port, ssl_context):
        self.server.calls.append(("start", "open"))
        if self.server.open_error is not None:
            raise self.server.open_error
        if "open" in self.server.delays:
            await asyncio.sleep(self.server.delays["open"])
        self.server.opened.append((host, port))
        self.server.calls.append(("end", "open"))

    async def login(self, user, password):
        await self.server._run("login")
        if password != self.server.password:
            self.server.calls.append(("end", "login"))
            return Response("NO", [b"[AUTHENTICATIONFAILED] Invalid credentials"])
        return self.server._finish("login", [b"CAPABILITY IMAP4rev1"], "LOGIN completed")

    async def select(self, mailbox):
        await self.server._run("select")
        if mailbox not in self.server.mailboxes:
            self.server.calls.append(("end", "select"))
            self.server.selected = None
            return Response("NO", [b"Mailbox doesn't exist"])

        self.server.selected = mailbox
        total = len(self.server.mailboxes[mailbox])
        lines = [
            b"FLAGS (\\Answered \\Flagged \\Deleted \\Seen \\Draft)",
            f"{total} EXISTS".encode(),
            b"0 RECENT",
            b"OK [UIDVALIDITY 1700000000] UIDs valid",
        ]
        return self.server._finish("select", lines, "[READ-WRITE] SELECT completed")

    async def fetch(self, message_set, items, by_uid=False):
        name = "uid fetch" if by_uid else "fetch"
        self.server.requests.append((name, message_set))
        await self.server._run(name)
        messages = self.server.messages(self.server.selected)
        lines: List = list(self.server.extra_fetch_lines)

        if by_uid:
            uid = int(message_set)
            for sequence, message in enumerate(messages, start=1):
                if message.uid == uid:
                    lines.append(
                        f"{sequence} FETCH (UID {uid} BODY[] {{{len(message.raw)}}}".encode()
                    )
                    lines.append(bytearray(message.raw))
                    lines.append(b")")
        else:
            first, last = (int(part) for part in message_set.split(":"))
            sequences = range(first, min(last, len(messages)) + 1)
            if self.server.reverse_fetch:
                sequences = reversed(sequences)
            for sequence in sequences:
                message = messages[sequence - 1]
                lines.append(
                    f"{sequence} FETCH (UID {message.uid} ENVELOPE {message.envelope()})".encode()
                )

        return self.server._finish(name, lines, "FETCH completed")

    async def uid_store(self, message_set, operation, flags):
        self.server.requests.append(("store", message_set))
        await self.server._run("store")
        lines = []
        if self.server.results.get("store", "OK") == "OK":
            for sequence, message in enumerate(self.server.messages(self.server.selected), start=1):
                if message.uid == int(message_set):
                    message.deleted = True
                    lines.append(f"{sequence} FETCH (FLAGS (\\Deleted) UID {message.uid})".encode())
        return self.server._finish("store", lines, "STORE completed")

    async def expunge(self):
        await self.server._run("expunge")
        lines = []
        if self.server.results.get("expunge", "OK") == "OK":
            messages = self.server.messages(self.server.selected)
            for sequence in range(len(messages), 0, -1):
                if messages[sequence - 1].deleted:
                    del messages[sequence - 1]
                    lines.append(f"{sequence} EXPUNGE".encode())
        return self.server._finish("expunge", lines, "EXPUNGE completed")

    async def logout(self):
        await self.server._run("logout")
        return self.server._finish("logout", [b"BYE Logging out"], "LOGOUT completed")

    def close(self):
        self.server.closed += 1


@pytest.fixture
def server():
    """Fake server with three messages in INBOX"""
    fake = FakeServer()
    fake.add_messages(3)
    fake.messages("Archive")
    return fake


@pytest.fixture
def timeouts():
    return TimeoutConfig(
        connect=1.0, login=1.0, select=1.0, fetch=1.0, store=1.0, expunge=1.0, logout=0.5
    )


@pytest.fixture
def app_config(timeouts):
    """Application config with short timeouts"""
    return AppConfig(timeouts=timeouts)


@pytest.fixture
def connection(server, timeouts):
    return IMAPConnection(timeouts=timeouts, transport_factory=server.transport)


@pytest.fixture
async def session(connection):
    """Open session with INBOX selected"""
    live = await connection.connect(
        ServerAddress("imap.example.com"), Credentials("me@example.com", "secret")
    )
    await connection.select_mailbox(live, "INBOX")
    yield live
    await connection.disconnect(live)


@pytest.fixture
async def mail(server, app_config):
    """MailSession facade wired to the fake server"""
    facade = MailSession(app_config, transport_factory=server.transport)
    yield facade
    await facade.disconnect()


@pytest.fixture
async def selected_mail(mail):
    """Facade connected with INBOX selected"""
    await mail.connect("me@example.com", "secret")
    await mail.select_mailbox()
    return mail
