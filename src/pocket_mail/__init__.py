"""pocket-mail: a small IMAP client for reading and deleting recent mail."""

from pocket_mail.core.imap import MailSession, SessionState
from pocket_mail.core.models import (
    MailboxInfo,
    MessageContent,
    MessageDescriptor,
    ServerAddress,
    SessionInfo,
)
from pocket_mail.core.resolver import resolve_server

__version__ = "0.1.0"

__all__ = [
    "MailSession",
    "SessionState",
    "MailboxInfo",
    "MessageContent",
    "MessageDescriptor",
    "ServerAddress",
    "SessionInfo",
    "resolve_server",
    "__version__",
]
