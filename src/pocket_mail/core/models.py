"""Mail domain models"""

from dataclasses import dataclass, field
from typing import Optional

from pocket_mail.utils.errors import ValidationError

MAX_UID = 0xFFFFFFFF


def validate_uid(uid: int) -> int:
    """Check that ``uid`` is a non-zero unsigned 32-bit integer.

    Raises:
        ValidationError: If the value cannot be a UID
    """
    if isinstance(uid, bool) or not isinstance(uid, int) or not 0 < uid <= MAX_UID:
        raise ValidationError(
            f"Invalid message UID: {uid!r}", details={"uid": repr(uid)}
        )
    return uid


@dataclass(frozen=True)
class ServerAddress:
    """IMAP server endpoint resolved from an email domain."""

    host: str
    port: int = 993

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Credentials:
    """Login credentials. The password never appears in repr."""

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class MailboxInfo:
    """Result of selecting a mailbox."""

    name: str
    total: int
    uid_validity: Optional[int] = None


@dataclass(frozen=True)
class SessionInfo:
    """What the caller learns about a freshly opened session."""

    email: str
    host: str
    port: int


@dataclass(frozen=True)
class MessageDescriptor:
    """Lightweight summary of one message in the recent window."""

    uid: int
    sender: str = ""
    subject: str = ""


@dataclass(frozen=True)
class MessageContent:
    """Decoded header and plain-text view of one message."""

    sender: str
    subject: str
    body: str

    def render(self) -> str:
        """Flattened view shown to the user."""
        return f"From: {self.sender}\nSubject: {self.subject}\n\n{self.body}"
