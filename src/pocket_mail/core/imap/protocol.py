"""IMAP response parsing - turns aioimaplib response lines into records.

aioimaplib hands back a command's untagged responses as a list of lines with
the ``* `` prefix stripped. When a response carries a literal, the line ends
with the ``{n}`` marker, the literal payload follows as its own element
(a ``bytearray``), and the rest of the response continues in the next line.
The last line is the text of the tagged completion.

Only the pieces the engines need are understood: ``<n> EXISTS`` and
``[UIDVALIDITY n]`` from SELECT, and ``UID``, ``ENVELOPE`` and ``BODY[]`` from
FETCH. Everything else is skipped.
"""

import re
from dataclasses import dataclass, field
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from typing import List, Optional, Sequence, Union

from pocket_mail.core.models import MailboxInfo
from pocket_mail.utils.errors import ProtocolError

# Parsed IMAP values: atoms are str, strings and literals are bytes, NIL is None
Value = Union[str, bytes, None, list]

_CRLF = b"\r\n"
_LITERAL_MARKER = re.compile(rb"\{(\d+)\}$")
_FETCH_START = re.compile(rb"[ \t]*(?:\* )?(\d+) FETCH ", re.IGNORECASE)
_EXISTS = re.compile(rb"^(?:\* )?(\d+) EXISTS\b", re.IGNORECASE)
_UIDVALIDITY = re.compile(rb"\[UIDVALIDITY (\d+)\]", re.IGNORECASE)
_ATOM = re.compile(rb"[^\s()\"\[\]{]+(?:\[[^\]]*\](?:<[\d.]+>)?)?")
_QUOTED = re.compile(rb'"((?:[^"\\]|\\.)*)"')
_LITERAL = re.compile(rb"\{(\d+)\}\r\n")
_UNESCAPE = re.compile(rb"\\(.)")


@dataclass(frozen=True)
class EnvelopeAddress:
    """One address from an ENVELOPE address list."""

    name: str = ""
    mailbox: str = ""
    host: str = ""

    @property
    def address(self) -> str:
        if not self.host:
            return self.mailbox
        return f"{self.mailbox}@{self.host}"


@dataclass(frozen=True)
class Envelope:
    """The ENVELOPE fields the client cares about."""

    date: str = ""
    subject: str = ""
    from_: List[EnvelopeAddress] = field(default_factory=list)
    message_id: str = ""


@dataclass(frozen=True)
class FetchRecord:
    """One FETCH response."""

    sequence: int
    uid: Optional[int] = None
    envelope: Optional[Envelope] = None
    body: Optional[bytes] = None


def status_text(lines: Sequence[Union[bytes, bytearray, str]]) -> str:
    """Text of the tagged completion line, for error messages."""
    if not lines:
        return "No response"
    last = lines[-1]
    if isinstance(last, (bytes, bytearray)):
        return bytes(last).decode("utf-8", errors="replace")
    return str(last)


def decode_text(value: Value) -> str:
    """Decode an IMAP string, including RFC 2047 encoded-words."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).decode("utf-8", errors="replace")
    else:
        text = str(value)

    if "=?" not in text:
        return text

    try:
        return str(make_header(decode_header(text)))
    except (HeaderParseError, LookupError, ValueError):
        return text


def _join_lines(lines: Sequence[Union[bytes, bytearray, str]]) -> bytes:
    """Rebuild the wire form so literals can be read by their length."""
    buffer = bytearray()
    expect_payload = False
    after_payload = False

    for line in lines:
        chunk = line.encode("utf-8") if isinstance(line, str) else bytes(line)

        if expect_payload or after_payload:
            # literal payload, or the continuation glued to its end
            buffer += chunk
        else:
            if buffer:
                buffer += _CRLF
            buffer += chunk

        if expect_payload:
            expect_payload, after_payload = False, True
        elif _LITERAL_MARKER.search(chunk):
            buffer += _CRLF
            expect_payload, after_payload = True, False
        else:
            after_payload = False

    return bytes(buffer)


class _Reader:
    """Cursor over a rebuilt response buffer."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def _skip_spaces(self) -> None:
        while self.pos < len(self.data) and self.data[self.pos] in b" \t":
            self.pos += 1

    def at_end(self) -> bool:
        return self.pos >= len(self.data)

    def skip_line(self) -> None:
        end = self.data.find(_CRLF, self.pos)
        self.pos = len(self.data) if end == -1 else end + len(_CRLF)

    def read_value(self) -> Value:
        self._skip_spaces()
        if self.at_end():
            raise ProtocolError("Unexpected end of FETCH response", phase="fetch")

        char = self.data[self.pos : self.pos + 1]

        if char == b"(":
            self.pos += 1
            items = []
            while True:
                self._skip_spaces()
                if self.at_end():
                    raise ProtocolError("Unterminated list in FETCH response", phase="fetch")
                if self.data[self.pos : self.pos + 1] == b")":
                    self.pos += 1
                    return items
                items.append(self.read_value())

        if char == b'"':
            match = _QUOTED.match(self.data, self.pos)
            if not match:
                raise ProtocolError("Unterminated quoted string", phase="fetch")
            self.pos = match.end()
            return _UNESCAPE.sub(rb"\1", match.group(1))

        if char == b"{":
            match = _LITERAL.match(self.data, self.pos)
            if not match:
                raise ProtocolError("Malformed literal marker", phase="fetch")
            size = int(match.group(1))
            start = match.end()
            if start + size > len(self.data):
                raise ProtocolError("Truncated literal in FETCH response", phase="fetch")
            self.pos = start + size
            return self.data[start : self.pos]

        match = _ATOM.match(self.data, self.pos)
        if not match:
            raise ProtocolError(
                f"Unexpected character {char!r} in FETCH response", phase="fetch"
            )
        self.pos = match.end()
        atom = match.group(0).decode("ascii", errors="replace")
        return None if atom.upper() == "NIL" else atom


def _parse_addresses(value: Value) -> List[EnvelopeAddress]:
    if not isinstance(value, list):
        return []

    addresses = []
    for entry in value:
        if not isinstance(entry, list) or len(entry) < 4:
            continue
        name, _adl, mailbox, host = entry[:4]
        if host is None and mailbox is None:
            continue
        addresses.append(
            EnvelopeAddress(
                name=decode_text(name),
                mailbox=decode_text(mailbox),
                host=decode_text(host),
            )
        )
    return addresses


def parse_envelope(value: Value) -> Envelope:
    """Build an Envelope from the parsed ENVELOPE list."""
    if not isinstance(value, list) or len(value) < 10:
        raise ProtocolError("Malformed ENVELOPE in FETCH response", phase="fetch")

    return Envelope(
        date=decode_text(value[0]),
        subject=decode_text(value[1]),
        from_=_parse_addresses(value[2]),
        message_id=decode_text(value[9]),
    )


def _to_record(sequence: int, items: Value) -> FetchRecord:
    if not isinstance(items, list) or len(items) % 2:
        raise ProtocolError("Malformed FETCH attribute list", phase="fetch")

    uid = envelope = body = None
    for key, value in zip(items[0::2], items[1::2]):
        name = key.upper() if isinstance(key, str) else ""
        if name == "UID":
            try:
                uid = int(value)
            except (TypeError, ValueError) as e:
                raise ProtocolError(f"Invalid UID in FETCH response: {value!r}", phase="fetch") from e
        elif name == "ENVELOPE":
            envelope = parse_envelope(value)
        elif name in ("BODY[]", "RFC822") or name.startswith("BODY[]<"):
            if value is not None:
                body = bytes(value) if not isinstance(value, str) else value.encode("utf-8")

    return FetchRecord(sequence=sequence, uid=uid, envelope=envelope, body=body)


def parse_fetch_records(lines: Sequence[Union[bytes, bytearray, str]]) -> List[FetchRecord]:
    """Parse every FETCH response in ``lines``, in the order received.

    Raises:
        ProtocolError: If a FETCH response cannot be parsed
    """
    reader = _Reader(_join_lines(lines))
    records = []

    while not reader.at_end():
        match = _FETCH_START.match(reader.data, reader.pos)
        if not match:
            reader.skip_line()
            continue

        reader.pos = match.end()
        items = reader.read_value()
        records.append(_to_record(int(match.group(1)), items))
        reader.skip_line()

    return records


def parse_select_response(mailbox: str, lines: Sequence[Union[bytes, bytearray, str]]) -> MailboxInfo:
    """Extract the message count (and UIDVALIDITY) from a SELECT response.

    Raises:
        ProtocolError: If the response has no EXISTS count
    """
    total = None
    uid_validity = None

    for line in lines:
        if isinstance(line, str):
            line = line.encode("utf-8")
        line = bytes(line).strip()

        exists = _EXISTS.match(line)
        if exists:
            total = int(exists.group(1))
            continue

        validity = _UIDVALIDITY.search(line)
        if validity:
            uid_validity = int(validity.group(1))

    if total is None:
        raise ProtocolError(
            f"SELECT {mailbox} returned no message count",
            phase="select",
            details={"mailbox": mailbox},
        )

    return MailboxInfo(name=mailbox, total=total, uid_validity=uid_validity)
