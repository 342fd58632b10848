"""Raw message parsing into the flattened header + text view."""

import email
from email import policy
from email.message import Message

from pocket_mail.core.models import MessageContent
from pocket_mail.utils.errors import MailError, ProtocolError
from pocket_mail.utils.logging import get_logger

logger = get_logger(__name__)


def _decode_payload(part: Message) -> str:
    """Decode a leaf part's transfer encoding and charset."""
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


class MessageParser:
    """Parse RFC 822 messages into MessageContent"""

    @staticmethod
    def parse_from_bytes(raw_message: bytes) -> MessageContent:
        """Parse raw message bytes.

        Only the first From address is kept. The body is the text/plain part;
        a single-part message of another type falls back to its decoded
        payload, and a multipart message without text/plain has no body.

        Raises:
            ProtocolError: If the bytes cannot be parsed as a message
        """
        try:
            message = email.message_from_bytes(raw_message, policy=policy.default)
            return MessageContent(
                sender=MessageParser._first_sender(message),
                subject=str(message.get("Subject") or ""),
                body=MessageParser._plain_text(message),
            )

        except MailError:
            raise

        except Exception as e:
            raise ProtocolError("Failed to parse message bytes", phase="parse") from e

    @staticmethod
    def _first_sender(message: Message) -> str:
        header = message.get("From")
        if header is None:
            return ""

        addresses = getattr(header, "addresses", ())
        if addresses:
            return str(addresses[0])

        logger.debug("From header has no parseable address", extra={"header": str(header)})
        return str(header)

    @staticmethod
    def _plain_text(message: Message) -> str:
        part = message.get_body(preferencelist=("plain",))
        if part is not None:
            return _decode_payload(part)

        if not message.is_multipart():
            return _decode_payload(message)

        return ""
