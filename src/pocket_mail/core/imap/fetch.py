"""Fetch engine - recent-window listing and single-message retrieval.

Both operations share one shape. A worker task runs
:meth:`Session.stream_fetch`, which pushes records into a bounded queue and
then resolves with the command outcome. The caller drains the queue and joins
the worker; the result only counts once the stream is closed *and* the worker
reports success.
"""

import asyncio
from typing import List, Optional, Tuple

from pocket_mail.core.imap.connection import END_OF_STREAM, Session
from pocket_mail.core.imap.constants import RECORD_QUEUE_SIZE, FetchItems
from pocket_mail.core.imap.protocol import FetchRecord
from pocket_mail.core.models import MessageContent, MessageDescriptor, validate_uid
from pocket_mail.core.parser import MessageParser
from pocket_mail.utils.errors import NotFoundError, ProtocolError, ValidationError
from pocket_mail.utils.logging import get_logger

logger = get_logger(__name__)


def window_range(total: int, max_count: int) -> Optional[Tuple[int, int]]:
    """Sequence range of the ``max_count`` most recent messages.

    Args:
        total: Messages in the selected mailbox
        max_count: Window size

    Returns:
        ``(first, last)`` clamped to ``[1, total]``, or None for an empty mailbox

    Raises:
        ValidationError: If ``max_count`` is less than 1
    """
    if isinstance(max_count, bool) or not isinstance(max_count, int) or max_count < 1:
        raise ValidationError(
            f"Window size must be a positive integer, got {max_count!r}",
            details={"max_count": repr(max_count)},
        )
    if total <= 0:
        return None
    return max(1, total - max_count + 1), total


class FetchEngine:
    """Drives FETCH exchanges and assembles their records."""

    def __init__(self, queue_size: int = RECORD_QUEUE_SIZE):
        self.queue_size = queue_size

    async def _collect(
        self, session: Session, message_set: str, items: str, *, by_uid: bool
    ) -> List[FetchRecord]:
        """Join the record stream with the command outcome.

        Raises:
            ProtocolError: If the command fails; records already received
                are discarded
        """
        sink: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        worker = asyncio.ensure_future(
            session.stream_fetch(message_set, items, sink, by_uid=by_uid)
        )
        records: List[FetchRecord] = []
        getter: Optional[asyncio.Future] = None

        try:
            while True:
                getter = asyncio.ensure_future(sink.get())
                await asyncio.wait({getter, worker}, return_when=asyncio.FIRST_COMPLETED)

                if not getter.done():
                    # worker finished first; take whatever it left queued
                    getter.cancel()
                    getter = None
                    while not sink.empty():
                        item = sink.get_nowait()
                        if item is END_OF_STREAM:
                            break
                        records.append(item)
                    break

                item = getter.result()
                getter = None
                if item is END_OF_STREAM:
                    break
                records.append(item)

            try:
                await worker
            except ProtocolError:
                if records:
                    logger.warning(
                        "Discarding records from failed fetch",
                        extra={"message_set": message_set, "discarded": len(records)},
                    )
                raise

        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            if not worker.done():
                worker.cancel()
                await asyncio.gather(worker, return_exceptions=True)

        return records

    async def list_recent(self, session: Session, max_count: int) -> List[MessageDescriptor]:
        """Describe the ``max_count`` most recent messages, oldest first.

        Envelopes with no sender are left out of the result.

        Raises:
            StateError: If no mailbox is selected
            ValidationError: If ``max_count`` is less than 1
            ProtocolError: If the FETCH fails
        """
        session.require_selected()
        window = window_range(session.total, max_count)

        if window is None:
            logger.debug("Mailbox is empty, nothing to fetch", extra={"mailbox": session.mailbox})
            return []

        first, last = window
        records = await self._collect(
            session, f"{first}:{last}", FetchItems.ENVELOPE, by_uid=False
        )

        descriptors = []
        dropped = 0
        for record in sorted(records, key=lambda r: r.sequence):
            if record.envelope is None or not first <= record.sequence <= last:
                continue
            if not record.envelope.from_:
                dropped += 1
                continue
            if record.uid is None:
                raise ProtocolError(
                    "FETCH response carried no UID",
                    phase="fetch",
                    details={"sequence": record.sequence},
                )
            descriptors.append(
                MessageDescriptor(
                    uid=record.uid,
                    sender=record.envelope.from_[0].address,
                    subject=record.envelope.subject,
                )
            )

        logger.info(
            "Listed recent messages",
            extra={
                "mailbox": session.mailbox,
                "range": f"{first}:{last}",
                "count": len(descriptors),
                "dropped_without_sender": dropped,
            },
        )
        return descriptors

    async def fetch_one(self, session: Session, uid: int) -> MessageContent:
        """Fetch and decode the message with ``uid``.

        Raises:
            StateError: If no mailbox is selected
            NotFoundError: If no message has that UID
            ProtocolError: If the FETCH fails or carries no body
        """
        validate_uid(uid)
        session.require_selected()

        records = await self._collect(session, str(uid), FetchItems.FULL_BODY, by_uid=True)

        record = next((r for r in records if r.uid == uid), None)
        if record is None:
            raise NotFoundError(
                f"No message with UID {uid} in {session.mailbox}",
                details={"uid": uid, "mailbox": session.mailbox},
            )
        if record.body is None:
            raise ProtocolError(
                f"FETCH for UID {uid} returned no message body",
                phase="fetch",
                details={"uid": uid},
            )

        return MessageParser.parse_from_bytes(record.body)
