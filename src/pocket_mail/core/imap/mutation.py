"""Mutation engine - flag-and-expunge deletion of one message."""

from pocket_mail.core.imap.connection import Session
from pocket_mail.core.imap.constants import IMAPFlags
from pocket_mail.core.models import validate_uid
from pocket_mail.utils.errors import ExpungeError, FlagStoreError, ProtocolError
from pocket_mail.utils.logging import get_logger, log_event

logger = get_logger(__name__)


class MutationEngine:
    """Drives the two exchanges of a delete."""

    async def delete_one(self, session: Session, uid: int) -> None:
        """Permanently delete the message with ``uid``.

        Adds ``\\Deleted`` to the message, then expunges the mailbox. The
        expunge is never sent if the flag could not be set. When the expunge
        fails the message stays flagged; list the mailbox again to see its
        real state.

        Raises:
            StateError: If no mailbox is selected
            FlagStoreError: If the STORE fails (nothing was removed)
            ExpungeError: If the EXPUNGE fails (the message is still flagged)
            NetworkTimeoutError: If either exchange times out
        """
        validate_uid(uid)
        session.require_selected()
        mailbox = session.mailbox

        try:
            await session.store_flags(uid, [IMAPFlags.DELETED])
        except ProtocolError as e:
            raise FlagStoreError(
                f"Failed to mark UID {uid} as deleted",
                details={**e.details, "uid": uid, "mailbox": mailbox},
            ) from e

        try:
            await session.expunge()
        except ProtocolError as e:
            logger.warning(
                "Message flagged for deletion but expunge failed",
                extra={"uid": uid, "mailbox": mailbox},
            )
            raise ExpungeError(
                f"UID {uid} is flagged \\Deleted but the expunge failed",
                details={**e.details, "uid": uid, "mailbox": mailbox},
            ) from e

        log_event("message_deleted", "Message deleted", uid=uid, mailbox=mailbox)
