"""IMAP protocol constants used by the engines."""


class IMAPResponse:
    """Standard IMAP response codes."""

    OK = "OK"
    NO = "NO"
    BAD = "BAD"


class IMAPFlags:
    """Standard IMAP flags."""

    DELETED = "\\Deleted"


class FetchItems:
    """FETCH data items requested by the engines."""

    ENVELOPE = "(UID ENVELOPE)"
    FULL_BODY = "(UID BODY[])"


class StoreOps:
    """STORE data item names."""

    ADD_FLAGS = "+FLAGS"


# Records buffered between the fetch worker and its consumer
RECORD_QUEUE_SIZE = 10
