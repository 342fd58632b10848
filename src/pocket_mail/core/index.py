"""In-memory envelope index for the selected mailbox window."""

from typing import Iterator, List, Optional, Sequence, Tuple

from pocket_mail.core.models import MessageDescriptor


class EnvelopeIndex:
    """Ordered descriptors for the most recently listed window.

    The index is either valid (it reflects the last successful listing of
    ``mailbox`` at ``total`` messages) or invalid. It is never patched in
    place: a removal or a count change invalidates it and the next listing
    replaces it wholesale.
    """

    def __init__(self):
        self._descriptors: Tuple[MessageDescriptor, ...] = ()
        self._mailbox: Optional[str] = None
        self._total: Optional[int] = None
        self._valid = False

    @property
    def mailbox(self) -> Optional[str]:
        return self._mailbox

    @property
    def total(self) -> Optional[int]:
        return self._total

    @property
    def is_valid(self) -> bool:
        return self._valid

    def replace(
        self, mailbox: str, total: int, descriptors: Sequence[MessageDescriptor]
    ) -> None:
        """Install a freshly fetched window."""
        self._descriptors = tuple(descriptors)
        self._mailbox = mailbox
        self._total = total
        self._valid = True

    def invalidate(self) -> None:
        self._valid = False

    def clear(self) -> None:
        """Forget everything, e.g. after disconnect."""
        self._descriptors = ()
        self._mailbox = None
        self._total = None
        self._valid = False

    def observe(self, mailbox: str, total: int) -> None:
        """Invalidate if the mailbox or its message count moved."""
        if mailbox != self._mailbox or total != self._total:
            self._valid = False

    def find(self, uid: int) -> Optional[MessageDescriptor]:
        for descriptor in self._descriptors:
            if descriptor.uid == uid:
                return descriptor
        return None

    def snapshot(self) -> List[MessageDescriptor]:
        return list(self._descriptors)

    def __iter__(self) -> Iterator[MessageDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __getitem__(self, position: int) -> MessageDescriptor:
        return self._descriptors[position]
