"""Session facade - the operations a front end calls.

``MailSession`` holds the single live IMAP session and enforces the order
connect -> select -> {list, fetch, delete}* -> disconnect. Every operation
runs under one lock, so concurrent callers queue instead of interleaving
exchanges on the connection.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from pocket_mail.core.imap.connection import IMAPConnection, Session, TransportFactory
from pocket_mail.core.imap.fetch import FetchEngine
from pocket_mail.core.imap.mutation import MutationEngine
from pocket_mail.core.index import EnvelopeIndex
from pocket_mail.core.models import (
    Credentials,
    MailboxInfo,
    MessageContent,
    MessageDescriptor,
    SessionInfo,
    validate_uid,
)
from pocket_mail.core.resolver import resolve_server
from pocket_mail.utils.config import AppConfig
from pocket_mail.utils.errors import SessionClosedError, StateError, ValidationError
from pocket_mail.utils.logging import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    """Where the facade is in its lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    SELECTED = "selected"


class MailSession:
    """Connect, list, fetch and delete against one IMAP account."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """Initialise the facade.

        Args:
            config: Application configuration (defaults when omitted)
            transport_factory: Transport override, mainly for tests
        """
        self.config = config or AppConfig()

        options: dict[str, Any] = {}
        if transport_factory is not None:
            options["transport_factory"] = transport_factory
        self._connection = IMAPConnection(
            timeouts=self.config.timeouts,
            verify_tls=self.config.imap.verify_tls,
            **options,
        )
        self._fetch = FetchEngine()
        self._mutation = MutationEngine()
        self._index = EnvelopeIndex()
        self._lock = asyncio.Lock()
        self._session: Optional[Session] = None
        self._info: Optional[SessionInfo] = None
        self._inflight: Optional[asyncio.Future] = None
        self._closing = False

    ## State

    @property
    def state(self) -> SessionState:
        session = self._session
        if session is None or session.closed:
            return SessionState.DISCONNECTED
        if session.selected:
            return SessionState.SELECTED
        return SessionState.CONNECTED

    @property
    def info(self) -> Optional[SessionInfo]:
        return self._info if self.state is not SessionState.DISCONNECTED else None

    @property
    def mailbox(self) -> Optional[str]:
        session = self._session
        return session.mailbox if session is not None and not session.closed else None

    @property
    def index(self) -> EnvelopeIndex:
        return self._index

    def _require(self, needed: SessionState) -> Session:
        if self._closing:
            raise SessionClosedError("The session is being closed")

        session = self._session
        if session is None or session.closed:
            self._forget_session()
            raise StateError("Not connected; connect first")

        if needed is SessionState.SELECTED and not session.selected:
            raise StateError("No mailbox selected; select a mailbox first")

        return session

    def _forget_session(self) -> None:
        self._session = None
        self._info = None
        self._index.clear()

    async def _serialized(self, operation: str, func: Callable[..., Awaitable[Any]], *args) -> Any:
        """Run ``func`` as the only operation in flight.

        ``disconnect`` cancels the running operation; its caller then sees
        :class:`SessionClosedError`.
        """
        async with self._lock:
            if self._closing:
                raise SessionClosedError(f"Session closed before {operation} could run")

            task = asyncio.ensure_future(func(*args))
            self._inflight = task
            try:
                return await task

            except asyncio.CancelledError:
                if self._closing and task.cancelled():
                    raise SessionClosedError(f"Session closed during {operation}") from None
                raise

            finally:
                self._inflight = None
                if self._session is not None and self._session.closed:
                    logger.warning("IMAP session lost", extra={"operation": operation})
                    self._forget_session()

    ## Operations

    async def connect(self, email: str, password: str) -> SessionInfo:
        """Resolve the server for ``email``, connect over TLS and log in.

        Raises:
            StateError: If already connected
            ValidationError: If the email or password is empty
            ResolutionError: If the address has no domain
            MailConnectionError: Network, TLS or credential failure
            NetworkTimeoutError: If connecting or logging in times out
        """
        return await self._serialized("connect", self._connect, email, password)

    async def _connect(self, email: str, password: str) -> SessionInfo:
        if self.state is not SessionState.DISCONNECTED:
            raise StateError("Already connected; disconnect first")

        email = (email or "").strip()
        if not email or not password:
            raise ValidationError("Email and password are both required")

        server = resolve_server(email, self.config.imap.extra_providers)
        session = await self._connection.connect(server, Credentials(email, password))

        self._session = session
        self._info = SessionInfo(email=email, host=server.host, port=server.port)
        self._index.clear()

        logger.info("Connected", extra={"server": server.host, "port": server.port})
        return self._info

    async def select_mailbox(self, name: Optional[str] = None) -> MailboxInfo:
        """Select ``name`` (the configured default mailbox when omitted).

        Raises:
            StateError: If not connected
            ProtocolError: If the server rejects the SELECT
        """
        return await self._serialized("select", self._select_mailbox, name)

    async def _select_mailbox(self, name: Optional[str]) -> MailboxInfo:
        session = self._require(SessionState.CONNECTED)
        name = name or self.config.imap.mailbox

        try:
            info = await self._connection.select_mailbox(session, name)
        except Exception:
            self._index.invalidate()
            raise

        self._index.observe(info.name, info.total)
        return info

    async def list_recent(self, max_count: Optional[int] = None) -> List[MessageDescriptor]:
        """List the most recent messages of the selected mailbox.

        The mailbox is selected again first so the window reflects its
        current message count. The result also replaces :attr:`index`.

        Args:
            max_count: Window size (the configured default when omitted)

        Raises:
            StateError: If no mailbox is selected
            ValidationError: If ``max_count`` is less than 1
            ProtocolError: If the SELECT or FETCH fails
        """
        return await self._serialized("list_recent", self._list_recent, max_count)

    async def _list_recent(self, max_count: Optional[int]) -> List[MessageDescriptor]:
        session = self._require(SessionState.SELECTED)
        if max_count is None:
            max_count = self.config.imap.window_size
        if isinstance(max_count, bool) or not isinstance(max_count, int) or max_count < 1:
            raise ValidationError(f"Window size must be a positive integer, got {max_count!r}")

        try:
            info = await self._connection.select_mailbox(session, session.mailbox)
            self._index.observe(info.name, info.total)
            descriptors = await self._fetch.list_recent(session, max_count)
        except Exception:
            self._index.invalidate()
            raise

        self._index.replace(info.name, info.total, descriptors)
        return descriptors

    async def fetch_one(self, uid: int) -> MessageContent:
        """Fetch and decode one message by UID.

        Raises:
            StateError: If no mailbox is selected
            NotFoundError: If no message has that UID
            ProtocolError: If the FETCH fails
        """
        validate_uid(uid)
        return await self._serialized("fetch_one", self._fetch_one, uid)

    async def _fetch_one(self, uid: int) -> MessageContent:
        session = self._require(SessionState.SELECTED)
        return await self._fetch.fetch_one(session, uid)

    async def delete_one(self, uid: int) -> None:
        """Delete one message by UID.

        The index is invalid afterwards whatever the outcome; call
        :meth:`list_recent` to rebuild it.

        Raises:
            StateError: If no mailbox is selected
            FlagStoreError: If the message could not be flagged
            ExpungeError: If the message was flagged but not expunged
        """
        validate_uid(uid)
        return await self._serialized("delete_one", self._delete_one, uid)

    async def _delete_one(self, uid: int) -> None:
        session = self._require(SessionState.SELECTED)
        try:
            await self._mutation.delete_one(session, uid)
        finally:
            self._index.invalidate()

    async def disconnect(self) -> None:
        """Log out and drop the session. Never raises.

        An operation still in flight is cancelled and fails with
        :class:`SessionClosedError`; operations queued behind it fail the
        same way.
        """
        if self._closing:
            return

        self._closing = True
        try:
            inflight = self._inflight
            if inflight is not None and not inflight.done():
                inflight.cancel()

            async with self._lock:
                session = self._session
                self._forget_session()
                if session is not None:
                    await self._connection.disconnect(session)
        finally:
            self._closing = False

    async def __aenter__(self) -> "MailSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
