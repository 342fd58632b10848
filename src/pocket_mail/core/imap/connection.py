"""IMAP connection management - session setup, exchanges and teardown."""

import asyncio
import ssl
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

import aioimaplib

from pocket_mail.core.imap.constants import IMAPResponse, StoreOps
from pocket_mail.core.imap.protocol import (
    parse_fetch_records,
    parse_select_response,
    status_text,
)
from pocket_mail.core.models import Credentials, MailboxInfo, ServerAddress
from pocket_mail.utils.config import TimeoutConfig
from pocket_mail.utils.errors import (
    InvalidCredentialsError,
    MailError,
    NetworkTimeoutError,
    NetworkUnreachableError,
    ProtocolError,
    SessionClosedError,
    StateError,
    TLSHandshakeError,
)
from pocket_mail.utils.logging import async_log_call, get_logger, log_event

logger = get_logger(__name__)

# Pushed into a fetch sink after the last record
END_OF_STREAM = object()


class AioImapTransport:
    """aioimaplib protocol bound to a TLS socket opened by this class.

    The socket is opened here rather than through ``aioimaplib.IMAP4_SSL`` so
    that DNS, refused-connection and handshake failures raise from ``open``
    instead of being lost in a background task.
    """

    def __init__(self):
        self._protocol: Optional[aioimaplib.IMAP4ClientProtocol] = None

    def _require(self) -> aioimaplib.IMAP4ClientProtocol:
        if self._protocol is None:
            raise StateError("IMAP transport is not open")
        return self._protocol

    async def open(self, host: str, port: int, ssl_context: ssl.SSLContext) -> None:
        loop = asyncio.get_running_loop()
        protocol = aioimaplib.IMAP4ClientProtocol(loop)
        await loop.create_connection(lambda: protocol, host, port, ssl=ssl_context)
        self._protocol = protocol
        await protocol.wait("AUTH|NONAUTH")

    async def login(self, user: str, password: str) -> aioimaplib.Response:
        return await self._require().login(user, password)

    async def select(self, mailbox: str) -> aioimaplib.Response:
        return await self._require().select(mailbox)

    async def fetch(
        self, message_set: str, items: str, by_uid: bool = False
    ) -> aioimaplib.Response:
        protocol = self._require()
        if by_uid:
            return await protocol.uid("fetch", message_set, items)
        return await protocol.fetch(message_set, items)

    async def uid_store(self, message_set: str, operation: str, flags: str) -> aioimaplib.Response:
        return await self._require().uid("store", message_set, operation, flags)

    async def expunge(self) -> aioimaplib.Response:
        return await self._require().expunge()

    async def logout(self) -> aioimaplib.Response:
        return await self._require().logout()

    def close(self) -> None:
        if self._protocol is not None and self._protocol.transport is not None:
            self._protocol.transport.close()


TransportFactory = Callable[[], AioImapTransport]


@dataclass
class SessionStats:
    """Exchange counts and time spent on the wire for one session."""

    exchanges: int = 0
    failures: int = 0
    total_exchange_time: float = 0.0

    def record_exchange(self, duration: float) -> None:
        self.exchanges += 1
        self.total_exchange_time += duration


class Session:
    """One authenticated IMAP connection.

    Created by :class:`IMAPConnection`, which owns the transport. Engines
    request exchanges through the methods here; one exchange is on the wire
    at a time.
    """

    def __init__(
        self,
        transport: AioImapTransport,
        server: ServerAddress,
        username: str,
        timeouts: TimeoutConfig,
    ):
        self._transport = transport
        self.server = server
        self.username = username
        self.timeouts = timeouts
        self.mailbox: Optional[str] = None
        self.total = 0
        self.uid_validity: Optional[int] = None
        self.stats = SessionStats()
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def selected(self) -> bool:
        return not self._closed and self.mailbox is not None

    def require_open(self) -> None:
        if self._closed:
            raise SessionClosedError("The IMAP session is closed")

    def require_selected(self) -> None:
        """Fail fast when no mailbox has been selected.

        Raises:
            SessionClosedError: If the session is closed
            StateError: If no SELECT has succeeded
        """
        self.require_open()
        if self.mailbox is None:
            raise StateError("No mailbox selected; select one before fetching or deleting")

    def _mark_closed(self) -> None:
        self._closed = True
        self.mailbox = None

    def _abandon(self, reason: str) -> None:
        """Drop a connection whose state can no longer be trusted."""
        if self._closed:
            return
        logger.warning(
            "Abandoning IMAP session",
            extra={"server": self.server.host, "reason": reason},
        )
        self._mark_closed()
        self._transport.close()

    def _check_response(self, response: aioimaplib.Response, operation: str, phase: str) -> None:
        """Check IMAP response and raise error if not OK.

        Raises:
            ProtocolError: If the response indicates failure
        """
        if response.result != IMAPResponse.OK:
            raise ProtocolError(
                f"IMAP operation failed: {operation}",
                phase=phase,
                details={
                    "response": response.result,
                    "text": status_text(response.lines),
                    "operation": operation,
                    "server": self.server.host,
                },
            )

    async def _exchange(
        self,
        operation: str,
        call: Callable[[], Awaitable[aioimaplib.Response]],
        timeout: float,
        phase: str,
    ) -> aioimaplib.Response:
        """Run one command under the session lock with a bounded wait.

        A timeout or a transport failure leaves the connection in an unknown
        state, so the session is abandoned. NO/BAD responses are returned to
        the caller to judge.
        """
        self.require_open()
        async with self._lock:
            self.require_open()
            start = time.monotonic()
            try:
                return await asyncio.wait_for(call(), timeout)

            except asyncio.TimeoutError as e:
                self.stats.failures += 1
                self._abandon(f"{operation} timed out")
                raise NetworkTimeoutError(
                    f"IMAP {operation} timed out after {timeout:g}s",
                    operation=operation,
                    details={"server": self.server.host},
                ) from e

            except MailError:
                self.stats.failures += 1
                raise

            except Exception as e:
                self.stats.failures += 1
                self._abandon(f"{operation} failed: {e}")
                raise ProtocolError(
                    f"IMAP {operation} error: {str(e)}",
                    phase=phase,
                    details={"server": self.server.host},
                ) from e

            finally:
                self.stats.record_exchange(time.monotonic() - start)

    async def select(self, mailbox: str) -> MailboxInfo:
        """Select ``mailbox`` and record its message count.

        Raises:
            ProtocolError: If the server rejects the SELECT
        """
        self.require_open()

        # a failed SELECT leaves no mailbox selected
        self.mailbox = None
        self.total = 0
        self.uid_validity = None

        response = await self._exchange(
            "select", lambda: self._transport.select(mailbox), self.timeouts.select, "select"
        )
        self._check_response(response, f"select {mailbox}", "select")

        info = parse_select_response(mailbox, response.lines)
        self.mailbox = info.name
        self.total = info.total
        self.uid_validity = info.uid_validity

        logger.debug(
            "Selected IMAP mailbox",
            extra={"mailbox": info.name, "total": info.total},
        )
        return info

    async def stream_fetch(
        self,
        message_set: str,
        items: str,
        sink: asyncio.Queue,
        *,
        by_uid: bool = False,
    ) -> None:
        """Issue a FETCH and push each parsed record into ``sink``.

        Records are queued in the order received followed by
        :data:`END_OF_STREAM`. Only then does the coroutine resolve with the
        command's outcome, so a rejected command can come after records that
        were already delivered.

        Raises:
            StateError: If no mailbox is selected
            ProtocolError: If the server rejects the command
        """
        self.require_selected()
        operation = "uid fetch" if by_uid else "fetch"

        response = await self._exchange(
            operation,
            lambda: self._transport.fetch(message_set, items, by_uid=by_uid),
            self.timeouts.fetch,
            "fetch",
        )

        try:
            records = parse_fetch_records(response.lines)
        except ProtocolError:
            self._check_response(response, f"{operation} {message_set}", "fetch")
            raise

        for record in records:
            await sink.put(record)
        await sink.put(END_OF_STREAM)

        self._check_response(response, f"{operation} {message_set}", "fetch")

    async def store_flags(self, uid: int, flags: Iterable[str]) -> None:
        """Add ``flags`` to the message with ``uid``.

        Raises:
            StateError: If no mailbox is selected
            ProtocolError: If the server rejects the STORE
        """
        self.require_selected()
        flag_list = "(" + " ".join(flags) + ")"
        response = await self._exchange(
            "store",
            lambda: self._transport.uid_store(str(uid), StoreOps.ADD_FLAGS, flag_list),
            self.timeouts.store,
            "flag",
        )
        self._check_response(response, f"uid store {uid} {StoreOps.ADD_FLAGS} {flag_list}", "flag")

    async def expunge(self) -> None:
        """Permanently remove every message flagged \\Deleted.

        Raises:
            StateError: If no mailbox is selected
            ProtocolError: If the server rejects the EXPUNGE
        """
        self.require_selected()
        response = await self._exchange(
            "expunge", self._transport.expunge, self.timeouts.expunge, "expunge"
        )
        self._check_response(response, "expunge", "expunge")

    async def logout(self) -> None:
        """Send LOGOUT once the exchange on the wire (if any) is done, then close.

        The wait for the lock and the LOGOUT together are bounded by the
        logout timeout. Never raises.
        """
        if self._closed:
            return

        async def _logout():
            async with self._lock:
                if self._closed:
                    return
                self._mark_closed()
                await self._transport.logout()

        try:
            await asyncio.wait_for(_logout(), self.timeouts.logout)
            logger.debug("IMAP logout completed", extra={"server": self.server.host})
        except Exception as e:
            logger.debug(f"IMAP logout failed: {e}", extra={"server": self.server.host})
        finally:
            self._mark_closed()
            self._transport.close()


class IMAPConnection:
    """Opens, owns and tears down the single live IMAP session."""

    def __init__(
        self,
        timeouts: Optional[TimeoutConfig] = None,
        verify_tls: bool = True,
        transport_factory: TransportFactory = AioImapTransport,
    ):
        """Initialise the connection manager.

        Args:
            timeouts: Per-exchange timeouts
            verify_tls: Verify the server certificate and hostname
            transport_factory: Builds a fresh transport per connection
        """
        self.timeouts = timeouts or TimeoutConfig()
        self.verify_tls = verify_tls
        self._transport_factory = transport_factory
        self._session: Optional[Session] = None

    @property
    def session(self) -> Optional[Session]:
        if self._session is not None and self._session.closed:
            self._session = None
        return self._session

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        if not self.verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _require_owned(self, session: Session) -> None:
        if session is not self._session:
            raise StateError("Session is not the live session of this connection")
        session.require_open()

    async def connect(self, server: ServerAddress, credentials: Credentials) -> Session:
        """Open a TLS connection to ``server`` and log in.

        Returns:
            The new live Session

        Raises:
            StateError: If a session is already live
            NetworkUnreachableError: If the server cannot be reached
            TLSHandshakeError: If TLS negotiation fails
            InvalidCredentialsError: If the server rejects the login
            NetworkTimeoutError: If connecting or logging in times out
        """
        if self.session is not None:
            raise StateError("An IMAP session is already open")

        details = {"server": server.host, "port": server.port}
        transport = self._transport_factory()
        start_time = time.monotonic()

        logger.info("Connecting to IMAP server", extra=details)

        try:
            await asyncio.wait_for(
                transport.open(server.host, server.port, self._ssl_context()),
                self.timeouts.connect,
            )
        except asyncio.CancelledError:
            transport.close()
            raise
        except asyncio.TimeoutError as e:
            transport.close()
            logger.error(
                f"IMAP connection timed out after {time.monotonic() - start_time:.2f}s"
            )
            raise NetworkTimeoutError(
                "IMAP connection timeout", operation="connect", details=details
            ) from e
        except ssl.SSLError as e:
            transport.close()
            raise TLSHandshakeError(
                f"TLS negotiation with {server.host} failed: {e}", details=details
            ) from e
        except OSError as e:
            transport.close()
            raise NetworkUnreachableError(
                f"Could not reach {server}: {e}", details=details
            ) from e

        try:
            response = await asyncio.wait_for(
                transport.login(credentials.username, credentials.password),
                self.timeouts.login,
            )
        except asyncio.CancelledError:
            transport.close()
            raise
        except asyncio.TimeoutError as e:
            transport.close()
            raise NetworkTimeoutError(
                "IMAP login timeout", operation="login", details=details
            ) from e
        except ssl.SSLError as e:
            transport.close()
            raise TLSHandshakeError(f"TLS failure during login: {e}", details=details) from e
        except Exception as e:
            transport.close()
            raise NetworkUnreachableError(
                f"Connection lost during login: {e}", details=details
            ) from e

        if response.result != IMAPResponse.OK:
            logger.warning(
                "IMAP authentication failed",
                extra={"server": server.host, "username": credentials.username},
            )
            transport.close()
            raise InvalidCredentialsError(
                "IMAP authentication failed",
                details={
                    **details,
                    "username": credentials.username,
                    "response": status_text(response.lines),
                },
            )

        session = Session(transport, server, credentials.username, self.timeouts)
        self._session = session

        log_event(
            "session_opened",
            "IMAP connection established",
            server=server.host,
            username=credentials.username,
            duration_seconds=round(time.monotonic() - start_time, 2),
        )
        return session

    async def select_mailbox(self, session: Session, name: str) -> MailboxInfo:
        """Select ``name`` on ``session``.

        Raises:
            StateError: If ``session`` is not the live session
            ProtocolError: If the server rejects the SELECT
        """
        self._require_owned(session)
        return await session.select(name)

    @async_log_call
    async def disconnect(self, session: Optional[Session] = None) -> None:
        """Log out and close the connection. Never raises."""
        session = session or self._session
        if session is None:
            return
        if session is self._session:
            self._session = None
        if session.closed:
            return

        await session.logout()

        log_event(
            "session_closed",
            "IMAP session closed",
            server=session.server.host,
            exchanges=session.stats.exchanges,
            failures=session.stats.failures,
            exchange_seconds=round(session.stats.total_exchange_time, 3),
        )
