"""Exceptions raised by pocket-mail and helpers for reporting them.

Every exception carries a developer ``message``, a short ``user_message``
suitable for the shell and a ``details`` dict for the logs. The
``category`` groups them for reporting.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pocket_mail.utils.logging import get_logger


class ErrorCategory(Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    PROTOCOL = "protocol"
    STATE = "state"
    VALIDATION = "validation"
    FILE_SYSTEM = "file_system"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ConnectFailure(Enum):
    """Why a connection attempt failed."""

    NETWORK = "network"
    TLS = "tls"
    AUTH = "auth"


class DeletePhase(Enum):
    """The two exchanges of a delete."""

    FLAG = "flag"
    EXPUNGE = "expunge"


## Base


class MailError(Exception):
    """Root of the pocket-mail exception tree."""

    category = ErrorCategory.UNKNOWN
    user_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable form used in log records."""
        return {
            "error_type": type(self).__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Connection Errors


class MailConnectionError(MailError):
    """Base exception for failures while opening an authenticated session."""

    category = ErrorCategory.NETWORK
    user_message = "Failed to connect to the email server"
    reason = ConnectFailure.NETWORK


class NetworkUnreachableError(MailConnectionError):
    """The server could not be reached (DNS, refused, reset)."""

    user_message = "The email server could not be reached"
    reason = ConnectFailure.NETWORK


class TLSHandshakeError(MailConnectionError):
    """TLS negotiation with the server failed."""

    user_message = "A secure connection to the email server could not be established"
    reason = ConnectFailure.TLS


class InvalidCredentialsError(MailConnectionError):
    """The server rejected the login credentials."""

    category = ErrorCategory.AUTHENTICATION
    user_message = "Invalid email or password"
    reason = ConnectFailure.AUTH


## Network Errors


class NetworkError(MailError):
    """Failure on an established connection."""

    category = ErrorCategory.NETWORK
    user_message = "A network error occurred"


class NetworkTimeoutError(NetworkError):
    """An exchange did not complete within its timeout."""

    user_message = "The email server did not respond in time"

    def __init__(
        self,
        message: Optional[str] = None,
        operation: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        details = dict(details or {})
        if operation:
            details.setdefault("operation", operation)
        super().__init__(message, details)


## Protocol Errors


class ProtocolError(MailError):
    """The server rejected or aborted a command."""

    category = ErrorCategory.PROTOCOL
    user_message = "The email server rejected the request"

    def __init__(
        self,
        message: Optional[str] = None,
        phase: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.phase = phase
        details = dict(details or {})
        if phase:
            details.setdefault("phase", phase)
        super().__init__(message, details)


class FlagStoreError(ProtocolError):
    """Setting the deleted flag failed; nothing was expunged."""

    user_message = "The message could not be marked for deletion"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, phase=DeletePhase.FLAG.value, details=details)


class ExpungeError(ProtocolError):
    """The message was flagged but the expunge failed."""

    user_message = "The message was marked for deletion but could not be removed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, phase=DeletePhase.EXPUNGE.value, details=details)


class NotFoundError(MailError):
    """The requested UID is not present in the mailbox."""

    category = ErrorCategory.PROTOCOL
    user_message = "Message not found"


## State Errors


class StateError(MailError):
    """An operation was invoked without its precondition."""

    category = ErrorCategory.STATE
    user_message = "That action is not available right now"


class SessionClosedError(StateError):
    """The session was closed while the operation was in flight."""

    user_message = "The session was closed"


## Validation Errors


class ValidationError(MailError):
    """Bad input caught before anything is sent to the server."""

    category = ErrorCategory.VALIDATION
    user_message = "Invalid input"


class ResolutionError(ValidationError):
    """The email address has no domain to resolve a server from."""

    user_message = "Could not determine the mail server for this address"


## File System Errors


class FileSystemError(MailError):
    """Config or log files could not be read or written."""

    category = ErrorCategory.FILE_SYSTEM
    user_message = "A file system error occurred"


## Configuration Errors


class ConfigurationError(MailError):
    """The config file is missing, unreadable or invalid."""

    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class MissingConfigError(ConfigurationError):
    """A dotted config key does not exist."""

    user_message = "Missing configuration settings"


class InvalidConfigError(ConfigurationError):
    """A config value failed validation."""

    user_message = "Invalid configuration settings"


## Reporting


class ErrorHandler:
    """Logs errors that reach the shell unhandled."""

    @staticmethod
    def handle(error: Exception, context: str = "", log_traceback: bool = True) -> Dict[str, Any]:
        """Log ``error`` under ``context`` and return its dict form."""
        logger = get_logger(__name__)

        if isinstance(error, MailError):
            report = error.to_dict()
        else:
            report = {
                "error_type": "UnknownError",
                "category": ErrorCategory.UNKNOWN.value,
                "message": str(error),
                "details": {"context": context},
            }

        logger.error(
            f"{context or 'error'}: {report['message']}",
            exc_info=error if log_traceback else None,
            extra={"error": report},
        )
        return report


def format_error_message(error: Exception) -> str:
    """One-line text for the user; internals stay in the logs."""
    if isinstance(error, MailError):
        return error.user_message
    return "An unexpected error occurred - see the log for details"
