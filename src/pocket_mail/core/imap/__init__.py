from .connection import IMAPConnection, Session
from .fetch import FetchEngine, window_range
from .mutation import MutationEngine
from .session import MailSession, SessionState

__all__ = [
    'IMAPConnection',
    'Session',
    'FetchEngine',
    'window_range',
    'MutationEngine',
    'MailSession',
    'SessionState',
]
