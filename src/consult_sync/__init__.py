"""Client-side message synchronization engine for consultation chat."""

from .config import SyncSettings
from .domain.errors import (
    OfflineError,
    SessionClosedError,
    StaleResultDiscarded,
    SyncError,
    TransportError,
    ValidationError,
)
from .domain.models import (
    AuthorRole,
    Connectivity,
    ConversationSnapshot,
    Message,
    MessageStatus,
    ReconcileResult,
    TypingState,
)
from .engine.connectivity import ConnectivityMonitor
from .engine.notifications import LoggingNotificationBridge, NotificationBridge, NotificationCenter
from .engine.session import ConversationSession, open_conversation
from .transport.base import TransportPort
from .transport.http import HttpTransport
from .transport.memory import InMemoryTransport

__all__ = [
    "AuthorRole",
    "Connectivity",
    "ConnectivityMonitor",
    "ConversationSession",
    "ConversationSnapshot",
    "HttpTransport",
    "InMemoryTransport",
    "LoggingNotificationBridge",
    "Message",
    "MessageStatus",
    "NotificationBridge",
    "NotificationCenter",
    "OfflineError",
    "ReconcileResult",
    "SessionClosedError",
    "StaleResultDiscarded",
    "SyncError",
    "SyncSettings",
    "TransportError",
    "TransportPort",
    "TypingState",
    "ValidationError",
    "open_conversation",
]
