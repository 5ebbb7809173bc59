"""In-memory transport implementation."""

import asyncio
import itertools
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import structlog

from ..domain.errors import TransportError
from ..domain.models import AuthorRole, Message, MessageStatus, utcnow
from ..engine.notifications import NotificationBridge
from .base import TransportPort

logger = structlog.get_logger()

DEMO_PEER_NAME = "Dr. Medecin"
DEMO_AUTO_REPLY = "Message received! (automatic reply in demo mode)"
DEMO_TOAST = ("Demo mode", "Test messages displayed (API unavailable)")


class InMemoryTransport(TransportPort):
    """In-process stand-in for the messaging backend.

    Used for demo mode and tests. Messages sent through ``send_message`` are
    attributed to ``author_id``; ``add_remote_message`` simulates the other
    participant writing. With ``auto_reply`` set, every sent message gets an
    answer from ``reply_author_id`` after ``reply_delay`` seconds.
    """

    def __init__(
        self,
        author_id: str = "current_user",
        author_role: AuthorRole = AuthorRole.PATIENT,
        latency: float = 0.0,
        clock: Callable = utcnow,
        auto_reply: Optional[str] = None,
        reply_delay: float = 1.0,
        reply_author_id: str = "doctor_auto",
        reply_author_name: Optional[str] = DEMO_PEER_NAME,
    ) -> None:
        self.author_id = author_id
        self.author_role = author_role
        self.latency = latency
        self.auto_reply = auto_reply
        self.reply_delay = reply_delay
        self.reply_author_id = reply_author_id
        self.reply_author_name = reply_author_name
        self._clock = clock
        self._messages: Dict[str, List[Message]] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._failure: Optional[TransportError] = None
        self._reply_keys = itertools.count(1)
        self._replies: Dict[int, asyncio.TimerHandle] = {}
        self.fetch_calls = 0
        self.send_calls = 0

    @classmethod
    def demo(
        cls,
        conversation_id: str,
        author_id: str = "patient",
        notifications: Optional[NotificationBridge] = None,
        **kwargs,
    ) -> "InMemoryTransport":
        """Backend preloaded with demo messages that answers every send."""
        kwargs.setdefault("auto_reply", DEMO_AUTO_REPLY)
        transport = cls(author_id=author_id, **kwargs)
        transport.seed_demo(conversation_id, notifications=notifications)
        return transport

    @property
    def pending_replies(self) -> int:
        """Automatic replies scheduled but not yet delivered."""
        return len(self._replies)

    def fail_with(self, error: Optional[TransportError]) -> None:
        """Make every following call raise ``error`` (None to recover)."""
        self._failure = error

    def add_remote_message(
        self,
        conversation_id: str,
        content: str,
        author_id: str,
        author_role: AuthorRole = AuthorRole.MEDECIN,
        author_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Message:
        """Store a message written by someone else."""
        message = Message(
            id=str(next(self._ids)),
            conversation_id=conversation_id,
            content=content,
            author_id=author_id,
            author_role=author_role,
            author_name=author_name,
            created_at=created_at or self._clock(),
        )
        self._messages.setdefault(conversation_id, []).append(message)
        logger.debug("remote_message_added", conversation_id=conversation_id, message_id=message.id)
        return message

    def seed_demo(
        self,
        conversation_id: str,
        peer_id: str = "doctor",
        peer_name: Optional[str] = DEMO_PEER_NAME,
        notifications: Optional[NotificationBridge] = None,
    ) -> List[Message]:
        """Add a short doctor/patient exchange dated within the last hour.

        When ``notifications`` is given, the user is told that test messages
        are shown.
        """
        now = self._clock()
        seeded = [
            self.add_remote_message(
                conversation_id,
                "Hello, I have received your consultation form. "
                "I will review it as soon as possible.",
                peer_id,
                author_name=peer_name,
                created_at=now - timedelta(hours=1),
            ),
            self.add_remote_message(
                conversation_id,
                "Thank you doctor. I look forward to your answer.",
                self.author_id,
                author_role=self.author_role,
                created_at=now - timedelta(minutes=30),
            ),
        ]
        logger.info("demo_messages_seeded", conversation_id=conversation_id, count=len(seeded))
        if notifications is not None:
            notifications.on_info(*DEMO_TOAST)
        return seeded

    def messages(self, conversation_id: str) -> List[Message]:
        """Everything stored for a conversation, in insertion order."""
        return list(self._messages.get(conversation_id, []))

    async def _delay(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        if self._failure is not None:
            raise self._failure

    async def fetch_messages(self, conversation_id: str) -> List[Message]:
        self.fetch_calls += 1
        await self._delay()
        async with self._lock:
            return sorted(self._messages.get(conversation_id, []), key=lambda m: m.created_at)

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> Message:
        self.send_calls += 1
        await self._delay()
        async with self._lock:
            message = Message(
                id=str(next(self._ids)),
                conversation_id=conversation_id,
                content=content,
                author_id=self.author_id,
                author_role=self.author_role,
                created_at=self._clock(),
                status=MessageStatus.CONFIRMED,
                correlation_id=correlation_id,
            )
            self._messages.setdefault(conversation_id, []).append(message)
            logger.info(
                "message_stored",
                conversation_id=conversation_id,
                message_id=message.id,
            )
        if self.auto_reply:
            self._schedule_reply(conversation_id)
        return message

    def _schedule_reply(self, conversation_id: str) -> None:
        key = next(self._reply_keys)
        loop = asyncio.get_running_loop()
        self._replies[key] = loop.call_later(self.reply_delay, self._reply, key, conversation_id)

    def _reply(self, key: int, conversation_id: str) -> None:
        self._replies.pop(key, None)
        self.add_remote_message(
            conversation_id,
            self.auto_reply,
            self.reply_author_id,
            author_name=self.reply_author_name,
        )
        logger.info("auto_reply_delivered", conversation_id=conversation_id)

    async def aclose(self) -> None:
        """Drop automatic replies that have not been delivered yet."""
        for handle in self._replies.values():
            handle.cancel()
        self._replies.clear()
