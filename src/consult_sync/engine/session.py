"""
Conversation Session Module

The UI-facing handle for one open consultation conversation. It wires the
optimistic store, the polling scheduler, unread tracking, the typing signal
and connectivity together, and turns engine outcomes into notification
events.

A session is created by ``open_conversation`` and must be closed with
``close()`` (or used as an async context manager) so that no timer or
fetch task outlives the view that opened it.
"""

import asyncio
from typing import Callable, Optional

import structlog

from ..config import SyncSettings
from ..domain.errors import OfflineError, SessionClosedError, TransportError, ValidationError
from ..domain.models import AuthorRole, ConversationSnapshot, Message, ReconcileResult, utcnow
from ..metrics import SEND_FAILURES, SENDS
from ..transport.base import TransportPort
from .connectivity import ConnectivityMonitor
from .notifications import LoggingNotificationBridge, NotificationBridge
from .scheduler import SyncScheduler
from .store import OptimisticMessageStore, validate_content
from .typing_signal import TypingSignal
from .unread import UnreadTracker

logger = structlog.get_logger()

GENERIC_SEND_ERROR = "Unable to send the message. Please try again."
GENERIC_LOAD_ERROR = "Unable to load messages."


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class ConversationSession:
    """Handle returned to the UI for one open conversation."""

    def __init__(
        self,
        conversation_id: str,
        transport: TransportPort,
        self_id: str,
        self_role: AuthorRole = AuthorRole.OTHER,
        self_name: Optional[str] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        notifications: Optional[NotificationBridge] = None,
        settings: Optional[SyncSettings] = None,
        clock: Callable = utcnow,
    ) -> None:
        if not conversation_id or not str(conversation_id).strip():
            raise ValidationError("A conversation id is required to open messaging")
        self.conversation_id = str(conversation_id)
        self.settings = settings or SyncSettings()
        self.transport = transport
        self.self_id = self_id
        self.self_role = self_role
        self.self_name = self_name
        self.connectivity = connectivity or ConnectivityMonitor()
        self.notifications = notifications or LoggingNotificationBridge()

        self.store = OptimisticMessageStore(
            self.conversation_id,
            self_id,
            max_length=self.settings.max_message_length,
            clock=clock,
        )
        self.unread = UnreadTracker(self_id, clock=clock)
        self.typing = TypingSignal(self.settings.typing_timeout_ms, clock=clock)
        self.scheduler = SyncScheduler(
            transport,
            self.store,
            self.connectivity,
            poll_interval_ms=self.settings.poll_interval_ms,
            request_timeout=self.settings.request_timeout,
            auto_refresh=self.settings.auto_refresh,
        )

        self.draft = ""
        self._send_lock = asyncio.Lock()
        self._sends_outstanding = 0
        self._loaded = False
        self._closed = False

    async def __aenter__(self) -> "ConversationSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Start polling and run the initial load."""
        self.scheduler.start(self.conversation_id, self._on_tick)
        logger.info("conversation_opened", conversation_id=self.conversation_id)
        try:
            await self.scheduler.refresh(manual=True)
        except TransportError as e:
            # The view stays open with whatever we have; polling will retry
            self.notifications.on_error("Error", e.detail or GENERIC_LOAD_ERROR)
        except BaseException:
            # No handle reaches the caller, so nothing else could stop polling
            await self.close()
            raise
        self.mark_read()

    def get_snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            conversation_id=self.conversation_id,
            messages=self.store.snapshot(),
            unread_count=self.unread.unread_count,
            last_seen_at=self.unread.last_seen_at,
            typing=self.typing.state,
            connectivity=self.connectivity.snapshot(),
            poll_interval_ms=self.scheduler.poll_interval_ms,
            draft=self.draft,
            sending=self._sends_outstanding > 0,
            closed=self._closed,
        )

    def mark_read(self) -> None:
        self.unread.mark_read(self.store.snapshot())

    def on_input_change(self, text: str) -> None:
        self.draft = text
        if not self._closed:
            self.typing.on_input(text)

    async def send(self, text: str) -> Optional[Message]:
        """Send optimistically; returns the confirmed message or None on failure."""
        self._ensure_open()
        validate_content(text, self.settings.max_message_length)
        if not self.connectivity.is_online():
            error = OfflineError()
            self.notifications.on_error("Offline", error.message)
            logger.info("send_rejected_offline", conversation_id=self.conversation_id)
            raise error

        pending = self.store.append_pending(
            text, self.self_id, author_role=self.self_role, author_name=self.self_name
        )
        self.draft = ""
        self.unread.recompute(self.store.snapshot())
        self._sends_outstanding += 1
        try:
            # Sends go out one at a time, in call order
            async with self._send_lock:
                return await self._transmit(pending)
        except asyncio.CancelledError:
            self._abandon(pending, "cancelled")
            raise
        except Exception as e:
            logger.error(
                "message_send_crashed", conversation_id=self.conversation_id, error=str(e)
            )
            if self._abandon(pending, type(e).__name__):
                self.notifications.on_error("Send error", GENERIC_SEND_ERROR)
            raise
        finally:
            self._sends_outstanding -= 1

    async def _transmit(self, pending: Message) -> Optional[Message]:
        SENDS.inc()
        try:
            server_message = await asyncio.wait_for(
                self.transport.send_message(
                    self.conversation_id,
                    pending.content,
                    correlation_id=pending.correlation_id,
                ),
                timeout=self.settings.request_timeout,
            )
        except (TransportError, ValidationError, asyncio.TimeoutError) as e:
            return self._rollback(pending, e)

        if self._closed:
            logger.info("send_confirmed_after_close", conversation_id=self.conversation_id)
            return server_message

        confirmed = self.store.confirm_send(pending.id, server_message)
        self.typing.cancel()
        self.unread.recompute(self.store.snapshot())
        self.notifications.on_success("Message sent", "Your message was sent successfully")
        logger.info(
            "message_sent",
            conversation_id=self.conversation_id,
            message_id=confirmed.id,
            content_length=len(confirmed.content),
        )
        return confirmed

    def _rollback(self, pending: Message, error: Exception) -> None:
        SEND_FAILURES.inc()
        if isinstance(error, TransportError):
            detail = error.detail
        elif isinstance(error, ValidationError):
            detail = str(error) or None
        else:
            detail = "The server took too long to respond"
        logger.warning(
            "message_send_failed",
            conversation_id=self.conversation_id,
            temp_id=pending.id,
            error=str(error),
        )
        if self._closed:
            return None
        restored = self.store.fail_send(pending.id, reason=detail)
        self.draft = restored if restored is not None else pending.content
        self.unread.recompute(self.store.snapshot())
        self.notifications.on_error("Send error", detail or GENERIC_SEND_ERROR)
        return None

    def _abandon(self, pending: Message, reason: str) -> bool:
        """Drop a send that ended without an outcome; True if it was still pending."""
        current = self.store.get(pending.id)
        if current is None or not current.is_pending:
            return False
        SEND_FAILURES.inc()
        logger.warning(
            "message_send_abandoned",
            conversation_id=self.conversation_id,
            temp_id=pending.id,
            reason=reason,
        )
        self.store.fail_send(pending.id, reason=reason)
        self.draft = pending.content
        self.unread.recompute(self.store.snapshot())
        return True

    async def refresh(self) -> Optional[ReconcileResult]:
        """Manual refresh; failures are surfaced as error notifications."""
        self._ensure_open()
        try:
            return await self.scheduler.refresh(manual=True)
        except TransportError as e:
            self.notifications.on_error("Refresh failed", e.detail or GENERIC_LOAD_ERROR)
            return None

    async def close(self) -> None:
        """Cancel every timer and task owned by this session."""
        if self._closed:
            return
        self._closed = True
        await self.scheduler.stop()
        self.typing.cancel()
        logger.info("conversation_closed", conversation_id=self.conversation_id)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Conversation {self.conversation_id} is closed")

    def _on_tick(self, result: ReconcileResult, manual: bool) -> None:
        self.unread.recompute(self.store.snapshot())
        if self._loaded and result.incoming:
            self.notifications.on_info("New messages", _plural(len(result.incoming), "new message"))
        self._loaded = True


async def open_conversation(
    conversation_id: str,
    *,
    transport: TransportPort,
    self_id: str,
    self_role: AuthorRole = AuthorRole.OTHER,
    self_name: Optional[str] = None,
    connectivity: Optional[ConnectivityMonitor] = None,
    notifications: Optional[NotificationBridge] = None,
    settings: Optional[SyncSettings] = None,
    clock: Callable = utcnow,
) -> ConversationSession:
    """Open a conversation view: initial load, mark read, start polling."""
    session = ConversationSession(
        conversation_id,
        transport,
        self_id,
        self_role=self_role,
        self_name=self_name,
        connectivity=connectivity,
        notifications=notifications,
        settings=settings,
        clock=clock,
    )
    await session.open()
    return session
