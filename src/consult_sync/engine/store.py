"""Optimistic in-memory message store with server reconciliation."""

import itertools
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from ..domain.errors import ValidationError
from ..domain.models import (
    AuthorRole,
    Message,
    MessageStatus,
    ReconcileResult,
    is_temp_id,
    make_temp_id,
    utcnow,
)

logger = structlog.get_logger()

DEFAULT_MAX_LENGTH = 2000


def validate_content(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Return the trimmed text, or raise ValidationError if it cannot be sent."""
    if not isinstance(text, str):
        raise ValidationError("Message content must be text")
    content = text.strip()
    if not content:
        raise ValidationError("Message content cannot be empty")
    if len(content) > max_length:
        raise ValidationError(f"Message cannot exceed {max_length} characters")
    return content


class OptimisticMessageStore:
    """Owns the ordered message list of one conversation.

    Messages are kept sorted by ``(created_at, insertion sequence)``. Pending
    entries are only ever retired through ``confirm_send`` or ``fail_send``;
    ``reconcile`` carries them over untouched. Every mutation builds a new
    list and swaps it in at once, so readers see either the old or the new
    state.
    """

    def __init__(
        self,
        conversation_id: str,
        self_id: str,
        max_length: int = DEFAULT_MAX_LENGTH,
        clock: Callable = utcnow,
    ) -> None:
        self.conversation_id = conversation_id
        self.self_id = self_id
        self.max_length = max_length
        self._clock = clock
        self._messages: List[Message] = []
        self._insertion: Dict[str, int] = {}
        self._counter = itertools.count()
        self._version = 0
        self._local_confirms: Dict[str, int] = {}

    def __len__(self) -> int:
        """Number of messages currently held, pending included."""
        return len(self._messages)

    def _sort_key(self, message: Message) -> Tuple:
        """Order by timestamp, then by first insertion."""
        return (message.created_at, self._insertion[message.id])

    def _track(self, message: Message, seq: Optional[int] = None) -> None:
        """Assign an insertion sequence to a message seen for the first time."""
        if message.id not in self._insertion:
            self._insertion[message.id] = next(self._counter) if seq is None else seq

    def _commit(self, messages: List[Message]) -> None:
        """Sort and swap in a new list in one step."""
        for message in messages:
            self._track(message)
        messages.sort(key=self._sort_key)
        live = {m.id for m in messages}
        for stale_id in [i for i in self._insertion if i not in live]:
            del self._insertion[stale_id]
        self._messages = messages

    @property
    def version(self) -> int:
        """Counter bumped by every local send confirmation."""
        return self._version

    def snapshot(self) -> Tuple[Message, ...]:
        """Immutable copy of the ordered list."""
        return tuple(self._messages)

    def get(self, message_id: str) -> Optional[Message]:
        """Look up a message by id."""
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def pending(self) -> Tuple[Message, ...]:
        """Messages still awaiting a send acknowledgement."""
        return tuple(m for m in self._messages if m.is_pending)

    def reset(self) -> None:
        """Forget every message, e.g. when the conversation is reloaded."""
        self._messages = []
        self._insertion.clear()
        self._local_confirms.clear()
        logger.info("store_reset", conversation_id=self.conversation_id)

    def append_pending(
        self,
        text: str,
        author_id: str,
        author_role: AuthorRole = AuthorRole.OTHER,
        author_name: Optional[str] = None,
    ) -> Message:
        """Insert a pending message and return it before any network call."""
        content = validate_content(text, self.max_length)
        now = self._clock()
        temp_id = make_temp_id(now)
        message = Message(
            id=temp_id,
            conversation_id=self.conversation_id,
            content=content,
            author_id=author_id,
            author_role=author_role,
            author_name=author_name,
            created_at=now,
            status=MessageStatus.PENDING,
            correlation_id=temp_id,
        )
        self._commit(self._messages + [message])
        logger.debug("pending_message_added", conversation_id=self.conversation_id, temp_id=temp_id)
        return message

    def confirm_send(self, temp_id: str, server_message: Message) -> Message:
        """Replace a pending entry with the message the server stored."""
        confirmed = server_message.model_copy(
            update={
                "status": MessageStatus.CONFIRMED,
                "correlation_id": server_message.correlation_id or temp_id,
            }
        )
        pending_seq = self._insertion.get(temp_id)
        if pending_seq is None:
            logger.warning(
                "pending_message_missing",
                conversation_id=self.conversation_id,
                temp_id=temp_id,
                message_id=confirmed.id,
            )
        remaining = [m for m in self._messages if m.id not in (temp_id, confirmed.id)]
        # A poll may already have brought the server copy in; keep its slot
        if confirmed.id not in self._insertion and pending_seq is not None:
            self._insertion[confirmed.id] = pending_seq
        self._commit(remaining + [confirmed])
        self._version += 1
        self._local_confirms[confirmed.id] = self._version
        logger.debug(
            "pending_message_confirmed",
            conversation_id=self.conversation_id,
            temp_id=temp_id,
            message_id=confirmed.id,
        )
        return confirmed

    def fail_send(self, temp_id: str, reason: Optional[str] = None) -> Optional[str]:
        """Drop a pending entry and return its text, or None if it is gone."""
        message = self.get(temp_id)
        if message is None or not message.is_pending:
            logger.warning(
                "failed_message_missing",
                conversation_id=self.conversation_id,
                temp_id=temp_id,
                reason=reason,
            )
            return None
        self._commit([m for m in self._messages if m.id != temp_id])
        logger.info(
            "pending_message_rolled_back",
            conversation_id=self.conversation_id,
            temp_id=temp_id,
            reason=reason,
        )
        return message.content

    def reconcile(
        self, remote_messages: Iterable[Message], issued_at: Optional[int] = None
    ) -> ReconcileResult:
        """Merge an authoritative remote list into local state.

        ``issued_at`` is the store ``version`` when the fetch was issued.
        Messages confirmed locally after that point may be missing from the
        remote list and are kept. Omitted, the list is taken as current.
        """
        if issued_at is None:
            issued_at = self._version
        previous = self._messages
        previous_ids = {m.id for m in previous}
        pending = [m for m in previous if m.is_pending]
        awaiting = {m.correlation_id or m.id for m in pending}

        merged: List[Message] = []
        seen = set()
        for remote in remote_messages:
            if is_temp_id(remote.id):
                logger.warning(
                    "remote_message_with_temp_id",
                    conversation_id=self.conversation_id,
                    message_id=remote.id,
                )
                continue
            if remote.id in seen:
                continue
            if remote.correlation_id and remote.correlation_id in awaiting:
                # The send path will retire the pending twin via confirm_send
                continue
            seen.add(remote.id)
            if remote.status is not MessageStatus.CONFIRMED:
                remote = remote.model_copy(update={"status": MessageStatus.CONFIRMED})
            merged.append(remote)
        confirmed_since = [
            m
            for m in previous
            if self._local_confirms.get(m.id, 0) > issued_at and m.id not in seen
        ]
        merged.extend(confirmed_since)
        merged.extend(pending)
        # The server is now known to include everything confirmed up to issued_at
        for message_id in [i for i, v in self._local_confirms.items() if v <= issued_at]:
            del self._local_confirms[message_id]

        self._commit(merged)
        current = self._messages
        current_ids = {m.id for m in current}

        added = tuple(m for m in current if m.id not in previous_ids)
        removed = tuple(m for m in previous if m.id not in current_ids)
        incoming = tuple(m for m in added if m.author_id != self.self_id)
        result = ReconcileResult(
            added=added,
            removed=removed,
            incoming=incoming,
            changed=tuple(current) != tuple(previous),
        )
        if result.changed:
            logger.debug(
                "store_reconciled",
                conversation_id=self.conversation_id,
                added=len(added),
                removed=len(removed),
                incoming=len(incoming),
                pending=len(pending),
            )
        return result
