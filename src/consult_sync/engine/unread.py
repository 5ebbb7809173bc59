"""Unread counting against a last-seen watermark."""

from datetime import datetime
from typing import Callable, Iterable, Optional

from ..domain.models import Message, utcnow


def count_unread(
    messages: Iterable[Message], last_seen_at: Optional[datetime], self_id: str
) -> int:
    """Count messages from other authors newer than the watermark."""
    return sum(
        1
        for m in messages
        if m.author_id != self_id and (last_seen_at is None or m.created_at > last_seen_at)
    )


class UnreadTracker:
    """Derives the unread count; it is never stored independently."""

    def __init__(
        self,
        self_id: str,
        last_seen_at: Optional[datetime] = None,
        clock: Callable = utcnow,
    ) -> None:
        self.self_id = self_id
        self.last_seen_at = last_seen_at
        self.unread_count = 0
        self._clock = clock

    def recompute(self, messages: Iterable[Message]) -> int:
        """Recount unread messages from the current list."""
        self.unread_count = count_unread(messages, self.last_seen_at, self.self_id)
        return self.unread_count

    def mark_read(self, messages: Iterable[Message]) -> int:
        """Advance the watermark to now and recompute (always 0 afterwards)."""
        messages = list(messages)
        watermark = self._clock()
        # Server clocks may run ahead of ours
        newest = max((m.created_at for m in messages), default=None)
        if newest is not None and newest > watermark:
            watermark = newest
        self.last_seen_at = watermark
        return self.recompute(messages)
