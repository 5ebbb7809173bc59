"""Local-only typing indicator."""

import asyncio
from datetime import timedelta
from typing import Callable, Optional

import structlog

from ..domain.models import TypingState, utcnow

logger = structlog.get_logger()


class TypingSignal:
    """Debounced boolean flag driven by input changes.

    Nothing is sent over the network; the flag only reflects the local
    user's own activity.
    """

    def __init__(
        self,
        timeout_ms: int = 2000,
        on_change: Optional[Callable[[bool], None]] = None,
        clock: Callable = utcnow,
    ) -> None:
        self.timeout_ms = timeout_ms
        self._on_change = on_change
        self._clock = clock
        self._state = TypingState()
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_typing(self) -> bool:
        return self._state.is_typing

    @property
    def state(self) -> TypingState:
        return self._state

    def on_input(self, text: str) -> None:
        """Mark the user as typing and restart the inactivity timer."""
        if not text:
            self.cancel()
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout_ms / 1000, self._expire)
        expires_at = self._clock() + timedelta(milliseconds=self.timeout_ms)
        self._set(TypingState(is_typing=True, expires_at=expires_at))

    def cancel(self) -> None:
        self._cancel_timer()
        self._set(TypingState())

    def _expire(self) -> None:
        self._handle = None
        self._set(TypingState())

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _set(self, state: TypingState) -> None:
        was_typing = self._state.is_typing
        self._state = state
        if was_typing != state.is_typing and self._on_change is not None:
            self._on_change(state.is_typing)
