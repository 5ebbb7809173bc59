"""Shared test helpers."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from consult_sync.domain.models import AuthorRole, Message, MessageStatus
from consult_sync.transport.base import TransportPort

CONVERSATION_ID = "fiche-17"
SELF_ID = "patient-1"
DOCTOR_ID = "doctor-9"
T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def make_message(
    message_id: str,
    author_id: str = DOCTOR_ID,
    at: datetime = T0,
    content: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Message:
    return Message(
        id=message_id,
        conversation_id=CONVERSATION_ID,
        content=content or f"message {message_id}",
        author_id=author_id,
        author_role=AuthorRole.PATIENT if author_id == SELF_ID else AuthorRole.MEDECIN,
        created_at=at,
        status=MessageStatus.CONFIRMED,
        correlation_id=correlation_id,
    )


def is_ordered(messages) -> bool:
    return all(a.created_at <= b.created_at for a, b in zip(messages, messages[1:]))


async def settle(rounds: int = 10) -> None:
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ScriptedTransport(TransportPort):
    """Transport whose answers, failures and timing are set by the test."""

    def __init__(self) -> None:
        self.remote: List[Message] = []
        self.fetch_calls = 0
        self.send_calls = 0
        self.sent: List[tuple] = []
        self.active_fetches = 0
        self.max_active_fetches = 0
        self.active_sends = 0
        self.max_active_sends = 0
        self.fetch_gate: Optional[asyncio.Event] = None
        self.send_gate: Optional[asyncio.Event] = None
        self.fetch_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.send_result: Optional[Message] = None
        self.store_before_ack = False

    async def fetch_messages(self, conversation_id: str) -> List[Message]:
        self.fetch_calls += 1
        self.active_fetches += 1
        self.max_active_fetches = max(self.max_active_fetches, self.active_fetches)
        try:
            if self.fetch_gate is not None:
                await self.fetch_gate.wait()
            if self.fetch_error is not None:
                raise self.fetch_error
            return list(self.remote)
        finally:
            self.active_fetches -= 1

    async def send_message(self, conversation_id, content, *, correlation_id=None) -> Message:
        self.send_calls += 1
        self.sent.append((content, correlation_id))
        self.active_sends += 1
        self.max_active_sends = max(self.max_active_sends, self.active_sends)
        try:
            result = self.send_result or Message(
                id=str(100 + self.send_calls),
                conversation_id=conversation_id,
                content=content,
                author_id=SELF_ID,
                author_role=AuthorRole.PATIENT,
                created_at=T0 + timedelta(minutes=self.send_calls),
                correlation_id=correlation_id,
            )
            if self.store_before_ack:
                # Server committed the message but the ack is still on the wire
                self.remote.append(result)
            if self.send_gate is not None:
                await self.send_gate.wait()
            if self.send_error is not None:
                raise self.send_error
            return result
        finally:
            self.active_sends -= 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return ScriptedTransport()
