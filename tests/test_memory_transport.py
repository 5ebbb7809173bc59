"""Test suite for the in-memory backend and its demo mode."""

import asyncio
from datetime import timedelta

import pytest

from consult_sync.config import SyncSettings
from consult_sync.domain.errors import TransportError
from consult_sync.domain.models import AuthorRole, MessageStatus
from consult_sync.engine.notifications import NotificationCenter, NotificationKind
from consult_sync.engine.session import open_conversation
from consult_sync.transport.memory import DEMO_AUTO_REPLY, InMemoryTransport

from conftest import CONVERSATION_ID, SELF_ID, T0


@pytest.mark.asyncio
async def test_send_and_fetch(clock):
    backend = InMemoryTransport(author_id=SELF_ID, clock=clock)

    sent = await backend.send_message(CONVERSATION_ID, "Bonjour", correlation_id="local-1-abcdef01")
    clock.advance(10)
    reply = backend.add_remote_message(CONVERSATION_ID, "Bonjour !", "doctor-9")
    fetched = await backend.fetch_messages(CONVERSATION_ID)

    assert sent.status is MessageStatus.CONFIRMED
    assert sent.correlation_id == "local-1-abcdef01"
    assert [m.id for m in fetched] == [sent.id, reply.id]
    assert await backend.fetch_messages("other") == []
    assert backend.send_calls == 1
    assert backend.fetch_calls == 2


@pytest.mark.asyncio
async def test_fail_with_until_recovered(clock):
    backend = InMemoryTransport(clock=clock)
    backend.fail_with(TransportError("Network error"))

    with pytest.raises(TransportError):
        await backend.fetch_messages(CONVERSATION_ID)
    with pytest.raises(TransportError):
        await backend.send_message(CONVERSATION_ID, "hello")

    backend.fail_with(None)
    await backend.send_message(CONVERSATION_ID, "hello")
    assert len(backend.messages(CONVERSATION_ID)) == 1


@pytest.mark.asyncio
async def test_seed_demo_adds_dated_exchange(clock):
    backend = InMemoryTransport(author_id=SELF_ID, clock=clock)
    center = NotificationCenter()

    seeded = backend.seed_demo(CONVERSATION_ID, notifications=center)
    fetched = await backend.fetch_messages(CONVERSATION_ID)

    assert fetched == seeded
    assert [m.author_id for m in fetched] == ["doctor", SELF_ID]
    assert [m.created_at for m in fetched] == [T0 - timedelta(hours=1), T0 - timedelta(minutes=30)]
    assert fetched[0].author_role is AuthorRole.MEDECIN
    assert fetched[1].author_role is AuthorRole.PATIENT
    infos = center.of_kind(NotificationKind.INFO)
    assert [n.title for n in infos] == ["Demo mode"]


@pytest.mark.asyncio
async def test_auto_reply_follows_each_send(clock):
    backend = InMemoryTransport(author_id=SELF_ID, clock=clock, auto_reply="Message received", reply_delay=0.01)

    await backend.send_message(CONVERSATION_ID, "Bonjour")
    assert backend.pending_replies == 1
    assert len(backend.messages(CONVERSATION_ID)) == 1

    await asyncio.sleep(0.03)

    messages = backend.messages(CONVERSATION_ID)
    assert [m.author_id for m in messages] == [SELF_ID, "doctor_auto"]
    assert messages[1].content == "Message received"
    assert backend.pending_replies == 0


@pytest.mark.asyncio
async def test_aclose_drops_undelivered_replies(clock):
    backend = InMemoryTransport(clock=clock, auto_reply="Message received", reply_delay=0.01)

    await backend.send_message(CONVERSATION_ID, "Bonjour")
    await backend.aclose()
    await asyncio.sleep(0.03)

    assert backend.pending_replies == 0
    assert len(backend.messages(CONVERSATION_ID)) == 1


@pytest.mark.asyncio
async def test_demo_conversation_end_to_end(clock):
    """A demo backend shows the seeded history and answers through polling."""
    center = NotificationCenter()
    backend = InMemoryTransport.demo(
        CONVERSATION_ID, author_id=SELF_ID, notifications=center, clock=clock, reply_delay=0.01
    )
    session = await open_conversation(
        CONVERSATION_ID,
        transport=backend,
        self_id=SELF_ID,
        self_role=AuthorRole.PATIENT,
        notifications=center,
        settings=SyncSettings(poll_interval_ms=10),
        clock=clock,
    )
    assert len(session.get_snapshot().messages) == 2

    clock.advance(5)
    await session.send("Bonjour docteur")
    await asyncio.sleep(0.06)
    snapshot = session.get_snapshot()
    await session.close()
    await backend.aclose()

    assert [m.author_id for m in snapshot.messages] == ["doctor", SELF_ID, SELF_ID, "doctor_auto"]
    assert snapshot.messages[-1].content == DEMO_AUTO_REPLY
    assert snapshot.unread_count == 1
    assert [n.title for n in center.of_kind(NotificationKind.INFO)] == ["Demo mode", "New messages"]
