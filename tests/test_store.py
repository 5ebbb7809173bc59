"""Test suite for the optimistic message store."""

import re

import pytest

from consult_sync.domain.errors import ValidationError
from consult_sync.domain.models import MessageStatus
from consult_sync.engine.store import OptimisticMessageStore

from conftest import CONVERSATION_ID, DOCTOR_ID, SELF_ID, T0, is_ordered, make_message


@pytest.fixture
def store(clock):
    return OptimisticMessageStore(CONVERSATION_ID, SELF_ID, clock=clock)


def test_append_pending_is_visible_immediately(store):
    """A pending message is in the snapshot before any network round trip."""
    message = store.append_pending("  hello  ", SELF_ID)

    snapshot = store.snapshot()
    assert len(snapshot) == 1
    assert snapshot[0].id == message.id
    assert snapshot[0].content == "hello"
    assert snapshot[0].status is MessageStatus.PENDING
    assert snapshot[0].correlation_id == message.id
    assert re.fullmatch(r"local-\d+-[0-9a-f]{8}", message.id)


def test_append_pending_validation(store):
    """Empty, whitespace-only and oversized content is rejected."""
    with pytest.raises(ValidationError):
        store.append_pending("", SELF_ID)
    with pytest.raises(ValidationError):
        store.append_pending("   \n ", SELF_ID)
    with pytest.raises(ValidationError):
        store.append_pending("x" * 2001, SELF_ID)

    # Surrounding whitespace does not count towards the limit
    store.append_pending(" " + "x" * 2000 + " ", SELF_ID)
    assert len(store) == 1


def test_temp_ids_are_unique(store):
    first = store.append_pending("one", SELF_ID)
    second = store.append_pending("two", SELF_ID)
    assert first.id != second.id
    assert len(store.pending()) == 2


def test_confirm_send_adopts_server_identity(store, clock):
    pending = store.append_pending("Bonjour", SELF_ID)
    server = make_message("42", author_id=SELF_ID, at=clock.advance(3), content="Bonjour")

    confirmed = store.confirm_send(pending.id, server)

    snapshot = store.snapshot()
    assert [m.id for m in snapshot] == ["42"]
    assert snapshot[0].status is MessageStatus.CONFIRMED
    assert snapshot[0].created_at == server.created_at
    assert confirmed.correlation_id == pending.id


def test_confirm_send_without_pending_appends(store):
    """If the pending entry vanished meanwhile the server message is kept."""
    store.append_pending("draft", SELF_ID)
    store.reset()

    store.confirm_send("local-1-deadbeef", make_message("7", author_id=SELF_ID))

    assert [m.id for m in store.snapshot()] == ["7"]


def test_confirm_send_merges_with_polled_copy(store):
    pending = store.append_pending("hi", SELF_ID)
    server = make_message("9", author_id=SELF_ID, at=T0)
    store.reconcile([server])  # no correlation echoed by this server
    assert len(store) == 2

    store.confirm_send(pending.id, server)

    assert [m.id for m in store.snapshot()] == ["9"]


def test_fail_send_restores_text(store):
    store.reconcile([make_message("1")])
    before = len(store)
    pending = store.append_pending("  please call me  ", SELF_ID)

    restored = store.fail_send(pending.id, reason="network down")

    assert restored == "please call me"
    assert len(store) == before
    assert store.get(pending.id) is None


def test_fail_send_unknown_id(store):
    assert store.fail_send("local-0-00000000") is None


def test_reconcile_is_idempotent(store, clock):
    store.append_pending("pending one", SELF_ID)
    remote = [make_message("1", at=T0), make_message("2", at=T0), make_message("3", author_id=SELF_ID)]

    store.reconcile(remote)
    first = store.snapshot()
    result = store.reconcile(remote)

    assert store.snapshot() == first
    assert not result.changed
    assert result.added == ()


def test_reconcile_keeps_pending_and_order(store, clock):
    """Pending entries survive polls and the list stays time ordered."""
    pending = store.append_pending("from me", SELF_ID)  # at T0
    remote = [
        make_message("1", at=clock.advance(-60)),
        make_message("2", at=clock.advance(120)),
    ]

    store.reconcile(remote)
    snapshot = store.snapshot()
    assert [m.id for m in snapshot] == ["1", pending.id, "2"]
    assert is_ordered(snapshot)

    store.reconcile([])
    assert [m.id for m in store.snapshot()] == [pending.id]


def test_equal_timestamps_keep_insertion_order(store):
    remote = [make_message(str(i), at=T0) for i in (5, 3, 9)]
    store.reconcile(remote)
    store.reconcile(list(reversed(remote)))
    assert [m.id for m in store.snapshot()] == ["5", "3", "9"]


def test_reconcile_holds_back_correlated_remote(store):
    """The server copy of an in-flight send is not shown twice."""
    pending = store.append_pending("hello doctor", SELF_ID)
    echoed = make_message("50", author_id=SELF_ID, content="hello doctor", correlation_id=pending.id)

    store.reconcile([echoed])
    assert [m.id for m in store.snapshot()] == [pending.id]

    store.confirm_send(pending.id, echoed)
    store.reconcile([echoed])
    assert [m.id for m in store.snapshot()] == ["50"]


def test_reconcile_does_not_match_on_content(store):
    pending = store.append_pending("ok", SELF_ID)
    lookalike = make_message("60", author_id=SELF_ID, content="ok")

    store.reconcile([lookalike])

    assert {m.id for m in store.snapshot()} == {pending.id, "60"}


def test_reconcile_new_messages_by_id(store):
    """Delete-and-add in one interval still reports the new message."""
    store.reconcile([make_message("1"), make_message("2")])

    result = store.reconcile([make_message("1"), make_message("3")])

    assert [m.id for m in result.added] == ["3"]
    assert [m.id for m in result.removed] == ["2"]
    assert [m.id for m in result.incoming] == ["3"]


def test_reconcile_incoming_excludes_own_messages(store):
    result = store.reconcile([make_message("1", author_id=SELF_ID), make_message("2", author_id=DOCTOR_ID)])
    assert [m.id for m in result.incoming] == ["2"]


def test_reconcile_drops_duplicates_and_temp_ids(store):
    remote = [make_message("1"), make_message("1"), make_message("local-5-abcdef01")]
    store.reconcile(remote)
    assert [m.id for m in store.snapshot()] == ["1"]


def test_reconcile_marks_remote_confirmed(store):
    remote = make_message("1").model_copy(update={"status": MessageStatus.PENDING})
    store.reconcile([remote])
    assert store.get("1").status is MessageStatus.CONFIRMED


def test_fetch_issued_before_confirm_keeps_confirmed_message(store):
    """A response that predates a local confirmation does not erase it."""
    store.reconcile([make_message("1", at=T0)])
    pending = store.append_pending("Bonjour", SELF_ID)
    issued_at = store.version

    store.confirm_send(pending.id, make_message("101", author_id=SELF_ID, at=T0))
    result = store.reconcile([make_message("1", at=T0)], issued_at=issued_at)

    assert [m.id for m in store.snapshot()] == ["1", "101"]
    assert result.removed == ()
    assert not result.changed


def test_fetch_issued_after_confirm_is_authoritative(store):
    pending = store.append_pending("Bonjour", SELF_ID)
    store.confirm_send(pending.id, make_message("101", author_id=SELF_ID, at=T0))
    stale = store.version - 1

    store.reconcile([], issued_at=stale)
    assert [m.id for m in store.snapshot()] == ["101"]

    # The server has seen the confirmation by now, so its answer wins
    result = store.reconcile([], issued_at=store.version)
    assert len(store) == 0
    assert [m.id for m in result.removed] == ["101"]


def test_version_counts_confirmations(store):
    assert store.version == 0
    first = store.append_pending("one", SELF_ID)
    second = store.append_pending("two", SELF_ID)
    store.fail_send(first.id)
    assert store.version == 0

    store.confirm_send(second.id, make_message("5", author_id=SELF_ID))

    assert store.version == 1
