"""Tests for the append-only ledger store."""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from governance_api.errors import ChainForkConflict, InvalidEventMetadata, LedgerUnavailable, UnknownEventType
from governance_api.ledger.hashing import GENESIS_HASH
from governance_api.ledger.store import EMPTY_HEAD, ChainHead, EventDraft, LedgerStore, compute_event_hash
from governance_api.models import LedgerChainHead, LedgerEvent

ORG = "org-ledger"


def _draft(note: str = "n", **kwargs) -> EventDraft:
    return EventDraft(
        event_type="job.flagged_for_review",
        actor_id="user-1",
        target_type="job",
        target_id="job-1",
        metadata={"note": note},
        **kwargs,
    )


def _snapshot(event: LedgerEvent) -> ChainHead:
    return ChainHead(sequence=event.sequence, hash=event.hash, event_id=event.id, created_at=event.created_at)


@pytest.fixture
def store(db: Session) -> LedgerStore:
    return LedgerStore(db, sleep=lambda seconds: None)


def test_first_event_links_to_genesis(store: LedgerStore):
    event = store.append(ORG, _draft())

    assert event.sequence == 1
    assert event.previous_hash == GENESIS_HASH
    assert event.hash == compute_event_hash(event, GENESIS_HASH)
    assert (event.category, event.severity, event.outcome) == ("governance", "material", "allowed")


def test_events_chain_in_sequence(store: LedgerStore, db: Session):
    events = [store.append(ORG, _draft(str(i))) for i in range(3)]

    assert [e.sequence for e in events] == [1, 2, 3]
    assert events[1].previous_hash == events[0].hash
    assert events[2].previous_hash == events[1].hash

    head = db.query(LedgerChainHead).filter(LedgerChainHead.organization_id == ORG).one()
    assert head.last_sequence == 3
    assert head.last_hash == events[2].hash
    assert store.tail(ORG).event_id == events[2].id


def test_organizations_have_independent_chains(store: LedgerStore):
    a1 = store.append(ORG, _draft())
    b1 = store.append("org-b", _draft())
    a2 = store.append(ORG, _draft())

    assert a1.sequence == b1.sequence == 1
    assert b1.previous_hash == GENESIS_HASH
    assert a2.previous_hash == a1.hash


def test_unknown_event_type_is_rejected(store: LedgerStore, db: Session):
    with pytest.raises(UnknownEventType):
        store.append(ORG, EventDraft(event_type="job.teleported"))
    assert db.query(LedgerEvent).count() == 0


def test_metadata_is_validated_against_event_shape(store: LedgerStore, db: Session):
    with pytest.raises(InvalidEventMetadata) as exc_info:
        store.append(ORG, EventDraft(event_type="assignment.created", metadata={"role": "lead"}))
    assert exc_info.value.context["event_type"] == "assignment.created"
    assert db.query(LedgerEvent).count() == 0

    event = store.append(ORG, EventDraft(event_type="assignment.created", metadata={"assignee_id": "u-7"}))
    assert event.event_metadata == {"assignee_id": "u-7"}


def test_idempotency_key_replays_existing_event(store: LedgerStore, db: Session):
    first = store.append(ORG, _draft(idempotency_key="retry-1"))
    second = store.append(ORG, _draft(idempotency_key="retry-1"))

    assert second.id == first.id
    assert db.query(LedgerEvent).filter(LedgerEvent.organization_id == ORG).count() == 1


def test_created_at_never_goes_backwards(db: Session):
    times = iter([datetime(2026, 1, 2, 12, 0, 0, 500), datetime(2026, 1, 1, 9, 0, 0)])
    store = LedgerStore(db, clock=lambda: next(times), sleep=lambda s: None)

    first = store.append(ORG, _draft())
    second = store.append(ORG, _draft())

    assert second.created_at == first.created_at


def test_list_since_pages_in_chain_order(store: LedgerStore):
    events = [store.append(ORG, _draft(str(i))) for i in range(5)]

    walked = list(store.list_since(ORG, batch_size=2))
    assert [e.id for e in walked] == [e.id for e in events]
    assert [e.sequence for e in store.list_since(ORG, cursor=3)] == [4, 5]
    assert [e.sequence for e in store.list_since(ORG, upto=2)] == [1, 2]


def test_stale_tail_is_retried_against_fresh_tail(store: LedgerStore):
    e1 = store.append(ORG, _draft("1"))
    e2 = store.append(ORG, _draft("2"))
    stale = _snapshot(e1)
    e2_hash = e2.hash

    real_read_head = LedgerStore._read_head
    calls = []

    def racing_read_head(self, organization_id):
        calls.append(organization_id)
        if len(calls) == 1:
            return stale
        return real_read_head(self, organization_id)

    with patch.object(LedgerStore, "_read_head", racing_read_head):
        e3 = store.append(ORG, _draft("3"))

    assert len(calls) == 2
    assert e3.sequence == 3
    assert e3.previous_hash == e2_hash


def test_stale_empty_tail_hits_head_constraint_and_retries(store: LedgerStore, db: Session):
    e1 = store.append(ORG, _draft("1"))
    e1_hash = e1.hash

    real_read_head = LedgerStore._read_head
    calls = []

    def racing_read_head(self, organization_id):
        calls.append(organization_id)
        if len(calls) == 1:
            return EMPTY_HEAD
        return real_read_head(self, organization_id)

    with patch.object(LedgerStore, "_read_head", racing_read_head):
        e2 = store.append(ORG, _draft("2"))

    assert e2.sequence == 2
    assert e2.previous_hash == e1_hash
    # No second genesis event was written.
    assert db.query(LedgerEvent).filter(LedgerEvent.previous_hash == GENESIS_HASH).count() == 1


def test_exhausted_retries_raise_chain_fork_conflict(db: Session):
    sleeps = []
    store = LedgerStore(db, max_attempts=3, backoff_seconds=0.01, sleep=sleeps.append)
    e1 = store.append(ORG, _draft("1"))
    store.append(ORG, _draft("2"))
    stale = _snapshot(e1)

    with patch.object(LedgerStore, "_read_head", lambda self, organization_id: stale):
        with pytest.raises(ChainForkConflict) as exc_info:
            store.append(ORG, _draft("3"))

    assert exc_info.value.context["attempts"] == 3
    assert sleeps == [0.01, 0.02]
    assert db.query(LedgerEvent).filter(LedgerEvent.organization_id == ORG).count() == 2


def _connection_dropped() -> OperationalError:
    return OperationalError("COMMIT", {}, Exception("server closed the connection unexpectedly"))


def test_transient_store_error_is_rolled_back_and_retried(db: Session):
    sleeps = []
    store = LedgerStore(db, max_attempts=3, backoff_seconds=0.01, sleep=sleeps.append)
    first_hash = store.append(ORG, _draft("1")).hash

    real_commit = db.commit
    calls = []

    def flaky_commit():
        calls.append(1)
        if len(calls) == 1:
            raise _connection_dropped()
        real_commit()

    with patch.object(db, "commit", side_effect=flaky_commit):
        second = store.append(ORG, _draft("2"))

    assert len(calls) == 2
    assert sleeps == [0.01]
    assert second.sequence == 2
    assert second.previous_hash == first_hash
    assert db.query(LedgerEvent).filter(LedgerEvent.organization_id == ORG).count() == 2


def test_persistent_store_errors_raise_ledger_unavailable(db: Session):
    sleeps = []
    store = LedgerStore(db, max_attempts=3, backoff_seconds=0.01, sleep=sleeps.append)
    store.append(ORG, _draft("1"))

    with patch.object(db, "commit", side_effect=_connection_dropped()):
        with pytest.raises(LedgerUnavailable) as exc_info:
            store.append(ORG, _draft("2"))

    assert exc_info.value.status_code == 503
    assert exc_info.value.context == {"organization_id": ORG, "attempts": 3}
    assert sleeps == [0.01, 0.02]
    assert db.query(LedgerEvent).filter(LedgerEvent.organization_id == ORG).count() == 1


def test_events_cannot_be_updated_through_the_orm(store: LedgerStore, db: Session):
    event = store.append(ORG, _draft())
    event.event_type = "incident.closed"

    with pytest.raises(ValueError):
        db.commit()
    db.rollback()
