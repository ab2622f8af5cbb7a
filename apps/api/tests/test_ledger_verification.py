"""Tests for ledger chain verification."""

import pytest
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from governance_api.ledger.store import EventDraft, LedgerStore, compute_event_hash
from governance_api.ledger.verifier import (
    ERROR,
    NOT_VERIFIED,
    VERIFIED,
    Checkpoint,
    LedgerIntegrityService,
    LedgerVerifier,
)
from governance_api.models import LedgerCheckpoint, LedgerEvent

ORG = "org-verify"


@pytest.fixture
def store(db: Session) -> LedgerStore:
    return LedgerStore(db, sleep=lambda seconds: None)


def _append(store: LedgerStore, n: int, organization_id: str = ORG) -> list[LedgerEvent]:
    return [
        store.append(
            organization_id,
            EventDraft(
                event_type="control.verified",
                actor_id="user-1",
                target_type="job",
                target_id="job-1",
                metadata={"control_id": f"ctl-{i}"},
            ),
        )
        for i in range(n)
    ]


def _tamper(db: Session, event_id: str, **values):
    # ORM updates are blocked; go around them the way a direct DB edit would.
    db.execute(update(LedgerEvent.__table__).where(LedgerEvent.__table__.c.id == event_id).values(**values))
    db.commit()


def test_empty_chain_is_not_verified(store: LedgerStore):
    result = LedgerVerifier(store).verify(ORG)
    assert result.status == NOT_VERIFIED
    assert result.events_checked == 0
    assert result.checkpoint is None


@pytest.mark.parametrize("n", [1, 2, 7])
def test_untampered_chain_verifies(store: LedgerStore, n: int):
    events = _append(store, n)
    result = LedgerVerifier(store).verify(ORG)

    assert result.status == VERIFIED
    assert result.events_checked == n
    assert result.verified_through_event_id == events[-1].id
    assert result.verified_through_sequence == n
    assert result.error_details is None


def test_tampered_metadata_in_middle_is_reported(store: LedgerStore, db: Session):
    """E1..E5 with E3's metadata edited: the first failure is E3 at index 2."""
    events = _append(store, 5)
    e3_id, e3_hash = events[2].id, events[2].hash
    _tamper(db, e3_id, metadata={"control_id": "ctl-forged"})

    result = LedgerVerifier(store).verify(ORG)

    assert result.status == ERROR
    assert result.error_details["failing_event_id"] == e3_id
    assert result.error_details["event_index"] == 2
    assert result.error_details["reason"] == "hash_mismatch"
    assert result.error_details["got_hash"] == e3_hash
    tampered = db.get(LedgerEvent, e3_id)
    assert result.error_details["expected_hash"] == compute_event_hash(tampered, events[1].hash)
    assert result.verified_through_sequence == 2


@pytest.mark.parametrize(
    "field,value",
    [
        ("actor_id", "user-forged"),
        ("event_type", "evidence.approved"),
        ("severity", "critical"),
        ("target_id", "job-other"),
    ],
)
def test_tampering_any_hashed_field_is_detected(store: LedgerStore, db: Session, field, value):
    events = _append(store, 3)
    _tamper(db, events[1].id, **{field: value})

    result = LedgerVerifier(store).verify(ORG)
    assert result.status == ERROR
    assert result.error_details["failing_event_id"] == events[1].id


def test_broken_linkage_is_reported(store: LedgerStore, db: Session):
    events = _append(store, 3)
    _tamper(db, events[2].id, previous_hash="f" * 64)

    result = LedgerVerifier(store).verify(ORG)
    assert result.status == ERROR
    assert result.error_details["reason"] == "previous_hash_mismatch"
    assert result.error_details["failing_event_id"] == events[2].id
    assert result.error_details["event_index"] == 2


def test_truncated_tail_is_reported(store: LedgerStore, db: Session):
    events = _append(store, 4)
    db.execute(delete(LedgerEvent.__table__).where(LedgerEvent.__table__.c.id == events[-1].id))
    db.commit()

    result = LedgerVerifier(store).verify(ORG)
    assert result.status == ERROR
    assert result.error_details["reason"] == "tail_mismatch"
    assert result.verified_through_sequence == 3


def test_other_organizations_are_unaffected(store: LedgerStore, db: Session):
    events = _append(store, 2)
    _append(store, 2, organization_id="org-clean")
    _tamper(db, events[0].id, actor_id="someone-else")

    assert LedgerVerifier(store).verify(ORG).status == ERROR
    assert LedgerVerifier(store).verify("org-clean").status == VERIFIED


def test_resume_from_checkpoint_checks_only_new_events(store: LedgerStore):
    _append(store, 3)
    first = LedgerVerifier(store).verify(ORG)
    _append(store, 2)

    resumed = LedgerVerifier(store).verify(ORG, first.checkpoint)
    assert resumed.status == VERIFIED
    assert resumed.events_checked == 2
    assert resumed.resumed_from_sequence == 3
    assert resumed.verified_through_sequence == 5


def test_resume_with_no_new_events_stays_verified(store: LedgerStore):
    _append(store, 2)
    first = LedgerVerifier(store).verify(ORG)
    again = LedgerVerifier(store).verify(ORG, first.checkpoint)
    assert again.status == VERIFIED
    assert again.events_checked == 0
    assert again.verified_through_event_id == first.verified_through_event_id


def test_checkpoint_that_no_longer_matches_is_an_error(store: LedgerStore):
    events = _append(store, 2)
    bogus = Checkpoint(event_id=events[1].id, sequence=2, hash="e" * 64)

    result = LedgerVerifier(store).verify(ORG, bogus)
    assert result.status == ERROR
    assert result.error_details["reason"] == "checkpoint_mismatch"


def test_integrity_service_persists_status_and_checkpoint(store: LedgerStore, db: Session):
    service = LedgerIntegrityService(db, store)
    assert service.check(ORG).status == NOT_VERIFIED

    events = _append(store, 3)
    result = service.check(ORG)
    assert result.status == VERIFIED
    assert result.last_verified_at is not None

    row = db.query(LedgerCheckpoint).filter(LedgerCheckpoint.organization_id == ORG).one()
    assert row.status == VERIFIED
    assert row.verified_through_event_id == events[-1].id

    _append(store, 1)
    assert service.check(ORG).events_checked == 1


def test_integrity_service_keeps_checkpoint_on_error(store: LedgerStore, db: Session):
    service = LedgerIntegrityService(db, store)
    events = _append(store, 3)
    service.check(ORG)
    _tamper(db, events[0].id, actor_id="forged")

    # The suffix after the checkpoint is clean; a full check finds the edit.
    assert service.check(ORG).status == VERIFIED
    full = service.check(ORG, resume=False)
    assert full.status == ERROR

    row = db.query(LedgerCheckpoint).filter(LedgerCheckpoint.organization_id == ORG).one()
    assert row.status == ERROR
    assert row.error_details["failing_event_id"] == events[0].id
    assert row.verified_through_event_id == events[-1].id
