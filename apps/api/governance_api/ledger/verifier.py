"""Ledger integrity verification.

Walks an organization's chain in sequence order, recomputes each event's
hash from its stored fields and the expected predecessor hash, and stops at
the first mismatch. Three outcomes are distinguished:

``verified``
    every event up to the observed tail recomputed cleanly;
``error``
    a linkage or hash mismatch was found (first failing event reported);
``not_verified``
    there was nothing to verify. An empty chain is not evidence of
    integrity, so it is never reported as ``verified``.

Verification can resume from a stored checkpoint so only the suffix appended
since the last check is walked. It takes no locks: the tail is read once up
front and events appended afterwards are left for the next check.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from governance_api.ledger.hashing import GENESIS_HASH
from governance_api.ledger.store import LedgerStore, compute_event_hash, utcnow
from governance_api.models import LedgerCheckpoint
from governance_api.utils import metrics

logger = logging.getLogger(__name__)

VERIFIED = "verified"
ERROR = "error"
NOT_VERIFIED = "not_verified"


@dataclass(frozen=True)
class Checkpoint:
    """Last known-good position in a chain."""

    event_id: str
    sequence: int
    hash: str


@dataclass
class VerificationResult:
    status: str
    verified_through_event_id: Optional[str] = None
    verified_through_sequence: Optional[int] = None
    verified_through_hash: Optional[str] = None
    events_checked: int = 0
    resumed_from_sequence: Optional[int] = None
    error_details: Optional[dict] = None
    last_verified_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.last_verified_at is not None:
            data["last_verified_at"] = self.last_verified_at.isoformat()
        return data

    @property
    def checkpoint(self) -> Optional[Checkpoint]:
        if self.status != VERIFIED or self.verified_through_event_id is None:
            return None
        return Checkpoint(
            event_id=self.verified_through_event_id,
            sequence=self.verified_through_sequence,
            hash=self.verified_through_hash,
        )


class LedgerVerifier:
    """Recompute and check an organization's hash chain."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def verify(self, organization_id: str, checkpoint: Optional[Checkpoint] = None) -> VerificationResult:
        """Verify the chain from ``checkpoint`` (or genesis) to the current tail."""
        tail = self.store.tail(organization_id)

        expected_previous = GENESIS_HASH
        position = 0
        last_id = last_sequence = last_hash = None

        if checkpoint is not None:
            anchor = self.store.get_event(organization_id, checkpoint.event_id)
            if anchor is None or anchor.hash != checkpoint.hash or anchor.sequence != checkpoint.sequence:
                return VerificationResult(
                    status=ERROR,
                    resumed_from_sequence=checkpoint.sequence,
                    error_details={
                        "failing_event_id": checkpoint.event_id,
                        "expected_hash": checkpoint.hash,
                        "got_hash": anchor.hash if anchor is not None else None,
                        "event_index": checkpoint.sequence - 1,
                        "reason": "checkpoint_mismatch",
                    },
                )
            expected_previous = checkpoint.hash
            position = checkpoint.sequence
            last_id, last_sequence, last_hash = checkpoint.event_id, checkpoint.sequence, checkpoint.hash

        checked = 0
        for event in self.store.list_since(organization_id, cursor=position, upto=tail.sequence):
            recomputed = compute_event_hash(event, expected_previous)
            failure = None
            if event.previous_hash != expected_previous:
                failure = (expected_previous, event.previous_hash, "previous_hash_mismatch")
            elif recomputed != event.hash:
                failure = (recomputed, event.hash, "hash_mismatch")

            if failure is not None:
                expected, got, reason = failure
                return VerificationResult(
                    status=ERROR,
                    verified_through_event_id=last_id,
                    verified_through_sequence=last_sequence,
                    verified_through_hash=last_hash,
                    events_checked=checked,
                    resumed_from_sequence=checkpoint.sequence if checkpoint else None,
                    error_details={
                        "failing_event_id": event.id,
                        "expected_hash": expected,
                        "got_hash": got,
                        "event_index": position,
                        "reason": reason,
                    },
                )

            expected_previous = event.hash
            last_id, last_sequence, last_hash = event.id, event.sequence, event.hash
            position += 1
            checked += 1

        if last_id is None:
            return VerificationResult(status=NOT_VERIFIED)

        # The walk must end exactly at the tail that was observed; anything
        # else means events were removed from the end of the chain.
        if tail.event_id is not None and (last_sequence != tail.sequence or last_hash != tail.hash):
            return VerificationResult(
                status=ERROR,
                verified_through_event_id=last_id,
                verified_through_sequence=last_sequence,
                verified_through_hash=last_hash,
                events_checked=checked,
                resumed_from_sequence=checkpoint.sequence if checkpoint else None,
                error_details={
                    "failing_event_id": tail.event_id,
                    "expected_hash": tail.hash,
                    "got_hash": last_hash,
                    "event_index": tail.sequence - 1,
                    "reason": "tail_mismatch",
                },
            )

        return VerificationResult(
            status=VERIFIED,
            verified_through_event_id=last_id,
            verified_through_sequence=last_sequence,
            verified_through_hash=last_hash,
            events_checked=checked,
            resumed_from_sequence=checkpoint.sequence if checkpoint else None,
        )


class LedgerIntegrityService:
    """Run verifications and persist the operator-visible integrity status."""

    def __init__(self, db: Session, store: Optional[LedgerStore] = None):
        """Initialize integrity service."""
        self.db = db
        self.store = store or LedgerStore(db)
        self.verifier = LedgerVerifier(self.store)

    def get_checkpoint(self, organization_id: str) -> Optional[LedgerCheckpoint]:
        return (
            self.db.query(LedgerCheckpoint)
            .filter(LedgerCheckpoint.organization_id == organization_id)
            .first()
        )

    def check(self, organization_id: str, resume: bool = True) -> VerificationResult:
        """Verify the chain, resuming from the stored checkpoint when allowed.

        A ``verified`` result advances the checkpoint. An ``error`` is
        recorded as the organization's integrity status and the checkpoint
        is left where it was, so the error keeps being reported until
        someone investigates.
        """
        row = self.get_checkpoint(organization_id)
        checkpoint = None
        if resume and row is not None and row.verified_through_event_id:
            checkpoint = Checkpoint(
                event_id=row.verified_through_event_id,
                sequence=row.verified_through_sequence,
                hash=row.verified_through_hash,
            )

        with metrics.integrity_check_duration.time():
            result = self.verifier.verify(organization_id, checkpoint)

        now = utcnow()
        if row is None:
            row = LedgerCheckpoint(organization_id=organization_id)
            self.db.add(row)
        row.status = result.status
        row.checked_at = now
        if result.status == VERIFIED:
            row.verified_through_event_id = result.verified_through_event_id
            row.verified_through_sequence = result.verified_through_sequence
            row.verified_through_hash = result.verified_through_hash
            row.verified_at = now
            row.error_details = None
        elif result.status == ERROR:
            row.error_details = result.error_details
        self.db.commit()

        result.last_verified_at = row.verified_at
        metrics.integrity_checks.labels(status=result.status).inc()
        if result.status == ERROR:
            logger.error(
                "Ledger integrity error",
                extra={"organization_id": organization_id, **(result.error_details or {})},
            )
        else:
            logger.info(
                f"Ledger integrity {result.status}",
                extra={
                    "organization_id": organization_id,
                    "verified_through_event_id": result.verified_through_event_id,
                    "events_checked": result.events_checked,
                },
            )
        return result
