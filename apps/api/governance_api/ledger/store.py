"""Append-only ledger store with per-organization hash chaining.

The chain tail for each organization lives in ``ledger_chain_heads``. An
append reads the tail, computes the new event hash over the canonical event
fields plus the tail hash, inserts the event and advances the tail in one
transaction. The store's constraints serialize appends per organization:

- ``uq(organization_id, previous_hash)`` and ``uq(organization_id, sequence)``
  on events,
- the head's primary key for the very first append,
- a compare-and-swap ``UPDATE ... WHERE last_sequence = :seen`` on the head.

A losing append rolls back, re-reads the tail and retries with exponential
backoff. A cached tail is never reused across attempts. When the attempts
run out the append fails with :class:`ChainForkConflict`; it is never
dropped silently. Transient store errors (``OperationalError``) get the
same bounded retry and end in :class:`LedgerUnavailable`.

``append`` commits its own transaction. Callers must commit their own
pending writes first, because a conflict rolls the session back.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from governance_api.errors import ChainForkConflict, LedgerUnavailable
from governance_api.ledger.hashing import GENESIS_HASH, hash_canonical
from governance_api.ledger.taxonomy import get_event_spec, validate_metadata
from governance_api.models import LedgerChainHead, LedgerEvent
from governance_api.settings import get_settings
from governance_api.utils import metrics

logger = logging.getLogger(__name__)


@dataclass
class EventDraft:
    """Caller-supplied part of a ledger event."""

    event_type: str
    actor_id: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class ChainHead:
    """Snapshot of an organization's chain tail at read time."""

    sequence: int
    hash: str
    event_id: Optional[str]
    created_at: Optional[datetime]


EMPTY_HEAD = ChainHead(sequence=0, hash=GENESIS_HASH, event_id=None, created_at=None)


class _StaleHead(Exception):
    """Compare-and-swap on the chain head matched no row."""


def utcnow() -> datetime:
    """Naive UTC now, the representation stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(value: datetime) -> str:
    """Stable ISO-8601 form used inside event hashes."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def event_hash_fields(event: LedgerEvent) -> dict:
    """Fields covered by an event's hash, excluding previous_hash."""
    return {
        "id": event.id,
        "organization_id": event.organization_id,
        "sequence": event.sequence,
        "event_type": event.event_type,
        "category": event.category,
        "severity": event.severity,
        "outcome": event.outcome,
        "actor_id": event.actor_id,
        "target_type": event.target_type,
        "target_id": event.target_id,
        "metadata": event.event_metadata if event.event_metadata is not None else {},
        "idempotency_key": event.idempotency_key,
        "created_at": format_timestamp(event.created_at),
    }


def compute_event_hash(event: LedgerEvent, previous_hash: str) -> str:
    """Hash of the event's fields chained onto ``previous_hash``."""
    return hash_canonical({**event_hash_fields(event), "previous_hash": previous_hash})


class LedgerStore:
    """Tamper-evident, append-only governance ledger.

    There are deliberately no update or delete operations.
    """

    def __init__(
        self,
        db: Session,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize ledger store."""
        settings = get_settings()
        self.db = db
        self.max_attempts = max_attempts or settings.ledger_append_max_attempts
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.ledger_append_backoff_seconds
        )
        self.backoff_max_seconds = settings.ledger_append_backoff_max_seconds
        self._clock = clock
        self._sleep = sleep

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)

    # Reads

    def _read_head(self, organization_id: str) -> ChainHead:
        head = (
            self.db.query(LedgerChainHead)
            .filter(LedgerChainHead.organization_id == organization_id)
            .populate_existing()
            .first()
        )
        if head is None:
            return EMPTY_HEAD
        return ChainHead(
            sequence=head.last_sequence,
            hash=head.last_hash,
            event_id=head.last_event_id,
            created_at=head.last_created_at,
        )

    def tail(self, organization_id: str) -> ChainHead:
        """Return the current chain tail (EMPTY_HEAD when no events exist)."""
        return self._read_head(organization_id)

    def get_event(self, organization_id: str, event_id: str) -> Optional[LedgerEvent]:
        return (
            self.db.query(LedgerEvent)
            .filter(
                LedgerEvent.organization_id == organization_id,
                LedgerEvent.id == event_id,
            )
            .first()
        )

    def find_by_idempotency_key(self, organization_id: str, key: str) -> Optional[LedgerEvent]:
        return (
            self.db.query(LedgerEvent)
            .filter(
                LedgerEvent.organization_id == organization_id,
                LedgerEvent.idempotency_key == key,
            )
            .first()
        )

    def list_since(
        self,
        organization_id: str,
        cursor: int = 0,
        upto: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> Iterator[LedgerEvent]:
        """Lazily yield events with ``sequence > cursor`` in chain order.

        Restartable: pass the last sequence seen as ``cursor``. ``upto`` caps
        the walk at a sequence observed earlier, so events appended while
        iterating are not included.
        """
        batch_size = batch_size or get_settings().ledger_verify_batch_size
        last = cursor
        while True:
            query = self.db.query(LedgerEvent).filter(
                LedgerEvent.organization_id == organization_id,
                LedgerEvent.sequence > last,
            )
            if upto is not None:
                query = query.filter(LedgerEvent.sequence <= upto)
            batch = query.order_by(LedgerEvent.sequence.asc()).limit(batch_size).all()
            if not batch:
                return
            yield from batch
            last = batch[-1].sequence
            if len(batch) < batch_size:
                return

    def events_for_target(
        self, organization_id: str, target_type: str, target_id: str
    ) -> list[LedgerEvent]:
        return (
            self.db.query(LedgerEvent)
            .filter(
                LedgerEvent.organization_id == organization_id,
                LedgerEvent.target_type == target_type,
                LedgerEvent.target_id == target_id,
            )
            .order_by(LedgerEvent.sequence.asc())
            .all()
        )

    # Append

    def append(self, organization_id: str, draft: EventDraft) -> LedgerEvent:
        """Append an event to the organization's chain and commit it."""
        spec = get_event_spec(draft.event_type)
        metadata = validate_metadata(draft.event_type, draft.metadata)

        if draft.idempotency_key:
            existing = self.find_by_idempotency_key(organization_id, draft.idempotency_key)
            if existing is not None:
                logger.info(
                    "Ledger append replayed by idempotency key",
                    extra={"organization_id": organization_id, "event_id": existing.id},
                )
                return existing

        for attempt in range(1, self.max_attempts + 1):
            try:
                head = self._read_head(organization_id)
                event = self._write(organization_id, draft, spec, metadata, head)
                self.db.commit()
            except OperationalError as exc:
                self.db.rollback()
                logger.warning(
                    f"Ledger store error (attempt {attempt}/{self.max_attempts}): {exc}",
                    extra={"organization_id": organization_id, "event_type": draft.event_type},
                )
                if attempt == self.max_attempts:
                    raise LedgerUnavailable(
                        f"Could not append '{draft.event_type}': the store kept failing",
                        organization_id=organization_id,
                        attempts=self.max_attempts,
                    ) from exc
                self._sleep(self._backoff(attempt))
                continue
            except (IntegrityError, _StaleHead) as exc:
                self.db.rollback()
                if draft.idempotency_key:
                    existing = self.find_by_idempotency_key(organization_id, draft.idempotency_key)
                    if existing is not None:
                        return existing
                metrics.ledger_append_conflicts.inc()
                logger.warning(
                    f"Ledger append conflict (attempt {attempt}/{self.max_attempts}): {exc}",
                    extra={"organization_id": organization_id, "seen_sequence": head.sequence},
                )
                if attempt == self.max_attempts:
                    raise ChainForkConflict(
                        f"Could not append '{draft.event_type}' after {self.max_attempts} attempts",
                        organization_id=organization_id,
                        attempts=self.max_attempts,
                    ) from exc
                self._sleep(self._backoff(attempt))
                continue

            metrics.ledger_appends.labels(category=spec.category).inc()
            logger.info(
                f"Appended ledger event {event.event_type}",
                extra={
                    "organization_id": organization_id,
                    "event_id": event.id,
                    "sequence": event.sequence,
                },
            )
            return event

        raise AssertionError("unreachable")  # pragma: no cover

    def _write(self, organization_id, draft, spec, metadata, head: ChainHead) -> LedgerEvent:
        created_at = self._clock()
        if head.created_at is not None and created_at < head.created_at:
            # Keep created_at non-decreasing along the chain.
            created_at = head.created_at

        event = LedgerEvent(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            sequence=head.sequence + 1,
            event_type=draft.event_type,
            category=spec.category,
            severity=spec.severity,
            outcome=spec.outcome,
            actor_id=draft.actor_id,
            target_type=draft.target_type,
            target_id=draft.target_id,
            event_metadata=metadata,
            idempotency_key=draft.idempotency_key,
            created_at=created_at,
            previous_hash=head.hash,
        )
        event.hash = compute_event_hash(event, head.hash)
        self.db.add(event)

        if head is EMPTY_HEAD or head.event_id is None:
            # Primary key on organization_id: a concurrent first append fails here.
            self.db.execute(
                insert(LedgerChainHead.__table__).values(
                    organization_id=organization_id,
                    last_sequence=event.sequence,
                    last_hash=event.hash,
                    last_event_id=event.id,
                    last_created_at=created_at,
                    updated_at=utcnow(),
                )
            )
        else:
            updated = (
                self.db.query(LedgerChainHead)
                .filter(
                    LedgerChainHead.organization_id == organization_id,
                    LedgerChainHead.last_sequence == head.sequence,
                    LedgerChainHead.last_hash == head.hash,
                )
                .update(
                    {
                        LedgerChainHead.last_sequence: event.sequence,
                        LedgerChainHead.last_hash: event.hash,
                        LedgerChainHead.last_event_id: event.id,
                        LedgerChainHead.last_created_at: created_at,
                        LedgerChainHead.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise _StaleHead(f"chain head moved past sequence {head.sequence}")

        self.db.flush()
        return event
