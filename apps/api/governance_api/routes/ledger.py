"""Governance ledger routes: append, list, integrity and export."""

import itertools
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from governance_api.auth import Actor, get_actor
from governance_api.db.session import get_db
from governance_api.ledger.store import EventDraft, LedgerStore
from governance_api.ledger.taxonomy import EVENT_TAXONOMY
from governance_api.ledger.verifier import LedgerIntegrityService
from governance_api.reports.exports import ledger_events_csv

router = APIRouter(prefix="/v1/ledger", tags=["ledger"])
logger = logging.getLogger(__name__)

# Recorded only by the report and signature services.
SERVICE_EVENT_PREFIXES = ("report_run.", "signature.")


class LedgerEventCreate(BaseModel):
    """Ledger event append request."""

    event_type: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = Field(default=None, max_length=255)


class LedgerEventResponse(BaseModel):
    id: str
    organization_id: str
    sequence: int
    event_type: str
    category: str
    severity: str
    outcome: str
    actor_id: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    metadata: dict[str, Any]
    idempotency_key: Optional[str] = None
    created_at: datetime
    previous_hash: str
    hash: str


class LedgerEventPage(BaseModel):
    events: list[LedgerEventResponse]
    next_cursor: Optional[int] = None


def serialize_event(event) -> LedgerEventResponse:
    return LedgerEventResponse(
        id=event.id,
        organization_id=event.organization_id,
        sequence=event.sequence,
        event_type=event.event_type,
        category=event.category,
        severity=event.severity,
        outcome=event.outcome,
        actor_id=event.actor_id,
        target_type=event.target_type,
        target_id=event.target_id,
        metadata=event.event_metadata or {},
        idempotency_key=event.idempotency_key,
        created_at=event.created_at,
        previous_hash=event.previous_hash,
        hash=event.hash,
    )


@router.post("/events", response_model=LedgerEventResponse, status_code=status.HTTP_201_CREATED)
def append_event(
    event_data: LedgerEventCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Append a governance event to the organization's chain."""
    if event_data.event_type.startswith(SERVICE_EVENT_PREFIXES):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"'{event_data.event_type}' events are recorded by the report service",
        )

    event = LedgerStore(db).append(
        actor.organization_id,
        EventDraft(
            event_type=event_data.event_type,
            actor_id=actor.user_id,
            target_type=event_data.target_type,
            target_id=event_data.target_id,
            metadata=event_data.metadata,
            idempotency_key=event_data.idempotency_key or idempotency_key,
        ),
    )
    return serialize_event(event)


@router.get("/events", response_model=LedgerEventPage)
async def list_events(
    cursor: int = Query(0, ge=0, description="Return events with sequence greater than this"),
    limit: int = Query(100, ge=1, le=1000),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """List events in chain order, keyset-paginated by sequence."""
    events = list(
        itertools.islice(
            LedgerStore(db).list_since(actor.organization_id, cursor=cursor, batch_size=limit),
            limit,
        )
    )
    return LedgerEventPage(
        events=[serialize_event(e) for e in events],
        next_cursor=events[-1].sequence if len(events) == limit else None,
    )


@router.get("/taxonomy")
async def event_taxonomy():
    """Event catalogue: classification of every known event type."""
    return {
        event_type: {
            "title": spec.title,
            "category": spec.category,
            "severity": spec.severity,
            "outcome": spec.outcome,
        }
        for event_type, spec in sorted(EVENT_TAXONOMY.items())
    }


@router.get("/integrity")
async def ledger_integrity(
    full: bool = Query(False, description="Re-verify from genesis instead of the last checkpoint"),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Verify the organization's chain and report ledger_integrity."""
    result = LedgerIntegrityService(db).check(actor.organization_id, resume=not full)
    return {
        "organization_id": actor.organization_id,
        "ledger_integrity": result.status,
        **result.to_dict(),
    }


@router.get("/export.csv")
async def export_ledger_csv(
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Export the organization's ledger as CSV in chain order."""
    store = LedgerStore(db)
    tail = store.tail(actor.organization_id)
    body = ledger_events_csv(store.list_since(actor.organization_id, upto=tail.sequence))
    logger.info(
        "Exported ledger CSV",
        extra={"organization_id": actor.organization_id, "through_sequence": tail.sequence},
    )
    return Response(
        content=body,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="ledger-{actor.organization_id}.csv"',
            "X-Ledger-Tail-Hash": tail.hash,
        },
    )
