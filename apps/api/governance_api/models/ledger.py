"""Governance ledger models."""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, JSON, String, UniqueConstraint, event

from governance_api.db.base import Base


class LedgerEvent(Base):
    """Append-only governance ledger with per-organization hash chaining.

    Rows are written once by the ledger store and never updated or deleted.
    """

    __tablename__ = "ledger_events"
    __table_args__ = (
        # Two appends that read the same tail cannot both commit.
        UniqueConstraint("organization_id", "previous_hash", name="uq_ledger_org_previous_hash"),
        UniqueConstraint("organization_id", "sequence", name="uq_ledger_org_sequence"),
        UniqueConstraint("organization_id", "idempotency_key", name="uq_ledger_org_idempotency_key"),
        Index("ix_ledger_events_org_target", "organization_id", "target_type", "target_id"),
    )

    id = Column(String(36), primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    sequence = Column(BigInteger().with_variant(Integer, "sqlite"), nullable=False)
    event_type = Column(String(100), nullable=False, index=True)
    category = Column(String(32), nullable=False, index=True)  # governance, operations, access
    severity = Column(String(32), nullable=False)  # critical, material, info
    outcome = Column(String(32), nullable=False)  # blocked, allowed, success, failure
    actor_id = Column(String(64), nullable=True, index=True)
    target_type = Column(String(64), nullable=True)
    target_id = Column(String(64), nullable=True)
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    idempotency_key = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
    previous_hash = Column(String(64), nullable=False)
    hash = Column(String(64), nullable=False, unique=True, index=True)


class LedgerChainHead(Base):
    """Current tail of an organization's chain.

    The primary key makes concurrent first appends collide; later appends
    advance it with a compare-and-swap on ``last_sequence``.
    """

    __tablename__ = "ledger_chain_heads"

    organization_id = Column(String(64), primary_key=True)
    last_sequence = Column(BigInteger().with_variant(Integer, "sqlite"), nullable=False)
    last_hash = Column(String(64), nullable=False)
    last_event_id = Column(String(36), nullable=False)
    last_created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class LedgerCheckpoint(Base):
    """Last integrity verification result per organization.

    ``status`` is the operator-visible ``ledger_integrity`` value:
    verified, error or not_verified.
    """

    __tablename__ = "ledger_checkpoints"

    organization_id = Column(String(64), primary_key=True)
    status = Column(String(32), nullable=False, default="not_verified")
    verified_through_event_id = Column(String(36), nullable=True)
    verified_through_sequence = Column(BigInteger().with_variant(Integer, "sqlite"), nullable=True)
    verified_through_hash = Column(String(64), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    error_details = Column(JSON, nullable=True)
    checked_at = Column(DateTime, nullable=True)


@event.listens_for(LedgerEvent, "before_update")
def _reject_event_update(mapper, connection, target):
    raise ValueError(f"Ledger event {target.id} is immutable and cannot be updated")


@event.listens_for(LedgerEvent, "before_delete")
def _reject_event_delete(mapper, connection, target):
    raise ValueError(f"Ledger event {target.id} is immutable and cannot be deleted")
