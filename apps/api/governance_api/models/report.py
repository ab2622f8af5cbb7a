"""Report run and signature models."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import relationship

from governance_api.db.base import Base

OPEN_RUN_STATUSES = ("draft", "ready_for_signatures")
SEALED_RUN_STATUSES = ("final", "complete")
RUN_STATUSES = OPEN_RUN_STATUSES + SEALED_RUN_STATUSES + ("superseded",)

SIGNATURE_ROLES = ("prepared_by", "reviewed_by", "approved_by", "other")
REQUIRED_SIGNATURE_ROLES = ("prepared_by", "reviewed_by", "approved_by")


class ReportRun(Base):
    """Frozen, hashed snapshot of a job's report payload."""

    __tablename__ = "report_runs"

    id = Column(String(36), primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    job_id = Column(String(64), nullable=False, index=True)
    packet_type = Column(String(50), nullable=False, default="insurance")
    status = Column(String(32), nullable=False, default="draft", index=True)
    data_hash = Column(String(64), nullable=False, index=True)
    canonical_payload = Column(Text, nullable=False)  # exact bytes that were hashed
    generated_by = Column(String(64), nullable=False)
    generated_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(64), nullable=True)

    signatures = relationship(
        "ReportSignature",
        back_populates="report_run",
        order_by="ReportSignature.signed_at",
    )

    @property
    def is_signable(self) -> bool:
        return self.status in OPEN_RUN_STATUSES

    @property
    def is_sealed(self) -> bool:
        return self.status in SEALED_RUN_STATUSES


class ReportSignature(Base):
    """Role-scoped signature bound to a report run's data_hash."""

    __tablename__ = "report_signatures"
    __table_args__ = (
        # One active signature per role per run; revoked rows do not count.
        Index(
            "uq_report_signatures_active_role",
            "report_run_id",
            "signature_role",
            unique=True,
            postgresql_where=text("revoked_at IS NULL"),
            sqlite_where=text("revoked_at IS NULL"),
        ),
    )

    id = Column(String(36), primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    report_run_id = Column(String(36), ForeignKey("report_runs.id"), nullable=False, index=True)
    signer_user_id = Column(String(64), nullable=True, index=True)  # NULL for external signers
    signer_name = Column(String(255), nullable=False)
    signer_title = Column(String(255), nullable=False)
    signature_role = Column(String(32), nullable=False)
    signature_svg = Column(Text, nullable=False)
    attestation_text = Column(Text, nullable=False)
    data_hash = Column(String(64), nullable=False)  # run hash at signing time
    signature_hash = Column(String(64), nullable=False)
    signed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(String(64), nullable=True)
    revoked_reason = Column(Text, nullable=True)

    report_run = relationship("ReportRun", back_populates="signatures")

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None
