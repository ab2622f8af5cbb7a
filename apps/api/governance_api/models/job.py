"""Job data read by the report builder.

These tables are owned by the product's job management surface; the ledger
service only reads them to assemble report snapshots.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship

from governance_api.db.base import Base


class Job(Base):
    """Field job being risk-assessed."""

    __tablename__ = "jobs"

    id = Column(String(64), primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    client_name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=True)
    job_type = Column(String(100), nullable=True)
    status = Column(String(50), default="draft", nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    risk_score = relationship("JobRiskScore", back_populates="job", uselist=False)
    mitigations = relationship("MitigationItem", back_populates="job")
    documents = relationship("JobDocument", back_populates="job")


class JobRiskScore(Base):
    """Computed risk score and its contributing factors."""

    __tablename__ = "job_risk_scores"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(64), ForeignKey("jobs.id"), nullable=False, unique=True)
    overall_score = Column(Numeric(5, 2), nullable=False)
    risk_level = Column(String(32), nullable=False)  # low, medium, high, critical
    factors = Column(JSON, nullable=True)  # [{"code", "name", "severity", "weight"}]
    calculated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    job = relationship("Job", back_populates="risk_score")


class MitigationItem(Base):
    """Control / mitigation checklist item."""

    __tablename__ = "mitigation_items"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(64), ForeignKey("jobs.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    done = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(64), nullable=True)

    job = relationship("Job", back_populates="mitigations")


class JobDocument(Base):
    """Evidence/document reference (file content lives in object storage)."""

    __tablename__ = "job_documents"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(64), ForeignKey("jobs.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    doc_type = Column(String(50), nullable=False, default="document")  # document, photo, permit
    storage_path = Column(String(1024), nullable=True)
    sha256 = Column(String(64), nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    job = relationship("Job", back_populates="documents")
