"""Database models - import all models here for Alembic discovery."""

from governance_api.models.job import Job, JobDocument, JobRiskScore, MitigationItem
from governance_api.models.ledger import LedgerChainHead, LedgerCheckpoint, LedgerEvent
from governance_api.models.report import ReportRun, ReportSignature

__all__ = [
    "Job",
    "JobRiskScore",
    "MitigationItem",
    "JobDocument",
    "LedgerEvent",
    "LedgerChainHead",
    "LedgerCheckpoint",
    "ReportRun",
    "ReportSignature",
]
