"""Report payload builder.

Assembles a point-in-time snapshot of a job (core fields, risk score and
factors, controls, evidence references, the job's ledger trail) into a
JSON-compatible payload. The payload is a pure function of stored state:
it carries no wall-clock values and every collection is ordered by a stable
key, so building twice without an intervening change yields byte-identical
canonical output and therefore the same ``data_hash``.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from governance_api.errors import JobNotFound
from governance_api.ledger.canonical import canonicalize_text
from governance_api.ledger.hashing import hash_canonical
from governance_api.ledger.store import LedgerStore, format_timestamp
from governance_api.models import Job, ReportRun
from governance_api.reports.packets import SECTION_TITLES, PacketDefinition, get_packet_definition
from governance_api.utils import metrics

logger = logging.getLogger(__name__)

PAYLOAD_SCHEMA_VERSION = "report-payload/v1"


def _iso(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _number(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return float(value)
    return float(value)


@dataclass
class DriftReport:
    """Comparison of a run's frozen hash with the live payload hash."""

    report_run_id: str
    status: str
    stored_hash: str
    live_hash: str
    drifted: bool
    severity: Optional[str] = None  # warning (open run) or critical (sealed run)

    def to_dict(self) -> dict:
        return {
            "report_run_id": self.report_run_id,
            "status": self.status,
            "stored_hash": self.stored_hash,
            "live_hash": self.live_hash,
            "hash_match": not self.drifted,
            "drifted": self.drifted,
            "severity": self.severity,
        }


class ReportBuilder:
    """Build canonical report payloads from current job state."""

    def __init__(self, db: Session, store: Optional[LedgerStore] = None):
        """Initialize report builder."""
        self.db = db
        self.store = store or LedgerStore(db)

    def _load_job(self, organization_id: str, job_id: str) -> Job:
        job = (
            self.db.query(Job)
            .filter(Job.id == job_id, Job.organization_id == organization_id)
            .first()
        )
        if job is None:
            raise JobNotFound(f"Job {job_id} not found", job_id=job_id)
        return job

    def build(self, organization_id: str, job_id: str, packet_type: str) -> dict:
        """Build the report payload for a job and packet type."""
        definition = get_packet_definition(packet_type)
        job = self._load_job(organization_id, job_id)

        risk = job.risk_score
        risk_score = None
        if risk is not None:
            risk_score = {
                "overall_score": _number(risk.overall_score),
                "risk_level": risk.risk_level,
                "factors": list(risk.factors or []),
            }

        mitigations = [
            {
                "id": item.id,
                "title": item.title,
                "description": item.description,
                "done": bool(item.done),
                "completed_at": _iso(item.completed_at),
                "completed_by": item.completed_by,
            }
            for item in sorted(job.mitigations, key=lambda m: m.id)
        ]

        documents = [
            {
                "id": doc.id,
                "name": doc.name,
                "type": doc.doc_type,
                "storage_path": doc.storage_path,
                "sha256": doc.sha256,
                "uploaded_at": _iso(doc.uploaded_at),
            }
            for doc in sorted(job.documents, key=lambda d: d.id)
        ]

        events = self.store.events_for_target(organization_id, "job", job.id)
        ledger_summary = {
            "event_count": len(events),
            "last_event_hash": events[-1].hash if events else None,
            "events": [
                {
                    "id": event.id,
                    "sequence": event.sequence,
                    "event_type": event.event_type,
                    "category": event.category,
                    "severity": event.severity,
                    "outcome": event.outcome,
                    "actor_id": event.actor_id,
                    "created_at": format_timestamp(event.created_at),
                    "hash": event.hash,
                }
                for event in events
            ],
        }

        job_data = {
            "id": job.id,
            "client_name": job.client_name,
            "location": job.location,
            "job_type": job.job_type,
            "status": job.status,
            "description": job.description,
            "start_date": _iso(job.start_date),
            "end_date": _iso(job.end_date),
            "created_by": job.created_by,
        }

        base = {
            "job": job_data,
            "risk_score": risk_score,
            "mitigations": mitigations,
            "documents": documents,
            "ledger_summary": ledger_summary,
        }
        sections = [self._section(section, definition, base) for section in definition.sections]

        return {
            "schema_version": PAYLOAD_SCHEMA_VERSION,
            "meta": {
                "job_id": job.id,
                "organization_id": organization_id,
                "packet_type": definition.packet_type,
                "packet_title": definition.title,
            },
            **base,
            "sections": sections,
            "computed": {
                "total_sections": len(sections),
                "sections_with_data": sum(1 for s in sections if not s["empty"]),
            },
        }

    def _section(self, section_type: str, definition: PacketDefinition, base: dict) -> dict:
        job = base["job"]
        risk = base["risk_score"]
        mitigations = base["mitigations"]
        documents = base["documents"]
        completed = [m for m in mitigations if m["done"]]
        data: dict
        empty = False

        if section_type == "executive_summary":
            data = {
                "risk_score": risk["overall_score"] if risk else None,
                "risk_level": risk["risk_level"] if risk else None,
                "hazard_count": len(risk["factors"]) if risk else 0,
                "controls_total": len(mitigations),
                "controls_complete": len(completed),
                "evidence_count": sum(1 for d in documents if d["type"] == "photo"),
                "document_count": len(documents),
                "job_status": job["status"],
                "packet_title": definition.title,
            }
        elif section_type == "job_summary":
            data = {
                "client": job["client_name"],
                "location": job["location"],
                "job_type": job["job_type"],
                "status": job["status"],
                "start_date": job["start_date"],
                "end_date": job["end_date"],
                "description": job["description"],
            }
        elif section_type == "risk_score":
            data = {
                "overall_score": risk["overall_score"] if risk else 0,
                "risk_level": risk["risk_level"] if risk else "unknown",
                "factors": risk["factors"] if risk else [],
            }
            empty = not risk or not risk["factors"]
        elif section_type == "mitigations":
            data = {"controls": [{"id": m["id"], "title": m["title"], "done": m["done"]} for m in mitigations]}
            empty = not mitigations
        elif section_type == "mitigation_checklist":
            data = {
                "items": mitigations,
                "completed": len(completed),
                "total": len(mitigations),
            }
            empty = not mitigations
        elif section_type == "attachments_index":
            data = {"documents": [{"id": d["id"], "name": d["name"], "type": d["type"], "sha256": d["sha256"]} for d in documents]}
            empty = not documents
        elif section_type == "audit_timeline":
            data = {"events": base["ledger_summary"]["events"]}
            empty = not data["events"]
        elif section_type == "compliance_status":
            data = {
                "has_risk_assessment": risk is not None,
                "controls_complete": len(completed),
                "controls_total": len(mitigations),
                "all_controls_complete": bool(mitigations) and len(completed) == len(mitigations),
                "evidence_count": len(documents),
            }
        else:
            data = {}
            empty = True

        return {
            "type": section_type,
            "title": SECTION_TITLES.get(section_type, section_type.replace("_", " ").title()),
            "data": data,
            "empty": empty,
        }

    def build_canonical(self, organization_id: str, job_id: str, packet_type: str) -> tuple[str, str]:
        """Return (canonical payload text, data_hash) for the live job state."""
        payload = self.build(organization_id, job_id, packet_type)
        return canonicalize_text(payload), hash_canonical(payload)

    def check_drift(self, run: ReportRun) -> DriftReport:
        """Rebuild the run's payload from live data and compare hashes.

        Drift on an open run is logged as a warning; drift on a sealed
        (final/complete) run is logged as an error and flagged critical.
        """
        _, live_hash = self.build_canonical(run.organization_id, run.job_id, run.packet_type)
        drifted = live_hash != run.data_hash
        severity = None
        if drifted:
            severity = "critical" if run.is_sealed else "warning"
            metrics.report_drift_detected.labels(severity=severity).inc()
            log = logger.error if run.is_sealed else logger.warning
            log(
                f"Report run {run.id} data has drifted since it was frozen",
                extra={
                    "organization_id": run.organization_id,
                    "report_run_id": run.id,
                    "run_status": run.status,
                    "stored_hash": run.data_hash,
                    "live_hash": live_hash,
                },
            )
        return DriftReport(
            report_run_id=run.id,
            status=run.status,
            stored_hash=run.data_hash,
            live_hash=live_hash,
            drifted=drifted,
            severity=severity,
        )
