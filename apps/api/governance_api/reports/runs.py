"""Report run lifecycle.

draft -> ready_for_signatures -> complete, with ``superseded`` for open runs
replaced by a newer run of the same job and packet. Sealed runs
(``final``/``complete``) are never mutated; a change in the underlying data
calls for a new run.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from governance_api.auth import Actor, AuthorizationService, get_authorizer
from governance_api.errors import (
    IntegrityMismatch,
    InvalidRunTransition,
    MissingSignatures,
    ReportDrift,
    ReportRunNotFound,
    SignatureNotAuthorized,
)
from governance_api.ledger.store import EventDraft, LedgerStore, utcnow
from governance_api.models import ReportRun, ReportSignature
from governance_api.models.report import OPEN_RUN_STATUSES, REQUIRED_SIGNATURE_ROLES, RUN_STATUSES
from governance_api.reports.builder import ReportBuilder
from governance_api.reports.packets import get_packet_definition
from governance_api.reports.signatures import SignatureBinder
from governance_api.settings import get_settings
from governance_api.utils import metrics

logger = logging.getLogger(__name__)


class ReportRunService:
    """Create, advance, verify and finalize report runs."""

    def __init__(
        self,
        db: Session,
        store: Optional[LedgerStore] = None,
        authorizer: Optional[AuthorizationService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize report run service."""
        self.db = db
        self.store = store or LedgerStore(db)
        self.builder = ReportBuilder(db, self.store)
        self.authorizer = authorizer or get_authorizer()
        self._clock = clock
        self.dedupe_window = timedelta(seconds=get_settings().report_run_dedupe_seconds)

    def get_run(self, organization_id: str, run_id: str) -> ReportRun:
        run = (
            self.db.query(ReportRun)
            .filter(ReportRun.id == run_id, ReportRun.organization_id == organization_id)
            .first()
        )
        if run is None:
            raise ReportRunNotFound(f"Report run {run_id} not found", report_run_id=run_id)
        return run

    def list_runs(
        self,
        organization_id: str,
        job_id: Optional[str] = None,
        packet_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ReportRun]:
        query = self.db.query(ReportRun).filter(ReportRun.organization_id == organization_id)
        if job_id:
            query = query.filter(ReportRun.job_id == job_id)
        if packet_type:
            get_packet_definition(packet_type)
            query = query.filter(ReportRun.packet_type == packet_type)
        if status:
            if status not in RUN_STATUSES:
                raise InvalidRunTransition(f"Unknown run status '{status}'", status=status)
            query = query.filter(ReportRun.status == status)
        return (
            query.order_by(ReportRun.generated_at.desc(), ReportRun.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def _open_runs(self, organization_id: str, job_id: str, packet_type: str) -> list[ReportRun]:
        return (
            self.db.query(ReportRun)
            .filter(
                ReportRun.organization_id == organization_id,
                ReportRun.job_id == job_id,
                ReportRun.packet_type == packet_type,
                ReportRun.status.in_(OPEN_RUN_STATUSES),
            )
            .order_by(ReportRun.generated_at.desc(), ReportRun.id.desc())
            .all()
        )

    def create_run(
        self,
        organization_id: str,
        job_id: str,
        packet_type: str,
        generated_by: str,
        status: str = "draft",
    ) -> tuple[ReportRun, bool]:
        """Freeze the job's current payload into a new run.

        Returns ``(run, created)``. A run with the same data hash created by
        the same user within the dedupe window is returned instead of
        creating another one.
        """
        if status not in OPEN_RUN_STATUSES:
            raise InvalidRunTransition(f"New runs cannot start in status '{status}'", status=status)

        canonical_payload, data_hash = self.builder.build_canonical(organization_id, job_id, packet_type)
        now = self._clock()

        recent = (
            self.db.query(ReportRun)
            .filter(
                ReportRun.organization_id == organization_id,
                ReportRun.job_id == job_id,
                ReportRun.packet_type == packet_type,
                ReportRun.generated_by == generated_by,
                ReportRun.data_hash == data_hash,
                ReportRun.status.in_(OPEN_RUN_STATUSES),
                ReportRun.generated_at >= now - self.dedupe_window,
            )
            .order_by(ReportRun.generated_at.desc())
            .first()
        )
        if recent is not None:
            logger.info(
                "Reusing recent identical report run",
                extra={"organization_id": organization_id, "report_run_id": recent.id},
            )
            return recent, False

        superseded = [(old, old.status) for old in self._open_runs(organization_id, job_id, packet_type)]
        for old, _ in superseded:
            old.status = "superseded"

        run = ReportRun(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            job_id=job_id,
            packet_type=packet_type,
            status=status,
            data_hash=data_hash,
            canonical_payload=canonical_payload,
            generated_by=generated_by,
            generated_at=now,
        )
        self.db.add(run)
        self.db.commit()

        metrics.report_runs_created.labels(packet_type=packet_type).inc()
        logger.info(
            f"Created report run ({packet_type})",
            extra={
                "organization_id": organization_id,
                "report_run_id": run.id,
                "job_id": job_id,
                "data_hash": data_hash,
                "superseded": [old.id for old, _ in superseded],
            },
        )

        self.store.append(
            organization_id,
            EventDraft(
                event_type="report_run.created",
                actor_id=generated_by,
                target_type="report_run",
                target_id=run.id,
                metadata={
                    "report_run_id": run.id,
                    "job_id": job_id,
                    "packet_type": packet_type,
                    "data_hash": data_hash,
                    "status": status,
                },
                idempotency_key=f"report_run.created:{run.id}",
            ),
        )
        for old, previous_status in superseded:
            self._record_transition(old, previous_status, "superseded", generated_by)
        return run, True

    def get_or_create_active_run(
        self, organization_id: str, job_id: str, packet_type: str, actor: Actor
    ) -> tuple[ReportRun, bool]:
        """Return the newest open run, or create one ready for signatures."""
        get_packet_definition(packet_type)
        open_runs = self._open_runs(organization_id, job_id, packet_type)
        if open_runs:
            return open_runs[0], False
        return self.create_run(
            organization_id, job_id, packet_type, actor.user_id, status="ready_for_signatures"
        )

    def mark_ready(self, run_id: str, actor: Actor) -> ReportRun:
        """Move a draft run to ready_for_signatures."""
        run = self.get_run(actor.organization_id, run_id)
        if run.status == "ready_for_signatures":
            return run
        if run.status != "draft":
            raise InvalidRunTransition(
                f"Cannot move a {run.status} run to ready_for_signatures",
                report_run_id=run.id,
                status=run.status,
            )

        drift = self.builder.check_drift(run)
        if drift.drifted:
            raise ReportDrift(
                "Job data changed since this run was generated; create a new run",
                report_run_id=run.id,
                stored_hash=drift.stored_hash,
                live_hash=drift.live_hash,
            )

        updated = (
            self.db.query(ReportRun)
            .filter(ReportRun.id == run.id, ReportRun.status == "draft")
            .update({ReportRun.status: "ready_for_signatures"}, synchronize_session=False)
        )
        if updated != 1:
            self.db.rollback()
            raise InvalidRunTransition("Report run changed concurrently", report_run_id=run.id)
        self.db.commit()
        self.db.refresh(run)

        self._record_transition(run, "draft", "ready_for_signatures", actor.user_id)
        return run

    def verify_run(self, organization_id: str, run_id: str) -> dict:
        """Check a run against live data and its signatures."""
        run = self.get_run(organization_id, run_id)
        drift = self.builder.check_drift(run)

        signatures = self.db.query(ReportSignature).filter(ReportSignature.report_run_id == run.id).all()
        checks = [SignatureBinder.verify_signature(sig, drift.live_hash) for sig in signatures]
        active_roles = {c.signature_role for c in checks if not c.revoked}
        missing_roles = [role for role in REQUIRED_SIGNATURE_ROLES if role not in active_roles]
        invalid = [c.signature_id for c in checks if not c.revoked and (not c.hash_valid or c.stale)]

        return {
            "report_run_id": run.id,
            "status": run.status,
            "data_hash": run.data_hash,
            "live_hash": drift.live_hash,
            "hash_match": not drift.drifted,
            "drift_severity": drift.severity,
            "signatures": {
                "total": len(checks),
                "active": sum(1 for c in checks if not c.revoked),
                "revoked": sum(1 for c in checks if c.revoked),
                "invalid": invalid,
                "checks": [c.to_dict() for c in checks],
            },
            "required_roles": list(REQUIRED_SIGNATURE_ROLES),
            "missing_roles": missing_roles,
            "is_complete": run.status == "complete",
            "can_finalize": (
                run.status == "ready_for_signatures" and not drift.drifted and not missing_roles and not invalid
            ),
        }

    def finalize(self, run_id: str, actor: Actor) -> ReportRun:
        """Seal a fully signed run as complete."""
        run = self.get_run(actor.organization_id, run_id)

        if not self.authorizer.can_finalize(actor, run.generated_by):
            raise SignatureNotAuthorized(
                "Only the run creator or an organization admin can finalize",
                report_run_id=run.id,
            )
        if run.status != "ready_for_signatures":
            raise InvalidRunTransition(
                f"Cannot finalize a {run.status} run; it must be ready_for_signatures",
                report_run_id=run.id,
                status=run.status,
            )

        drift = self.builder.check_drift(run)
        if drift.drifted:
            raise ReportDrift(
                "Report data has changed since signatures were collected",
                report_run_id=run.id,
                stored_hash=drift.stored_hash,
                live_hash=drift.live_hash,
            )

        active = (
            self.db.query(ReportSignature)
            .filter(ReportSignature.report_run_id == run.id, ReportSignature.revoked_at.is_(None))
            .all()
        )
        for sig in active:
            check = SignatureBinder.verify_signature(sig, drift.live_hash)
            if not check.hash_valid or check.stale:
                raise IntegrityMismatch(
                    f"Signature for role {sig.signature_role} does not match the report",
                    report_run_id=run.id,
                    signature_id=sig.id,
                )

        signed_roles = {sig.signature_role for sig in active}
        missing = [role for role in REQUIRED_SIGNATURE_ROLES if role not in signed_roles]
        if missing:
            raise MissingSignatures(
                f"Missing required signatures: {', '.join(missing)}",
                report_run_id=run.id,
                missing_roles=missing,
            )

        now = self._clock()
        updated = (
            self.db.query(ReportRun)
            .filter(ReportRun.id == run.id, ReportRun.status == "ready_for_signatures")
            .update(
                {
                    ReportRun.status: "complete",
                    ReportRun.completed_at: now,
                    ReportRun.completed_by: actor.user_id,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            self.db.rollback()
            raise InvalidRunTransition("Report run changed concurrently", report_run_id=run.id)
        self.db.commit()
        self.db.refresh(run)

        logger.info(
            "Report run finalized",
            extra={"organization_id": run.organization_id, "report_run_id": run.id, "data_hash": run.data_hash},
        )
        self.store.append(
            run.organization_id,
            EventDraft(
                event_type="report_run.finalized",
                actor_id=actor.user_id,
                target_type="report_run",
                target_id=run.id,
                metadata={
                    "report_run_id": run.id,
                    "from_status": "ready_for_signatures",
                    "to_status": "complete",
                    "data_hash": run.data_hash,
                },
                idempotency_key=f"report_run.finalized:{run.id}",
            ),
        )
        return run

    def _record_transition(self, run: ReportRun, from_status: str, to_status: str, actor_id: str) -> None:
        self.store.append(
            run.organization_id,
            EventDraft(
                event_type="report_run.status_changed",
                actor_id=actor_id,
                target_type="report_run",
                target_id=run.id,
                metadata={"report_run_id": run.id, "from_status": from_status, "to_status": to_status},
                idempotency_key=f"report_run.status_changed:{run.id}:{to_status}",
            ),
        )
