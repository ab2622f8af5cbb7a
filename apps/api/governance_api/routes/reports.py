"""Report run, signature and export routes."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from governance_api.auth import Actor, get_actor
from governance_api.auth.context import client_details
from governance_api.db.session import get_db
from governance_api.reports.exports import report_run_json, report_run_pdf
from governance_api.reports.runs import ReportRunService
from governance_api.reports.signatures import SignatureBinder, SignatureRequest
from governance_api.reports.tokens import get_print_token_signer
from governance_api.settings import get_settings

router = APIRouter(prefix="/v1/reports", tags=["reports"])
logger = logging.getLogger(__name__)


class ReportRunCreate(BaseModel):
    """Report run creation request. The payload is always built server-side."""

    job_id: str
    packet_type: str = "insurance"
    status: str = Field(default="draft", description="draft or ready_for_signatures")


class ActiveRunRequest(BaseModel):
    job_id: str
    packet_type: str = "insurance"


class ReportRunResponse(BaseModel):
    """Report run response."""

    id: str
    organization_id: str
    job_id: str
    packet_type: str
    status: str
    data_hash: str
    generated_by: str
    generated_at: datetime
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None

    class Config:
        from_attributes = True


class ReportRunEnvelope(BaseModel):
    data: ReportRunResponse
    created: bool


class SignatureResponse(BaseModel):
    """Signature response (SVG omitted)."""

    id: str
    report_run_id: str
    signer_user_id: Optional[str] = None
    signer_name: str
    signer_title: str
    signature_role: str
    attestation_text: str
    data_hash: str
    signature_hash: str
    signed_at: datetime
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    revoked_reason: Optional[str] = None

    class Config:
        from_attributes = True


class RevokeRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class PrintTokenResponse(BaseModel):
    token: str
    expires_in: int
    print_url: str


@router.post("/runs", response_model=ReportRunEnvelope, status_code=status.HTTP_201_CREATED)
def create_report_run(
    run_data: ReportRunCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Freeze the job's current state into a new report run."""
    run, created = ReportRunService(db).create_run(
        actor.organization_id,
        run_data.job_id,
        run_data.packet_type,
        actor.user_id,
        status=run_data.status,
    )
    return ReportRunEnvelope(data=ReportRunResponse.model_validate(run), created=created)


@router.get("/runs", response_model=list[ReportRunResponse])
async def list_report_runs(
    job_id: Optional[str] = None,
    packet_type: Optional[str] = None,
    run_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """List report runs, newest first."""
    return ReportRunService(db).list_runs(
        actor.organization_id,
        job_id=job_id,
        packet_type=packet_type,
        status=run_status,
        limit=limit,
        offset=offset,
    )


@router.post("/runs/active", response_model=ReportRunEnvelope)
def get_or_create_active_run(
    request_data: ActiveRunRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Return the open run for a job and packet, creating one if needed."""
    run, created = ReportRunService(db).get_or_create_active_run(
        actor.organization_id, request_data.job_id, request_data.packet_type, actor
    )
    return ReportRunEnvelope(data=ReportRunResponse.model_validate(run), created=created)


@router.get("/runs/{run_id}", response_model=ReportRunResponse)
async def get_report_run(
    run_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return ReportRunService(db).get_run(actor.organization_id, run_id)


@router.post("/runs/{run_id}/ready", response_model=ReportRunResponse)
def mark_run_ready(
    run_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Move a draft run to ready_for_signatures."""
    return ReportRunService(db).mark_ready(run_id, actor)


@router.get("/runs/{run_id}/verify")
async def verify_report_run(
    run_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Compare the run with live data and check its signatures."""
    return ReportRunService(db).verify_run(actor.organization_id, run_id)


@router.post("/runs/{run_id}/finalize", response_model=ReportRunResponse)
def finalize_report_run(
    run_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Seal a fully signed run."""
    return ReportRunService(db).finalize(run_id, actor)


@router.post(
    "/runs/{run_id}/signatures",
    response_model=SignatureResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_signature(
    run_id: str,
    signature_data: SignatureRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Sign a report run for one role."""
    ip_address, user_agent = client_details(request)
    return SignatureBinder(db).sign(
        run_id, signature_data, actor, ip_address=ip_address, user_agent=user_agent
    )


@router.get("/runs/{run_id}/signatures", response_model=list[SignatureResponse])
async def list_signatures(
    run_id: str,
    include_revoked: bool = True,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return SignatureBinder(db).list_signatures(actor.organization_id, run_id, include_revoked=include_revoked)


@router.post("/runs/{run_id}/signatures/{signature_id}/revoke", response_model=SignatureResponse)
def revoke_signature(
    run_id: str,
    signature_id: str,
    revoke_data: RevokeRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Revoke an active signature (admins only, open runs only)."""
    return SignatureBinder(db).revoke(run_id, signature_id, actor, reason=revoke_data.reason)


@router.get("/runs/{run_id}/export")
async def export_report_run(
    run_id: str,
    export_format: str = Query("json", alias="format", pattern="^(json|pdf)$"),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Export the run's frozen payload as JSON or PDF.

    The JSON body is the exact canonical text that was hashed, so
    SHA-256 of the body equals the ``X-Data-Hash`` header.
    """
    run = ReportRunService(db).get_run(actor.organization_id, run_id)
    headers = {"X-Data-Hash": run.data_hash, "X-Report-Status": run.status}

    if export_format == "pdf":
        signatures = SignatureBinder(db).list_signatures(actor.organization_id, run.id, include_revoked=False)
        content = report_run_pdf(run, signatures)
        headers["Content-Disposition"] = f'attachment; filename="report-{run.id}.pdf"'
        return Response(content=content, media_type="application/pdf", headers=headers)

    headers["Content-Disposition"] = f'attachment; filename="report-{run.id}.json"'
    return Response(content=report_run_json(run), media_type="application/json", headers=headers)


@router.post("/runs/{run_id}/print-token", response_model=PrintTokenResponse)
async def issue_print_token(
    run_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Issue a short-lived token for rendering the run's print page."""
    run = ReportRunService(db).get_run(actor.organization_id, run_id)
    signer = get_print_token_signer()
    token = signer.issue(run.job_id, run.organization_id, report_run_id=run.id)
    base_url = get_settings().public_base_url.rstrip("/")
    logger.info(
        "Issued print token",
        extra={"organization_id": run.organization_id, "report_run_id": run.id, "actor_id": actor.user_id},
    )
    return PrintTokenResponse(
        token=token,
        expires_in=signer.ttl_seconds,
        print_url=f"{base_url}/print/{run.id}?token={token}",
    )
