"""Token-authenticated print page for the headless PDF renderer."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from governance_api.db.session import get_db
from governance_api.errors import TokenExpiredOrInvalid
from governance_api.models import ReportRun, ReportSignature
from governance_api.reports.exports import render_print_html
from governance_api.reports.tokens import get_print_token_signer

router = APIRouter(tags=["print"])
logger = logging.getLogger(__name__)


@router.get("/print/{run_id}", response_class=HTMLResponse)
async def print_report_run(
    run_id: str,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Render a run for printing. The token is the only credential."""
    payload = get_print_token_signer().require(token, run_id)

    run = (
        db.query(ReportRun)
        .filter(ReportRun.id == run_id, ReportRun.organization_id == payload.organization_id)
        .first()
    )
    if run is None or run.job_id != payload.job_id:
        # Do not reveal whether the run exists in another organization.
        raise TokenExpiredOrInvalid(report_run_id=run_id)

    signatures = (
        db.query(ReportSignature)
        .filter(ReportSignature.report_run_id == run.id)
        .order_by(ReportSignature.signed_at.asc())
        .all()
    )
    return HTMLResponse(content=render_print_html(run, signatures))
