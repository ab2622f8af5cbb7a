"""Signature binding for report runs.

A signature is bound to the run's ``data_hash`` at signing time: its
``signature_hash`` covers the run id, that data hash, the signature strokes
and the signer fields. At most one active signature exists per
(run, role), enforced by a partial unique index. Duplicates are rejected,
never overwritten.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from lxml import etree
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from governance_api.auth import Actor, AuthorizationService, get_authorizer
from governance_api.errors import (
    DuplicateSignature,
    InvalidSignature,
    ReportRunNotFound,
    SignatureNotAuthorized,
    SignatureNotFound,
    StaleSignatureTarget,
)
from governance_api.ledger.hashing import hash_canonical
from governance_api.ledger.store import EventDraft, LedgerStore, utcnow
from governance_api.models import Job, ReportRun, ReportSignature
from governance_api.models.report import SIGNATURE_ROLES
from governance_api.utils import metrics

logger = logging.getLogger(__name__)

MAX_SIGNATURE_SVG_LENGTH = 100_000

SVG_NAMESPACE = "http://www.w3.org/2000/svg"

_PATH_DATA = re.compile(r"^[MmLlHhVvZzCcSsQqTtAa0-9eE.,+\-\s]*$")
_NUMBERS = re.compile(r"^[0-9eE.,+\-\s]*$")
_LENGTH = re.compile(r"^\s*[0-9.]+\s*(px|%)?\s*$")
_PAINT = re.compile(r"^\s*(#[0-9a-fA-F]{3,8}|[a-zA-Z]{1,20})\s*$")
_KEYWORD = re.compile(r"^\s*[a-z]{1,12}\s*$")

_PRESENTATION_ATTRIBUTES = {
    "stroke": _PAINT,
    "fill": _PAINT,
    "stroke-width": _LENGTH,
    "stroke-linecap": _KEYWORD,
    "stroke-linejoin": _KEYWORD,
    "stroke-opacity": _LENGTH,
    "opacity": _LENGTH,
}

_ELEMENT_ATTRIBUTES = {
    "svg": {"viewBox": _NUMBERS, "width": _LENGTH, "height": _LENGTH, "version": _NUMBERS},
    "g": {},
    "path": {"d": _PATH_DATA},
    "polyline": {"points": _NUMBERS},
    "polygon": {"points": _NUMBERS},
    "line": {"x1": _NUMBERS, "y1": _NUMBERS, "x2": _NUMBERS, "y2": _NUMBERS},
}

_STROKE_ELEMENTS = ("path", "polyline", "polygon", "line")


class SignatureRequest(BaseModel):
    signer_name: str = Field(..., min_length=1, max_length=255)
    signer_title: str = Field(..., min_length=1, max_length=255)
    signature_role: str
    signature_svg: str
    attestation_text: str
    signer_user_id: Optional[str] = None  # defaults to the acting user


@dataclass
class SignatureCheck:
    signature_id: str
    signature_role: str
    hash_valid: bool
    stale: bool  # signed against a different data_hash than the live one
    revoked: bool

    def to_dict(self) -> dict:
        return {
            "signature_id": self.signature_id,
            "signature_role": self.signature_role,
            "hash_valid": self.hash_valid,
            "stale": self.stale,
            "revoked": self.revoked,
        }


def compute_signature_hash(
    report_run_id: str,
    data_hash: str,
    signature_svg: str,
    signer_name: str,
    signer_title: str,
    signature_role: str,
) -> str:
    return hash_canonical(
        {
            "report_run_id": report_run_id,
            "data_hash": data_hash,
            "signature_svg": signature_svg,
            "signer_name": signer_name,
            "signer_title": signer_title,
            "signature_role": signature_role,
        }
    )


def _svg_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        load_dtd=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
        huge_tree=False,
    )


def _clean_copy(source, parent=None):
    """Copy one allowlisted element (and its children) into a fresh tree."""
    if not isinstance(source.tag, str):
        # Entity references and other non-element nodes.
        raise InvalidSignature("Signature SVG contains unsupported markup")
    qname = etree.QName(source)
    if qname.namespace not in (None, SVG_NAMESPACE) or qname.localname not in _ELEMENT_ATTRIBUTES:
        raise InvalidSignature(f"Element <{qname.localname}> is not allowed in a signature")

    allowed = _ELEMENT_ATTRIBUTES[qname.localname]
    attributes = {}
    for key, value in source.attrib.items():
        pattern = allowed.get(key) or _PRESENTATION_ATTRIBUTES.get(key)
        if pattern is None or not pattern.match(value):
            raise InvalidSignature(
                f"Attribute '{etree.QName(key).localname}' is not allowed on <{qname.localname}>",
            )
        attributes[key] = value

    if parent is None:
        element = etree.Element(f"{{{SVG_NAMESPACE}}}{qname.localname}", attributes, nsmap={None: SVG_NAMESPACE})
    else:
        element = etree.SubElement(parent, f"{{{SVG_NAMESPACE}}}{qname.localname}", attributes)
    for child in source:
        _clean_copy(child, element)
    return element


def sanitize_signature_svg(svg: str) -> str:
    """Parse signature SVG against an allowlist and return a clean re-serialization.

    Only ``svg``, ``g``, ``path``, ``polyline``, ``polygon`` and ``line``
    elements with geometry and stroke attributes survive; anything else
    (scripts, event handlers, links, styles, entities) is rejected.
    """
    if not svg or not svg.strip():
        raise InvalidSignature("Signature SVG is empty")
    if len(svg) > MAX_SIGNATURE_SVG_LENGTH:
        raise InvalidSignature(
            f"Signature SVG exceeds {MAX_SIGNATURE_SVG_LENGTH} characters",
            length=len(svg),
        )

    try:
        root = etree.fromstring(svg.encode("utf-8"), _svg_parser())
    except etree.XMLSyntaxError as exc:
        raise InvalidSignature(f"Signature SVG is not well-formed: {exc}") from exc
    if root.getroottree().docinfo.doctype:
        raise InvalidSignature("Signature SVG must not declare a DOCTYPE")
    if etree.QName(root).localname != "svg":
        raise InvalidSignature("Signature must be an <svg> document")

    clean = _clean_copy(root)
    if not any(etree.QName(el).localname in _STROKE_ELEMENTS for el in clean.iter()):
        raise InvalidSignature("Signature SVG has no strokes")
    return etree.tostring(clean, encoding="unicode")


class SignatureBinder:
    """Record, revoke and verify report signatures."""

    def __init__(
        self,
        db: Session,
        store: Optional[LedgerStore] = None,
        authorizer: Optional[AuthorizationService] = None,
    ):
        self.db = db
        self.store = store or LedgerStore(db)
        self.authorizer = authorizer or get_authorizer()

    def _get_run(self, organization_id: str, run_id: str) -> ReportRun:
        run = (
            self.db.query(ReportRun)
            .filter(ReportRun.id == run_id, ReportRun.organization_id == organization_id)
            .first()
        )
        if run is None:
            raise ReportRunNotFound(f"Report run {run_id} not found", report_run_id=run_id)
        return run

    def _active_signature(self, run_id: str, role: str) -> Optional[ReportSignature]:
        return (
            self.db.query(ReportSignature)
            .filter(
                ReportSignature.report_run_id == run_id,
                ReportSignature.signature_role == role,
                ReportSignature.revoked_at.is_(None),
            )
            .first()
        )

    def sign(
        self,
        run_id: str,
        request: SignatureRequest,
        actor: Actor,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ReportSignature:
        """Bind a signature to the run's current data_hash."""
        run = self._get_run(actor.organization_id, run_id)

        if not run.is_signable:
            raise StaleSignatureTarget(
                f"Report run is {run.status}; signatures are only accepted on draft or ready_for_signatures runs",
                report_run_id=run.id,
                status=run.status,
            )

        if request.signature_role not in SIGNATURE_ROLES:
            raise InvalidSignature(
                f"Invalid signature_role. Must be one of: {', '.join(SIGNATURE_ROLES)}",
                signature_role=request.signature_role,
            )

        signer_user_id = request.signer_user_id or actor.user_id
        job = self.db.query(Job).filter(Job.id == run.job_id).first()
        job_created_by = job.created_by if job is not None else None
        if not self.authorizer.can_sign(actor, request.signature_role, signer_user_id, job_created_by):
            raise SignatureNotAuthorized(
                f"Not authorized to sign as {request.signature_role}",
                report_run_id=run.id,
                signature_role=request.signature_role,
            )

        attestation = (request.attestation_text or "").strip()
        if not attestation:
            raise InvalidSignature("attestation_text is required and must be non-empty")
        signature_svg = sanitize_signature_svg(request.signature_svg)

        existing = self._active_signature(run.id, request.signature_role)
        if existing is not None:
            metrics.signature_conflicts.inc()
            raise DuplicateSignature(
                f"Role {request.signature_role} already signed by {existing.signer_name}",
                report_run_id=run.id,
                signature_role=request.signature_role,
                existing_signature_id=existing.id,
            )

        signature = ReportSignature(
            id=str(uuid.uuid4()),
            organization_id=run.organization_id,
            report_run_id=run.id,
            signer_user_id=signer_user_id,
            signer_name=request.signer_name,
            signer_title=request.signer_title,
            signature_role=request.signature_role,
            signature_svg=signature_svg,
            attestation_text=attestation,
            data_hash=run.data_hash,
            signature_hash=compute_signature_hash(
                run.id,
                run.data_hash,
                signature_svg,
                request.signer_name,
                request.signer_title,
                request.signature_role,
            ),
            signed_at=utcnow(),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(signature)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent signer for the same role.
            self.db.rollback()
            metrics.signature_conflicts.inc()
            raise DuplicateSignature(
                f"Role {request.signature_role} already has an active signature",
                report_run_id=run_id,
                signature_role=request.signature_role,
            ) from exc

        metrics.signatures_recorded.labels(role=signature.signature_role).inc()
        logger.info(
            f"Report run signed as {signature.signature_role}",
            extra={
                "organization_id": signature.organization_id,
                "report_run_id": signature.report_run_id,
                "signature_id": signature.id,
            },
        )

        self.store.append(
            signature.organization_id,
            EventDraft(
                event_type="signature.added",
                actor_id=actor.user_id,
                target_type="report_run",
                target_id=signature.report_run_id,
                metadata={
                    "report_run_id": signature.report_run_id,
                    "signature_id": signature.id,
                    "signature_role": signature.signature_role,
                    "data_hash": signature.data_hash,
                    "signature_hash": signature.signature_hash,
                },
                idempotency_key=f"signature.added:{signature.id}",
            ),
        )
        return signature

    def revoke(self, run_id: str, signature_id: str, actor: Actor, reason: Optional[str] = None) -> ReportSignature:
        """Revoke an active signature on an open run (admins only)."""
        if not self.authorizer.can_revoke(actor):
            raise SignatureNotAuthorized("Only organization admins can revoke signatures", signature_id=signature_id)

        run = self._get_run(actor.organization_id, run_id)
        signature = (
            self.db.query(ReportSignature)
            .filter(ReportSignature.id == signature_id, ReportSignature.report_run_id == run.id)
            .first()
        )
        if signature is None:
            raise SignatureNotFound(f"Signature {signature_id} not found", signature_id=signature_id)
        if not run.is_signable:
            raise StaleSignatureTarget(
                f"Report run is {run.status}; signatures on it can no longer be revoked",
                report_run_id=run.id,
                status=run.status,
            )
        if not signature.is_active:
            return signature

        signature.revoked_at = utcnow()
        signature.revoked_by = actor.user_id
        signature.revoked_reason = reason
        self.db.commit()

        logger.warning(
            f"Signature revoked for role {signature.signature_role}",
            extra={
                "organization_id": run.organization_id,
                "report_run_id": run.id,
                "signature_id": signature.id,
                "revoked_by": actor.user_id,
            },
        )
        metadata = {
            "report_run_id": run.id,
            "signature_id": signature.id,
            "signature_role": signature.signature_role,
            "data_hash": signature.data_hash,
            "signature_hash": signature.signature_hash,
        }
        if reason:
            metadata["reason"] = reason
        self.store.append(
            run.organization_id,
            EventDraft(
                event_type="signature.revoked",
                actor_id=actor.user_id,
                target_type="report_run",
                target_id=run.id,
                metadata=metadata,
                idempotency_key=f"signature.revoked:{signature.id}",
            ),
        )
        return signature

    def list_signatures(self, organization_id: str, run_id: str, include_revoked: bool = True) -> list[ReportSignature]:
        run = self._get_run(organization_id, run_id)
        query = self.db.query(ReportSignature).filter(ReportSignature.report_run_id == run.id)
        if not include_revoked:
            query = query.filter(ReportSignature.revoked_at.is_(None))
        return query.order_by(ReportSignature.signed_at.asc(), ReportSignature.id.asc()).all()

    @staticmethod
    def verify_signature(signature: ReportSignature, live_hash: str) -> SignatureCheck:
        recomputed = compute_signature_hash(
            signature.report_run_id,
            signature.data_hash,
            signature.signature_svg,
            signature.signer_name,
            signature.signer_title,
            signature.signature_role,
        )
        return SignatureCheck(
            signature_id=signature.id,
            signature_role=signature.signature_role,
            hash_valid=recomputed == signature.signature_hash,
            stale=signature.data_hash != live_hash,
            revoked=not signature.is_active,
        )
