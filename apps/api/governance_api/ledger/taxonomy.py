"""Event taxonomy: fixed mapping from event type to classification and shape.

Every ledger event type maps to exactly one (category, severity, outcome)
triple, and to a metadata model that is validated when the event is
appended. The same table backs the API's event catalogue so the UI and the
ledger agree on classification.
"""

from dataclasses import dataclass
from typing import Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from governance_api.errors import InvalidEventMetadata, UnknownEventType

Category = Literal["governance", "operations", "access"]
Severity = Literal["critical", "material", "info"]
Outcome = Literal["blocked", "allowed", "success", "failure"]


class EventMetadata(BaseModel):
    """Base metadata shape; extra keys are kept."""

    model_config = ConfigDict(extra="allow")


class AssignmentMetadata(EventMetadata):
    assignee_id: str
    role: Optional[str] = None
    due_date: Optional[str] = None


class ControlVerifiedMetadata(EventMetadata):
    control_id: str
    job_id: Optional[str] = None


class EvidenceMetadata(EventMetadata):
    document_id: str
    job_id: Optional[str] = None


class SignatureMetadata(EventMetadata):
    report_run_id: str
    signature_id: str
    signature_role: str
    data_hash: str
    signature_hash: str


class SignatureRevokedMetadata(EventMetadata):
    report_run_id: str
    signature_id: str
    signature_role: str
    reason: Optional[str] = None


class IncidentClosedMetadata(EventMetadata):
    reason: str = Field(min_length=1)
    corrective_action_id: Optional[str] = None


class AccessRevokedMetadata(EventMetadata):
    user_id: str
    reason: Optional[str] = None


class ReportRunMetadata(EventMetadata):
    report_run_id: str
    job_id: str
    packet_type: str
    data_hash: str
    status: str


class ReportRunStatusMetadata(EventMetadata):
    report_run_id: str
    from_status: str
    to_status: str


class ReviewResolvedMetadata(EventMetadata):
    resolution: str


class RiskScoreChangedMetadata(EventMetadata):
    previous_score: Optional[float] = None
    new_score: float


class MitigationMetadata(EventMetadata):
    mitigation_id: str


class RoleViolationMetadata(EventMetadata):
    attempted_action: str
    role: Optional[str] = None


class ProofPackMetadata(EventMetadata):
    pack_type: str
    report_run_id: Optional[str] = None


@dataclass(frozen=True)
class EventSpec:
    """Classification and metadata shape for one event type."""

    title: str
    category: Category
    severity: Severity
    outcome: Outcome
    metadata_model: Type[EventMetadata] = EventMetadata


EVENT_TAXONOMY: dict[str, EventSpec] = {
    # Governance
    "auth.role_violation": EventSpec(
        "Capability Blocked: Unauthorized Action Attempted",
        "governance", "critical", "blocked", RoleViolationMetadata,
    ),
    "job.flagged_for_review": EventSpec("Job Flagged for Review", "governance", "material", "allowed"),
    "job.review_resolved": EventSpec(
        "Review Resolved", "governance", "material", "success", ReviewResolvedMetadata
    ),
    "assignment.created": EventSpec("Assignment Created", "governance", "info", "allowed", AssignmentMetadata),
    "incident.closed": EventSpec("Incident Closed", "governance", "material", "success", IncidentClosedMetadata),
    # Operations
    "job.risk_score_changed": EventSpec(
        "Risk Score Changed", "operations", "material", "allowed", RiskScoreChangedMetadata
    ),
    "mitigation.completed": EventSpec("Mitigation Completed", "operations", "info", "success", MitigationMetadata),
    "control.verified": EventSpec("Control Verified", "operations", "info", "success", ControlVerifiedMetadata),
    "evidence.approved": EventSpec("Evidence Approved", "operations", "info", "success", EvidenceMetadata),
    "proof_pack.generated": EventSpec(
        "Proof Pack Generated", "operations", "material", "success", ProofPackMetadata
    ),
    "report_run.created": EventSpec("Report Run Created", "operations", "info", "success", ReportRunMetadata),
    "report_run.status_changed": EventSpec(
        "Report Run Status Changed", "operations", "info", "success", ReportRunStatusMetadata
    ),
    "report_run.finalized": EventSpec(
        "Report Run Finalized", "operations", "material", "success", ReportRunStatusMetadata
    ),
    "signature.added": EventSpec("Signature Recorded", "operations", "material", "success", SignatureMetadata),
    "signature.revoked": EventSpec(
        "Signature Revoked", "operations", "material", "success", SignatureRevokedMetadata
    ),
    # Access
    "access.revoked": EventSpec("Access Revoked", "access", "critical", "success", AccessRevokedMetadata),
}


def get_event_spec(event_type: str) -> EventSpec:
    """Look up the spec for ``event_type`` or raise UnknownEventType."""
    spec = EVENT_TAXONOMY.get(event_type)
    if spec is None:
        raise UnknownEventType(f"Unknown event type '{event_type}'", event_type=event_type)
    return spec


def validate_metadata(event_type: str, metadata: Optional[dict]) -> dict:
    """Validate metadata against its event type's shape and return plain JSON."""
    spec = get_event_spec(event_type)
    try:
        model = spec.metadata_model.model_validate(metadata or {})
    except ValidationError as exc:
        raise InvalidEventMetadata(
            f"Metadata does not match the shape for '{event_type}'",
            event_type=event_type,
            errors=[
                {"loc": list(err["loc"]), "msg": err["msg"]}
                for err in exc.errors()
            ],
        ) from exc
    return model.model_dump(mode="json", exclude_none=True)
