"""Domain errors for the ledger and report pipeline.

Each error carries the HTTP status and a stable machine-readable code so the
API layer can render it without knowing about individual error types.
Integrity and chain errors are surfaced, never corrected in place.
"""

from typing import Any, Optional

from fastapi import status


class GovernanceError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        body.update({k: v for k, v in self.context.items() if v is not None})
        return body


# Serialization / programming errors


class SerializationError(GovernanceError):
    """Value cannot be canonicalized (cycle, function, NaN, non-str key...)."""

    code = "SERIALIZATION_ERROR"


# Ledger


class ChainForkConflict(GovernanceError):
    """Concurrent appends raced and the bounded retries were exhausted."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "CHAIN_FORK_CONFLICT"


class LedgerUnavailable(GovernanceError):
    """The store kept failing with transient errors until the retries ran out."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "LEDGER_UNAVAILABLE"


class IntegrityMismatch(GovernanceError):
    """A recomputed hash does not match the stored one."""

    status_code = status.HTTP_409_CONFLICT
    code = "INTEGRITY_MISMATCH"


class UnknownEventType(GovernanceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "UNKNOWN_EVENT_TYPE"


class InvalidEventMetadata(GovernanceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_EVENT_METADATA"


# Reports and signatures


class JobNotFound(GovernanceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "JOB_NOT_FOUND"


class ReportRunNotFound(GovernanceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "REPORT_RUN_NOT_FOUND"


class SignatureNotFound(GovernanceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "SIGNATURE_NOT_FOUND"


class InvalidPacketType(GovernanceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_PACKET_TYPE"


class InvalidRunTransition(GovernanceError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_RUN_TRANSITION"


class ReportDrift(GovernanceError):
    """Live job data no longer hashes to the run's frozen data_hash."""

    status_code = status.HTTP_409_CONFLICT
    code = "HASH_MISMATCH"


class MissingSignatures(GovernanceError):
    status_code = status.HTTP_409_CONFLICT
    code = "MISSING_SIGNATURES"


class StaleSignatureTarget(GovernanceError):
    """Attempt to sign (or revoke on) a sealed report run."""

    status_code = status.HTTP_409_CONFLICT
    code = "STALE_SIGNATURE_TARGET"


class DuplicateSignature(GovernanceError):
    """An active signature already exists for (report_run_id, signature_role)."""

    status_code = status.HTTP_409_CONFLICT
    code = "DUPLICATE_SIGNATURE"


class InvalidSignature(GovernanceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_SIGNATURE"


class SignatureNotAuthorized(GovernanceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "SIGNATURE_NOT_AUTHORIZED"


class TokenExpiredOrInvalid(GovernanceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_EXPIRED_OR_INVALID"

    def __init__(self, message: str = "Print token is invalid or expired", **context: Any):
        super().__init__(message, **context)


def error_context(error: GovernanceError, request_id: Optional[str]) -> dict:
    """Render an error body including the request id for investigation."""
    body = error.to_dict()
    if request_id:
        body["request_id"] = request_id
    return body
