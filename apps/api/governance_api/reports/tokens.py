"""Short-lived print/export tokens.

A print token lets a headless renderer fetch ``/print/{run_id}`` without a
user session. It is a compact HS256 JWS over the canonical JSON of
``{job_id, organization_id, report_run_id, iat, exp}``.
"""

import json
import logging
import time
from typing import Callable, Optional

from jose import jws
from jose.constants import ALGORITHMS
from jose.exceptions import JWSError
from pydantic import BaseModel, ValidationError

from governance_api.errors import TokenExpiredOrInvalid
from governance_api.ledger.canonical import canonicalize
from governance_api.settings import get_settings
from governance_api.utils import metrics

logger = logging.getLogger(__name__)


class PrintTokenPayload(BaseModel):
    job_id: str
    organization_id: str
    report_run_id: Optional[str] = None
    iat: int
    exp: int


class PrintTokenSigner:
    """Issue and verify print tokens."""

    def __init__(self, secret: str, ttl_seconds: int = 300, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("Print token secret must not be empty")
        self._key = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(
        self,
        job_id: str,
        organization_id: str,
        report_run_id: Optional[str] = None,
        ttl: Optional[int] = None,
    ) -> str:
        now = int(self._clock())
        payload = {
            "job_id": job_id,
            "organization_id": organization_id,
            "iat": now,
            "exp": now + (ttl if ttl is not None else self.ttl_seconds),
        }
        if report_run_id is not None:
            payload["report_run_id"] = report_run_id
        return jws.sign(canonicalize(payload), self._key, algorithm=ALGORITHMS.HS256)

    def verify(self, token: str, run_id: Optional[str] = None) -> Optional[PrintTokenPayload]:
        """Return the payload, or None when the token must not be honoured.

        A token scoped to a report run is only valid for that run's path.
        """
        result, payload = self._check(token, run_id)
        metrics.print_token_verifications.labels(result=result).inc()
        if payload is None:
            logger.warning(f"Print token rejected: {result}", extra={"report_run_id": run_id})
        return payload

    def require(self, token: Optional[str], run_id: Optional[str] = None) -> PrintTokenPayload:
        payload = self.verify(token, run_id) if token else None
        if payload is None:
            raise TokenExpiredOrInvalid(report_run_id=run_id)
        return payload

    def _check(self, token: str, run_id: Optional[str]) -> tuple[str, Optional[PrintTokenPayload]]:
        try:
            raw = jws.verify(token, self._key, algorithms=[ALGORITHMS.HS256])
        except JWSError:
            return "bad_signature", None

        try:
            payload = PrintTokenPayload.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            return "malformed", None

        if payload.exp <= int(self._clock()):
            return "expired", None
        if run_id is not None and payload.report_run_id is not None and payload.report_run_id != run_id:
            return "wrong_run", None
        return "valid", payload


_print_token_signer: Optional[PrintTokenSigner] = None


def get_print_token_signer() -> PrintTokenSigner:
    """Get or create print token signer instance."""
    global _print_token_signer
    if _print_token_signer is None:
        settings = get_settings()
        _print_token_signer = PrintTokenSigner(
            settings.print_token_secret,
            ttl_seconds=settings.print_token_ttl_seconds,
        )
    return _print_token_signer
