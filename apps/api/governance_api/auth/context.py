"""Request actor taken from identity headers set by the gateway."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request, status
from fastapi.exceptions import HTTPException

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("owner", "admin")


@dataclass(frozen=True)
class Actor:
    user_id: str
    organization_id: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def get_actor(request: Request) -> Actor:
    """Extract the acting user from x-user-id / x-organization-id / x-user-role."""
    user_id = request.headers.get("x-user-id")
    organization_id = request.headers.get("x-organization-id")
    if not user_id or not organization_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing identity. Provide x-user-id and x-organization-id headers.",
        )

    role = (request.headers.get("x-user-role") or "member").strip().lower()
    actor = Actor(user_id=user_id, organization_id=organization_id, role=role)
    request.state.actor = actor
    return actor


def client_details(request: Request) -> tuple[Optional[str], Optional[str]]:
    """Return (ip_address, user_agent) for audit columns."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")
