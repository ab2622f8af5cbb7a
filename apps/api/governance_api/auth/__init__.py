"""Actor extraction and authorization decisions."""

from governance_api.auth.authorization import AuthorizationService, RoleBasedAuthorization, get_authorizer
from governance_api.auth.context import ADMIN_ROLES, Actor, get_actor

__all__ = [
    "ADMIN_ROLES",
    "Actor",
    "AuthorizationService",
    "RoleBasedAuthorization",
    "get_actor",
    "get_authorizer",
]
