"""Authorization decisions for signing, finalizing and revoking."""

from typing import Optional, Protocol

from governance_api.auth.context import Actor


class AuthorizationService(Protocol):
    """Pluggable authorization collaborator."""

    def can_sign(
        self,
        actor: Actor,
        signature_role: str,
        signer_user_id: Optional[str],
        job_created_by: Optional[str],
    ) -> bool:
        ...

    def can_finalize(self, actor: Actor, run_generated_by: str) -> bool:
        ...

    def can_revoke(self, actor: Actor) -> bool:
        ...


class RoleBasedAuthorization:
    """Default policy: admins and owners may do anything in their organization.

    Other members may sign only as themselves, and ``prepared_by`` is
    reserved for the job creator. Finalizing is open to the run's creator.
    """

    def can_sign(self, actor, signature_role, signer_user_id, job_created_by) -> bool:
        if actor.is_admin:
            return True
        if signer_user_id is not None and signer_user_id != actor.user_id:
            return False
        if signature_role == "prepared_by":
            return job_created_by is not None and job_created_by == actor.user_id
        return True

    def can_finalize(self, actor, run_generated_by) -> bool:
        return actor.is_admin or actor.user_id == run_generated_by

    def can_revoke(self, actor) -> bool:
        return actor.is_admin


_authorizer: Optional[AuthorizationService] = None


def get_authorizer() -> AuthorizationService:
    """Get or create the authorization service instance."""
    global _authorizer
    if _authorizer is None:
        _authorizer = RoleBasedAuthorization()
    return _authorizer
