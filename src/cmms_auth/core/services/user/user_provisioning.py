"""Just-in-time provisioning of users from verified external identities."""

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from src.cmms_auth.core.exceptions import (
    GENERIC_SSO_FAILURE,
    InvalidCredential,
    TenantUnresolved,
)
from src.cmms_auth.core.models.identity import ProvisionRequest, ProvisionResult
from src.cmms_auth.core.roles import DEFAULT_ROLE, canonical_roles, derive_primary_role
from src.cmms_auth.core.services.credentials import CredentialVerifier
from src.cmms_auth.core.services.mfa import MfaEngine
from src.cmms_auth.entities.core.user import User, UserRepository, normalize_email
from src.cmms_auth.runtime.context import get_config


class IdentityProvisioningService:
    def __init__(
        self,
        db_session: Session,
        credentials: CredentialVerifier,
        mfa: MfaEngine,
    ) -> None:
        self._db_session = db_session
        self._users = UserRepository(db_session)
        self._credentials = credentials
        self._mfa = mfa

    def provision_from_identity(
        self, request: ProvisionRequest, force: bool = False
    ) -> ProvisionResult:
        """Return the local user for ``request.email``, creating it if needed.

        Existing users are only refreshed from the identity when ``force`` is
        set. New users need a tenant. Repeating the call with the same input
        never creates a second record; losing an insert race to a concurrent
        request re-reads and returns the winner's row.
        """
        email = normalize_email(request.email)
        existing = self._users.get_by_email(email)
        if existing is not None:
            if force:
                existing = self._refresh(existing, request)
            return ProvisionResult(user=existing, created=False)

        if not get_config().features.jit_provisioning:
            logger.info("JIT provisioning disabled; refusing unknown SSO user")
            raise InvalidCredential(GENERIC_SSO_FAILURE)

        if not request.tenant_id:
            raise TenantUnresolved()

        roles = canonical_roles(request.roles) or [DEFAULT_ROLE]
        user = User(
            email=email,
            name=request.name or email.split("@", 1)[0],
            tenant_id=request.tenant_id,
            site_id=request.site_id,
            role=derive_primary_role(None, roles),
            roles=roles,
            password_hash=self._credentials.unusable_password(),
            mfa_enabled=self._mfa.initial_mfa_enabled(request.skip_mfa),
        )

        try:
            created = self._users.create(user)
        except IntegrityError:
            self._db_session.rollback()
            winner = self._users.get_by_email(email)
            if winner is None:
                logger.error("Provisioning conflict for {} but no row found", email)
                raise
            logger.info("User {} already provisioned by a concurrent request", winner.id)
            return ProvisionResult(user=winner, created=False)

        logger.info("Provisioned user {} in tenant {}", created.id, created.tenant_id)
        return ProvisionResult(user=created, created=True)

    def _refresh(self, user: User, request: ProvisionRequest) -> User:
        changed = False
        roles = canonical_roles(request.roles)
        if roles and roles != user.roles:
            user.roles = roles
            user.role = derive_primary_role(None, roles)
            changed = True
        if request.site_id and request.site_id != user.site_id:
            user.site_id = request.site_id
            changed = True
        if request.name and request.name != user.name:
            user.name = request.name
            changed = True
        if not changed:
            return user
        return self._users.save(user)
