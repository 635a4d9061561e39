"""Local account registration and invite acceptance."""

import hmac
from datetime import timedelta

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from src.cmms_auth.core.exceptions import (
    DuplicateAccount,
    InvalidInvite,
    TenantMismatch,
    TenantRequired,
    WeakPassword,
)
from src.cmms_auth.core.roles import DEFAULT_ROLE
from src.cmms_auth.core.security import (
    generate_secure_token,
    hash_token,
    validate_password_strength,
)
from src.cmms_auth.core.services.credentials import CredentialVerifier
from src.cmms_auth.entities.core._base import utcnow
from src.cmms_auth.entities.core.user import User, UserRepository, normalize_email
from src.cmms_auth.runtime.context import get_config


def resolve_registration_tenant(
    body_tenant: str | None, header_tenant: str | None
) -> str:
    """Tenant for a new local account, from the body or the X-Tenant-Id header."""
    if body_tenant and header_tenant and body_tenant != header_tenant:
        raise TenantMismatch("Tenant mismatch")
    tenant = body_tenant or header_tenant
    if not tenant:
        raise TenantRequired()
    return tenant


class UserRegistrationService:
    def __init__(self, db_session: Session, credentials: CredentialVerifier) -> None:
        self._db_session = db_session
        self._users = UserRepository(db_session)
        self._credentials = credentials

    def _check_password(self, password: str) -> None:
        problems = validate_password_strength(password)
        if problems:
            raise WeakPassword(payload={"errors": problems})

    def register(
        self,
        name: str,
        email: str,
        password: str,
        tenant_id: str,
        employee_id: str | None = None,
    ) -> User:
        email = normalize_email(email)
        self._check_password(password)
        if self._users.get_by_email(email) is not None:
            raise DuplicateAccount()

        user = User(
            name=name.strip(),
            email=email,
            employee_id=employee_id,
            tenant_id=tenant_id,
            role=DEFAULT_ROLE,
            roles=[DEFAULT_ROLE],
            password_hash=self._credentials.hash(password),
        )
        try:
            created = self._users.create(user)
        except IntegrityError as exc:
            self._db_session.rollback()
            raise DuplicateAccount() from exc
        logger.info("Registered user {} in tenant {}", created.id, tenant_id)
        return created

    def issue_invite(self, user: User) -> str:
        """Attach a one-time invite to ``user`` and return the raw token."""
        token = generate_secure_token(32)
        user.invite_token_hash = hash_token(token)
        user.invite_expires_at = utcnow() + timedelta(
            seconds=get_config().security.invite_ttl_seconds
        )
        self._users.save(user)
        return token

    def accept_invite(self, email: str, token: str, password: str) -> User:
        user = self._users.get_by_email(email)
        if (
            user is None
            or not user.invite_token_hash
            or not user.invite_expires_at
            or user.invite_expires_at < utcnow()
            or not hmac.compare_digest(hash_token(token), user.invite_token_hash)
        ):
            raise InvalidInvite()
        self._check_password(password)

        user.password_hash = self._credentials.hash(password)
        user.invite_token_hash = None
        user.invite_expires_at = None
        user.password_expired = False
        saved = self._users.save(user)
        logger.info("Invite accepted for user {}", saved.id)
        return saved
