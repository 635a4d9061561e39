"""User repository for data access operations."""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlmodel import Session, select

from src.cmms_auth.entities.core._base import utcnow
from src.cmms_auth.entities.core.user.entity import User
from src.cmms_auth.entities.core.user.table import UserTable

_SAVE_EXCLUDED = {"id", "created_at", "token_version"}


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """Data-access layer for users.

    Mutations are explicit command methods; callers never hold a live row.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def _to_entity(self, row: UserTable | None) -> User | None:
        if row is None:
            return None
        return User.model_validate(row, from_attributes=True)

    def get(self, user_id: str) -> User | None:
        return self._to_entity(
            self._session.get(UserTable, user_id, populate_existing=True)
        )

    def get_by_email(self, email: str) -> User | None:
        statement = (
            select(UserTable)
            .where(UserTable.email == normalize_email(email))
            .execution_options(populate_existing=True)
        )
        return self._to_entity(self._session.exec(statement).first())

    def create(self, user: User) -> User:
        """Insert a new user. Duplicate emails raise ``IntegrityError``."""
        row = UserTable(**user.model_dump())
        row.email = normalize_email(row.email)
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return self._to_entity(row)  # type: ignore[return-value]

    def save(self, user: User) -> User:
        """Persist the profile and flag fields of ``user`` in a single commit.

        ``token_version`` is never written here; only
        ``increment_token_version`` moves it.
        """
        row = self._session.get(UserTable, user.id)
        if row is None:
            raise LookupError(f"User {user.id} does not exist")
        for field, value in user.model_dump(exclude=_SAVE_EXCLUDED).items():
            setattr(row, field, value)
        row.email = normalize_email(row.email)
        row.updated_at = utcnow()
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)
        return self._to_entity(row)  # type: ignore[return-value]

    def _require(self, user_id: str) -> User:
        user = self.get(user_id)
        if user is None:
            raise LookupError(f"User {user_id} does not exist")
        return user

    def increment_token_version(self, user_id: str) -> int:
        """Atomically bump the token version and return the new value."""
        self._session.execute(
            update(UserTable)
            .where(UserTable.id == user_id)
            .values(token_version=UserTable.token_version + 1, updated_at=utcnow())
        )
        self._session.commit()
        return self._require(user_id).token_version

    def set_mfa_secret(self, user_id: str, secret: str) -> None:
        self._session.execute(
            update(UserTable)
            .where(UserTable.id == user_id)
            .values(mfa_secret=secret, mfa_enabled=False, updated_at=utcnow())
        )
        self._session.commit()

    def enable_mfa(self, user_id: str) -> None:
        self._session.execute(
            update(UserTable)
            .where(UserTable.id == user_id)
            .values(mfa_enabled=True, updated_at=utcnow())
        )
        self._session.commit()

    def record_failed_login(
        self,
        user_id: str,
        now: datetime,
        threshold: int,
        window: timedelta,
        duration: timedelta,
    ) -> User:
        """Count a failure inside the sliding window and lock when it overflows.

        Only the lockout columns are written.
        """
        last = self._require(user_id).last_failed_login_at
        in_window = last is not None and now - last <= window
        self._session.execute(
            update(UserTable)
            .where(UserTable.id == user_id)
            .values(
                failed_login_count=UserTable.failed_login_count + 1 if in_window else 1,
                last_failed_login_at=now,
                updated_at=utcnow(),
            )
        )
        self._session.execute(
            update(UserTable)
            .where((UserTable.id == user_id) & (UserTable.failed_login_count >= threshold))
            .values(lockout_until=now + duration)
        )
        self._session.commit()
        return self._require(user_id)

    def record_successful_login(
        self,
        user_id: str,
        now: datetime,
        password_hash: str | None = None,
        tenant_id: str | None = None,
    ) -> User:
        """Clear lockout counters and stamp ``last_login_at``.

        A rehashed password and a first tenant assignment ride along in the
        same statement.
        """
        values: dict[str, Any] = {
            "failed_login_count": 0,
            "last_failed_login_at": None,
            "lockout_until": None,
            "last_login_at": now,
            "updated_at": utcnow(),
        }
        if password_hash is not None:
            values["password_hash"] = password_hash
        if tenant_id is not None:
            values["tenant_id"] = tenant_id
        self._session.execute(update(UserTable).where(UserTable.id == user_id).values(**values))
        self._session.commit()
        return self._require(user_id)
