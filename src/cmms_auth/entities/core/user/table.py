"""User database table model."""

from datetime import datetime

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field

from src.cmms_auth.entities.core._base import EntityTable


class UserTable(EntityTable, table=True):
    """Database persistence model for users."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    email: str = Field(index=True)
    name: str | None = None
    employee_id: str | None = None
    password_hash: str | None = None
    tenant_id: str | None = Field(default=None, index=True)
    site_id: str | None = None
    role: str | None = None
    roles: list[str] = Field(default_factory=list, sa_column=Column(JSON))

    mfa_secret: str | None = None
    mfa_enabled: bool = False
    active: bool = True
    token_version: int = 0

    password_expired: bool = False
    bootstrap_account: bool = False
    invite_token_hash: str | None = None
    invite_expires_at: datetime | None = None

    failed_login_count: int = 0
    last_failed_login_at: datetime | None = None
    lockout_until: datetime | None = None
    last_login_at: datetime | None = None
