"""User domain entity."""

from datetime import datetime

from pydantic import Field, field_validator

from src.cmms_auth.entities.core._base import Entity, as_utc


class User(Entity):
    """A person who can sign in to the maintenance application.

    Only the fields authentication needs are modelled here; work-order and
    asset data live elsewhere and reference ``id``.
    """

    email: str = Field(description="Lowercased email address")
    name: str | None = Field(default=None, description="Display name")
    employee_id: str | None = Field(default=None, description="HR employee number")
    password_hash: str | None = Field(
        default=None, description="Argon2 hash, or a legacy plaintext value pending upgrade"
    )
    tenant_id: str | None = Field(default=None)
    site_id: str | None = Field(default=None)
    role: str | None = Field(default=None, description="Explicit primary role, if set")
    roles: list[str] = Field(default_factory=list)

    mfa_secret: str | None = Field(default=None)
    mfa_enabled: bool = Field(default=False)
    active: bool = Field(default=True)
    token_version: int = Field(default=0)

    password_expired: bool = Field(default=False)
    bootstrap_account: bool = Field(default=False)
    invite_token_hash: str | None = Field(default=None)
    invite_expires_at: datetime | None = Field(default=None)

    failed_login_count: int = Field(default=0)
    last_failed_login_at: datetime | None = Field(default=None)
    lockout_until: datetime | None = Field(default=None)
    last_login_at: datetime | None = Field(default=None)

    @field_validator(
        "invite_expires_at",
        "last_failed_login_at",
        "lockout_until",
        "last_login_at",
        mode="after",
    )
    @classmethod
    def _datetimes_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def requires_rotation(self) -> bool:
        return self.password_expired or self.bootstrap_account
