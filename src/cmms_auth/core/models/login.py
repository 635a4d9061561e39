"""Login state machine models."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from src.cmms_auth.core.models.session import IssuedSession
from src.cmms_auth.entities.core.user import User


class LoginState(StrEnum):
    CHECK_ACCOUNT = "check_account"
    CHECK_TENANT_MATCH = "check_tenant_match"
    VERIFY_CREDENTIAL = "verify_credential"
    ROTATION_REQUIRED = "rotation_required"
    MFA_REQUIRED = "mfa_required"
    ISSUE_TOKEN = "issue_token"
    REJECTED = "rejected"


class LoginRequest(BaseModel):
    email: str
    password: str
    remember: bool = False
    tenant_hint: str | None = None


class LoginOutcome(BaseModel):
    """Terminal result of one pass through the login state machine."""

    state: LoginState
    user: User | None = None
    session: IssuedSession | None = None
    rotation_token: str | None = None
    mfa_secret: str | None = None
    trail: list[LoginState] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)
