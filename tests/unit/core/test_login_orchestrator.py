"""Unit tests for the login state machine."""

from datetime import timedelta
from unittest.mock import patch

import pyotp
import pytest

from src.cmms_auth.core.exceptions import (
    AccountDisabled,
    AccountLocked,
    InvalidCredential,
    InvalidMfaCode,
    InvalidRotationToken,
    InvalidToken,
    MfaChallengeRequired,
    MfaNotConfigured,
    RotationNotRequired,
    RotationRequired,
    TenantMismatch,
    TenantUnresolved,
    TooManyAttempts,
    WeakPassword,
)
from src.cmms_auth.core.models import FederatedIdentity, LoginRequest, LoginState
from src.cmms_auth.core.services import AuditService, LoginOrchestrator
from src.cmms_auth.entities.core._base import utcnow
from src.cmms_auth.entities.core.user import UserRepository
from src.cmms_auth.runtime.config.config_data import (
    ConfigData,
    LockoutConfig,
    MFAConfig,
    SecurityConfig,
)
from src.cmms_auth.runtime.context import with_context
from tests.fixtures.auth import NEW_PASSWORD, TEST_PASSWORD


def login_request(**overrides) -> LoginRequest:
    fields = {"email": "tech@plant.example", "password": TEST_PASSWORD}
    fields.update(overrides)
    return LoginRequest(**fields)


def actions(audit: AuditService) -> list[str]:
    return [event.action for event in reversed(audit.recent())]


class TestLocalLogin:
    def test_success_issues_tokens(
        self, orchestrator: LoginOrchestrator, make_user, request_factory, audit_service
    ):
        make_user()
        outcome = orchestrator.login(login_request(email="Tech@Plant.Example"), request_factory())

        assert outcome.state == LoginState.ISSUE_TOKEN
        assert outcome.session is not None
        assert outcome.trail == [
            LoginState.CHECK_ACCOUNT,
            LoginState.CHECK_TENANT_MATCH,
            LoginState.VERIFY_CREDENTIAL,
            LoginState.ISSUE_TOKEN,
        ]
        assert outcome.user.last_login_at is not None
        assert actions(audit_service) == ["login_success"]

    def test_unknown_email_and_wrong_password_look_the_same(
        self, orchestrator, make_user, request_factory
    ):
        make_user()
        with pytest.raises(InvalidCredential) as unknown:
            orchestrator.login(login_request(email="ghost@plant.example"), request_factory())
        with pytest.raises(InvalidCredential) as wrong:
            orchestrator.login(login_request(password="Wrong-Pass-123!"), request_factory())

        assert unknown.value.to_response() == wrong.value.to_response()
        assert unknown.value.status_code == wrong.value.status_code

    def test_inactive_account_is_a_generic_failure(
        self, orchestrator, make_user, request_factory, audit_service
    ):
        make_user(active=False)
        with pytest.raises(AccountDisabled) as exc_info:
            orchestrator.login(login_request(), request_factory())
        assert exc_info.value.message == InvalidCredential.message
        event = audit_service.recent()[0]
        assert event.action == "login_failed"
        assert event.details["cause"] == "inactive"

    def test_tenant_mismatch(self, orchestrator, make_user, request_factory, audit_service):
        make_user(tenant_id="acme")
        with pytest.raises(TenantMismatch):
            orchestrator.login(login_request(tenant_hint="globex"), request_factory())
        assert audit_service.recent()[0].action == "login_tenant_mismatch"

    def test_tenant_hint_fills_missing_tenant(
        self, orchestrator, make_user, request_factory, user_repo: UserRepository
    ):
        user = make_user(tenant_id=None)
        orchestrator.login(login_request(tenant_hint="acme"), request_factory())
        assert user_repo.get(user.id).tenant_id == "acme"

    def test_legacy_password_is_upgraded(
        self, orchestrator, make_user, request_factory, user_repo, credentials
    ):
        user = make_user(password=None, password_hash=TEST_PASSWORD)
        orchestrator.login(login_request(), request_factory())

        stored = user_repo.get(user.id).password_hash
        assert credentials.is_hashed(stored)
        assert credentials.verify(stored, TEST_PASSWORD).valid


class TestConcurrentLogout:
    """A logout landing while the password hash is being checked must stick."""

    @pytest.fixture
    def logout_during_verify(self, credentials, user_repo):
        original = credentials.verify

        def _patch(user_id: str):
            def verify(stored_hash, candidate):
                user_repo.increment_token_version(user_id)
                return original(stored_hash, candidate)

            return patch.object(credentials, "verify", side_effect=verify)

        return _patch

    def test_successful_login_keeps_revocation(
        self, orchestrator, make_user, request_factory, user_repo, token_service, logout_during_verify
    ):
        user = make_user()
        stale = token_service.issue(user, request_factory())

        with logout_during_verify(user.id):
            outcome = orchestrator.login(login_request(), request_factory())

        assert user_repo.get(user.id).token_version == 1
        with pytest.raises(InvalidToken):
            token_service.authenticate(stale.access_token, request_factory(), user_repo)
        fresh, _ = token_service.authenticate(
            outcome.session.access_token, request_factory(), user_repo
        )
        assert fresh.id == user.id

    def test_failed_login_keeps_revocation(
        self, orchestrator, make_user, request_factory, user_repo, token_service, logout_during_verify
    ):
        user = make_user()
        stale = token_service.issue(user, request_factory())

        with logout_during_verify(user.id), pytest.raises(InvalidCredential):
            orchestrator.login(login_request(password="Wrong-Pass-123!"), request_factory())

        stored = user_repo.get(user.id)
        assert stored.token_version == 1
        assert stored.failed_login_count == 1
        with pytest.raises(InvalidToken):
            token_service.authenticate(stale.access_token, request_factory(), user_repo)


class TestLockout:
    @pytest.fixture(autouse=True)
    def strict_lockout(self):
        override = ConfigData(
            security=SecurityConfig(
                lockout=LockoutConfig(threshold=2, window_ms=60_000, duration_ms=60_000)
            )
        )
        with with_context(override):
            yield

    def test_lock_after_threshold(self, orchestrator, make_user, request_factory, audit_service):
        make_user()
        for _ in range(2):
            with pytest.raises(InvalidCredential):
                orchestrator.login(login_request(password="nope"), request_factory())

        with pytest.raises(AccountLocked) as exc_info:
            orchestrator.login(login_request(), request_factory())
        assert int(exc_info.value.headers["Retry-After"]) > 0
        assert actions(audit_service) == ["login_failed", "login_locked", "login_locked"]

    def test_lock_expires(self, orchestrator, make_user, request_factory, user_repo):
        user = make_user(lockout_until=utcnow() - timedelta(seconds=1), failed_login_count=2)
        outcome = orchestrator.login(login_request(), request_factory())
        assert outcome.state == LoginState.ISSUE_TOKEN
        stored = user_repo.get(user.id)
        assert stored.failed_login_count == 0
        assert stored.lockout_until is None


class TestAccountLimiter:
    def test_repeated_failures_are_throttled(
        self, orchestrator, make_user, request_factory, failure_limiter
    ):
        with pytest.raises(InvalidCredential):
            orchestrator.login(login_request(email="a@x.example"), request_factory())
        with pytest.raises(InvalidCredential):
            orchestrator.login(login_request(email="a@x.example"), request_factory())
        with pytest.raises(InvalidCredential):
            orchestrator.login(login_request(email="a@x.example"), request_factory())
        with pytest.raises(TooManyAttempts) as exc_info:
            orchestrator.login(login_request(email="A@x.example"), request_factory())
        assert exc_info.value.status_code == 429
        assert "Retry-After" in exc_info.value.headers

    def test_throttled_attempt_is_audited(
        self, orchestrator, make_user, request_factory, audit_service
    ):
        for _ in range(3):
            with pytest.raises(InvalidCredential):
                orchestrator.login(login_request(email="a@x.example"), request_factory())
        with pytest.raises(TooManyAttempts):
            orchestrator.login(login_request(email="a@x.example"), request_factory())

        event = audit_service.recent()[0]
        assert event.action == "login_failed"
        assert event.details["reason"] == "auth.too_many_attempts"
        assert event.details["cause"] == "rate_limited"
        assert event.details["email"] == "a@x.example"

    def test_successes_are_not_counted(self, orchestrator, make_user, request_factory):
        make_user()
        for _ in range(5):
            assert orchestrator.login(login_request(), request_factory()).state == (
                LoginState.ISSUE_TOKEN
            )


class TestMfa:
    def test_enrolled_user_gets_challenge_not_tokens(
        self, orchestrator, make_user, request_factory, totp_secret, audit_service
    ):
        make_user(mfa_secret=totp_secret, mfa_enabled=True)
        outcome = orchestrator.login(login_request(remember=True), request_factory())

        assert outcome.state == LoginState.MFA_REQUIRED
        assert outcome.session is None
        assert outcome.details["challenge"]
        assert actions(audit_service) == ["mfa_challenge"]

    def test_verify_issues_tokens_and_keeps_remember(
        self, orchestrator, make_user, request_factory, totp_secret, audit_service
    ):
        user = make_user(mfa_secret=totp_secret, mfa_enabled=True)
        challenge = orchestrator.login(login_request(remember=True), request_factory()).details[
            "challenge"
        ]

        outcome = orchestrator.verify_mfa(
            user.id, pyotp.TOTP(totp_secret).now(), challenge, request_factory()
        )
        assert outcome.state == LoginState.ISSUE_TOKEN
        assert outcome.session.remember is True
        assert actions(audit_service)[-1] == "mfa_validated"

    def test_verify_without_challenge_is_refused(
        self, orchestrator, make_user, request_factory, totp_secret, audit_service
    ):
        user = make_user(mfa_secret=totp_secret, mfa_enabled=True)
        with pytest.raises(MfaChallengeRequired):
            orchestrator.verify_mfa(user.id, pyotp.TOTP(totp_secret).now(), None, request_factory())

        event = audit_service.recent()[0]
        assert event.action == "mfa_failed"
        assert event.user_id == user.id
        assert event.details["reason"] == "auth.mfa_challenge_required"

    def test_wrong_code(self, orchestrator, make_user, request_factory, totp_secret, audit_service):
        user = make_user(mfa_secret=totp_secret, mfa_enabled=True)
        challenge = orchestrator.login(login_request(), request_factory()).details["challenge"]
        with pytest.raises(InvalidMfaCode):
            orchestrator.verify_mfa(user.id, "000000", challenge, request_factory())
        assert actions(audit_service)[-1] == "mfa_failed"

    def test_enforced_policy_without_secret(self, orchestrator, make_user, request_factory):
        user = make_user()
        with with_context(ConfigData(mfa=MFAConfig(enforced=True))):
            outcome = orchestrator.login(login_request(), request_factory())
            assert outcome.state == LoginState.MFA_REQUIRED
            with pytest.raises(MfaNotConfigured):
                orchestrator.verify_mfa(
                    user.id, "123456", outcome.details["challenge"], request_factory()
                )

    def test_setup_then_verify_enables_mfa(
        self, orchestrator, make_user, request_factory, user_repo
    ):
        user = make_user()
        with with_context(ConfigData(mfa=MFAConfig(enforced=True))):
            challenge = orchestrator.login(login_request(), request_factory()).details["challenge"]
            _, enrollment = orchestrator.begin_mfa_setup(user.id, challenge)
            outcome = orchestrator.verify_mfa(
                user.id, enrollment.current_code, challenge, request_factory()
            )

        assert outcome.state == LoginState.ISSUE_TOKEN
        assert user_repo.get(user.id).mfa_enabled is True

    def test_setup_requires_challenge_or_own_session(self, orchestrator, make_user):
        user = make_user()
        with pytest.raises(MfaChallengeRequired):
            orchestrator.begin_mfa_setup(user.id, None)
        _, enrollment = orchestrator.begin_mfa_setup(user.id, None, session_user_id=user.id)
        assert enrollment.secret

    def test_setup_refused_when_already_enabled(self, orchestrator, make_user, totp_secret):
        user = make_user(mfa_secret=totp_secret, mfa_enabled=True)
        with pytest.raises(InvalidCredential):
            orchestrator.begin_mfa_setup(user.id, None, session_user_id=user.id)


class TestBootstrapRotation:
    def test_bootstrap_login_requires_rotation(
        self, orchestrator, make_user, request_factory, user_repo, audit_service
    ):
        user = make_user(bootstrap_account=True)
        outcome = orchestrator.login(login_request(), request_factory())

        assert outcome.state == LoginState.ROTATION_REQUIRED
        assert outcome.session is None
        assert outcome.rotation_token
        assert outcome.mfa_secret == user_repo.get(user.id).mfa_secret
        assert actions(audit_service) == ["password_rotation_required"]

    def test_rotation_takes_precedence_over_mfa(self, orchestrator, make_user, request_factory, totp_secret):
        make_user(password_expired=True, mfa_secret=totp_secret, mfa_enabled=True)
        outcome = orchestrator.login(login_request(), request_factory())
        assert outcome.state == LoginState.ROTATION_REQUIRED
        assert outcome.mfa_secret == totp_secret

    def test_rotation_end_to_end_revokes_old_sessions(
        self, orchestrator, make_user, request_factory, user_repo, credentials, audit_service
    ):
        user = make_user()
        before = orchestrator.login(login_request(), request_factory()).session
        user = user_repo.get(user.id)
        user.bootstrap_account = True
        user_repo.save(user)

        pending = orchestrator.login(login_request(), request_factory())
        rotated = orchestrator.rotate_password(
            pending.rotation_token, NEW_PASSWORD, pyotp.TOTP(pending.mfa_secret).now()
        )

        assert rotated.bootstrap_account is False
        assert rotated.password_expired is False
        assert rotated.mfa_enabled is True
        assert credentials.verify(rotated.password_hash, NEW_PASSWORD).valid
        assert "bootstrap_rotation" in actions(audit_service)
        with pytest.raises(InvalidToken):
            orchestrator.refresh(before.refresh_token, request_factory())
        with pytest.raises(InvalidRotationToken):
            orchestrator.rotate_password(
                pending.rotation_token, NEW_PASSWORD, pyotp.TOTP(pending.mfa_secret).now()
            )

        after = orchestrator.login(login_request(password=NEW_PASSWORD), request_factory())
        assert after.state == LoginState.MFA_REQUIRED

    def test_rotation_needs_valid_totp(self, orchestrator, make_user, request_factory):
        make_user(bootstrap_account=True)
        pending = orchestrator.login(login_request(), request_factory())
        with pytest.raises(InvalidMfaCode):
            orchestrator.rotate_password(pending.rotation_token, NEW_PASSWORD, "000000")

    def test_rotation_rejects_weak_password(
        self, orchestrator, make_user, request_factory, audit_service
    ):
        user = make_user(bootstrap_account=True)
        pending = orchestrator.login(login_request(), request_factory())
        with pytest.raises(WeakPassword):
            orchestrator.rotate_password(
                pending.rotation_token, "weak", pyotp.TOTP(pending.mfa_secret).now()
            )

        event = audit_service.recent()[0]
        assert event.action == "password_rotation_failed"
        assert event.user_id == user.id
        assert event.details["reason"] == "auth.weak_password"

    def test_rotation_when_not_required(
        self, orchestrator, make_user, token_service, totp_secret, audit_service
    ):
        user = make_user(mfa_secret=totp_secret)
        token = token_service.issue_rotation_token(user)
        with pytest.raises(RotationNotRequired):
            orchestrator.rotate_password(token, NEW_PASSWORD, pyotp.TOTP(totp_secret).now())

        event = audit_service.recent()[0]
        assert event.action == "password_rotation_failed"
        assert event.user_id == user.id
        assert event.details["reason"] == "auth.rotation_not_required"

    def test_garbage_rotation_token_is_audited(self, orchestrator, audit_service):
        with pytest.raises(InvalidRotationToken):
            orchestrator.rotate_password("not-a-token", NEW_PASSWORD, "123456")

        event = audit_service.recent()[0]
        assert event.action == "password_rotation_failed"
        assert event.user_id is None
        assert event.details["reason"] == "auth.invalid_rotation_token"

    def test_mfa_verify_refused_while_rotation_pending(
        self, orchestrator, make_user, request_factory, token_service, totp_secret
    ):
        user = make_user(bootstrap_account=True, mfa_secret=totp_secret)
        challenge = token_service.issue_mfa_challenge(user)
        with pytest.raises(RotationRequired):
            orchestrator.verify_mfa(user.id, pyotp.TOTP(totp_secret).now(), challenge, request_factory())


class TestFederatedLogin:
    def identity(self, **overrides) -> FederatedIdentity:
        fields = {
            "protocol": "saml",
            "provider": "saml",
            "email": "sso.user@plant.example",
            "roles": ["admin"],
            "tenant_hint": "acme",
        }
        fields.update(overrides)
        return FederatedIdentity(**fields)

    def test_provisions_and_audits(self, orchestrator, audit_service):
        user = orchestrator.complete_federated_login(self.identity(), force=True)
        assert user.tenant_id == "acme"
        assert user.roles == ["admin"]
        assert user.mfa_enabled is False
        event = audit_service.recent()[0]
        assert event.action == "saml_login_success"
        assert event.details["created"] is True

    def test_existing_user_in_other_tenant(self, orchestrator, make_user, audit_service):
        make_user(email="sso.user@plant.example", tenant_id="globex")
        with pytest.raises(TenantMismatch):
            orchestrator.complete_federated_login(self.identity())
        assert audit_service.recent()[0].action == "sso_login_failed"

    def test_unresolvable_tenant(self, orchestrator):
        with pytest.raises(TenantUnresolved):
            orchestrator.complete_federated_login(
                self.identity(protocol="oauth2", provider="github", tenant_hint=None)
            )

    def test_inactive_user_is_refused(self, orchestrator, make_user):
        make_user(email="sso.user@plant.example", active=False)
        with pytest.raises(AccountDisabled):
            orchestrator.complete_federated_login(self.identity())

    def test_sso_token_exchange(self, orchestrator, token_service, request_factory, audit_service):
        user = orchestrator.complete_federated_login(self.identity())
        sso_token = token_service.issue_sso_token(user, "saml", "/dash")

        outcome = orchestrator.exchange_sso_token(sso_token, request_factory())
        assert outcome.state == LoginState.ISSUE_TOKEN
        assert audit_service.recent()[0].action == "sso_session_issued"

    def test_sso_token_needs_second_factor_when_untrusted(
        self, orchestrator, token_service, request_factory
    ):
        with with_context(
            ConfigData(mfa=MFAConfig(enforced=True, sso_trusted_second_factor=False))
        ):
            user = orchestrator.complete_federated_login(self.identity())
            assert user.mfa_enabled is True
            outcome = orchestrator.exchange_sso_token(
                token_service.issue_sso_token(user, "saml", None), request_factory()
            )
        assert outcome.state == LoginState.MFA_REQUIRED

    def test_sso_token_after_logout_is_rejected(
        self, orchestrator, token_service, request_factory
    ):
        user = orchestrator.complete_federated_login(self.identity())
        sso_token = token_service.issue_sso_token(user, "saml", None)
        orchestrator.logout(user)
        with pytest.raises(InvalidToken):
            orchestrator.exchange_sso_token(sso_token, request_factory())

    def test_sso_token_is_single_use(self, orchestrator, token_service, request_factory):
        user = orchestrator.complete_federated_login(self.identity())
        sso_token = token_service.issue_sso_token(user, "saml", None)

        assert orchestrator.exchange_sso_token(sso_token, request_factory()).session
        with pytest.raises(InvalidToken):
            orchestrator.exchange_sso_token(sso_token, request_factory())
