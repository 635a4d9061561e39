"""Password hashing and verification."""

import hmac
import secrets
from dataclasses import dataclass

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from loguru import logger

HASH_PREFIX = "$argon2"


@dataclass(frozen=True)
class CredentialCheck:
    valid: bool
    needs_upgrade: bool = False


class CredentialVerifier:
    """Argon2 password verification with a constant-cost miss path.

    Accounts without a hash still pay for one Argon2 verification against a
    throwaway hash so response time does not reveal whether an email exists.
    Stored values without the Argon2 prefix are legacy plaintext; a match is
    accepted once and flagged for re-hashing.
    """

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher()
        self._fake_hash = self._hasher.hash(secrets.token_urlsafe(24))

    @staticmethod
    def is_hashed(stored: str) -> bool:
        return stored.startswith(HASH_PREFIX)

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def _dummy_compare(self, candidate: str) -> None:
        try:
            self._hasher.verify(self._fake_hash, candidate)
        except VerificationError:
            pass

    def verify(self, stored_hash: str | None, candidate: str) -> CredentialCheck:
        if not stored_hash:
            self._dummy_compare(candidate)
            return CredentialCheck(valid=False)

        if not self.is_hashed(stored_hash):
            self._dummy_compare(candidate)
            matched = hmac.compare_digest(
                stored_hash.encode("utf-8"), candidate.encode("utf-8")
            )
            if matched:
                logger.info("Legacy credential matched; scheduling hash upgrade")
            return CredentialCheck(valid=matched, needs_upgrade=matched)

        try:
            self._hasher.verify(stored_hash, candidate)
        except VerifyMismatchError:
            return CredentialCheck(valid=False)
        except (InvalidHashError, VerificationError):
            logger.warning("Stored credential could not be verified")
            return CredentialCheck(valid=False)

        return CredentialCheck(
            valid=True, needs_upgrade=self._hasher.check_needs_rehash(stored_hash)
        )

    def unusable_password(self) -> str:
        """Hash of a random secret nobody knows, for SSO-only accounts."""
        return self._hasher.hash(secrets.token_urlsafe(32))
