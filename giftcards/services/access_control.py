"""
Access Controller - Privilege level and hidden escalation counter.

Owns the AccessState for the process. Repeated submission of the reserved
unlock code raises privilege to admin once the threshold is reached.

Credentials are checked against Argon2 hashes; plaintext secrets are never
held in configuration.
"""

import threading
from collections.abc import Callable

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from structlog import get_logger

from giftcards.models.api import PrivilegeLevel
from giftcards.models.domain import AccessState, AdminUnlocked, AdminUnlockProgress

logger = get_logger(__name__)


class AccessController:
    """
    Privilege state machine.

    escalation_counter runs 0..threshold-1. Reaching the threshold grants
    admin and resets the counter. The counter survives restarts through
    persist_counter, which the card store provides.
    """

    def __init__(
        self,
        threshold: int = 10,
        initial_counter: int = 0,
        persist_counter: Callable[[int], None] | None = None,
        admin_email: str = "",
        admin_password_hash: str = "",
        generation_key_hash: str = "",
    ) -> None:
        if threshold < 1:
            raise ValueError(f"Escalation threshold must be at least 1: {threshold}")
        self._threshold = threshold
        self._state = AccessState(escalation_counter=max(0, min(initial_counter, threshold - 1)))
        self._persist_counter = persist_counter
        self._admin_email = admin_email
        self._admin_password_hash = admin_password_hash
        self._generation_key_hash = generation_key_hash
        self._password_hasher = PasswordHasher()
        self._lock = threading.RLock()

    @property
    def threshold(self) -> int:
        return self._threshold

    def state(self) -> AccessState:
        with self._lock:
            return self._state

    def current_privilege(self) -> PrivilegeLevel:
        with self._lock:
            return self._state.privilege_level

    def is_admin(self) -> bool:
        return self.current_privilege() == PrivilegeLevel.ADMIN

    def attempt_escalation(self) -> AdminUnlockProgress | AdminUnlocked:
        """Count one sentinel submission; grant admin at the threshold."""
        with self._lock:
            count = self._state.escalation_counter + 1

            if count >= self._threshold:
                self._set_state(AccessState(PrivilegeLevel.ADMIN, 0))
                logger.warning("admin_unlocked", threshold=self._threshold)
                return AdminUnlocked()

            self._set_state(AccessState(self._state.privilege_level, count))
            logger.info("admin_unlock_progress", count=count, threshold=self._threshold)
            return AdminUnlockProgress(count=count)

    def grant_admin(self) -> None:
        with self._lock:
            self._set_state(AccessState(PrivilegeLevel.ADMIN, 0))

    def revoke_admin(self) -> None:
        with self._lock:
            self._set_state(AccessState(PrivilegeLevel.STANDARD, self._state.escalation_counter))

    def reset_progress(self) -> None:
        """Clear escalation progress without touching privilege."""
        with self._lock:
            if self._state.escalation_counter:
                self._set_state(AccessState(self._state.privilege_level, 0))

    def login(self, email: str, password: str) -> bool:
        """
        Verify admin credentials and grant admin on success.

        Returns False for unknown email, wrong password, or when no password
        hash is configured.
        """
        if not self._admin_password_hash or email.strip().lower() != self._admin_email.lower():
            logger.warning("admin_login_rejected", reason="unknown_account")
            return False

        if not self._verify(self._admin_password_hash, password):
            logger.warning("admin_login_rejected", reason="bad_password")
            return False

        self.grant_admin()
        logger.info("admin_login_success", email=self._admin_email)
        return True

    def logout(self) -> None:
        """Drop admin privilege and any escalation progress."""
        with self._lock:
            self._set_state(AccessState(PrivilegeLevel.STANDARD, 0))
        logger.info("session_logout")

    def verify_generation_key(self, auth_key: str | None) -> bool:
        """Check an optional generation authKey against its configured hash."""
        if not auth_key or not self._generation_key_hash:
            return False
        valid = self._verify(self._generation_key_hash, auth_key)
        if not valid:
            logger.warning("generation_key_rejected")
        return valid

    def _verify(self, key_hash: str, secret: str) -> bool:
        try:
            return self._password_hasher.verify(key_hash, secret)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def _set_state(self, state: AccessState) -> None:
        """Persist the counter when it changed, then swap state."""
        changed = state.escalation_counter != self._state.escalation_counter
        if changed and self._persist_counter is not None:
            self._persist_counter(state.escalation_counter)
        self._state = state
