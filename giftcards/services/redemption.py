"""
Redemption Engine - Card redemption state machine.

Per card: ACTIVE -> REDEEMED or ACTIVE -> EXPIRED. Both are terminal.

Order of checks:
1. Normalize the code
2. Reserved unlock code -> access controller (no card lookup)
3. Redeem rate limit for the caller
4. Card lookup
5. Already redeemed
6. Expired (flag is set and persisted)
7. Atomic transition and redemption record
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from structlog import get_logger

from giftcards.exceptions import AlreadyRedeemedError, CardExpiredError, StorageFailureError
from giftcards.models.api import ErrorKind, RateLimitAction
from giftcards.models.domain import Origin, Redeemed, RedemptionOutcome, Rejected
from giftcards.services.access_control import AccessController
from giftcards.services.card_store import CardStore
from giftcards.services.code_generator import mask_code, normalize_code
from giftcards.services.rate_limiter import RateLimiter

logger = get_logger(__name__)

ANONYMOUS_IDENTITY = "anonymous"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class RedemptionPolicy:
    """Tunable redemption behavior."""

    unlock_code: str = "0000-0000-0000-0000"
    max_attempts: int = 10
    window: timedelta = timedelta(hours=1)
    # Failed non-trigger attempts keep escalation progress unless enabled
    reset_escalation_on_failed_redeem: bool = False
    # Unlock attempts bypass the redeem limit; optionally limit them separately
    rate_limit_admin_unlock: bool = False
    admin_unlock_max_attempts: int = 10

    def __post_init__(self) -> None:
        if normalize_code(self.unlock_code) != self.unlock_code:
            raise ValueError("unlock_code must be in canonical XXXX-XXXX-XXXX-XXXX form")


class RedemptionEngine:
    """Validates codes and drives cards through their terminal transitions."""

    def __init__(
        self,
        store: CardStore,
        access: AccessController,
        rate_limiter: RateLimiter,
        policy: RedemptionPolicy | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._access = access
        self._rate_limiter = rate_limiter
        self._policy = policy or RedemptionPolicy()
        self._clock = clock

    def redeem(
        self,
        raw_code: str,
        identity: str | None = None,
        origin: Origin | None = None,
    ) -> RedemptionOutcome:
        """
        Redeem a code for the caller.

        Never raises for expected failures; every refusal is a Rejected
        outcome with a reason code.
        """
        code = normalize_code(raw_code)
        identity = identity or ANONYMOUS_IDENTITY

        try:
            if code == self._policy.unlock_code:
                return self._escalate(identity)
            outcome = self._redeem_card(code, identity, origin)
        except StorageFailureError as e:
            logger.error("redemption_storage_failure", identity=identity, error=str(e))
            return Rejected(ErrorKind.STORAGE_FAILURE)

        if isinstance(outcome, Redeemed) or self._policy.reset_escalation_on_failed_redeem:
            try:
                self._access.reset_progress()
            except StorageFailureError as e:
                logger.error("escalation_reset_failed", identity=identity, error=str(e))

        return outcome

    def _escalate(self, identity: str) -> RedemptionOutcome:
        if self._policy.rate_limit_admin_unlock and not self._rate_limiter.check_and_consume(
            identity,
            RateLimitAction.ADMIN_UNLOCK,
            self._policy.admin_unlock_max_attempts,
            self._policy.window,
        ):
            return Rejected(ErrorKind.RATE_LIMITED)
        return self._access.attempt_escalation()

    def _redeem_card(self, code: str, identity: str, origin: Origin | None) -> RedemptionOutcome:
        if not self._rate_limiter.check_and_consume(
            identity, RateLimitAction.REDEEM, self._policy.max_attempts, self._policy.window
        ):
            return Rejected(ErrorKind.RATE_LIMITED)

        card = self._store.find_by_code(code)
        if card is None:
            logger.info("redemption_invalid_code", identity=identity)
            return Rejected(ErrorKind.INVALID_CODE)

        if card.redeemed:
            logger.info("redemption_already_redeemed", card_id=str(card.id), identity=identity)
            return Rejected(ErrorKind.ALREADY_REDEEMED)

        now = self._clock()
        if card.expired or card.is_past_expiry(now):
            self._store.mark_expired(card.id)
            logger.info("redemption_expired", card_id=str(card.id), identity=identity)
            return Rejected(ErrorKind.EXPIRED)

        try:
            record = self._store.mark_redeemed(card.id, identity, now, origin)
        except AlreadyRedeemedError:
            # Lost a race with a concurrent redemption of the same card
            return Rejected(ErrorKind.ALREADY_REDEEMED)
        except CardExpiredError:
            return Rejected(ErrorKind.EXPIRED)

        logger.info(
            "giftcard_redeemed",
            card_id=str(card.id),
            code=mask_code(card.code),
            amount_minor=record.amount_minor,
            identity=identity,
        )
        return Redeemed(amount_minor=record.amount_minor, card_id=card.id)
