"""
Gift Card Service - Operations exposed to the UI and HTTP layer.

Composes the code generator, rate limiter, card store, redemption engine
and access controller. Components raise GiftCardError subclasses; this
service converts them into OperationResult values so no exception crosses
its boundary.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from random import Random
from uuid import uuid4

from structlog import get_logger

from giftcards.config import Settings
from giftcards.db.blob_store import BlobStore
from giftcards.exceptions import (
    DuplicateCodeError,
    GiftCardError,
    InvalidAmountError,
    InvalidExpiryError,
    RateLimitedError,
    StorageFailureError,
    UnauthorizedError,
)
from giftcards.models.api import ErrorKind, PrivilegeLevel, RateLimitAction
from giftcards.models.domain import (
    AccessState,
    AdminUnlocked,
    AdminUnlockProgress,
    Card,
    CardFilter,
    CardStats,
    OperationResult,
    Origin,
    Redeemed,
    RedemptionFilter,
    RedemptionOutcome,
    RedemptionRecord,
    Rejected,
)
from giftcards.observability.metrics import metrics
from giftcards.services.access_control import AccessController
from giftcards.services.card_store import CardStore
from giftcards.services.code_generator import CodeGenerator, mask_code
from giftcards.services.rate_limiter import RateLimiter
from giftcards.services.redemption import RedemptionEngine, RedemptionPolicy

logger = get_logger(__name__)

REJECTION_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: "Rate limit exceeded. Please try again later.",
    ErrorKind.INVALID_CODE: "Invalid gift card code",
    ErrorKind.ALREADY_REDEEMED: "This gift card has already been redeemed",
    ErrorKind.EXPIRED: "This gift card has expired",
    ErrorKind.STORAGE_FAILURE: "Gift card storage is unavailable. Please try again later.",
}


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def parse_amount_minor(amount: Decimal | int | str | float, min_minor: int, max_minor: int) -> int:
    """
    Convert a currency amount to minor units and check its bounds.

    Amounts with more than two decimal places are rejected rather than rounded.

    Raises:
        InvalidAmountError: Not a number, sub-cent precision, or out of bounds
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(amount, min_minor, max_minor) from e

    if not value.is_finite():
        raise InvalidAmountError(amount, min_minor, max_minor)

    minor = value * 100
    if minor != minor.to_integral_value():
        raise InvalidAmountError(amount, min_minor, max_minor)

    amount_minor = int(minor)
    if amount_minor < min_minor or amount_minor > max_minor:
        raise InvalidAmountError(amount, min_minor, max_minor)
    return amount_minor


@dataclass(frozen=True)
class GenerationPolicy:
    """Bounds and limits applied to card generation."""

    min_amount_minor: int = 500
    max_amount_minor: int = 100_000
    min_expiry_days: int = 1
    max_expiry_days: int = 365
    max_attempts: int = 20
    window: timedelta = timedelta(hours=1)
    max_code_attempts: int = 5


class GiftCardService:
    """Facade over the gift card components."""

    def __init__(
        self,
        store: CardStore,
        access: AccessController,
        rate_limiter: RateLimiter,
        engine: RedemptionEngine,
        generator: CodeGenerator,
        policy: GenerationPolicy | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.access = access
        self.rate_limiter = rate_limiter
        self.engine = engine
        self.generator = generator
        self.policy = policy or GenerationPolicy()
        self._clock = clock

    # ========================================================================
    # Generation
    # ========================================================================

    def generate(
        self,
        amount: Decimal | int | str | float,
        auth_key: str | None = None,
        expiry_days: int | None = None,
        actor: str | None = None,
    ) -> OperationResult[Card]:
        """
        Issue a new card.

        Requires admin privilege or a valid generation authKey. Expiry is a
        day count; None means the card never expires.
        """
        try:
            card = self._generate(amount, auth_key, expiry_days, actor)
        except GiftCardError as e:
            metrics.record_generation(False, 0, e.kind.value)
            if isinstance(e, RateLimitedError):
                metrics.record_rate_limited(RateLimitAction.GENERATE.value)
            elif isinstance(e, StorageFailureError):
                metrics.record_error(e.kind.value, "generate")
            logger.warning("giftcard_generation_failed", error_type=e.kind.value, error=str(e))
            return OperationResult.failure(e.kind, str(e))

        metrics.record_generation(True, card.original_balance_minor)
        return OperationResult.success(card)

    def _generate(
        self,
        amount: Decimal | int | str | float,
        auth_key: str | None,
        expiry_days: int | None,
        actor: str | None,
    ) -> Card:
        is_admin = self.access.is_admin()
        if not is_admin and not self.access.verify_generation_key(auth_key):
            raise UnauthorizedError(PrivilegeLevel.ADMIN, "generate gift cards")
        actor = actor or ("admin" if is_admin else "auth-key")

        policy = self.policy
        amount_minor = parse_amount_minor(amount, policy.min_amount_minor, policy.max_amount_minor)

        if expiry_days is not None and not (
            policy.min_expiry_days <= expiry_days <= policy.max_expiry_days
        ):
            raise InvalidExpiryError(expiry_days, policy.min_expiry_days, policy.max_expiry_days)

        if not self.rate_limiter.check_and_consume(
            actor, RateLimitAction.GENERATE, policy.max_attempts, policy.window
        ):
            raise RateLimitedError(actor, RateLimitAction.GENERATE)

        now = self._clock()
        expires_at = now + timedelta(days=expiry_days) if expiry_days is not None else None

        for attempt in range(1, policy.max_code_attempts + 1):
            card = Card(
                id=uuid4(),
                code=self.generator.generate(),
                balance_minor=amount_minor,
                original_balance_minor=amount_minor,
                created_at=now,
                expires_at=expires_at,
                created_by=actor,
            )
            try:
                self.store.insert(card)
            except DuplicateCodeError:
                logger.warning("giftcard_code_collision", attempt=attempt)
                continue

            logger.info(
                "giftcard_generated",
                card_id=str(card.id),
                code=mask_code(card.code),
                amount_minor=amount_minor,
                expires_at=expires_at.isoformat() if expires_at else None,
                created_by=actor,
            )
            return card

        raise StorageFailureError(
            f"could not allocate a unique code after {policy.max_code_attempts} attempts"
        )

    # ========================================================================
    # Redemption
    # ========================================================================

    def redeem(
        self,
        code: str,
        identity: str | None = None,
        origin: Origin | None = None,
    ) -> OperationResult[RedemptionOutcome]:
        """Redeem a code; rejections come back as failed results."""
        outcome = self.engine.redeem(code, identity, origin)

        if isinstance(outcome, Rejected):
            metrics.record_redemption(outcome.reason.value)
            if outcome.reason == ErrorKind.RATE_LIMITED:
                metrics.record_rate_limited(RateLimitAction.REDEEM.value)
            elif outcome.reason == ErrorKind.STORAGE_FAILURE:
                metrics.record_error(outcome.reason.value, "redeem")
            return OperationResult.failure(outcome.reason, REJECTION_MESSAGES[outcome.reason])

        if isinstance(outcome, Redeemed):
            metrics.record_redemption("redeemed", outcome.amount_minor)
        elif isinstance(outcome, AdminUnlocked):
            metrics.record_escalation(True)
        elif isinstance(outcome, AdminUnlockProgress):
            metrics.record_escalation(False)
        return OperationResult.success(outcome)

    # ========================================================================
    # Admin listings - empty when not admin
    # ========================================================================

    def list_cards(self, card_filter: CardFilter | None = None) -> OperationResult[list[Card]]:
        if not self.access.is_admin():
            return OperationResult.success([])
        return OperationResult.success(self.store.list_all(card_filter))

    def list_redemptions(
        self, redemption_filter: RedemptionFilter | None = None
    ) -> OperationResult[list[RedemptionRecord]]:
        if not self.access.is_admin():
            return OperationResult.success([])
        return OperationResult.success(self.store.list_redemptions(redemption_filter))

    def list_unredeemed(self) -> OperationResult[list[Card]]:
        if not self.access.is_admin():
            return OperationResult.success([])
        return OperationResult.success(self.store.list_unredeemed(self._clock()))

    def get_stats(self) -> OperationResult[CardStats]:
        if not self.access.is_admin():
            return OperationResult.success(CardStats())
        return OperationResult.success(self.store.stats())

    # ========================================================================
    # Session
    # ========================================================================

    def get_balance(self) -> int:
        """Wallet balance in minor units."""
        return self.store.user_balance

    def login(self, email: str, password: str) -> OperationResult[AccessState]:
        try:
            authenticated = self.access.login(email, password)
        except StorageFailureError as e:
            return OperationResult.failure(e.kind, str(e))
        if not authenticated:
            return OperationResult.failure(ErrorKind.UNAUTHORIZED, "Invalid credentials")
        return OperationResult.success(self.access.state())

    def logout(self) -> None:
        try:
            self.access.logout()
        except StorageFailureError as e:
            # Privilege is dropped even when the counter reset cannot be saved
            self.access.revoke_admin()
            logger.error("logout_counter_persist_failed", error=str(e))

    def current_access(self) -> AccessState:
        return self.access.state()


def build_service(
    settings: Settings,
    blob_store: BlobStore,
    clock: Callable[[], datetime] = _utc_now,
    rng: Random | None = None,
) -> GiftCardService:
    """
    Wire the components from settings and load persisted state.

    Raises:
        StorageFailureError: Persisted state could not be loaded
    """
    window = timedelta(seconds=settings.rate_limit_window_seconds)

    store = CardStore(blob_store, state_key=settings.state_key, clock=clock)
    store.reload()

    access = AccessController(
        threshold=settings.admin_unlock_threshold,
        initial_counter=store.escalation_counter,
        persist_counter=store.set_escalation_counter,
        admin_email=settings.admin_email,
        admin_password_hash=settings.admin_password_hash,
        generation_key_hash=settings.generation_key_hash,
    )
    rate_limiter = RateLimiter(clock=clock)
    engine = RedemptionEngine(
        store,
        access,
        rate_limiter,
        RedemptionPolicy(
            unlock_code=settings.admin_unlock_code,
            max_attempts=settings.redeem_max_attempts,
            window=window,
            reset_escalation_on_failed_redeem=settings.reset_escalation_on_failed_redeem,
            rate_limit_admin_unlock=settings.rate_limit_admin_unlock,
            admin_unlock_max_attempts=settings.admin_unlock_max_attempts,
        ),
        clock=clock,
    )
    policy = GenerationPolicy(
        min_amount_minor=settings.min_amount_minor,
        max_amount_minor=settings.max_amount_minor,
        min_expiry_days=settings.min_expiry_days,
        max_expiry_days=settings.max_expiry_days,
        max_attempts=settings.generate_max_attempts,
        window=window,
        max_code_attempts=settings.max_code_attempts,
    )
    return GiftCardService(
        store, access, rate_limiter, engine, CodeGenerator(rng), policy=policy, clock=clock
    )
