"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from giftcards.models.api import CardStatus, ErrorKind, PrivilegeLevel, RateLimitAction

T = TypeVar("T")


@dataclass(frozen=True)
class Origin:
    """Network/client metadata captured with a redemption."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class Card:
    """Immutable gift card snapshot. Transitions produce a replacement value."""

    id: UUID
    code: str
    balance_minor: int
    original_balance_minor: int
    created_at: datetime
    redeemed: bool = False
    expired: bool = False
    expires_at: datetime | None = None
    created_by: str | None = None
    redeemed_at: datetime | None = None
    redeemed_by: str | None = None

    def __post_init__(self) -> None:
        """Validate card invariants."""
        if self.original_balance_minor <= 0:
            raise ValueError(f"Card amount must be positive: {self.original_balance_minor}")
        if self.balance_minor != self.original_balance_minor:
            raise ValueError(
                f"Balance {self.balance_minor} differs from original {self.original_balance_minor}"
            )
        if self.redeemed and self.redeemed_at is None:
            raise ValueError("Redeemed card must carry redeemed_at")
        if self.expires_at is not None and self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")

    @property
    def status(self) -> CardStatus:
        """Lifecycle state as recorded (expiry by time is evaluated on redemption)."""
        if self.redeemed:
            return CardStatus.REDEEMED
        if self.expired:
            return CardStatus.EXPIRED
        return CardStatus.ACTIVE

    def is_past_expiry(self, now: datetime) -> bool:
        """True when the card has an expiry and now is strictly after it."""
        return self.expires_at is not None and now > self.expires_at


@dataclass(frozen=True)
class RedemptionRecord:
    """Immutable, append-only redemption history entry."""

    id: UUID
    card_id: UUID
    amount_minor: int
    redeemed_at: datetime
    redeemer_identity: str | None = None
    origin: Origin = field(default_factory=Origin)


@dataclass(frozen=True)
class RateLimitEntry:
    """Attempt counter for one (identity, action) pair."""

    identity: str
    action: RateLimitAction
    attempts: int
    window_reset_at: datetime


@dataclass(frozen=True)
class AccessState:
    """Privilege level plus hidden escalation progress."""

    privilege_level: PrivilegeLevel = PrivilegeLevel.STANDARD
    escalation_counter: int = 0

    @property
    def is_admin(self) -> bool:
        return self.privilege_level == PrivilegeLevel.ADMIN


@dataclass(frozen=True)
class CardFilter:
    """Filter for card listings. None matches everything."""

    status: CardStatus | None = None
    created_by: str | None = None


@dataclass(frozen=True)
class RedemptionFilter:
    """Filter for redemption history listings."""

    card_id: UUID | None = None
    redeemer_identity: str | None = None


@dataclass(frozen=True)
class CardStats:
    """Aggregate card totals for the admin dashboard."""

    total_cards: int = 0
    total_value_minor: int = 0
    redeemed_cards: int = 0
    redeemed_value_minor: int = 0
    active_cards: int = 0
    expired_cards: int = 0


# ============================================================================
# Redemption Outcomes
# ============================================================================


@dataclass(frozen=True)
class Redeemed:
    """Card converted into wallet balance."""

    amount_minor: int
    card_id: UUID


@dataclass(frozen=True)
class AdminUnlockProgress:
    """Sentinel code accepted, threshold not reached yet."""

    count: int


@dataclass(frozen=True)
class AdminUnlocked:
    """Sentinel threshold reached, admin privilege granted."""


@dataclass(frozen=True)
class Rejected:
    """Redemption refused with a reason code."""

    reason: ErrorKind


RedemptionOutcome = Redeemed | AdminUnlockProgress | AdminUnlocked | Rejected


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Success payload or one error kind. No exception crosses the service boundary."""

    value: T | None = None
    error: ErrorKind | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "OperationResult[T]":
        return cls(error=error, message=message)
