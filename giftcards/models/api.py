"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ErrorKind(str, Enum):
    """Reason codes carried by failed operations."""

    UNAUTHORIZED = "unauthorized"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_EXPIRY = "invalid_expiry"
    RATE_LIMITED = "rate_limited"
    INVALID_CODE = "invalid_code"
    ALREADY_REDEEMED = "already_redeemed"
    EXPIRED = "expired"
    STORAGE_FAILURE = "storage_failure"


class PrivilegeLevel(str, Enum):
    """Privilege level of the current session."""

    STANDARD = "standard"
    ADMIN = "admin"


class CardStatus(str, Enum):
    """Derived lifecycle state of a card."""

    ACTIVE = "active"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class RateLimitAction(str, Enum):
    """Actions tracked by the rate limiter."""

    GENERATE = "generate"
    REDEEM = "redeem"
    ADMIN_UNLOCK = "admin_unlock"


class RedemptionStatus(str, Enum):
    """Successful redemption outcome kinds."""

    REDEEMED = "redeemed"
    ADMIN_UNLOCK_PROGRESS = "admin_unlock_progress"
    ADMIN_UNLOCKED = "admin_unlocked"


# ============================================================================
# Gift Card Models
# ============================================================================


class GenerateCardRequest(BaseModel):
    """POST /v1/admin/giftcards request body."""

    amount: Decimal = Field(..., description="Face value in currency units, e.g. 25.00")
    expiry_days: int | None = Field(None, description="Days until expiry (1-365), omit for none")


class GiftCardResponse(BaseModel):
    """Single gift card."""

    card_id: UUID
    code: str
    balance_minor: int
    original_balance_minor: int
    status: CardStatus
    redeemed: bool
    expired: bool
    expires_at: str | None = None  # ISO 8601 timestamp
    created_at: str
    created_by: str | None = None
    redeemed_at: str | None = None
    redeemed_by: str | None = None


class GiftCardListResponse(BaseModel):
    """GET /v1/admin/giftcards response."""

    cards: list[GiftCardResponse]
    total_count: int


class RedemptionItem(BaseModel):
    """Single redemption history entry."""

    redemption_id: UUID
    card_id: UUID
    redeemer_identity: str | None = None
    amount_minor: int
    redeemed_at: str
    ip_address: str | None = None
    user_agent: str | None = None


class RedemptionListResponse(BaseModel):
    """GET /v1/admin/redemptions response."""

    redemptions: list[RedemptionItem]
    total_count: int


class CardStatsResponse(BaseModel):
    """GET /v1/admin/stats response."""

    total_cards: int = 0
    total_value_minor: int = 0
    redeemed_cards: int = 0
    redeemed_value_minor: int = 0
    active_cards: int = 0
    expired_cards: int = 0


# ============================================================================
# Redemption Models
# ============================================================================


class RedeemRequest(BaseModel):
    """POST /v1/giftcards/redeem request body."""

    code: str = Field(..., min_length=1, max_length=64)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        """Reject whitespace-only codes."""
        if not v.strip():
            raise ValueError("code cannot be blank")
        return v


class RedeemResponse(BaseModel):
    """POST /v1/giftcards/redeem response."""

    status: RedemptionStatus
    amount_minor: int | None = None
    unlock_progress: int | None = None
    balance_minor: int


# ============================================================================
# Session Models
# ============================================================================


class LoginRequest(BaseModel):
    """POST /v1/auth/login request body."""

    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)


class SessionResponse(BaseModel):
    """Current privilege state."""

    privilege_level: PrivilegeLevel
    is_admin: bool


class BalanceResponse(BaseModel):
    """GET /v1/wallet/balance response."""

    balance_minor: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    timestamp: str


class ErrorDetail(BaseModel):
    """Reason-coded error body."""

    error: ErrorKind
    message: str
