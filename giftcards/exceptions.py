"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
Each exception carries the ErrorKind reported to callers.
"""

from typing import ClassVar
from uuid import UUID

from giftcards.models.api import ErrorKind, PrivilegeLevel, RateLimitAction


class GiftCardError(Exception):
    """Base exception for all gift card errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.STORAGE_FAILURE


class UnauthorizedError(GiftCardError):
    """Raised when a privilege check fails."""

    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, required: PrivilegeLevel, action: str) -> None:
        self.required = required
        self.action = action
        super().__init__(f"Unauthorized: {required.value} privilege required to {action}")


class InvalidAmountError(GiftCardError):
    """Raised when a card amount is outside the allowed bounds."""

    kind = ErrorKind.INVALID_AMOUNT

    def __init__(self, amount: object, min_minor: int, max_minor: int) -> None:
        self.amount = amount
        self.min_minor = min_minor
        self.max_minor = max_minor
        super().__init__(
            f"Amount must be between {min_minor / 100:.2f} and {max_minor / 100:.2f}, got: {amount}"
        )


class InvalidExpiryError(GiftCardError):
    """Raised when an expiry day count is outside the allowed bounds."""

    kind = ErrorKind.INVALID_EXPIRY

    def __init__(self, expiry_days: int, min_days: int, max_days: int) -> None:
        self.expiry_days = expiry_days
        self.min_days = min_days
        self.max_days = max_days
        super().__init__(
            f"Expiry must be between {min_days} and {max_days} days, got: {expiry_days}"
        )


class DuplicateCodeError(GiftCardError):
    """Raised by the card store when a code is already taken. Retried internally."""

    kind = ErrorKind.STORAGE_FAILURE

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Duplicate gift card code: ****-{code[-4:]}")


class RateLimitedError(GiftCardError):
    """Raised when an identity exhausts its attempts for an action."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, identity: str, action: RateLimitAction) -> None:
        self.identity = identity
        self.action = action
        super().__init__("Rate limit exceeded. Please try again later.")


class InvalidCodeError(GiftCardError):
    """Raised when no card matches a code."""

    kind = ErrorKind.INVALID_CODE

    def __init__(self) -> None:
        super().__init__("Invalid gift card code")


class CardNotFoundError(GiftCardError):
    """Raised when a card id does not exist in the store."""

    kind = ErrorKind.INVALID_CODE

    def __init__(self, card_id: UUID) -> None:
        self.card_id = card_id
        super().__init__(f"Gift card not found: {card_id}")


class AlreadyRedeemedError(GiftCardError):
    """Raised when a redeemed card is redeemed again."""

    kind = ErrorKind.ALREADY_REDEEMED

    def __init__(self, card_id: UUID) -> None:
        self.card_id = card_id
        super().__init__("This gift card has already been redeemed")


class CardExpiredError(GiftCardError):
    """Raised when an expired card is redeemed."""

    kind = ErrorKind.EXPIRED

    def __init__(self, card_id: UUID) -> None:
        self.card_id = card_id
        super().__init__("This gift card has expired")


class StorageFailureError(GiftCardError):
    """Raised when the state document cannot be read or written."""

    kind = ErrorKind.STORAGE_FAILURE

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Storage failure: {message}")
