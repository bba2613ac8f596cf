"""
State Document Models - The persisted snapshot of the card store.

The whole store is serialized as one JSON document:
{cards, redemptionHistory, userBalance, escalationCounter}.
Amounts are integer minor units; timestamps are ISO-8601 UTC strings.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from giftcards.models.domain import Card, Origin, RedemptionRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CardDocument(_CamelModel):
    """Serialized card."""

    id: UUID
    code: str
    balance: int
    original_balance: int
    redeemed: bool = False
    expired: bool = False
    expires_at: datetime | None = None
    created_at: datetime
    created_by: str | None = None
    redeemed_at: datetime | None = None
    redeemed_by: str | None = None


class RedemptionDocument(_CamelModel):
    """Serialized redemption record."""

    id: UUID
    card_id: UUID
    redeemer_identity: str | None = None
    amount: int
    redeemed_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None


class StateDocument(_CamelModel):
    """Complete persisted state."""

    cards: list[CardDocument] = Field(default_factory=list)
    redemption_history: list[RedemptionDocument] = Field(default_factory=list)
    user_balance: int = 0
    escalation_counter: int = 0

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, payload: str) -> "StateDocument":
        return cls.model_validate_json(payload)


def card_to_document(card: Card) -> CardDocument:
    return CardDocument(
        id=card.id,
        code=card.code,
        balance=card.balance_minor,
        original_balance=card.original_balance_minor,
        redeemed=card.redeemed,
        expired=card.expired,
        expires_at=card.expires_at,
        created_at=card.created_at,
        created_by=card.created_by,
        redeemed_at=card.redeemed_at,
        redeemed_by=card.redeemed_by,
    )


def document_to_card(doc: CardDocument) -> Card:
    return Card(
        id=doc.id,
        code=doc.code,
        balance_minor=doc.balance,
        original_balance_minor=doc.original_balance,
        created_at=doc.created_at,
        redeemed=doc.redeemed,
        expired=doc.expired,
        expires_at=doc.expires_at,
        created_by=doc.created_by,
        redeemed_at=doc.redeemed_at,
        redeemed_by=doc.redeemed_by,
    )


def record_to_document(record: RedemptionRecord) -> RedemptionDocument:
    return RedemptionDocument(
        id=record.id,
        card_id=record.card_id,
        redeemer_identity=record.redeemer_identity,
        amount=record.amount_minor,
        redeemed_at=record.redeemed_at,
        ip_address=record.origin.ip_address,
        user_agent=record.origin.user_agent,
    )


def document_to_record(doc: RedemptionDocument) -> RedemptionRecord:
    return RedemptionRecord(
        id=doc.id,
        card_id=doc.card_id,
        amount_minor=doc.amount,
        redeemed_at=doc.redeemed_at,
        redeemer_identity=doc.redeemer_identity,
        origin=Origin(ip_address=doc.ip_address, user_agent=doc.user_agent),
    )
