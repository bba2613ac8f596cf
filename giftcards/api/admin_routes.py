"""
Admin API Routes - Card generation, listings and statistics.

Listings are fail-closed: without admin privilege they return empty
results rather than an error. Generation is refused with 403.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool
from structlog import get_logger

from giftcards.api.dependencies import get_giftcard_service, raise_for_result
from giftcards.models.api import (
    CardStatsResponse,
    CardStatus,
    GenerateCardRequest,
    GiftCardListResponse,
    GiftCardResponse,
    RedemptionItem,
    RedemptionListResponse,
)
from giftcards.models.domain import Card, CardFilter, RedemptionFilter, RedemptionRecord
from giftcards.services.giftcards import GiftCardService

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


def _card_to_response(card: Card) -> GiftCardResponse:
    """Convert a card to its API representation."""
    return GiftCardResponse(
        card_id=card.id,
        code=card.code,
        balance_minor=card.balance_minor,
        original_balance_minor=card.original_balance_minor,
        status=card.status,
        redeemed=card.redeemed,
        expired=card.expired,
        expires_at=card.expires_at.isoformat() if card.expires_at else None,
        created_at=card.created_at.isoformat(),
        created_by=card.created_by,
        redeemed_at=card.redeemed_at.isoformat() if card.redeemed_at else None,
        redeemed_by=card.redeemed_by,
    )


def _record_to_item(record: RedemptionRecord) -> RedemptionItem:
    """Convert a redemption record to its API representation."""
    return RedemptionItem(
        redemption_id=record.id,
        card_id=record.card_id,
        redeemer_identity=record.redeemer_identity,
        amount_minor=record.amount_minor,
        redeemed_at=record.redeemed_at.isoformat(),
        ip_address=record.origin.ip_address,
        user_agent=record.origin.user_agent,
    )


def _card_list(cards: list[Card]) -> GiftCardListResponse:
    return GiftCardListResponse(
        cards=[_card_to_response(card) for card in cards],
        total_count=len(cards),
    )


@router.post(
    "/giftcards",
    response_model=GiftCardResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_giftcard(
    request: GenerateCardRequest,
    x_auth_key: str | None = Header(None, alias="X-Auth-Key"),
    service: GiftCardService = Depends(get_giftcard_service),
) -> GiftCardResponse:
    """
    Generate a new gift card.

    Requires admin privilege or a valid X-Auth-Key.
    Amount must be 5.00-1000.00; expiry_days 1-365 when given.
    """
    result = await run_in_threadpool(
        service.generate, request.amount, auth_key=x_auth_key, expiry_days=request.expiry_days
    )
    raise_for_result(result)
    card = result.value
    if card is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Card generation returned no card",
        )
    logger.info("admin_giftcard_generated", card_id=str(card.id))
    return _card_to_response(card)


@router.get("/giftcards", response_model=GiftCardListResponse)
async def list_giftcards(
    card_status: CardStatus | None = Query(None, alias="status"),
    created_by: str | None = Query(None, max_length=255),
    service: GiftCardService = Depends(get_giftcard_service),
) -> GiftCardListResponse:
    """All cards, newest first, optionally filtered by status or creator."""
    result = await run_in_threadpool(
        service.list_cards, CardFilter(status=card_status, created_by=created_by)
    )
    return _card_list(result.value or [])


@router.get("/giftcards/unredeemed", response_model=GiftCardListResponse)
async def list_unredeemed_giftcards(
    service: GiftCardService = Depends(get_giftcard_service),
) -> GiftCardListResponse:
    """Cards that can still be redeemed, newest first."""
    result = await run_in_threadpool(service.list_unredeemed)
    return _card_list(result.value or [])


@router.get("/redemptions", response_model=RedemptionListResponse)
async def list_redemptions(
    card_id: UUID | None = Query(None),
    redeemer: str | None = Query(None, max_length=255),
    service: GiftCardService = Depends(get_giftcard_service),
) -> RedemptionListResponse:
    """Redemption history, most recent first."""
    result = await run_in_threadpool(
        service.list_redemptions, RedemptionFilter(card_id=card_id, redeemer_identity=redeemer)
    )
    records = result.value or []
    return RedemptionListResponse(
        redemptions=[_record_to_item(record) for record in records],
        total_count=len(records),
    )


@router.get("/stats", response_model=CardStatsResponse)
async def get_stats(
    service: GiftCardService = Depends(get_giftcard_service),
) -> CardStatsResponse:
    """Card totals for the admin dashboard."""
    result = await run_in_threadpool(service.get_stats)
    stats = result.value
    if stats is None:
        return CardStatsResponse()
    return CardStatsResponse(
        total_cards=stats.total_cards,
        total_value_minor=stats.total_value_minor,
        redeemed_cards=stats.redeemed_cards,
        redeemed_value_minor=stats.redeemed_value_minor,
        active_cards=stats.active_cards,
        expired_cards=stats.expired_cards,
    )
