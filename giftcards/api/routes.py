"""
API Routes - Public endpoints: redemption, wallet, session.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import text
from structlog import get_logger

from giftcards.api.dependencies import (
    get_caller_identity,
    get_giftcard_service,
    get_origin,
    raise_for_result,
)
from giftcards.db.session import get_session
from giftcards.models.api import (
    BalanceResponse,
    HealthResponse,
    LoginRequest,
    RedeemRequest,
    RedeemResponse,
    RedemptionStatus,
    SessionResponse,
)
from giftcards.models.domain import AccessState, AdminUnlocked, AdminUnlockProgress, Origin, Redeemed
from giftcards.services.giftcards import GiftCardService

logger = get_logger(__name__)

router = APIRouter()


def _session_response(state: AccessState) -> SessionResponse:
    return SessionResponse(privilege_level=state.privilege_level, is_admin=state.is_admin)


def _ping_database() -> None:
    with get_session() as session:
        session.execute(text("SELECT 1"))


@router.post("/v1/giftcards/redeem", response_model=RedeemResponse)
async def redeem_giftcard(
    request: RedeemRequest,
    identity: str = Depends(get_caller_identity),
    origin: Origin = Depends(get_origin),
    service: GiftCardService = Depends(get_giftcard_service),
) -> RedeemResponse:
    """
    Redeem a gift card code into the wallet balance.

    Codes are accepted with or without separators and in any case.
    Failures are reason-coded: invalid_code (404), already_redeemed (409),
    expired (410), rate_limited (429), storage_failure (503).
    """
    result = await run_in_threadpool(
        service.redeem, request.code, identity=identity, origin=origin
    )
    raise_for_result(result)

    outcome = result.value
    balance = await run_in_threadpool(service.get_balance)

    if isinstance(outcome, Redeemed):
        return RedeemResponse(
            status=RedemptionStatus.REDEEMED,
            amount_minor=outcome.amount_minor,
            balance_minor=balance,
        )
    if isinstance(outcome, AdminUnlockProgress):
        return RedeemResponse(
            status=RedemptionStatus.ADMIN_UNLOCK_PROGRESS,
            unlock_progress=outcome.count,
            balance_minor=balance,
        )
    if isinstance(outcome, AdminUnlocked):
        return RedeemResponse(status=RedemptionStatus.ADMIN_UNLOCKED, balance_minor=balance)

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Unexpected redemption outcome",
    )


@router.get("/v1/wallet/balance", response_model=BalanceResponse)
async def get_balance(
    service: GiftCardService = Depends(get_giftcard_service),
) -> BalanceResponse:
    """Current wallet balance in minor units."""
    return BalanceResponse(balance_minor=await run_in_threadpool(service.get_balance))


@router.post("/v1/auth/login", response_model=SessionResponse)
async def login(
    request: LoginRequest,
    service: GiftCardService = Depends(get_giftcard_service),
) -> SessionResponse:
    """Authenticate as the configured admin."""
    result = await run_in_threadpool(service.login, request.email, request.password)
    raise_for_result(result)
    return _session_response(await run_in_threadpool(service.current_access))


@router.post("/v1/auth/logout", response_model=SessionResponse)
async def logout(
    service: GiftCardService = Depends(get_giftcard_service),
) -> SessionResponse:
    """Drop admin privilege and escalation progress."""
    await run_in_threadpool(service.logout)
    return _session_response(await run_in_threadpool(service.current_access))


@router.get("/v1/auth/session", response_model=SessionResponse)
async def get_session_state(
    service: GiftCardService = Depends(get_giftcard_service),
) -> SessionResponse:
    """Current privilege level."""
    return _session_response(await run_in_threadpool(service.current_access))


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await run_in_threadpool(_ping_database)

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
