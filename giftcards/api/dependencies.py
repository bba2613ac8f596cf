"""
API Dependencies - Service wiring and request context for routes.
"""

from fastapi import Header, HTTPException, Request, status
from structlog import get_logger

from giftcards.config import get_settings
from giftcards.db.blob_store import SqlBlobStore
from giftcards.db.session import get_session_factory
from giftcards.exceptions import StorageFailureError
from giftcards.models.api import ErrorKind
from giftcards.models.domain import OperationResult, Origin
from giftcards.services.giftcards import GiftCardService, build_service
from giftcards.services.redemption import ANONYMOUS_IDENTITY

logger = get_logger(__name__)

# Process-wide service (single writer over the persisted state)
_service: GiftCardService | None = None

ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_AMOUNT: 422,
    ErrorKind.INVALID_EXPIRY: 422,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.INVALID_CODE: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_REDEEMED: status.HTTP_409_CONFLICT,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
    ErrorKind.STORAGE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def init_giftcard_service() -> GiftCardService:
    """
    Build the process-wide service if it does not exist yet.

    Raises:
        StorageFailureError: Persisted state could not be loaded
    """
    global _service
    if _service is None:
        _service = build_service(get_settings(), SqlBlobStore(get_session_factory()))
        logger.info("giftcard_service_initialized")
    return _service


def get_giftcard_service() -> GiftCardService:
    """
    Get or create the gift card service.

    Usage:
        @router.post("/endpoint")
        async def endpoint(service: GiftCardService = Depends(get_giftcard_service)):
            ...

    Raises:
        HTTPException: 503 when persisted state cannot be loaded
    """
    try:
        return init_giftcard_service()
    except StorageFailureError as e:
        logger.error("giftcard_service_unavailable", error=str(e))
        raise HTTPException(
            status_code=ERROR_STATUS_CODES[e.kind],
            detail={"error": e.kind.value, "message": str(e)},
        ) from e


def reset_giftcard_service() -> None:
    """Drop the cached service (for shutdown and tests)."""
    global _service
    _service = None


def get_caller_identity(
    request: Request,
    x_client_id: str | None = Header(None, alias="X-Client-ID"),
) -> str:
    """Stable caller identity for rate limiting: client id, else client host, else anonymous."""
    if x_client_id and x_client_id.strip():
        return x_client_id.strip()[:255]
    if request.client and request.client.host:
        return request.client.host
    return ANONYMOUS_IDENTITY


def get_origin(
    request: Request,
    user_agent: str | None = Header(None, alias="User-Agent"),
) -> Origin:
    """Network/client metadata recorded with a redemption."""
    return Origin(
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent[:512] if user_agent else None,
    )


def raise_for_result(result: OperationResult) -> None:
    """Translate a failed result into an HTTPException with a reason-coded body."""
    if result.ok or result.error is None:
        return
    raise HTTPException(
        status_code=ERROR_STATUS_CODES[result.error],
        detail={"error": result.error.value, "message": result.message or result.error.value},
    )
