"""
Report unlock API.

Body is {reportId, method: "payment", chainId, txHash} or
{reportId, method: "nft", address, signature}; the signature must be over
"Unlock Report: <reportId>".
"""
from fastapi import APIRouter, Depends, Request, status
import logging

from models import UnlockPayload, VerifyErrorCode
from routes.dependencies import api_error, client_ip, get_unlock_service
from services.unlock_service import UnlockService
from utils.rate_limiter import (
    rate_limiter,
    UNLOCK_RATE_LIMIT_ATTEMPTS,
    UNLOCK_RATE_LIMIT_WINDOW_MINUTES,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["unlock"])

UNLOCK_ERROR_STATUS = {
    VerifyErrorCode.REPORT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    VerifyErrorCode.UNSUPPORTED_CHAIN: status.HTTP_400_BAD_REQUEST,
    VerifyErrorCode.TRANSACTION_NOT_CONFIRMED: status.HTTP_401_UNAUTHORIZED,
    VerifyErrorCode.PAYMENT_NOT_FOUND: status.HTTP_401_UNAUTHORIZED,
    VerifyErrorCode.SIGNATURE_MISMATCH: status.HTTP_401_UNAUTHORIZED,
    VerifyErrorCode.INSUFFICIENT_BALANCE: status.HTTP_401_UNAUTHORIZED,
    VerifyErrorCode.PROOF_ALREADY_USED: status.HTTP_401_UNAUTHORIZED,
    VerifyErrorCode.CHAIN_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.post("/unlock-report")
async def unlock_report(
    request: Request,
    payload: UnlockPayload,
    unlock_service: UnlockService = Depends(get_unlock_service),
):
    allowed, error_message = await rate_limiter.check_rate_limit(
        f"unlock:{client_ip(request)}",
        UNLOCK_RATE_LIMIT_ATTEMPTS,
        UNLOCK_RATE_LIMIT_WINDOW_MINUTES,
    )
    if not allowed:
        raise api_error(status.HTTP_429_TOO_MANY_REQUESTS, "RATE_LIMITED", error_message)

    result = await unlock_service.unlock(payload.root)
    if not result.success:
        raise api_error(
            UNLOCK_ERROR_STATUS[result.error_code],
            result.error_code.value,
            result.message or "Unlock failed",
        )

    return {"success": True, "detailedData": result.detail.model_dump(by_alias=True)}
