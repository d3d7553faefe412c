"""
Referral API - click tracking, reward claims, dashboard, leaderboard, withdrawals.
"""
from fastapi import APIRouter, Depends, Path, Query, status
from typing import List, Dict, Any
import logging

from models import ClaimReferralRequest, HEX_ADDRESS_PATTERN, ReferralClickRequest, ReferralUser, WithdrawalRequest
from routes.dependencies import api_error, get_chain_client
from services.chain_client import ChainClient
from services.referral_service import referral_service, ReferralError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["referrals"])


@router.post("/referral-click")
async def referral_click(request: ReferralClickRequest):
    try:
        await referral_service.record_click(request.code)
    except ReferralError as e:
        raise api_error(e.status_code, e.error_code, e.message)
    return {"success": True}


@router.post("/claim-referral")
async def claim_referral(
    request: ClaimReferralRequest,
    chain_client: ChainClient = Depends(get_chain_client),
):
    """Credit the referrer after a verified unlock payment (fire-and-forget from the client)."""
    try:
        return await referral_service.claim_referral(request, chain_client)
    except ReferralError as e:
        raise api_error(e.status_code, e.error_code, e.message)


@router.get("/referrals/users/{address}", response_model=ReferralUser)
async def get_referral_user(address: str = Path(..., pattern=HEX_ADDRESS_PATTERN)):
    """Referral dashboard row for a wallet; creates it with a new code on first visit."""
    return await referral_service.get_or_create_user(address)


@router.get("/referrals/leaderboard")
async def get_leaderboard(limit: int = Query(20, ge=1, le=100)) -> List[Dict[str, Any]]:
    return await referral_service.get_leaderboard(limit)


@router.get("/referrals/users/{address}/withdrawals")
async def list_withdrawals(address: str = Path(..., pattern=HEX_ADDRESS_PATTERN)):
    return await referral_service.list_withdrawals(address)


@router.post("/referrals/withdrawals", status_code=status.HTTP_201_CREATED)
async def request_withdrawal(request: WithdrawalRequest):
    try:
        return await referral_service.request_withdrawal(request)
    except ReferralError as e:
        raise api_error(e.status_code, e.error_code, e.message)
