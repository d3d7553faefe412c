"""
Referral Ledger - referral codes, click tracking, reward crediting, withdrawals.

Unlike report unlocks, reward crediting consumes a payment durably: the
(tx_hash, chain_id) pair is inserted into claimed_tx under a unique index
before the referrer is credited, so a transaction can pay out at most once
even under concurrent claims. Withdrawals reserve earnings the same way: a
conditional update on the user row raises committed_withdrawals only while
earnings still cover the amount. Marking a withdrawal REJECTED must give the
amount back with a matching negative $inc.
"""
import logging
import os
import secrets
import string
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import database
from models import (
    AuditAction,
    ClaimReferralRequest,
    VerifyErrorCode,
    WithdrawalRequest,
    WithdrawalStatus,
)
from services.chain_client import ChainClient
from services.chain_registry import RECEIVER_WALLET, get_chain, unlock_price_base_units
from services.payment_verifier import verify_payment
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

REFERRAL_REWARD_USDC = Decimal(os.getenv("REFERRAL_REWARD_USDC", "1.5"))
REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
LEADERBOARD_MAX = 100


class ReferralError(Exception):
    """Ledger request that cannot be processed; status_code is the HTTP mapping."""

    def __init__(self, error_code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.status_code = status_code


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReferralService:
    async def get_or_create_user(self, address: str) -> Dict[str, Any]:
        """Return the ledger row for address, creating it with a fresh unique code."""
        db = database.get_db()
        address = address.lower()
        user = await db.users.find_one({"address": address}, {"_id": 0})
        if user:
            return user

        while True:
            code = generate_referral_code()
            if not await db.users.find_one({"referral_code": code}, {"_id": 0, "address": 1}):
                break

        user = {
            "address": address,
            "referral_code": code,
            "clicks": 0,
            "successful_refers": 0,
            "earnings": 0.0,
            "committed_withdrawals": 0.0,
            "created_at": _now_iso(),
        }
        try:
            await db.users.insert_one(dict(user))
        except DuplicateKeyError:
            # Concurrent first visit from the same wallet
            existing = await db.users.find_one({"address": address}, {"_id": 0})
            if existing:
                return existing
            raise
        await create_audit_log(
            action=AuditAction.REFERRAL_USER_CREATED,
            actor_address=address,
            resource_type="referral_user",
            resource_id=address,
        )
        logger.info(f"Referral user created with code {code}")
        return user

    async def record_click(self, code: str) -> None:
        db = database.get_db()
        result = await db.users.update_one({"referral_code": code}, {"$inc": {"clicks": 1}})
        if result.matched_count == 0:
            raise ReferralError("INVALID_REFERRAL_CODE", "Invalid referral code")

    async def claim_referral(self, request: ClaimReferralRequest, chain_client: ChainClient) -> Dict[str, Any]:
        """
        Credit the referrer for a verified unlock payment.

        Returns {"success": False, "message": ...} for already-claimed or invalid/self
        referrals (not errors from the payer's point of view); raises ReferralError
        for unsupported chains and unverifiable payments.
        """
        db = database.get_db()
        tx_hash = request.tx_hash.lower()
        payer = request.payer_address.lower()

        if await db.claimed_tx.find_one({"tx_hash": tx_hash, "chain_id": request.chain_id}, {"_id": 0}):
            return {"success": False, "message": "Already claimed"}

        referrer = await db.users.find_one(
            {"referral_code": request.referrer_code},
            {"_id": 0, "address": 1, "successful_refers": 1, "earnings": 1},
        )
        if not referrer or referrer["address"].lower() == payer:
            return {"success": False, "message": "Invalid or self referral"}

        chain = get_chain(request.chain_id)
        if chain is None:
            raise ReferralError(VerifyErrorCode.UNSUPPORTED_CHAIN.value, "Unsupported chain")

        outcome = await verify_payment(
            chain_client,
            chain_id=chain.chain_id,
            tx_hash=tx_hash,
            expected_recipient=RECEIVER_WALLET,
            expected_asset=chain.usdc_address,
            min_amount=unlock_price_base_units(chain),
            expected_sender=payer,
            exact_amount=True,
        )
        if not outcome.verified:
            status_code = 503 if outcome.error_code == VerifyErrorCode.CHAIN_UNAVAILABLE else 400
            raise ReferralError(outcome.error_code.value, outcome.message or "Payment not verified", status_code)

        try:
            await db.claimed_tx.insert_one({
                "tx_hash": tx_hash,
                "chain_id": request.chain_id,
                "claimed_at": _now_iso(),
            })
        except DuplicateKeyError:
            return {"success": False, "message": "Already claimed"}

        reward = float(REFERRAL_REWARD_USDC)
        await db.users.update_one(
            {"address": referrer["address"]},
            {"$inc": {"successful_refers": 1, "earnings": reward}},
        )
        await db.successful_referrals.insert_one({
            "referrer_address": referrer["address"],
            "referred_address": payer,
            "tx_hash": tx_hash,
            "chain_id": request.chain_id,
            "reward": reward,
            "created_at": _now_iso(),
        })
        before = {
            "successful_refers": referrer.get("successful_refers", 0),
            "earnings": referrer.get("earnings", 0.0),
        }
        await create_audit_log(
            action=AuditAction.REFERRAL_CREDITED,
            actor_address=payer,
            resource_type="referral_user",
            resource_id=referrer["address"],
            before_state=before,
            after_state={
                "successful_refers": before["successful_refers"] + 1,
                "earnings": before["earnings"] + reward,
            },
            metadata={"tx_hash": tx_hash, "chain_id": request.chain_id, "reward": reward},
        )
        logger.info(f"Referral credited on chain {request.chain_id} tx={tx_hash[:10]}...")
        return {"success": True}

    async def get_leaderboard(self, limit: int = 20) -> List[Dict[str, Any]]:
        db = database.get_db()
        limit = max(1, min(limit, LEADERBOARD_MAX))
        cursor = db.users.find(
            {},
            {"_id": 0, "address": 1, "clicks": 1, "successful_refers": 1, "earnings": 1},
        ).sort("successful_refers", -1).limit(limit)
        return await cursor.to_list(length=limit)

    async def list_withdrawals(self, address: str) -> List[Dict[str, Any]]:
        db = database.get_db()
        cursor = db.withdrawals.find({"user_address": address.lower()}, {"_id": 0}).sort("created_at", -1)
        return await cursor.to_list(length=500)

    async def available_balance(self, address: str) -> float:
        """Earnings minus the committed total of every withdrawal that is not rejected."""
        db = database.get_db()
        user = await db.users.find_one(
            {"address": address.lower()},
            {"_id": 0, "earnings": 1, "committed_withdrawals": 1},
        )
        if not user:
            raise ReferralError("USER_NOT_FOUND", "Referral user not found", 404)
        earnings = Decimal(str(user.get("earnings", 0)))
        committed = Decimal(str(user.get("committed_withdrawals", 0)))
        return float(earnings - committed)

    async def _reserve_earnings(self, address: str, amount: float) -> bool:
        """Atomically add amount to committed_withdrawals if earnings still cover it."""
        db = database.get_db()
        user = await db.users.find_one_and_update(
            {
                "address": address,
                "$expr": {
                    "$gte": [
                        {"$subtract": ["$earnings", {"$ifNull": ["$committed_withdrawals", 0]}]},
                        amount,
                    ]
                },
            },
            {"$inc": {"committed_withdrawals": amount}},
            projection={"_id": 0, "committed_withdrawals": 1},
            return_document=ReturnDocument.AFTER,
        )
        return user is not None

    async def request_withdrawal(self, request: WithdrawalRequest) -> Dict[str, Any]:
        db = database.get_db()
        if get_chain(request.chain_id) is None:
            raise ReferralError(VerifyErrorCode.UNSUPPORTED_CHAIN.value, "Unsupported chain")

        address = request.user_address.lower()
        if not await self._reserve_earnings(address, request.amount):
            available = await self.available_balance(address)
            raise ReferralError(
                "INSUFFICIENT_EARNINGS",
                f"Requested {request.amount} exceeds available earnings {available:.2f}",
            )

        withdrawal = {
            "withdrawal_id": str(uuid.uuid4()),
            "user_address": address,
            "amount": request.amount,
            "token": request.token.value,
            "chain_id": request.chain_id,
            "to_address": request.to_address.lower(),
            "status": WithdrawalStatus.PENDING.value,
            "created_at": _now_iso(),
        }
        try:
            await db.withdrawals.insert_one(dict(withdrawal))
        except Exception:
            await db.users.update_one({"address": address}, {"$inc": {"committed_withdrawals": -request.amount}})
            raise
        await create_audit_log(
            action=AuditAction.WITHDRAWAL_REQUESTED,
            actor_address=address,
            resource_type="withdrawal",
            resource_id=withdrawal["withdrawal_id"],
            metadata={"amount": request.amount, "token": request.token.value, "chain_id": request.chain_id},
        )
        logger.info(f"Withdrawal requested: {withdrawal['withdrawal_id']}")
        return withdrawal


referral_service = ReferralService()
