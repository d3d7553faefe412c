"""
Unlock Service - releases a cached detailed report once a proof verifies.

Per report: CREATED (after create_report) -> UNLOCKED on a verified proof, or
EXPIRED once the cache drops it. Unlocking does not touch the cache entry, so
the same report can be unlocked again until it expires. A failed attempt
changes nothing and the caller may retry with another proof.

Proof reuse policy: by default verification is stateless, so one valid
payment can unlock several reports. UNLOCK_SINGLE_USE_PROOFS=true binds each
proof to the first report it unlocked; the proof is reserved before the
chain is queried, so concurrent attempts on other reports are refused.
"""
import logging
import os
import threading
from typing import Dict, Set

from models import (
    DetailedReport,
    NftUnlockRequest,
    PaymentUnlockRequest,
    ReportSummary,
    UnlockResult,
    VerificationOutcome,
    VerifyErrorCode,
)
from services.chain_client import ChainClient
from services.chain_registry import (
    NFT_CONTRACT_ADDRESS,
    NFT_MIN_BALANCE,
    PRIMARY_CHAIN_ID,
    RECEIVER_WALLET,
    get_chain,
    unlock_price_base_units,
)
from services.ownership_verifier import unlock_message, verify_ownership
from services.payment_verifier import verify_payment
from services.report_cache import ReportCache

logger = logging.getLogger(__name__)

UNLOCK_SINGLE_USE_PROOFS = os.getenv("UNLOCK_SINGLE_USE_PROOFS", "false").strip().lower() == "true"


def summarize(report_id: str, detail: DetailedReport) -> ReportSummary:
    """Aggregates only; per-charge rows stay in the cache until unlocked."""
    return ReportSummary(
        report_id=report_id,
        currency_code=detail.currency_code,
        currency_symbol=detail.currency_symbol,
        total_annual_waste=round(detail.total_annual_waste, 2),
        subscription_count=len(detail.subscriptions),
    )


class UnlockService:
    def __init__(
        self,
        cache: ReportCache,
        chain_client: ChainClient,
        receiver_wallet: str = RECEIVER_WALLET,
        nft_contract: str = NFT_CONTRACT_ADDRESS,
        nft_min_balance: int = NFT_MIN_BALANCE,
        nft_chain_id: int = PRIMARY_CHAIN_ID,
        single_use_proofs: bool = UNLOCK_SINGLE_USE_PROOFS,
    ):
        self.cache = cache
        self.chain_client = chain_client
        self.receiver_wallet = receiver_wallet
        self.nft_contract = nft_contract
        self.nft_min_balance = nft_min_balance
        self.nft_chain_id = nft_chain_id
        self.single_use_proofs = single_use_proofs
        self._used_proofs: Dict[str, str] = {}
        self._confirmed_proofs: Set[str] = set()
        self._proof_lock = threading.Lock()

    def create_report(self, detail: DetailedReport) -> ReportSummary:
        report_id = self.cache.put(detail)
        logger.info(f"Report created: {report_id[:8]}... ({len(detail.subscriptions)} subscriptions)")
        return summarize(report_id, detail)

    async def unlock(self, request) -> UnlockResult:
        detail = self.cache.get(request.report_id)
        if detail is None:
            return UnlockResult(
                error_code=VerifyErrorCode.REPORT_NOT_FOUND,
                message="Report expired or not found. Please re-upload your statement.",
            )

        proof_key = self._proof_key(request)
        if self.single_use_proofs and not self._reserve_proof(proof_key, request.report_id):
            return UnlockResult(
                error_code=VerifyErrorCode.PROOF_ALREADY_USED,
                message="This proof has already been used to unlock another report",
            )

        if isinstance(request, PaymentUnlockRequest):
            outcome = await self._verify_payment(request)
        elif isinstance(request, NftUnlockRequest):
            outcome = await self._verify_nft(request)
        else:
            raise TypeError(f"Unknown unlock request type: {type(request).__name__}")

        if not outcome.verified:
            if self.single_use_proofs:
                self._release_proof(proof_key, request.report_id)
            logger.info(f"Unlock rejected for {request.report_id[:8]}...: {outcome.error_code.value}")
            return UnlockResult(error_code=outcome.error_code, message=outcome.message)

        if self.single_use_proofs:
            self._confirm_proof(proof_key, request.report_id)
        logger.info(f"Report unlocked: {request.report_id[:8]}... via {request.method}")
        return UnlockResult(detail=detail)

    async def _verify_payment(self, request: PaymentUnlockRequest) -> VerificationOutcome:
        chain = get_chain(request.chain_id)
        if chain is None:
            return VerificationOutcome.rejected(
                VerifyErrorCode.UNSUPPORTED_CHAIN, f"Unsupported chain: {request.chain_id}"
            )
        return await verify_payment(
            self.chain_client,
            chain_id=chain.chain_id,
            tx_hash=request.tx_hash,
            expected_recipient=self.receiver_wallet,
            expected_asset=chain.usdc_address,
            min_amount=unlock_price_base_units(chain),
        )

    async def _verify_nft(self, request: NftUnlockRequest) -> VerificationOutcome:
        if not self.nft_contract:
            logger.error("NFT unlock requested but NFT_CONTRACT_ADDRESS is not set")
            return VerificationOutcome.rejected(
                VerifyErrorCode.CHAIN_UNAVAILABLE, "NFT unlock is not available right now"
            )
        return await verify_ownership(
            self.chain_client,
            message=unlock_message(request.report_id),
            signature=request.signature,
            claimed_address=request.address,
            nft_contract=self.nft_contract,
            min_balance=self.nft_min_balance,
            chain_id=self.nft_chain_id,
        )

    @staticmethod
    def _proof_key(request) -> str:
        if isinstance(request, PaymentUnlockRequest):
            return f"payment:{request.chain_id}:{request.tx_hash.lower()}"
        return f"nft:{request.signature.lower()}"

    def _reserve_proof(self, proof_key: str, report_id: str) -> bool:
        """Claim proof_key for report_id before verifying; False if another report holds it."""
        with self._proof_lock:
            owner = self._used_proofs.setdefault(proof_key, report_id)
        return owner == report_id

    def _confirm_proof(self, proof_key: str, report_id: str) -> None:
        with self._proof_lock:
            self._used_proofs.setdefault(proof_key, report_id)
            self._confirmed_proofs.add(proof_key)

    def _release_proof(self, proof_key: str, report_id: str) -> None:
        # A confirmed proof stays bound; only a failed first claim is dropped
        with self._proof_lock:
            if proof_key not in self._confirmed_proofs and self._used_proofs.get(proof_key) == report_id:
                del self._used_proofs[proof_key]
