"""
Unlock service: single-use proof binding under concurrent unlock attempts.
"""
import asyncio

import pytest

from chain_fakes import FakeChainClient, receipt, transfer_log, tx_hash
from models import DetailedReport, PaymentUnlockRequest, SubscriptionCharge, VerifyErrorCode
from services.chain_client import ChainUnavailableError
from services.chain_registry import RECEIVER_WALLET, SUPPORTED_CHAINS
from services.report_cache import ReportCache
from services.unlock_service import UnlockService

PAYER = "0x1111111111111111111111111111111111111111"
TX = tx_hash(0xABC)


class SlowChainClient(FakeChainClient):
    """Yields to the loop before answering, so concurrent unlocks interleave."""

    async def get_transaction_receipt(self, chain, tx_hash):
        await asyncio.sleep(0.01)
        return await super().get_transaction_receipt(chain, tx_hash)


@pytest.fixture
def detail():
    return DetailedReport(
        subscriptions=[SubscriptionCharge(name="Netflix", monthly_amount=15.49, annual_cost=185.88)],
        total_annual_waste=185.88,
    )


@pytest.fixture
def chain():
    usdc = SUPPORTED_CHAINS[8453].usdc_address
    return SlowChainClient(receipts={TX: receipt(transfer_log(usdc, PAYER, RECEIVER_WALLET, 5_000_000))})


def _service(chain, single_use=True):
    return UnlockService(cache=ReportCache(), chain_client=chain, single_use_proofs=single_use)


def _payment(report_id):
    return PaymentUnlockRequest(reportId=report_id, method="payment", chainId=8453, txHash=TX)


class TestSingleUseProofs:

    @pytest.mark.asyncio
    async def test_concurrent_unlocks_of_different_reports_share_one_payment_once(self, chain, detail):
        service = _service(chain)
        report_ids = [service.create_report(detail).report_id for _ in range(5)]

        results = await asyncio.gather(*(service.unlock(_payment(rid)) for rid in report_ids))

        assert sum(1 for r in results if r.success) == 1
        refused = [r.error_code for r in results if not r.success]
        assert refused == [VerifyErrorCode.PROOF_ALREADY_USED] * 4

    @pytest.mark.asyncio
    async def test_concurrent_unlocks_of_same_report_all_succeed(self, chain, detail):
        service = _service(chain)
        report_id = service.create_report(detail).report_id

        results = await asyncio.gather(*(service.unlock(_payment(report_id)) for _ in range(3)))

        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_failed_verification_releases_the_proof(self, chain, detail):
        service = _service(chain)
        first = service.create_report(detail).report_id
        second = service.create_report(detail).report_id

        chain.error = ChainUnavailableError("node down")
        failed = await service.unlock(_payment(first))
        assert failed.error_code == VerifyErrorCode.CHAIN_UNAVAILABLE

        chain.error = None
        assert (await service.unlock(_payment(second))).success
        assert (await service.unlock(_payment(first))).error_code == VerifyErrorCode.PROOF_ALREADY_USED

    @pytest.mark.asyncio
    async def test_stateless_policy_lets_one_payment_unlock_many_reports(self, chain, detail):
        service = _service(chain, single_use=False)
        report_ids = [service.create_report(detail).report_id for _ in range(3)]

        results = await asyncio.gather(*(service.unlock(_payment(rid)) for rid in report_ids))

        assert all(r.success for r in results)
