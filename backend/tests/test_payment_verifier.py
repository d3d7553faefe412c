"""
Payment verifier: Transfer-log matching on amount, recipient, token, sender; receipt status; chain errors.
"""
import pytest
from decimal import Decimal

from chain_fakes import FakeChainClient, receipt, transfer_log, tx_hash
from models import VerifyErrorCode
from services.chain_client import ChainUnavailableError
from services.chain_registry import SUPPORTED_CHAINS, to_base_units, unlock_price_base_units
from services.payment_verifier import decode_transfer_logs, verify_payment

BASE = SUPPORTED_CHAINS[8453]
USDC = BASE.usdc_address
RECIPIENT = "0xACe6f654b9cb7d775071e13549277aCd17652EAF"
PAYER = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"
FIVE_USDC = 5_000_000
TX = tx_hash(1)


async def _verify(rcpt, **kwargs):
    chain = FakeChainClient(receipts={TX: rcpt} if rcpt is not None else {})
    params = dict(
        chain_id=8453,
        tx_hash=TX,
        expected_recipient=RECIPIENT,
        expected_asset=USDC,
        min_amount=FIVE_USDC,
    )
    params.update(kwargs)
    return await verify_payment(chain, **params)


class TestVerifyPayment:

    @pytest.mark.asyncio
    async def test_exact_amount_to_recipient_verifies(self):
        outcome = await _verify(receipt(transfer_log(USDC, PAYER, RECIPIENT, FIVE_USDC)))
        assert outcome.verified is True
        assert outcome.error_code is None

    @pytest.mark.asyncio
    async def test_underpayment_by_one_unit_is_payment_not_found(self):
        outcome = await _verify(receipt(transfer_log(USDC, PAYER, RECIPIENT, FIVE_USDC - 1)))
        assert outcome.verified is False
        assert outcome.error_code == VerifyErrorCode.PAYMENT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_wrong_recipient_is_payment_not_found(self):
        outcome = await _verify(receipt(transfer_log(USDC, PAYER, OTHER, FIVE_USDC)))
        assert outcome.error_code == VerifyErrorCode.PAYMENT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_recipient_compare_is_case_insensitive(self):
        outcome = await _verify(
            receipt(transfer_log(USDC, PAYER, RECIPIENT, FIVE_USDC)),
            expected_recipient=RECIPIENT.upper().replace("0X", "0x"),
        )
        assert outcome.verified is True

    @pytest.mark.asyncio
    async def test_overpayment_is_accepted(self):
        outcome = await _verify(receipt(transfer_log(USDC, PAYER, RECIPIENT, FIVE_USDC * 3)))
        assert outcome.verified is True

    @pytest.mark.asyncio
    async def test_exact_amount_mode_rejects_overpayment(self):
        outcome = await _verify(
            receipt(transfer_log(USDC, PAYER, RECIPIENT, FIVE_USDC + 1)),
            exact_amount=True,
        )
        assert outcome.error_code == VerifyErrorCode.PAYMENT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_transfer_of_other_token_is_ignored(self):
        outcome = await _verify(receipt(transfer_log(OTHER, PAYER, RECIPIENT, FIVE_USDC)))
        assert outcome.error_code == VerifyErrorCode.PAYMENT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_expected_sender_must_match(self):
        rcpt = receipt(transfer_log(USDC, OTHER, RECIPIENT, FIVE_USDC))
        assert (await _verify(rcpt, expected_sender=PAYER)).error_code == VerifyErrorCode.PAYMENT_NOT_FOUND
        assert (await _verify(rcpt, expected_sender=OTHER)).verified is True

    @pytest.mark.asyncio
    async def test_any_matching_log_among_several_verifies(self):
        rcpt = receipt(
            transfer_log(USDC, PAYER, OTHER, FIVE_USDC),
            transfer_log(USDC, PAYER, RECIPIENT, FIVE_USDC),
        )
        assert (await _verify(rcpt)).verified is True

    @pytest.mark.asyncio
    async def test_reverted_transaction_is_not_confirmed(self):
        outcome = await _verify(receipt(transfer_log(USDC, PAYER, RECIPIENT, FIVE_USDC), status=0))
        assert outcome.error_code == VerifyErrorCode.TRANSACTION_NOT_CONFIRMED

    @pytest.mark.asyncio
    async def test_missing_receipt_is_not_confirmed(self):
        outcome = await _verify(None)
        assert outcome.error_code == VerifyErrorCode.TRANSACTION_NOT_CONFIRMED

    @pytest.mark.asyncio
    async def test_unknown_chain_is_unsupported_without_rpc_call(self):
        chain = FakeChainClient()
        outcome = await verify_payment(
            chain, chain_id=999, tx_hash=TX, expected_recipient=RECIPIENT,
            expected_asset=USDC, min_amount=FIVE_USDC,
        )
        assert outcome.error_code == VerifyErrorCode.UNSUPPORTED_CHAIN
        assert chain.receipt_calls == []

    @pytest.mark.asyncio
    async def test_rpc_failure_is_chain_unavailable(self):
        chain = FakeChainClient(error=ChainUnavailableError("timed out"))
        outcome = await verify_payment(
            chain, chain_id=8453, tx_hash=TX, expected_recipient=RECIPIENT,
            expected_asset=USDC, min_amount=FIVE_USDC,
        )
        assert outcome.error_code == VerifyErrorCode.CHAIN_UNAVAILABLE


class TestDecodeTransferLogs:

    def test_decodes_erc20_transfer(self):
        (transfer,) = decode_transfer_logs([transfer_log(USDC, PAYER, RECIPIENT, 42)])
        assert transfer.token == USDC.lower()
        assert transfer.sender == PAYER.lower()
        assert transfer.recipient == RECIPIENT.lower()
        assert transfer.value == 42

    def test_skips_erc721_transfer_with_indexed_token_id(self):
        log = transfer_log(USDC, PAYER, RECIPIENT, 0)
        log["topics"].append("0x" + "00" * 31 + "07")
        log["data"] = "0x"
        assert decode_transfer_logs([log]) == []

    def test_accepts_bytes_topics_and_data(self):
        log = transfer_log(USDC, PAYER, RECIPIENT, FIVE_USDC)
        log["topics"] = [bytes.fromhex(t[2:]) for t in log["topics"]]
        log["data"] = bytes.fromhex(log["data"][2:])
        (transfer,) = decode_transfer_logs([log])
        assert transfer.value == FIVE_USDC


class TestUnlockPrice:

    def test_price_uses_each_chains_decimals(self):
        assert unlock_price_base_units(SUPPORTED_CHAINS[8453]) == 5 * 10**6
        assert unlock_price_base_units(SUPPORTED_CHAINS[56]) == 5 * 10**18

    def test_to_base_units_has_no_float_rounding(self):
        assert to_base_units(Decimal("1.5"), 6) == 1_500_000
        assert to_base_units(Decimal("0.000001"), 6) == 1
