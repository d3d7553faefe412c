"""
Payment Verifier - confirms a USDC transfer on-chain from a transaction hash.

Read-only and idempotent: it looks at the receipt's ERC-20 Transfer logs and
never records anything, so a caller can retry freely. Values are compared as
integer base units; ">=" tolerates overpayment unless exact_amount is set.
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Union

from models import VerificationOutcome, VerifyErrorCode
from services.chain_client import ChainClient, ChainUnavailableError
from services.chain_registry import get_chain

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


@dataclass(frozen=True)
class TokenTransfer:
    token: str
    sender: str
    recipient: str
    value: int


def _to_bytes(value: Union[str, bytes, None]) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value)
    if text.startswith(("0x", "0X")):
        text = text[2:]
    return bytes.fromhex(text)


def _topic_address(topic: Union[str, bytes]) -> str:
    return "0x" + _to_bytes(topic)[-20:].hex()


def _receipt_succeeded(status: Any) -> bool:
    if isinstance(status, str):
        return status.lower() in ("success", "0x1", "1")
    return status == 1


def decode_transfer_logs(logs: Iterable[dict]) -> List[TokenTransfer]:
    """Decode ERC-20 Transfer events. ERC-721 transfers (4 topics) are skipped."""
    transfers = []
    for log in logs:
        topics = log.get("topics") or []
        if len(topics) != 3:
            continue
        if "0x" + _to_bytes(topics[0]).hex() != TRANSFER_EVENT_TOPIC:
            continue
        data = _to_bytes(log.get("data"))
        if len(data) < 32:
            continue
        transfers.append(TokenTransfer(
            token=str(log.get("address") or "").lower(),
            sender=_topic_address(topics[1]),
            recipient=_topic_address(topics[2]),
            value=int.from_bytes(data[:32], "big"),
        ))
    return transfers


async def verify_payment(
    chain_client: ChainClient,
    chain_id: int,
    tx_hash: str,
    expected_recipient: str,
    expected_asset: Optional[str],
    min_amount: int,
    expected_sender: Optional[str] = None,
    exact_amount: bool = False,
) -> VerificationOutcome:
    """
    Verify that tx_hash on chain_id moved at least min_amount of expected_asset
    to expected_recipient.

    expected_asset None means the chain's registered USDC contract.
    """
    chain = get_chain(chain_id)
    if chain is None:
        return VerificationOutcome.rejected(VerifyErrorCode.UNSUPPORTED_CHAIN, f"Unsupported chain: {chain_id}")

    asset = (expected_asset or chain.usdc_address).lower()
    recipient = expected_recipient.lower()
    sender = expected_sender.lower() if expected_sender else None

    try:
        receipt = await chain_client.get_transaction_receipt(chain, tx_hash)
    except ChainUnavailableError as e:
        logger.warning(f"Payment check failed on {chain.name}: {e}")
        return VerificationOutcome.rejected(VerifyErrorCode.CHAIN_UNAVAILABLE, "Blockchain node unavailable, try again")

    if not receipt or not _receipt_succeeded(receipt.get("status")):
        return VerificationOutcome.rejected(
            VerifyErrorCode.TRANSACTION_NOT_CONFIRMED, "Transaction failed or not found"
        )

    for transfer in decode_transfer_logs(receipt.get("logs") or []):
        if transfer.token != asset or transfer.recipient != recipient:
            continue
        if sender and transfer.sender != sender:
            continue
        if transfer.value == min_amount or (not exact_amount and transfer.value > min_amount):
            logger.info(f"Payment verified on {chain.name} tx={tx_hash[:10]}...")
            return VerificationOutcome.ok()

    return VerificationOutcome.rejected(VerifyErrorCode.PAYMENT_NOT_FOUND, "Payment not verified")
