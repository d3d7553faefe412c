"""
Ownership Verifier - proves the caller controls an address that holds the NFT.

The signature binds "who is asking" to "whose balance we read"; the signed
message embeds the report id, so a signature cannot be replayed against a
different report.
"""
import logging

from eth_account import Account
from eth_account.messages import encode_defunct

from models import VerificationOutcome, VerifyErrorCode
from services.chain_client import ChainClient, ChainUnavailableError
from services.chain_registry import get_chain, PRIMARY_CHAIN_ID

logger = logging.getLogger(__name__)


def unlock_message(report_id: str) -> str:
    """The exact text a wallet signs to unlock report_id."""
    return f"Unlock Report: {report_id}"


def recover_signer(message: str, signature: str) -> str:
    """Recover the EIP-191 personal_sign signer. Raises ValueError on malformed input."""
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        raise ValueError(f"Invalid signature: {e}") from e


async def verify_ownership(
    chain_client: ChainClient,
    message: str,
    signature: str,
    claimed_address: str,
    nft_contract: str,
    min_balance: int,
    chain_id: int = PRIMARY_CHAIN_ID,
) -> VerificationOutcome:
    try:
        signer = recover_signer(message, signature)
    except ValueError:
        return VerificationOutcome.rejected(VerifyErrorCode.SIGNATURE_MISMATCH, "Invalid signature")

    if signer.lower() != claimed_address.lower():
        return VerificationOutcome.rejected(
            VerifyErrorCode.SIGNATURE_MISMATCH, "Signature does not match address"
        )

    chain = get_chain(chain_id)
    if chain is None:
        return VerificationOutcome.rejected(VerifyErrorCode.UNSUPPORTED_CHAIN, f"Unsupported chain: {chain_id}")

    try:
        balance = await chain_client.nft_balance_of(chain, nft_contract, claimed_address)
    except ChainUnavailableError as e:
        logger.warning(f"NFT balance check failed on {chain.name}: {e}")
        return VerificationOutcome.rejected(VerifyErrorCode.CHAIN_UNAVAILABLE, "Blockchain node unavailable, try again")

    if balance < min_balance:
        return VerificationOutcome.rejected(
            VerifyErrorCode.INSUFFICIENT_BALANCE,
            f"Need at least {min_balance} NFTs, found {balance}",
        )
    return VerificationOutcome.ok()
