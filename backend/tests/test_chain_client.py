"""
Web3 chain client: receipt normalization from web3 types and RPC error mapping.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from hexbytes import HexBytes
from web3.datastructures import AttributeDict
from web3.exceptions import TransactionNotFound

from chain_fakes import address_topic, tx_hash
from services.chain_client import ChainUnavailableError, Web3ChainClient
from services.chain_registry import RECEIVER_WALLET, SUPPORTED_CHAINS
from services.payment_verifier import TRANSFER_EVENT_TOPIC, decode_transfer_logs

BASE = SUPPORTED_CHAINS[8453]
PAYER = "0x1111111111111111111111111111111111111111"
NFT_CONTRACT = "0x3333333333333333333333333333333333333333"


def _web3_receipt(status=1):
    return AttributeDict({
        "transactionHash": HexBytes(tx_hash(1)),
        "status": status,
        "logs": [
            AttributeDict({
                "address": BASE.usdc_address,
                "topics": [
                    HexBytes(TRANSFER_EVENT_TOPIC),
                    HexBytes(address_topic(PAYER)),
                    HexBytes(address_topic(RECEIVER_WALLET)),
                ],
                "data": HexBytes((5_000_000).to_bytes(32, "big")),
                "logIndex": 0,
            })
        ],
    })


def _client_with(w3):
    client = Web3ChainClient(timeout=1)
    client._clients[BASE.chain_id] = w3
    return client


class TestGetTransactionReceipt:

    @pytest.mark.asyncio
    async def test_web3_receipt_is_normalized_for_log_decoding(self):
        w3 = MagicMock()
        w3.eth.get_transaction_receipt = AsyncMock(return_value=_web3_receipt())

        receipt = await _client_with(w3).get_transaction_receipt(BASE, tx_hash(1))

        assert receipt["status"] == 1
        (transfer,) = decode_transfer_logs(receipt["logs"])
        assert transfer.token == BASE.usdc_address.lower()
        assert transfer.sender == PAYER.lower()
        assert transfer.recipient == RECEIVER_WALLET.lower()
        assert transfer.value == 5_000_000

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_none(self):
        w3 = MagicMock()
        w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("not found"))
        assert await _client_with(w3).get_transaction_receipt(BASE, tx_hash(1)) is None

    @pytest.mark.asyncio
    async def test_rpc_error_is_chain_unavailable(self):
        w3 = MagicMock()
        w3.eth.get_transaction_receipt = AsyncMock(side_effect=ConnectionError("refused"))
        with pytest.raises(ChainUnavailableError):
            await _client_with(w3).get_transaction_receipt(BASE, tx_hash(1))

    @pytest.mark.asyncio
    async def test_slow_node_is_chain_unavailable(self):
        async def hang(_):
            await asyncio.sleep(5)

        w3 = MagicMock()
        w3.eth.get_transaction_receipt = hang
        client = _client_with(w3)
        client.timeout = 0.05
        with pytest.raises(ChainUnavailableError):
            await client.get_transaction_receipt(BASE, tx_hash(1))


class TestNftBalanceOf:

    @pytest.mark.asyncio
    async def test_balance_is_read_from_checksummed_contract(self):
        w3 = MagicMock()
        w3.eth.contract.return_value.functions.balanceOf.return_value.call = AsyncMock(return_value=3)

        balance = await _client_with(w3).nft_balance_of(BASE, NFT_CONTRACT, PAYER)

        assert balance == 3
        kwargs = w3.eth.contract.call_args.kwargs
        assert kwargs["address"] == "0x3333333333333333333333333333333333333333"
        w3.eth.contract.return_value.functions.balanceOf.assert_called_once_with(PAYER)

    @pytest.mark.asyncio
    async def test_call_failure_is_chain_unavailable(self):
        w3 = MagicMock()
        w3.eth.contract.return_value.functions.balanceOf.return_value.call = AsyncMock(
            side_effect=ValueError("execution reverted")
        )
        with pytest.raises(ChainUnavailableError):
            await _client_with(w3).nft_balance_of(BASE, NFT_CONTRACT, PAYER)
