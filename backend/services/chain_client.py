"""
Read-only blockchain access for the verifiers.

ChainClient is the seam the verifiers depend on; Web3ChainClient is the
production implementation on web3.py's AsyncWeb3. Tests pass a fake with the
same two coroutines.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound

from services.chain_registry import ChainConfig, CHAIN_RPC_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

ERC721_BALANCE_OF_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    }
]


class ChainUnavailableError(Exception):
    """RPC node unreachable, erroring, or slower than the configured timeout."""


class ChainClient(Protocol):
    async def get_transaction_receipt(self, chain: ChainConfig, tx_hash: str) -> Optional[Dict[str, Any]]:
        ...

    async def nft_balance_of(self, chain: ChainConfig, contract_address: str, owner: str) -> int:
        ...


class Web3ChainClient:
    def __init__(self, timeout: float = CHAIN_RPC_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._clients: Dict[int, AsyncWeb3] = {}

    def _web3(self, chain: ChainConfig) -> AsyncWeb3:
        w3 = self._clients.get(chain.chain_id)
        if w3 is None:
            w3 = AsyncWeb3(
                AsyncWeb3.AsyncHTTPProvider(chain.rpc_url, request_kwargs={"timeout": self.timeout})
            )
            self._clients[chain.chain_id] = w3
        return w3

    async def get_transaction_receipt(self, chain: ChainConfig, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Return the receipt as a plain dict, or None if the node does not know the tx."""
        w3 = self._web3(chain)
        try:
            receipt = await asyncio.wait_for(w3.eth.get_transaction_receipt(tx_hash), timeout=self.timeout)
        except TransactionNotFound:
            return None
        except asyncio.TimeoutError as e:
            raise ChainUnavailableError(f"{chain.name} RPC timed out") from e
        except Exception as e:
            raise ChainUnavailableError(f"{chain.name} RPC error: {e}") from e
        if receipt is None:
            return None
        return {
            "status": receipt.get("status"),
            "logs": [
                {
                    "address": log.get("address"),
                    "topics": list(log.get("topics") or []),
                    "data": log.get("data"),
                }
                for log in receipt.get("logs") or []
            ],
        }

    async def nft_balance_of(self, chain: ChainConfig, contract_address: str, owner: str) -> int:
        w3 = self._web3(chain)
        contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=ERC721_BALANCE_OF_ABI,
        )
        try:
            balance = await asyncio.wait_for(
                contract.functions.balanceOf(AsyncWeb3.to_checksum_address(owner)).call(),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ChainUnavailableError(f"{chain.name} RPC timed out") from e
        except Exception as e:
            raise ChainUnavailableError(f"{chain.name} RPC error: {e}") from e
        return int(balance)
