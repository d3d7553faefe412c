"""
Chain Registry - single source of truth for supported EVM networks.

Monad (143) is the primary chain: NFT ownership unlocks are checked there.
USDC payments are accepted on every registered chain. Amounts are always
handled as integer base units; the registry owns each token's decimals
(Binance-Peg USDC on BSC uses 18, the Circle deployments use 6).
"""
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    name: str
    rpc_url: str
    usdc_address: str
    usdc_decimals: int


PRIMARY_CHAIN_ID = 143

_DEFAULT_CHAINS = [
    ChainConfig(143, "Monad Mainnet", "https://infra.originstake.com/monad/evm",
                "0x754704Bc059F8C67012fEd69BC8A327a5aafb603", 6),
    ChainConfig(56, "BNB Smart Chain", "https://bsc-dataseed1.binance.org",
                "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18),
    ChainConfig(8453, "Base", "https://mainnet.base.org",
                "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6),
    ChainConfig(1, "Ethereum", "https://eth.merkle.io",
                "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
]


def _with_rpc_override(chain: ChainConfig) -> ChainConfig:
    override = (os.getenv(f"RPC_URL_{chain.chain_id}") or "").strip()
    if not override:
        return chain
    return ChainConfig(chain.chain_id, chain.name, override, chain.usdc_address, chain.usdc_decimals)


SUPPORTED_CHAINS: Dict[int, ChainConfig] = {
    c.chain_id: _with_rpc_override(c) for c in _DEFAULT_CHAINS
}

RECEIVER_WALLET = os.getenv("RECEIVER_WALLET", "0xACe6f654b9cb7d775071e13549277aCd17652EAF")
UNLOCK_PRICE_USDC = Decimal(os.getenv("UNLOCK_PRICE_USDC", "5"))
NFT_CONTRACT_ADDRESS = (os.getenv("NFT_CONTRACT_ADDRESS") or "").strip()
NFT_MIN_BALANCE = int(os.getenv("NFT_MIN_BALANCE", "2"))
CHAIN_RPC_TIMEOUT_SECONDS = float(os.getenv("CHAIN_RPC_TIMEOUT_SECONDS", "20"))


def get_chain(chain_id: int) -> Optional[ChainConfig]:
    return SUPPORTED_CHAINS.get(chain_id)


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount (e.g. Decimal("5")) to integer token base units."""
    return int(Decimal(amount).scaleb(decimals).to_integral_exact())


def unlock_price_base_units(chain: ChainConfig) -> int:
    return to_base_units(UNLOCK_PRICE_USDC, chain.usdc_decimals)
