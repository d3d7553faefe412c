"""In-memory stand-ins for the blockchain and clock used across tests."""
from datetime import datetime, timedelta

from eth_account import Account
from eth_account.messages import encode_defunct

from services.payment_verifier import TRANSFER_EVENT_TOPIC


def address_topic(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


def transfer_log(token: str, sender: str, recipient: str, value: int) -> dict:
    return {
        "address": token,
        "topics": [TRANSFER_EVENT_TOPIC, address_topic(sender), address_topic(recipient)],
        "data": "0x" + value.to_bytes(32, "big").hex(),
    }


def receipt(*logs, status=1) -> dict:
    return {"status": status, "logs": list(logs)}


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def sign_text(account, message: str) -> str:
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    signature = signed.signature.hex()
    return signature if signature.startswith("0x") else "0x" + signature


class FakeChainClient:
    def __init__(self, receipts=None, balances=None, error=None):
        self.receipts = {k.lower(): v for k, v in (receipts or {}).items()}
        self.balances = {k.lower(): v for k, v in (balances or {}).items()}
        self.error = error
        self.receipt_calls = []
        self.balance_calls = []

    async def get_transaction_receipt(self, chain, tx_hash):
        self.receipt_calls.append((chain.chain_id, tx_hash))
        if self.error:
            raise self.error
        return self.receipts.get(tx_hash.lower())

    async def nft_balance_of(self, chain, contract_address, owner):
        self.balance_calls.append((chain.chain_id, contract_address, owner))
        if self.error:
            raise self.error
        return self.balances.get(owner.lower(), 0)


class MutableClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)
