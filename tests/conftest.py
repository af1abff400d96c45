"""
Pytest fixtures for BrewFi tests. Chain I/O is an in-memory fake, HTTP goes
through httpx.MockTransport, and time comes from a settable clock.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict

import httpx
import pytest
from eth_account import Account
from web3 import Web3

from errors import ConfirmationTimeoutError, NetworkError, TransactionFailedError
from models import SessionStore
from networks import PURCHASE_CONTRACTS, TOKENS
from services.realtime import SessionEventBus
from services.sessions import PaymentSessionManager

TEST_MNEMONIC = "test test test test test test test test test test test junk"
ADDRESS_0 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ADDRESS_1 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
SELLER = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"

FUJI = 43113
USDC = TOKENS["USDC"].addresses[FUJI]
USDT = TOKENS["USDT"].addresses[FUJI]
PURCHASE_CONTRACT = PURCHASE_CONTRACTS[FUJI]

START_MS = 1_700_000_000_000


def run(coro):
    return asyncio.run(coro)


class FakeClock:
    """Epoch-ms clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeChainClient:
    """
    In-memory stand-in for services.chain.ChainClient.

    Balances and allowances are set directly by tests. Broadcast transactions
    are real signed payloads; their hash is keccak(raw). ``calls`` records
    estimate/send/wait in order so tests can check sequencing.
    """

    def __init__(self, chain_id: int = FUJI, gas_price: int = 25 * 10**9,
                 gas_estimate: int = 50_000):
        self.chain_id = chain_id
        self.gas_price = gas_price
        self.gas_estimate = gas_estimate
        self.native = defaultdict(int)
        self.tokens = defaultdict(int)
        self.allowances = defaultdict(int)
        self.nonces = defaultdict(int)
        self.products: dict[int, tuple] = {}
        self.calls: list[tuple] = []
        self.estimates: list[dict] = []
        self.sent: list[str] = []
        self.senders: list[str] = []
        self.wait_outcomes: list[str] = []   # consumed per wait: "ok" | "timeout" | "revert"
        self.stale_nonce = False              # node keeps reporting the confirmed nonce
        self.fail_reads = False
        self.failing_tokens: set[str] = set()
        self.closed = False

    # setup helpers

    def fund(self, address: str, wei: int = 10**18) -> None:
        self.native[address.lower()] = wei

    def set_token(self, token: str, owner: str, amount: int) -> None:
        self.tokens[(token.lower(), owner.lower())] = amount

    def set_allowance(self, token: str, owner: str, spender: str, amount: int) -> None:
        self.allowances[(token.lower(), owner.lower(), spender.lower())] = amount

    # ChainClient interface

    async def get_balance(self, address: str) -> int:
        if self.fail_reads:
            raise NetworkError("get_balance failed: connection refused")
        return self.native[address.lower()]

    async def get_token_balance(self, token: str, owner: str) -> int:
        await asyncio.sleep(0)
        if self.fail_reads or token.lower() in self.failing_tokens:
            raise NetworkError("balanceOf failed: connection refused")
        return self.tokens[(token.lower(), owner.lower())]

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        self.calls.append(("allowance", token.lower()))
        return self.allowances[(token.lower(), owner.lower(), spender.lower())]

    async def call_function(self, address: str, abi: list, fn_name: str, *args):
        if fn_name == "getAllProducts":
            return [self.products[i] for i in sorted(self.products)]
        if fn_name == "getProductCount":
            return len(self.products)
        if fn_name == "getProduct":
            if args[0] not in self.products:
                raise TransactionFailedError("getProduct reverted: Product does not exist")
            return self.products[args[0]]
        raise AssertionError(f"unexpected call {fn_name}")

    async def get_transaction_count(self, address: str) -> int:
        await asyncio.sleep(0)
        return self.nonces[address.lower()]

    async def get_gas_price(self) -> int:
        return self.gas_price

    async def estimate_gas(self, tx: dict) -> int:
        await asyncio.sleep(0)
        self.estimates.append(tx)
        self.calls.append(("estimate", tx["to"].lower(), tx.get("data", "0x")[:10]))
        return self.gas_estimate

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        tx_hash = Web3.to_hex(Web3.keccak(raw_transaction))
        sender = Account.recover_transaction(raw_transaction)
        if not self.stale_nonce:
            self.nonces[sender.lower()] += 1
        self.sent.append(tx_hash)
        self.senders.append(sender)
        self.calls.append(("send", tx_hash))
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 30.0,
                               poll_latency: float = 1.0) -> dict:
        self.calls.append(("wait", tx_hash))
        outcome = self.wait_outcomes.pop(0) if self.wait_outcomes else "ok"
        if outcome == "timeout":
            raise ConfirmationTimeoutError(tx_hash, timeout)
        return {"transactionHash": tx_hash, "status": 0 if outcome == "revert" else 1,
                "blockNumber": len(self.sent)}

    async def close(self) -> None:
        self.closed = True


def mock_http_client(responses, requests=None) -> httpx.AsyncClient:
    """
    AsyncClient whose transport replays ``responses`` in order. Each item is
    an int status code or an exception instance to raise.
    """
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item, json={} if item < 400 else {"error": f"status {item}"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def chain():
    fake = FakeChainClient()
    fake.fund(ADDRESS_0)
    return fake


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return SessionEventBus()


@pytest.fixture
def manager(clock, events):
    return PaymentSessionManager(SessionStore(), events=events, clock=clock)


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Keep anything that falls back to utils.get_app_dir() inside tmp_path."""
    monkeypatch.setenv("BREWFI_DATA_DIR", str(tmp_path / "data"))
    return tmp_path / "data"
