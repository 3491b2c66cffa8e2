"""
Shared fixtures: an in-memory chain, a fake clock and wired engine components.
"""

import asyncio
import itertools
import time
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from eth_account import Account

from flash_arbitrage.config_schema import USDC, WETH, EngineConfig
from flash_arbitrage.dex.chain_client import TxReceipt
from flash_arbitrage.dex.price_aggregator import PriceAggregator
from flash_arbitrage.dex.quote_cache import QuoteCache, RateLimiter
from flash_arbitrage.events import EventBus
from flash_arbitrage.exceptions import ExecutionError
from flash_arbitrage.gas_monitor import GasPriceMonitor
from flash_arbitrage.health import HealthChecker
from flash_arbitrage.risk_validator import RiskValidator
from flash_arbitrage.supervisor import EngineComponents

# Well-known development key (first Hardhat account); never holds real funds
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_WALLET = Account.from_key(TEST_PRIVATE_KEY).address
TEST_CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"

ETHER = 10**18
GWEI = 10**9


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


class FakeChain:
    """
    In-memory stand-in for ChainClient.

    Router outputs come from ``rates[(exchange_id, token_in)] = (num, den)``
    unless ``quote_fn`` is set. Set ``failures[method] = exc`` to make a
    method raise.
    """

    def __init__(self):
        self.wallet_address = TEST_WALLET
        self.block_number = 100
        self.auto_advance_blocks = True
        self.gas_price = 20 * GWEI
        self.balance = 1 * ETHER
        self.chain_id = 1
        self.block_timestamp: Optional[float] = None
        self.owner = TEST_WALLET
        self.liquidity = True
        self.decimals: Dict[str, int] = {}
        self.rates: Dict[Tuple[str, str], Tuple[int, int]] = {}
        self.quote_fn: Optional[Callable[[str, int, List[str]], List[int]]] = None
        self.gas_estimate = 250_000
        self.receipt_status = 1
        self.receipt_gas_used = 200_000
        self.confirm_delay = 0.0
        self.failures: Dict[str, Exception] = {}

        self.quote_calls: List[Tuple[str, int, Tuple[str, ...]]] = []
        self.sent: List[dict] = []
        self._tx_counter = itertools.count(1)

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    async def get_block_number(self) -> int:
        self._maybe_fail("get_block_number")
        block = self.block_number
        if self.auto_advance_blocks:
            self.block_number += 1
        return block

    async def get_latest_block(self) -> Dict[str, int]:
        self._maybe_fail("get_latest_block")
        timestamp = self.block_timestamp if self.block_timestamp is not None else time.time()
        return {"number": self.block_number, "timestamp": int(timestamp)}

    async def get_chain_id(self) -> int:
        self._maybe_fail("get_chain_id")
        return self.chain_id

    async def get_gas_price(self) -> int:
        self._maybe_fail("get_gas_price")
        return self.gas_price

    async def get_balance(self, address: Optional[str] = None) -> int:
        self._maybe_fail("get_balance")
        return self.balance

    async def get_contract_owner(self) -> str:
        self._maybe_fail("get_contract_owner")
        return self.owner

    async def has_flash_loan_liquidity(self, asset: str) -> bool:
        self._maybe_fail("has_flash_loan_liquidity")
        return self.liquidity

    async def get_token_decimals(self, token: str) -> int:
        return self.decimals.get(token, 18)

    async def get_amounts_out(self, exchange_id: str, amount_in: int, path: List[str]) -> List[int]:
        self._maybe_fail("get_amounts_out")
        self.quote_calls.append((exchange_id, amount_in, tuple(path)))
        if self.quote_fn is not None:
            return self.quote_fn(exchange_id, amount_in, path)
        num, den = self.rates.get((exchange_id, path[0]), (1, 1))
        return [amount_in, amount_in * num // den]

    async def estimate_arbitrage_gas(self, call) -> int:
        self._maybe_fail("estimate_arbitrage_gas")
        return self.gas_estimate

    async def send_arbitrage(self, call, gas_limit: int, gas_price: int) -> str:
        self._maybe_fail("send_arbitrage")
        tx_hash = f"0x{next(self._tx_counter):064x}"
        self.sent.append(
            {"tx_hash": tx_hash, "call": call, "gas_limit": gas_limit, "gas_price": gas_price}
        )
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float, poll_interval: float = 1.0) -> TxReceipt:
        self._maybe_fail("wait_for_receipt")
        if self.confirm_delay:
            if self.confirm_delay > timeout:
                await asyncio.sleep(timeout)
                raise ExecutionError(f"Transaction {tx_hash} not confirmed", tx_hash=tx_hash)
            await asyncio.sleep(self.confirm_delay)
        return TxReceipt(
            tx_hash=tx_hash,
            status=self.receipt_status,
            gas_used=self.receipt_gas_used,
            effective_gas_price=0,
            block_number=self.block_number,
        )


def make_config(**overrides) -> EngineConfig:
    values = {
        "rpc_url": "http://localhost:8545",
        "private_key": TEST_PRIVATE_KEY,
        "contract_address": TEST_CONTRACT,
        "log_dir": "logs",
    }
    values.update(overrides)
    return EngineConfig(**values)


def make_components(
    config: EngineConfig, chain: FakeChain, events: Optional[EventBus] = None, clock=None
) -> EngineComponents:
    clock = clock or time.monotonic
    aggregator = PriceAggregator(
        chain,
        config,
        cache=QuoteCache(ttl=config.price_cache_ttl, clock=clock),
        limiter=RateLimiter(1000, min_interval=0, clock=clock),
    )
    gas_monitor = GasPriceMonitor(chain, config, events, clock=clock)
    return EngineComponents(
        chain=chain,
        aggregator=aggregator,
        gas_monitor=gas_monitor,
        risk_validator=RiskValidator(gas_monitor, chain, config),
        health=HealthChecker(config, chain, aggregator, gas_monitor, memory_probe=lambda: 100.0),
    )


def set_profitable_rates(chain: FakeChain, config: EngineConfig) -> None:
    """Uniswap sells WETH high, Sushiswap buys it back cheap: about 2% round trip."""
    chain.rates[("uniswap", WETH)] = (3060 * 10**6, ETHER)  # 1 WETH -> 3060 USDC
    chain.rates[("sushiswap", USDC)] = (ETHER, 3000 * 10**6)  # 3000 USDC -> 1 WETH
    chain.rates[("sushiswap", WETH)] = (3000 * 10**6, ETHER)
    chain.rates[("uniswap", USDC)] = (ETHER, 3060 * 10**6)


@pytest.fixture
def config(tmp_path) -> EngineConfig:
    return make_config(log_dir=str(tmp_path / "logs"))


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def components(config, fake_chain, events) -> EngineComponents:
    return make_components(config, fake_chain, events)


@pytest.fixture
def config_factory():
    """Build a config with field overrides, e.g. ``config_factory(min_profit_eth="0.1")``."""
    return make_config


@pytest.fixture
def profitable_chain(fake_chain, config) -> FakeChain:
    set_profitable_rates(fake_chain, config)
    return fake_chain
