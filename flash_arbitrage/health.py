"""
Engine health checks.

The startup battery decides whether the engine may start; the smaller
runtime battery is re-run periodically by the supervisor while running.
"""

import logging
import time
from typing import Awaitable, Callable, List, Optional

import psutil

from .config_schema import EngineConfig
from .dex.chain_client import ZERO_ADDRESS, ChainClient
from .dex.price_aggregator import PriceAggregator
from .exceptions import FlashArbitrageError, OwnershipError
from .gas_monitor import GasPriceMonitor
from .models import ServiceHealth
from .utils import is_directory_writable

logger = logging.getLogger(__name__)


def memory_usage_mb(process: Optional[psutil.Process] = None) -> float:
    """Resident memory of this process in MB."""
    process = process or psutil.Process()
    return process.memory_info().rss / (1024 * 1024)


class HealthChecker:
    def __init__(
        self,
        config: EngineConfig,
        chain: ChainClient,
        aggregator: PriceAggregator,
        gas_monitor: GasPriceMonitor,
        memory_probe: Callable[[], float] = memory_usage_mb,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.chain = chain
        self.aggregator = aggregator
        self.gas_monitor = gas_monitor
        self.memory_probe = memory_probe
        self.wall_clock = wall_clock

    async def _guard(
        self, name: str, check: Callable[[], Awaitable[ServiceHealth]]
    ) -> ServiceHealth:
        """Run one check; engine errors become a failed result, except ownership."""
        started = time.monotonic()
        try:
            result = await check()
        except OwnershipError:
            raise
        except FlashArbitrageError as e:
            result = ServiceHealth(name, False, str(e))
        if result.latency_ms is None:
            result.latency_ms = (time.monotonic() - started) * 1000
        level = logging.INFO if result.healthy else logging.WARNING
        logger.log(
            level,
            f"Health {name}: {'ok' if result.healthy else 'FAILED'} {result.detail}",
        )
        return result

    # === Individual checks ===

    async def check_rpc(self) -> ServiceHealth:
        block = await self.chain.get_block_number()
        gas_price = await self.chain.get_gas_price()
        if block <= 0:
            return ServiceHealth("rpc", False, f"invalid block number {block}")
        if gas_price <= 0:
            return ServiceHealth("rpc", False, "gas price is zero")
        return ServiceHealth("rpc", True, f"block {block}", data={"block": block})

    async def check_network(self) -> ServiceHealth:
        chain_id = await self.chain.get_chain_id()
        if chain_id != self.config.chain_id:
            return ServiceHealth(
                "network",
                False,
                f"chain id {chain_id}, expected {self.config.chain_id}",
            )
        block = await self.chain.get_latest_block()
        age = self.wall_clock() - block["timestamp"]
        if age > self.config.max_block_age:
            return ServiceHealth(
                "network", False, f"latest block is {age:.0f}s old", data=block
            )
        return ServiceHealth(
            "network", True, f"chain {chain_id}, block age {age:.0f}s", data=block
        )

    async def check_contract(self) -> ServiceHealth:
        """
        Verify the arbitrage contract is owned by the configured wallet.

        Raises:
            OwnershipError: The contract has a different, non-zero owner
        """
        owner = await self.chain.get_contract_owner()
        if owner == ZERO_ADDRESS:
            return ServiceHealth("contract", False, "contract has no owner")
        if owner != self.chain.wallet_address:
            raise OwnershipError(
                f"Contract owner {owner} is not the configured wallet "
                f"{self.chain.wallet_address}",
                owner=owner,
                wallet=self.chain.wallet_address,
            )
        return ServiceHealth("contract", True, f"owned by {owner}")

    async def check_memory(self) -> ServiceHealth:
        used = self.memory_probe()
        healthy = used < self.config.max_memory_mb
        return ServiceHealth(
            "memory",
            healthy,
            f"{used:.0f}MB of {self.config.max_memory_mb}MB",
            data={"rss_mb": round(used, 1)},
        )

    async def check_storage(self) -> ServiceHealth:
        writable = is_directory_writable(self.config.log_dir)
        return ServiceHealth(
            "storage",
            writable,
            f"{self.config.log_dir} {'writable' if writable else 'not writable'}",
        )

    # === Batteries ===

    async def run_startup_checks(self) -> List[ServiceHealth]:
        """
        Ordered startup battery.

        Raises:
            OwnershipError: Ownership mismatch aborts immediately
        """
        return [
            await self._guard("rpc", self.check_rpc),
            await self._guard("network", self.check_network),
            await self._guard("contract", self.check_contract),
            await self._guard("price_service", self.aggregator.health_check),
            await self._guard("gas_service", self.gas_monitor.health_check),
            await self._guard("memory", self.check_memory),
            await self._guard("storage", self.check_storage),
        ]

    async def run_runtime_checks(self) -> List[ServiceHealth]:
        return [
            await self._guard("rpc", self.check_rpc),
            await self._guard("contract", self.check_contract),
            await self._guard("memory", self.check_memory),
        ]
