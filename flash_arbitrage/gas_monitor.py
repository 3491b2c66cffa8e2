"""
Gas price monitoring.

Samples the network gas price, keeps a bounded history, classifies the
current level against configured thresholds and derives a short-term trend
and an execution recommendation from it.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Deque, Dict, List, Optional

import aiohttp

from .config_schema import EngineConfig
from .dex.chain_client import ChainClient
from .events import GAS_ALERT, EventBus
from .exceptions import FlashArbitrageError
from .fixed_point import BPS_DENOMINATOR, format_gwei, gwei_to_wei, percent_of
from .models import ServiceHealth
from .utils import wait_for_stop

logger = logging.getLogger(__name__)

TREND_WINDOW = 10


class GasLevel(IntEnum):
    """Ordered gas levels; higher is more expensive."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2
    EXTREME = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class GasAction(str, Enum):
    PROCEED = "proceed"
    CAUTION = "caution"
    WAIT = "wait"


@dataclass(frozen=True)
class GasSample:
    price_wei: int
    sampled_at: float


@dataclass(frozen=True)
class GasTrend:
    direction: TrendDirection
    percent_change: Decimal
    recent_average_wei: int = 0
    older_average_wei: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "percent_change": str(self.percent_change),
            "recent_average_wei": str(self.recent_average_wei),
            "older_average_wei": str(self.older_average_wei),
        }


@dataclass(frozen=True)
class GasRecommendation:
    action: GasAction
    reason: str
    level: GasLevel
    trend: GasTrend
    price_wei: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "reason": self.reason,
            "level": self.level.label,
            "trend": self.trend.to_dict(),
            "price_gwei": format_gwei(self.price_wei),
        }


STABLE_TREND = GasTrend(TrendDirection.STABLE, Decimal(0))


class GasPriceMonitor:
    """Tracks network gas price for the execution coordinator."""

    def __init__(
        self,
        chain: ChainClient,
        config: EngineConfig,
        events: Optional[EventBus] = None,
        clock=time.monotonic,
    ):
        self.chain = chain
        self.config = config
        self.events = events
        self._clock = clock
        self._thresholds = config.gas_thresholds.bounds_wei
        self.history: Deque[GasSample] = deque(maxlen=config.gas_history_size)
        self._cached: Optional[GasSample] = None
        self._cached_at = 0.0
        self.oracle_failures = 0

    # === Sampling ===

    async def get_current_price(self, force: bool = False) -> GasSample:
        """
        Current gas price, cached for ``gas_cache_ttl`` seconds.

        Fresh samples are appended to the history.
        """
        now = self._clock()
        if (
            not force
            and self._cached is not None
            and now - self._cached_at < self.config.gas_cache_ttl
        ):
            return self._cached

        price = await self._fetch_price()
        sample = GasSample(price_wei=price, sampled_at=time.time())
        self.history.append(sample)
        self._cached = sample
        self._cached_at = now
        return sample

    async def _fetch_price(self) -> int:
        if self.config.gas_oracle_url:
            try:
                return await self._fetch_oracle_price()
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
                self.oracle_failures += 1
                logger.warning(f"Gas oracle unavailable, using RPC gas price: {e}")
        return await self.chain.get_gas_price()

    async def _fetch_oracle_price(self) -> int:
        """Read the proposed gas price from an Etherscan-style gas oracle."""
        params = {"module": "gastracker", "action": "gasoracle"}
        if self.config.gas_oracle_api_key:
            params["apikey"] = self.config.gas_oracle_api_key

        timeout = aiohttp.ClientTimeout(total=self.config.rpc_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.config.gas_oracle_url, params=params) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)

        if str(data.get("status")) != "1":
            raise ValueError(f"gas oracle error: {data.get('message') or data}")
        return gwei_to_wei(Decimal(str(data["result"]["ProposeGasPrice"])))

    # === Analysis ===

    def classify(self, price_wei: int) -> GasLevel:
        """Map a price onto a level; a price equal to a bound falls in the higher level."""
        for level, bound in zip(GasLevel, self._thresholds):
            if price_wei < bound:
                return level
        return GasLevel.CRITICAL

    def get_trend(self) -> GasTrend:
        """Compare the mean of the last 10 samples with the 10 before them."""
        samples: List[int] = [sample.price_wei for sample in self.history]
        if len(samples) < 2:
            return STABLE_TREND

        recent = samples[-TREND_WINDOW:]
        older = samples[-2 * TREND_WINDOW : -TREND_WINDOW]
        if not older:
            return STABLE_TREND

        recent_avg = sum(recent) // len(recent)
        older_avg = sum(older) // len(older)
        if older_avg == 0:
            return GasTrend(TrendDirection.STABLE, Decimal(0), recent_avg, older_avg)

        change_bps = (recent_avg - older_avg) * BPS_DENOMINATOR // older_avg
        percent_change = Decimal(change_bps) / 100

        if percent_change > self.config.gas_trend_stable_pct:
            direction = TrendDirection.INCREASING
        elif percent_change < -self.config.gas_trend_stable_pct:
            direction = TrendDirection.DECREASING
        else:
            direction = TrendDirection.STABLE

        return GasTrend(direction, percent_change, recent_avg, older_avg)

    def recommend(self, price_wei: int) -> GasRecommendation:
        level = self.classify(price_wei)
        trend = self.get_trend()
        rising = trend.direction == TrendDirection.INCREASING

        if level >= GasLevel.EXTREME:
            action, reason = GasAction.WAIT, f"gas level is {level.label}"
        elif rising and trend.percent_change > self.config.gas_trend_wait_pct:
            action, reason = (
                GasAction.WAIT,
                f"gas rising quickly ({trend.percent_change}%)",
            )
        elif level == GasLevel.HIGH and rising:
            action, reason = GasAction.CAUTION, "gas is high and rising"
        else:
            action, reason = GasAction.PROCEED, f"gas level is {level.label}"

        return GasRecommendation(action, reason, level, trend, price_wei)

    async def get_recommendation(self) -> GasRecommendation:
        sample = await self.get_current_price()
        return self.recommend(sample.price_wei)

    def is_acceptable(self, price_wei: int) -> bool:
        return price_wei <= self.config.max_gas_price_wei

    def optimal_gas_price(self, price_wei: int) -> int:
        """Current price plus 10%, clamped to the configured gas price range."""
        boosted = percent_of(price_wei, 110)
        return max(
            self.config.min_gas_price_wei, min(boosted, self.config.max_gas_price_wei)
        )

    # === Background loop ===

    async def run(self, stop_event: asyncio.Event) -> None:
        """Sample on ``gas_check_interval`` until ``stop_event`` is set."""
        logger.info(
            f"Gas monitoring started (every {self.config.gas_check_interval:.0f}s)"
        )
        while not stop_event.is_set():
            try:
                sample = await self.get_current_price(force=True)
                recommendation = self.recommend(sample.price_wei)
                logger.info(
                    f"Gas {format_gwei(sample.price_wei)} gwei, "
                    f"level={recommendation.level.label}, "
                    f"trend={recommendation.trend.direction.value} "
                    f"({recommendation.trend.percent_change}%)"
                )
                if recommendation.level >= GasLevel.EXTREME and self.events:
                    self.events.emit(
                        GAS_ALERT,
                        f"Gas price {recommendation.level.label}",
                        logging.WARNING,
                        recommendation=recommendation.to_dict(),
                    )
            except FlashArbitrageError as e:
                logger.warning(f"Gas sampling failed: {e}")

            if await wait_for_stop(stop_event, self.config.gas_check_interval):
                break

        logger.info("Gas monitoring stopped")

    async def health_check(self) -> ServiceHealth:
        started = time.monotonic()
        try:
            sample = await self.get_current_price(force=True)
        except FlashArbitrageError as e:
            return ServiceHealth("gas_service", False, str(e))

        if sample.price_wei <= 0:
            return ServiceHealth("gas_service", False, "gas price is zero")

        return ServiceHealth(
            "gas_service",
            True,
            f"{format_gwei(sample.price_wei)} gwei ({self.classify(sample.price_wei).label})",
            latency_ms=(time.monotonic() - started) * 1000,
        )

    def stats(self) -> Dict[str, Any]:
        latest = self.history[-1].price_wei if self.history else None
        return {
            "samples": len(self.history),
            "latest_gwei": format_gwei(latest) if latest is not None else None,
            "level": self.classify(latest).label if latest is not None else None,
            "trend": self.get_trend().to_dict(),
            "oracle_failures": self.oracle_failures,
        }
