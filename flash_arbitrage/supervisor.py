"""
Engine supervisor.

Owns the engine lifecycle (``stopped -> starting -> running -> stopping ->
stopped``, plus ``running -> restarting -> starting``), the engine statistics
and the background loops. This is the host-facing entry point: ``start``,
``stop``, ``get_status`` and ``trade_history``.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config_schema import EngineConfig
from .coordinator import ExecutionCoordinator
from .dex.chain_client import ChainClient
from .dex.price_aggregator import PriceAggregator
from .events import (
    ENGINE_ERROR,
    HEALTH_CHECK,
    RESTART,
    STATE_CHANGED,
    STATS_SUMMARY,
    EngineEvent,
    EventBus,
)
from .exceptions import (
    ErrorClass,
    FlashArbitrageError,
    HealthCheckError,
    OwnershipError,
    describe,
)
from .gas_monitor import GasPriceMonitor
from .health import HealthChecker
from .metrics import EngineMetrics
from .models import ServiceHealth
from .risk_validator import RiskValidator
from .stats import EngineStats, TradeHistory
from .utils import format_uptime, get_current_timestamp, wait_for_stop

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    RESTARTING = "restarting"


@dataclass
class EngineComponents:
    """Services built for one engine run."""

    chain: ChainClient
    aggregator: PriceAggregator
    gas_monitor: GasPriceMonitor
    risk_validator: RiskValidator
    health: HealthChecker


ComponentFactory = Callable[[EngineConfig, EventBus], EngineComponents]


def build_components(config: EngineConfig, events: EventBus) -> EngineComponents:
    """Default factory wiring the services against a live RPC endpoint."""
    chain = ChainClient(config)
    aggregator = PriceAggregator(chain, config)
    gas_monitor = GasPriceMonitor(chain, config, events)
    return EngineComponents(
        chain=chain,
        aggregator=aggregator,
        gas_monitor=gas_monitor,
        risk_validator=RiskValidator(gas_monitor, chain, config),
        health=HealthChecker(config, chain, aggregator, gas_monitor),
    )


class Supervisor:
    """Starts, watches and restarts the arbitrage engine."""

    def __init__(
        self,
        factory: ComponentFactory = build_components,
        events: Optional[EventBus] = None,
        metrics: Optional[EngineMetrics] = None,
        sleep=asyncio.sleep,
    ):
        self.factory = factory
        self.events = events or EventBus()
        self.metrics = metrics
        self._sleep = sleep

        self.state = EngineState.STOPPED
        self.config: Optional[EngineConfig] = None
        self.stats = EngineStats()
        self.history = TradeHistory()
        self.components: Optional[EngineComponents] = None
        self.coordinator: Optional[ExecutionCoordinator] = None
        self.service_health: Dict[str, ServiceHealth] = {}
        self.last_error: Optional[Dict[str, Any]] = None
        self.health_failures = 0

        self._stop_event: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []
        self._coordinator_task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._fatal_task: Optional[asyncio.Task] = None

        self.events.subscribe(self._on_event)

    # === State ===

    def _set_state(self, state: EngineState) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        self.events.emit(
            STATE_CHANGED,
            f"Engine {previous.value} -> {state.value}",
            component="supervisor",
            previous=previous.value,
            state=state.value,
        )
        if self.metrics:
            self.metrics.set_engine_state(state.value)

    # === Host interface ===

    async def start(self, config: EngineConfig) -> Dict[str, Any]:
        """Start from stopped with fresh statistics."""
        if self.state != EngineState.STOPPED:
            return {
                "ok": False,
                "error": f"engine is {self.state.value}",
                "stats": self.stats.to_dict(),
            }

        self.stats = EngineStats()
        self.history = TradeHistory(config.trade_history_size)
        self.last_error = None
        self.health_failures = 0

        try:
            await self._start(config)
        except Exception as e:
            self._fail_start(e)
            return {"ok": False, "error": self.last_error, "stats": self.stats.to_dict()}

        return {"ok": True, "stats": self.stats.to_dict()}

    async def stop(self) -> Dict[str, Any]:
        """Stop the engine, letting an in-flight transaction confirm first."""
        if self.state == EngineState.STOPPED:
            return {"ok": True, "stats": self.stats.to_dict()}
        current = asyncio.current_task()
        restarting = (
            self._restart_task is not None
            and not self._restart_task.done()
            and self._restart_task is not current
        )
        if restarting:
            self._restart_task.cancel()
            await asyncio.gather(self._restart_task, return_exceptions=True)
            self._restart_task = None
        elif self.state in (EngineState.STARTING, EngineState.STOPPING):
            return {
                "ok": False,
                "error": f"engine is {self.state.value}",
                "stats": self.stats.to_dict(),
            }

        self._set_state(EngineState.STOPPING)
        await self._shutdown()
        self._set_state(EngineState.STOPPED)
        logger.info(f"Engine stopped after {format_uptime(self.stats.uptime())}")
        return {"ok": True, "stats": self.stats.to_dict()}

    def get_status(self) -> Dict[str, Any]:
        status = {
            "state": self.state.value,
            "stats": self.stats.to_dict(),
            "summary": self.stats.summary(),
            "service_health": {
                name: health.to_dict() for name, health in self.service_health.items()
            },
            "health_failures": self.health_failures,
            "last_error": self.last_error,
            "coordinator": self.coordinator.status() if self.coordinator else None,
        }
        if self.components:
            status["price_service"] = self.components.aggregator.stats()
            status["gas_service"] = self.components.gas_monitor.stats()
        return status

    def trade_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.history.to_list(limit)

    # === Lifecycle ===

    async def _start(self, config: EngineConfig) -> None:
        self._set_state(EngineState.STARTING)
        self.config = config
        self.components = self.factory(config, self.events)

        results = await self.components.health.run_startup_checks()
        self._record_health(results)
        failed = [result.name for result in results if not result.healthy]
        if len(failed) > config.max_failed_health_checks:
            raise HealthCheckError(
                f"{len(failed)} startup health checks failed: {', '.join(failed)}",
                failed_checks=failed,
            )
        if failed:
            logger.warning(f"Starting with failed health checks: {', '.join(failed)}")

        self.coordinator = ExecutionCoordinator(
            config,
            self.components.chain,
            self.components.aggregator,
            self.components.gas_monitor,
            self.components.risk_validator,
            self.stats,
            self.history,
            events=self.events,
            metrics=self.metrics,
        )

        self._stop_event = asyncio.Event()
        self._coordinator_task = asyncio.create_task(
            self.coordinator.run(self._stop_event), name="coordinator"
        )
        self._coordinator_task.add_done_callback(self._on_coordinator_done)
        self._tasks = [
            self._coordinator_task,
            asyncio.create_task(
                self.components.gas_monitor.run(self._stop_event), name="gas_monitor"
            ),
            asyncio.create_task(self._health_loop(self._stop_event), name="health"),
            asyncio.create_task(self._stats_loop(self._stop_event), name="stats"),
            asyncio.create_task(self._memory_loop(self._stop_event), name="memory"),
        ]

        self._set_state(EngineState.RUNNING)
        logger.info(
            f"Engine running: {config.pair.name} on "
            f"{' / '.join(ex.id for ex in config.exchanges)}, "
            f"flash loan {config.flash_loan_amount_eth} ETH, "
            f"min profit {config.min_profit_eth} ETH"
        )

    def _fail_start(self, error: BaseException) -> None:
        if isinstance(error, FlashArbitrageError):
            logger.error(f"Engine failed to start: {error}")
        else:
            logger.exception(f"Engine failed to start: {error}")
        self.last_error = {**describe(error), "classification": ErrorClass.FATAL.value}
        self.components = None
        self.coordinator = None
        self._set_state(EngineState.STOPPED)

    async def _shutdown(self) -> None:
        """Stop background loops, then wait for any in-flight transaction."""
        if self._stop_event:
            self._stop_event.set()

        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                logger.warning(f"Task {task.get_name()} ended with error: {result}")
        self._tasks = []
        self._coordinator_task = None

        if self.coordinator:
            await self.coordinator.wait_in_flight()

    def request_restart(self, reason: str) -> None:
        """Schedule a restart unless one is already pending."""
        if self.state != EngineState.RUNNING:
            return
        if self._restart_task and not self._restart_task.done():
            return
        self._restart_task = asyncio.get_running_loop().create_task(
            self._restart(reason), name="restart"
        )

    async def _restart(self, reason: str) -> None:
        logger.warning(f"Restarting engine: {reason}")
        self._set_state(EngineState.RESTARTING)
        self.events.emit(RESTART, reason, logging.WARNING, restarts=self.stats.restarts + 1)
        if self.metrics:
            self.metrics.record_restart()

        await self._shutdown()
        snapshot = self.stats.to_dict()
        await self._sleep(self.config.restart_delay)

        self.stats = EngineStats.from_dict(snapshot)
        self.stats.restarts += 1
        self.stats.consecutive_error_count = 0
        self.health_failures = 0

        try:
            await self._start(self.config)
        except Exception as e:
            self._fail_start(e)

    def _on_coordinator_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        logger.error(f"Execution loop stopped on fatal error: {error}")
        self.last_error = describe(error)
        if self.state == EngineState.RUNNING:
            self._fatal_task = asyncio.get_running_loop().create_task(
                self._fatal_stop(), name="fatal_stop"
            )

    async def _fatal_stop(self) -> None:
        self._set_state(EngineState.STOPPING)
        await self._shutdown()
        self._set_state(EngineState.STOPPED)

    def _on_event(self, event: EngineEvent) -> None:
        if event.kind != ENGINE_ERROR or self.config is None:
            return
        if self.metrics:
            self.metrics.update_consecutive_errors(self.stats.consecutive_error_count)
        if self.stats.consecutive_error_count >= self.config.max_consecutive_errors:
            self.request_restart(
                f"{self.stats.consecutive_error_count} consecutive execution errors"
            )

    # === Health ===

    def _record_health(self, results: List[ServiceHealth]) -> None:
        for result in results:
            self.service_health[result.name] = result
            if self.metrics:
                self.metrics.record_health_check(result.name, result.healthy)
        self.stats.last_health_check_time = get_current_timestamp()

    async def run_health_check(self) -> bool:
        """Runtime health battery; drives the consecutive health-failure counter."""
        try:
            results = await self.components.health.run_runtime_checks()
        except OwnershipError as e:
            logger.error(f"Ownership check failed: {e}")
            self.last_error = describe(e)
            self._fatal_task = asyncio.get_running_loop().create_task(
                self._fatal_stop(), name="fatal_stop"
            )
            return False

        coordinator_alive = (
            self._coordinator_task is not None
            and not self._coordinator_task.done()
            and self.coordinator.is_alive()
        )
        results.append(
            ServiceHealth(
                "coordinator",
                coordinator_alive,
                "running" if coordinator_alive else "execution loop not progressing",
            )
        )
        self._record_health(results)

        failed = [result.name for result in results if not result.healthy]
        if failed:
            self.health_failures += 1
        else:
            self.health_failures = 0

        self.events.emit(
            HEALTH_CHECK,
            "healthy" if not failed else f"failed: {', '.join(failed)}",
            logging.INFO if not failed else logging.WARNING,
            failed=failed,
            consecutive_failures=self.health_failures,
        )

        if self.health_failures >= self.config.max_consecutive_errors:
            self.request_restart(f"{self.health_failures} consecutive failed health checks")
        return not failed

    # === Background loops ===

    async def _health_loop(self, stop_event: asyncio.Event) -> None:
        while not await wait_for_stop(stop_event, self.config.health_check_interval):
            try:
                await self.run_health_check()
            except FlashArbitrageError as e:
                logger.warning(f"Health check error: {e}")

    async def _stats_loop(self, stop_event: asyncio.Event) -> None:
        while not await wait_for_stop(stop_event, self.config.stats_interval):
            self.log_stats()

    def log_stats(self) -> None:
        self.events.emit(STATS_SUMMARY, "Engine statistics", **self.stats.summary())
        if self.metrics:
            self.metrics.update_consecutive_errors(self.stats.consecutive_error_count)

    async def _memory_loop(self, stop_event: asyncio.Event) -> None:
        while not await wait_for_stop(stop_event, self.config.memory_check_interval):
            self.relieve_memory_pressure()

    def relieve_memory_pressure(self) -> bool:
        """Clear quote caches when memory is above the pressure threshold."""
        used = self.components.health.memory_probe()
        if used <= self.config.memory_pressure_mb:
            return False
        cleared = self.components.aggregator.clear_cache()
        logger.warning(
            f"Memory at {used:.0f}MB (threshold {self.config.memory_pressure_mb}MB), "
            f"cleared {cleared} cached quotes"
        )
        return True
