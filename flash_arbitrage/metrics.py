"""
Prometheus Metrics for the flash arbitrage engine

Exposes cycle, execution, gas and supervision metrics, optionally served over
HTTP by a small aiohttp app.
"""

import logging
import time
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

from .fixed_point import format_units

logger = logging.getLogger(__name__)

ENGINE_STATES = ("stopped", "starting", "running", "stopping", "restarting")


class EngineMetrics:
    """
    Engine metrics collection and exposure

    Each instance owns its collectors on its own registry, so several
    engines (or tests) can coexist in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

    def _initialize_metrics(self):
        # === CYCLE METRICS ===
        self.cycles_total = Counter(
            "flash_arbitrage_cycles_total",
            "Evaluation cycles by outcome",
            ["outcome"],
            registry=self.registry,
        )

        # === EXECUTION METRICS ===
        self.executions_total = Counter(
            "flash_arbitrage_executions_total",
            "Submitted arbitrage transactions by final status",
            ["status"],
            registry=self.registry,
        )
        self.cumulative_profit_eth = Gauge(
            "flash_arbitrage_cumulative_profit_eth",
            "Net profit of confirmed executions since start",
            registry=self.registry,
        )
        self.gas_spent_eth = Counter(
            "flash_arbitrage_gas_spent_eth_total",
            "Gas spent on submitted transactions",
            registry=self.registry,
        )

        # === ERROR METRICS ===
        self.errors_total = Counter(
            "flash_arbitrage_errors_total",
            "Engine errors by classification",
            ["classification"],
            registry=self.registry,
        )
        self.consecutive_errors = Gauge(
            "flash_arbitrage_consecutive_errors",
            "Current consecutive fault count",
            registry=self.registry,
        )

        # === GAS METRICS ===
        self.gas_price_gwei = Gauge(
            "flash_arbitrage_gas_price_gwei",
            "Last observed gas price",
            registry=self.registry,
        )

        # === SUPERVISION METRICS ===
        self.engine_state = Gauge(
            "flash_arbitrage_engine_state",
            "1 for the current engine state, 0 otherwise",
            ["state"],
            registry=self.registry,
        )
        self.health_checks_total = Counter(
            "flash_arbitrage_health_checks_total",
            "Health check results",
            ["check", "result"],
            registry=self.registry,
        )
        self.restarts_total = Counter(
            "flash_arbitrage_restarts_total",
            "Supervisor restarts",
            registry=self.registry,
        )
        self.last_activity_timestamp = Gauge(
            "flash_arbitrage_last_activity_timestamp",
            "Unix time of the last completed cycle",
            registry=self.registry,
        )

    # === RECORDING ===

    def record_cycle(self, outcome: str):
        self.cycles_total.labels(outcome=outcome).inc()
        self.last_activity_timestamp.set(time.time())

    def record_execution(self, status: str, profit_wei: int, gas_cost_wei: int):
        self.executions_total.labels(status=status).inc()
        if gas_cost_wei > 0:
            self.gas_spent_eth.inc(float(format_units(gas_cost_wei)))
        if profit_wei:
            self.cumulative_profit_eth.inc(float(format_units(profit_wei)))

    def record_error(self, classification: str):
        self.errors_total.labels(classification=classification).inc()

    def update_consecutive_errors(self, count: int):
        self.consecutive_errors.set(count)

    def update_gas_price(self, price_wei: int):
        self.gas_price_gwei.set(float(format_units(price_wei, 9)))

    def set_engine_state(self, state: str):
        for name in ENGINE_STATES:
            self.engine_state.labels(state=name).set(1 if name == state else 0)

    def record_health_check(self, check: str, healthy: bool):
        self.health_checks_total.labels(
            check=check, result="pass" if healthy else "fail"
        ).inc()

    def record_restart(self):
        self.restarts_total.inc()

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ) -> bool:
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        metrics_output = generate_latest(self.registry)
        # Strip charset from content type to avoid conflicts with aiohttp
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        return web.json_response({"status": "healthy", "service": "flash_arbitrage_metrics"})

    def get_metrics_summary(self) -> Dict[str, Any]:
        return {
            "metrics_available": True,
            "server_running": self._site is not None,
            "timestamp": time.time(),
        }
