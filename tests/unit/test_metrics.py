"""
Unit tests for Prometheus metrics
"""

import socket

import aiohttp
import pytest
from prometheus_client import CollectorRegistry, generate_latest

from flash_arbitrage.metrics import EngineMetrics


@pytest.fixture
def test_registry():
    """Create a test-specific registry"""
    return CollectorRegistry()


@pytest.fixture
def metrics(test_registry):
    """Create EngineMetrics instance with test registry"""
    return EngineMetrics(test_registry)


def sample(metrics, name, labels=None):
    return metrics.registry.get_sample_value(name, labels or {})


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestEngineMetrics:
    """Test EngineMetrics functionality"""

    def test_instances_do_not_share_collectors(self):
        first, second = EngineMetrics(), EngineMetrics()
        first.record_restart()
        assert sample(first, "flash_arbitrage_restarts_total") == 1
        assert sample(second, "flash_arbitrage_restarts_total") == 0

    def test_cycle_metrics(self, metrics):
        metrics.record_cycle("executed")
        metrics.record_cycle("no_opportunity")
        metrics.record_cycle("no_opportunity")

        assert sample(metrics, "flash_arbitrage_cycles_total", {"outcome": "no_opportunity"}) == 2
        assert sample(metrics, "flash_arbitrage_last_activity_timestamp") > 0

    def test_execution_metrics(self, metrics):
        metrics.record_execution("success", 93 * 10**15, 4 * 10**15)
        metrics.record_execution("reverted", 0, 5 * 10**15)

        assert sample(metrics, "flash_arbitrage_executions_total", {"status": "success"}) == 1
        assert sample(metrics, "flash_arbitrage_cumulative_profit_eth") == pytest.approx(0.093)
        assert sample(metrics, "flash_arbitrage_gas_spent_eth_total") == pytest.approx(0.009)

    def test_error_and_gas_metrics(self, metrics):
        metrics.record_error("recoverable")
        metrics.update_consecutive_errors(3)
        metrics.update_gas_price(22 * 10**9)

        assert sample(metrics, "flash_arbitrage_errors_total", {"classification": "recoverable"}) == 1
        assert sample(metrics, "flash_arbitrage_consecutive_errors") == 3
        assert sample(metrics, "flash_arbitrage_gas_price_gwei") == 22

    def test_engine_state_is_one_hot(self, metrics):
        metrics.set_engine_state("running")
        assert sample(metrics, "flash_arbitrage_engine_state", {"state": "running"}) == 1
        assert sample(metrics, "flash_arbitrage_engine_state", {"state": "stopped"}) == 0

        metrics.set_engine_state("stopped")
        assert sample(metrics, "flash_arbitrage_engine_state", {"state": "running"}) == 0

    def test_health_check_metrics(self, metrics):
        metrics.record_health_check("rpc", True)
        metrics.record_health_check("rpc", False)
        output = generate_latest(metrics.registry).decode("utf-8")
        assert 'flash_arbitrage_health_checks_total{check="rpc",result="fail"} 1.0' in output


class TestMetricsServer:
    @pytest.mark.asyncio
    async def test_serves_metrics(self, metrics):
        port = free_port()
        metrics.record_cycle("executed")
        assert await metrics.start_server(port=port, host="127.0.0.1")
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{port}/metrics") as response:
                    assert response.status == 200
                    body = await response.text()
                async with session.get(f"http://127.0.0.1:{port}/health") as response:
                    assert (await response.json())["status"] == "healthy"
        finally:
            await metrics.stop_server()

        assert "flash_arbitrage_cycles_total" in body
        assert not metrics.get_metrics_summary()["server_running"]
