"""
Flash-Loan Arbitrage Engine.

Detects price differences for one token pair between two Uniswap V2 style
exchanges and captures them with a flash-loan funded round trip through an
operator-owned contract, under gas, balance and fee limits, supervised by a
health-checking, self-restarting control loop.
"""

PROJECT_NAME = "flash-arbitrage-engine"

from flash_arbitrage.version import __version__

VERSION = __version__

# Export main components for easier imports
from flash_arbitrage.config_loader import load_config
from flash_arbitrage.config_schema import EngineConfig
from flash_arbitrage.coordinator import CoordinatorState, CycleOutcome, ExecutionCoordinator
from flash_arbitrage.events import EngineEvent, EventBus
from flash_arbitrage.gas_monitor import GasLevel, GasPriceMonitor
from flash_arbitrage.opportunity import ArbitrageOpportunity, TradingPair, evaluate
from flash_arbitrage.risk_validator import RiskValidator, ValidationResult
from flash_arbitrage.stats import EngineStats, ExecutionResult
from flash_arbitrage.supervisor import EngineState, Supervisor

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "load_config",
    "EngineConfig",
    "CoordinatorState",
    "CycleOutcome",
    "ExecutionCoordinator",
    "EngineEvent",
    "EventBus",
    "GasLevel",
    "GasPriceMonitor",
    "ArbitrageOpportunity",
    "TradingPair",
    "evaluate",
    "RiskValidator",
    "ValidationResult",
    "EngineStats",
    "ExecutionResult",
    "EngineState",
    "Supervisor",
]
