"""
Pre-execution risk checks.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config_schema import EngineConfig
from .dex.chain_client import ChainClient
from .fixed_point import format_ether, format_gwei, percent_of
from .gas_monitor import GasLevel, GasPriceMonitor
from .opportunity import ArbitrageOpportunity

logger = logging.getLogger(__name__)

GAS_TOO_HIGH = "gas_too_high"
SLIPPAGE_EXCEEDED = "slippage_exceeded"
INSUFFICIENT_GAS_BALANCE = "insufficient_gas_balance"


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: Optional[str] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok


PASSED = ValidationResult(True)


class RiskValidator:
    """
    Re-checks gas, slippage and wallet balance right before execution.

    Checks run in order and stop at the first failure. A failure is an
    expected outcome, not an error; RPC failures propagate to the caller.
    """

    def __init__(
        self, gas_monitor: GasPriceMonitor, chain: ChainClient, config: EngineConfig
    ):
        self.gas_monitor = gas_monitor
        self.chain = chain
        self.config = config

    async def validate(self, opportunity: ArbitrageOpportunity) -> ValidationResult:
        sample = await self.gas_monitor.get_current_price()
        level = self.gas_monitor.classify(sample.price_wei)
        if level >= GasLevel.EXTREME:
            return ValidationResult(
                False,
                GAS_TOO_HIGH,
                f"gas {format_gwei(sample.price_wei)} gwei is {level.label}",
            )

        floor_bps = -self.config.max_slippage_bps
        if opportunity.roi_bps < floor_bps:
            return ValidationResult(
                False,
                SLIPPAGE_EXCEEDED,
                f"roi {opportunity.roi_bps} bps below floor {floor_bps} bps",
            )

        balance = await self.chain.get_balance()
        required = percent_of(
            sample.price_wei * self.config.gas_limit,
            100 + self.config.gas_balance_margin_pct,
        )
        if balance < required:
            return ValidationResult(
                False,
                INSUFFICIENT_GAS_BALANCE,
                f"balance {format_ether(balance)} ETH below required "
                f"{format_ether(required)} ETH",
            )

        logger.debug(
            f"Risk checks passed: gas={level.label}, roi={opportunity.roi_bps} bps, "
            f"balance={format_ether(balance)} ETH"
        )
        return PASSED
