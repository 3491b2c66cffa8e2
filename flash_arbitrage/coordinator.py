"""
Execution coordinator: the engine's evaluation and execution loop.

Each cycle moves through ``idle -> evaluating -> validating -> submitting ->
confirming -> idle``. Gates and validation failures end a cycle early as an
expected outcome; only faults (RPC failures, failed submissions, reverted
transactions) count toward the supervisor's restart threshold.

Once a transaction has been submitted, the submit/confirm step runs as its
own task shielded from cancellation so that stopping the engine never
abandons a transaction that may still land on-chain.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .config_schema import EngineConfig
from .dex.chain_client import ArbitrageCall, ChainClient
from .dex.price_aggregator import PriceAggregator
from .events import (
    ENGINE_ERROR,
    EXECUTION_CONFIRMED,
    EXECUTION_FAILED,
    EXECUTION_SUBMITTED,
    OPPORTUNITY_FOUND,
    STATE_CHANGED,
    EventBus,
)
from .exceptions import (
    ErrorClass,
    ExecutionError,
    FlashArbitrageError,
    NetworkError,
    describe,
)
from .fixed_point import format_ether, format_gwei, percent_of
from .gas_monitor import GasPriceMonitor
from .opportunity import (
    ArbitrageOpportunity,
    Direction,
    TradingPair,
    best_opportunity,
    evaluate,
)
from .risk_validator import RiskValidator
from .stats import EngineStats, ExecutionResult, TradeHistory
from .utils import wait_for_stop

logger = logging.getLogger(__name__)

# Poll interval while waiting for a new block
BLOCK_POLL_INTERVAL = 3.0


class CoordinatorState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"


class CycleOutcome(str, Enum):
    EXECUTED = "executed"
    SAME_BLOCK = "same_block"
    SPACING = "min_execution_interval"
    NO_LIQUIDITY = "no_flash_loan_liquidity"
    GAS_TOO_HIGH = "gas_above_max"
    LOW_BALANCE = "wallet_balance_low"
    NO_OPPORTUNITY = "no_opportunity"
    BELOW_MIN_PROFIT = "below_min_profit"
    VALIDATION_FAILED = "validation_failed"
    REJECTED = "rejected"
    ESTIMATE_REVERTED = "estimate_reverted"
    FEE_TOO_HIGH = "fee_above_max"
    NET_PROFIT_TOO_LOW = "net_profit_below_min"
    ERROR = "error"


@dataclass
class CycleReport:
    outcome: CycleOutcome
    reason: str = ""
    opportunity: Optional[ArbitrageOpportunity] = None
    result: Optional[ExecutionResult] = None
    error: Optional[BaseException] = None

    @property
    def is_fault(self) -> bool:
        return self.outcome == CycleOutcome.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "opportunity": self.opportunity.to_dict() if self.opportunity else None,
            "result": self.result.to_dict() if self.result else None,
            "error": describe(self.error) if self.error else None,
        }


class ExecutionCoordinator:
    """Runs evaluation cycles and executes qualifying opportunities."""

    def __init__(
        self,
        config: EngineConfig,
        chain: ChainClient,
        aggregator: PriceAggregator,
        gas_monitor: GasPriceMonitor,
        risk_validator: RiskValidator,
        stats: EngineStats,
        history: TradeHistory,
        events: Optional[EventBus] = None,
        metrics=None,
        clock=time.monotonic,
    ):
        self.config = config
        self.chain = chain
        self.aggregator = aggregator
        self.gas_monitor = gas_monitor
        self.risk_validator = risk_validator
        self.stats = stats
        self.history = history
        self.events = events or EventBus()
        self.metrics = metrics
        self._clock = clock

        self.pair = TradingPair(config.pair.name, config.pair.token_a, config.pair.token_b)
        self._router_index = {ex.id: ex.router_index for ex in config.exchanges}

        self.state = CoordinatorState.IDLE
        self.last_report: Optional[CycleReport] = None
        self.last_cycle_at: Optional[float] = None
        self._last_block: Optional[int] = None
        self._last_execution_at: Optional[float] = None
        self._last_liquidity_check: Optional[float] = None
        self._liquidity_ok = False
        self._in_flight: Optional[asyncio.Task] = None

    # === State ===

    def _set_state(self, state: CoordinatorState) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        self.events.emit(
            STATE_CHANGED,
            f"Coordinator {previous.value} -> {state.value}",
            logging.DEBUG,
            component="coordinator",
            previous=previous.value,
            state=state.value,
        )

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def is_alive(self) -> bool:
        """True when a cycle has run recently enough for a healthy loop."""
        if self.in_flight:
            return True
        if self.last_cycle_at is None:
            return False
        budget = 3 * self.config.check_interval + self.config.rpc_timeout * 4
        return self._clock() - self.last_cycle_at <= budget

    # === Cycle ===

    async def run_cycle(self) -> CycleReport:
        """
        Run one evaluation cycle.

        Recoverable faults are counted and reported as an ``error`` outcome;
        expected errors end the cycle as ``rejected``; fatal errors propagate.
        """
        self.stats.cycles += 1
        self.last_cycle_at = self._clock()

        try:
            report = await self._cycle()
        except FlashArbitrageError as e:
            if e.classification == ErrorClass.FATAL:
                raise
            if e.classification == ErrorClass.EXPECTED:
                report = CycleReport(CycleOutcome.REJECTED, str(e), error=e)
            else:
                report = self._record_fault(e)
        finally:
            if not self.in_flight:
                self._set_state(CoordinatorState.IDLE)

        if report.outcome == CycleOutcome.EXECUTED:
            self.stats.record_clean_cycle()
        elif not report.is_fault:
            self.stats.record_skip()
            self.stats.record_clean_cycle()
            logger.debug(f"Cycle skipped: {report.outcome.value} {report.reason}")

        if self.metrics:
            self.metrics.record_cycle(report.outcome.value)
        self.last_report = report
        return report

    def _record_fault(self, error: BaseException) -> CycleReport:
        self.stats.record_fault()
        self.events.emit(
            ENGINE_ERROR,
            str(error),
            logging.WARNING,
            consecutive_errors=self.stats.consecutive_error_count,
            error=describe(error),
        )
        if self.metrics:
            self.metrics.record_error(describe(error)["classification"])
        return CycleReport(CycleOutcome.ERROR, str(error), error=error)

    async def _cycle(self) -> CycleReport:
        now = self._clock()

        if (
            self._last_execution_at is not None
            and now - self._last_execution_at < self.config.min_execution_interval
        ):
            return CycleReport(CycleOutcome.SPACING)

        if self.config.block_based_execution:
            block = await self.chain.get_block_number()
            if block == self._last_block:
                return CycleReport(CycleOutcome.SAME_BLOCK, f"block {block}")
            self._last_block = block

        if (
            self._last_liquidity_check is None
            or now - self._last_liquidity_check >= self.config.liquidity_check_interval
        ):
            self._liquidity_ok = await self.chain.has_flash_loan_liquidity(
                self.pair.token_a
            )
            self._last_liquidity_check = now
            if not self._liquidity_ok:
                logger.warning(f"No flash-loan liquidity for {self.pair.token_a}")
        if not self._liquidity_ok:
            return CycleReport(CycleOutcome.NO_LIQUIDITY)

        gas = await self.gas_monitor.get_current_price()
        if self.metrics:
            self.metrics.update_gas_price(gas.price_wei)
        if not self.gas_monitor.is_acceptable(gas.price_wei):
            return CycleReport(
                CycleOutcome.GAS_TOO_HIGH, f"{format_gwei(gas.price_wei)} gwei"
            )

        balance = await self.chain.get_balance()
        if balance < self.config.min_wallet_balance_wei:
            return CycleReport(
                CycleOutcome.LOW_BALANCE, f"{format_ether(balance)} ETH"
            )

        self._set_state(CoordinatorState.EVALUATING)
        opportunity = await self.find_opportunity()
        if opportunity is None:
            return CycleReport(CycleOutcome.NO_OPPORTUNITY)
        if opportunity.estimated_profit <= self.config.min_profit_wei:
            return CycleReport(
                CycleOutcome.BELOW_MIN_PROFIT,
                f"{format_ether(opportunity.estimated_profit)} ETH",
                opportunity,
            )

        self.events.emit(
            OPPORTUNITY_FOUND,
            f"{opportunity.direction.value} {opportunity.first_exchange} -> "
            f"{opportunity.second_exchange}",
            **opportunity.to_dict(),
        )

        self._set_state(CoordinatorState.VALIDATING)
        validation = await self.risk_validator.validate(opportunity)
        if not validation.ok:
            logger.info(f"Opportunity rejected: {validation.reason} ({validation.detail})")
            return CycleReport(
                CycleOutcome.VALIDATION_FAILED, validation.reason or "", opportunity
            )

        self._in_flight = asyncio.ensure_future(
            self._execute(opportunity, gas.price_wei)
        )
        return await asyncio.shield(self._in_flight)

    async def find_opportunity(self) -> Optional[ArbitrageOpportunity]:
        """Evaluate both exchange orders and return the better profitable one."""
        amount = self.config.flash_loan_amount_wei
        token_a, token_b = self.pair.token_a, self.pair.token_b
        first, second = self.aggregator.exchange_ids

        forward_first, forward_second = await asyncio.gather(
            self.aggregator.get_quote(first, token_a, token_b, amount),
            self.aggregator.get_quote(second, token_a, token_b, amount),
        )

        legs = [
            (Direction.A_TO_B, forward_first, second),
            (Direction.B_TO_A, forward_second, first),
        ]
        legs = [leg for leg in legs if leg[1].amount_out > 0]
        reverses = await asyncio.gather(
            *(
                self.aggregator.get_quote(exchange, token_b, token_a, forward.amount_out)
                for _, forward, exchange in legs
            )
        )

        candidates: List[ArbitrageOpportunity] = [
            evaluate(
                self.pair,
                forward,
                reverse,
                amount,
                self.config.flash_loan_fee_bps,
                direction,
            )
            for (direction, forward, _), reverse in zip(legs, reverses)
        ]
        for candidate in candidates:
            logger.debug(
                f"{candidate.direction.value}: profit "
                f"{candidate.estimated_profit} wei ({candidate.roi_bps} bps)"
            )
        return best_opportunity(candidates)

    # === Execution ===

    async def _execute(
        self, opportunity: ArbitrageOpportunity, current_gas_price: int
    ) -> CycleReport:
        # Faults are counted here so they are recorded even when the cycle
        # awaiting this task has been cancelled.
        try:
            return await self._submit_and_confirm(opportunity, current_gas_price)
        except FlashArbitrageError as e:
            if e.classification == ErrorClass.FATAL:
                raise
            if e.classification == ErrorClass.EXPECTED:
                return CycleReport(CycleOutcome.REJECTED, str(e), opportunity, error=e)
            report = self._record_fault(e)
            report.opportunity = opportunity
            return report
        finally:
            self._set_state(CoordinatorState.IDLE)

    async def _submit_and_confirm(
        self, opportunity: ArbitrageOpportunity, current_gas_price: int
    ) -> CycleReport:
        self._set_state(CoordinatorState.SUBMITTING)
        gas_price = self.gas_monitor.optimal_gas_price(current_gas_price)
        call = ArbitrageCall(
            borrowed_token=opportunity.pair.token_a,
            amount=opportunity.flash_loan_amount,
            swap_token=opportunity.pair.token_b,
            min_profit=self.config.min_profit_wei,
            first_router=self._router_index[opportunity.first_exchange],
            second_router=self._router_index[opportunity.second_exchange],
        )

        try:
            estimate = await self.chain.estimate_arbitrage_gas(call)
        except ExecutionError as e:
            if e.retryable:
                raise
            return CycleReport(CycleOutcome.ESTIMATE_REVERTED, str(e), opportunity)
        except NetworkError as e:
            logger.warning(
                f"Gas estimate unavailable, using gas limit {self.config.gas_limit}: {e}"
            )
            estimate = self.config.gas_limit
        estimate = min(estimate, self.config.max_gas_estimate)

        gas_cost = estimate * gas_price
        total_fee = gas_cost + opportunity.flash_loan_fee
        if total_fee > self.config.max_fee_wei:
            return CycleReport(
                CycleOutcome.FEE_TOO_HIGH,
                f"total fee {format_ether(total_fee)} ETH above "
                f"{format_ether(self.config.max_fee_wei)} ETH",
                opportunity,
            )

        net_profit = opportunity.estimated_profit - gas_cost
        if net_profit <= self.config.min_profit_wei:
            return CycleReport(
                CycleOutcome.NET_PROFIT_TOO_LOW,
                f"net profit {net_profit} wei after gas",
                opportunity,
            )

        gas_limit = percent_of(estimate, self.config.gas_limit_buffer_pct)
        self.stats.record_attempt()
        self._last_execution_at = self._clock()

        tx_hash = await self.chain.send_arbitrage(call, gas_limit, gas_price)
        self.events.emit(
            EXECUTION_SUBMITTED,
            f"Submitted {tx_hash}",
            tx_hash=tx_hash,
            gas_limit=gas_limit,
            gas_price_gwei=format_gwei(gas_price),
            estimated_profit=str(opportunity.estimated_profit),
        )

        self._set_state(CoordinatorState.CONFIRMING)
        receipt = await self.chain.wait_for_receipt(
            tx_hash, self.config.confirmation_timeout
        )
        actual_gas_cost = receipt.gas_used * (receipt.effective_gas_price or gas_price)

        if not receipt.succeeded:
            self.stats.record_reverted(actual_gas_cost)
            self.history.add(
                ExecutionResult(
                    tx_hash=tx_hash,
                    success=False,
                    gas_used=receipt.gas_used,
                    gas_cost=actual_gas_cost,
                    effective_profit=-actual_gas_cost,
                    pair=opportunity.pair.name,
                    direction=opportunity.direction.value,
                )
            )
            self.events.emit(
                EXECUTION_FAILED,
                f"Transaction {tx_hash} reverted",
                logging.ERROR,
                tx_hash=tx_hash,
                gas_used=receipt.gas_used,
            )
            if self.metrics:
                self.metrics.record_execution("reverted", 0, actual_gas_cost)
            raise ExecutionError(
                f"Transaction {tx_hash} reverted", tx_hash=tx_hash, retryable=True
            )

        effective_profit = opportunity.estimated_profit - actual_gas_cost
        self.stats.record_success(effective_profit, actual_gas_cost)
        result = ExecutionResult(
            tx_hash=tx_hash,
            success=True,
            gas_used=receipt.gas_used,
            gas_cost=actual_gas_cost,
            effective_profit=effective_profit,
            pair=opportunity.pair.name,
            direction=opportunity.direction.value,
        )
        self.history.add(result)
        self.events.emit(
            EXECUTION_CONFIRMED,
            f"Arbitrage confirmed in block {receipt.block_number}",
            **result.to_dict(),
        )
        if self.metrics:
            self.metrics.record_execution("success", effective_profit, actual_gas_cost)
        return CycleReport(CycleOutcome.EXECUTED, tx_hash, opportunity, result)

    async def wait_in_flight(self) -> Optional[CycleReport]:
        """Wait for a submitted transaction to confirm or time out."""
        task = self._in_flight
        if task is None:
            return None
        if not task.done():
            logger.info("Waiting for in-flight transaction before stopping")
        try:
            # Cancelling the waiter must not cancel the confirmation itself
            report = await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            logger.warning("In-flight execution was cancelled")
            return None
        except FlashArbitrageError as e:
            logger.error(f"In-flight execution failed: {e}")
            return CycleReport(CycleOutcome.ERROR, str(e), error=e)
        self.last_report = report
        return report

    # === Loop ===

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run cycles every ``check_interval`` until ``stop_event`` is set."""
        logger.info(
            f"Execution loop started for {self.pair.name} "
            f"(every {self.config.check_interval:.0f}s)"
        )
        while not stop_event.is_set():
            try:
                report = await self.run_cycle()
            except FlashArbitrageError:
                raise
            except Exception as e:
                logger.exception(f"Unexpected error in execution cycle: {e}")
                report = self._record_fault(e)

            interval = self.config.check_interval
            if report.outcome == CycleOutcome.SAME_BLOCK:
                interval = min(interval, BLOCK_POLL_INTERVAL)
            if await wait_for_stop(stop_event, interval):
                break

        logger.info("Execution loop stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "pair": self.pair.name,
            "in_flight": self.in_flight,
            "last_cycle": self.last_report.to_dict() if self.last_report else None,
        }
