"""
Engine statistics and trade history.
"""

from collections import deque
from dataclasses import dataclass, field, fields
from typing import Any, Deque, Dict, List, Optional

from .fixed_point import format_ether
from .utils import format_uptime, get_current_timestamp, timestamp_to_iso

# Integer fields that may exceed JSON-safe precision; serialized as strings
_WEI_FIELDS = ("cumulative_profit", "total_gas_cost")


@dataclass
class EngineStats:
    """Counters owned by the supervisor and updated by the coordinator."""

    start_time: float = field(default_factory=get_current_timestamp)
    cycles: int = 0
    total_attempts: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    cumulative_profit: int = 0
    total_gas_cost: int = 0
    error_count: int = 0
    consecutive_error_count: int = 0
    expected_skips: int = 0
    restarts: int = 0
    last_health_check_time: Optional[float] = None
    last_execution_time: Optional[float] = None

    def record_attempt(self, now: Optional[float] = None) -> None:
        self.total_attempts += 1
        self.last_execution_time = now or get_current_timestamp()

    def record_success(self, effective_profit: int, gas_cost: int) -> None:
        self.successful_executions += 1
        self.cumulative_profit += effective_profit
        self.total_gas_cost += gas_cost

    def record_reverted(self, gas_cost: int) -> None:
        self.failed_executions += 1
        self.total_gas_cost += gas_cost

    def record_fault(self) -> None:
        """A recoverable fault: counts toward the restart threshold."""
        self.error_count += 1
        self.consecutive_error_count += 1

    def record_clean_cycle(self) -> None:
        self.consecutive_error_count = 0

    def record_skip(self) -> None:
        self.expected_skips += 1

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return self.successful_executions / self.total_attempts * 100

    def uptime(self, now: Optional[float] = None) -> float:
        return (now or get_current_timestamp()) - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        for name in _WEI_FIELDS:
            data[name] = str(data[name])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineStats":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        for name in _WEI_FIELDS:
            if name in values:
                values[name] = int(values[name])
        return cls(**values)

    def summary(self) -> Dict[str, Any]:
        """Human-oriented view for periodic stats logging."""
        return {
            "uptime": format_uptime(self.uptime()),
            "cycles": self.cycles,
            "attempts": self.total_attempts,
            "successful": self.successful_executions,
            "success_rate": f"{self.success_rate:.1f}%",
            "profit_eth": format_ether(self.cumulative_profit)
            if self.cumulative_profit >= 0
            else "-" + format_ether(-self.cumulative_profit),
            "gas_cost_eth": format_ether(self.total_gas_cost),
            "errors": self.error_count,
            "consecutive_errors": self.consecutive_error_count,
            "skips": self.expected_skips,
            "restarts": self.restarts,
        }


@dataclass(frozen=True)
class ExecutionResult:
    tx_hash: str
    success: bool
    gas_used: int
    gas_cost: int
    effective_profit: int
    timestamp: float = field(default_factory=get_current_timestamp)
    pair: str = ""
    direction: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "success": self.success,
            "gas_used": self.gas_used,
            "gas_cost": str(self.gas_cost),
            "effective_profit": str(self.effective_profit),
            "timestamp": self.timestamp,
            "time": timestamp_to_iso(self.timestamp),
            "pair": self.pair,
            "direction": self.direction,
        }


class TradeHistory:
    """Bounded execution log, newest first."""

    def __init__(self, capacity: int = 50):
        self._results: Deque[ExecutionResult] = deque(maxlen=capacity)

    def add(self, result: ExecutionResult) -> None:
        self._results.appendleft(result)

    def __len__(self) -> int:
        return len(self._results)

    def entries(self, limit: Optional[int] = None) -> List[ExecutionResult]:
        results = list(self._results)
        return results if limit is None else results[:limit]

    def to_list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return [result.to_dict() for result in self.entries(limit)]
