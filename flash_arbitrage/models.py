"""
Shared result types for health reporting.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from .utils import get_current_timestamp


@dataclass
class ServiceHealth:
    """Health of one engine service (price, gas, chain...)."""

    name: str
    healthy: bool
    detail: str = ""
    latency_ms: Optional[float] = None
    checked_at: float = field(default_factory=get_current_timestamp)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
