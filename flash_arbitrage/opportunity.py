"""
Flash-loan arbitrage profitability.

Pure integer arithmetic on base-unit amounts of the borrowed token. A round
trip borrows ``flash_loan_amount`` of token A, swaps it to token B on one
exchange and back to token A on the other, then repays the loan plus fee.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from web3 import Web3

from .dex.price_aggregator import PriceQuote
from .exceptions import InvalidPairError, ValidationError
from .fixed_point import bps_of, check_uint256, format_ether, ratio_bps
from .utils import get_current_timestamp


@dataclass(frozen=True)
class TradingPair:
    """Borrowed token ``token_a`` and intermediate token ``token_b``."""

    name: str
    token_a: str
    token_b: str

    def __post_init__(self):
        if not Web3.is_address(self.token_a) or not Web3.is_address(self.token_b):
            raise ValidationError(f"Pair {self.name} has an invalid token address")
        if self.token_a.lower() == self.token_b.lower():
            raise InvalidPairError(
                f"Pair {self.name} uses the same token on both sides",
                token_a=self.token_a,
                token_b=self.token_b,
            )
        object.__setattr__(self, "token_a", Web3.to_checksum_address(self.token_a))
        object.__setattr__(self, "token_b", Web3.to_checksum_address(self.token_b))


class Direction(str, Enum):
    """Exchange order of a round trip: A_TO_B buys on the first exchange."""

    A_TO_B = "A_TO_B"
    B_TO_A = "B_TO_A"


@dataclass(frozen=True)
class ArbitrageOpportunity:
    pair: TradingPair
    direction: Direction
    flash_loan_amount: int
    first_exchange: str
    second_exchange: str
    intermediate_amount: int
    final_amount: int
    flash_loan_fee: int
    estimated_profit: int
    roi_bps: int
    created_at: float = field(default_factory=get_current_timestamp, compare=False)

    @property
    def is_profitable(self) -> bool:
        return self.estimated_profit > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair.name,
            "direction": self.direction.value,
            "flash_loan_amount": str(self.flash_loan_amount),
            "first_exchange": self.first_exchange,
            "second_exchange": self.second_exchange,
            "intermediate_amount": str(self.intermediate_amount),
            "final_amount": str(self.final_amount),
            "flash_loan_fee": str(self.flash_loan_fee),
            "estimated_profit": str(self.estimated_profit),
            "estimated_profit_eth": format_ether(self.estimated_profit)
            if self.estimated_profit >= 0
            else "-" + format_ether(-self.estimated_profit),
            "roi_bps": self.roi_bps,
        }


def evaluate(
    pair: TradingPair,
    quote_forward: PriceQuote,
    quote_reverse: PriceQuote,
    flash_loan_amount: int,
    flash_loan_fee_bps: int,
    direction: Direction = Direction.A_TO_B,
) -> ArbitrageOpportunity:
    """
    Profit of a flash-loan round trip built from two quotes.

    ``quote_forward`` must sell ``flash_loan_amount`` of token A for token B
    and ``quote_reverse`` must sell exactly that output back for token A.
    Profit is signed; ROI is in basis points, floored.

    Raises:
        ValidationError: The quotes do not chain into a round trip
    """
    check_uint256(flash_loan_amount, "flash_loan_amount")
    if flash_loan_amount == 0:
        raise ValidationError("flash_loan_amount must be positive")
    if flash_loan_fee_bps < 0:
        raise ValidationError("flash_loan_fee_bps must not be negative")

    if (
        quote_forward.token_in != pair.token_a
        or quote_forward.token_out != pair.token_b
        or quote_forward.amount_in != flash_loan_amount
    ):
        raise ValidationError(
            f"Forward quote does not sell {flash_loan_amount} of {pair.token_a}"
        )
    if (
        quote_reverse.token_in != pair.token_b
        or quote_reverse.token_out != pair.token_a
        or quote_reverse.amount_in != quote_forward.amount_out
    ):
        raise ValidationError("Reverse quote does not sell the forward output")

    intermediate = check_uint256(quote_forward.amount_out, "intermediate_amount")
    final_amount = check_uint256(quote_reverse.amount_out, "final_amount")

    fee = bps_of(flash_loan_amount, flash_loan_fee_bps)
    profit = final_amount - (flash_loan_amount + fee)

    return ArbitrageOpportunity(
        pair=pair,
        direction=direction,
        flash_loan_amount=flash_loan_amount,
        first_exchange=quote_forward.exchange_id,
        second_exchange=quote_reverse.exchange_id,
        intermediate_amount=intermediate,
        final_amount=final_amount,
        flash_loan_fee=fee,
        estimated_profit=profit,
        roi_bps=ratio_bps(profit, flash_loan_amount),
    )


def best_opportunity(
    candidates: Iterable[ArbitrageOpportunity],
) -> Optional[ArbitrageOpportunity]:
    """
    The most profitable candidate, or None when it does not make money.

    On equal profit the earlier candidate wins, so callers list the first
    exchange's direction first.
    """
    best: Optional[ArbitrageOpportunity] = None
    for candidate in candidates:
        if best is None or candidate.estimated_profit > best.estimated_profit:
            best = candidate

    if best is None or best.estimated_profit <= 0:
        return None
    return best
