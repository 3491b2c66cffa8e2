"""Tests for flash-loan round-trip profitability."""

import pytest

from flash_arbitrage.config_schema import DAI, USDC, WETH
from flash_arbitrage.dex.price_aggregator import PriceQuote
from flash_arbitrage.exceptions import InvalidPairError, ValidationError
from flash_arbitrage.fixed_point import UINT256_MAX
from flash_arbitrage.opportunity import (
    Direction,
    TradingPair,
    best_opportunity,
    evaluate,
)

ETHER = 10**18
LOAN = 5 * ETHER
PAIR = TradingPair("WETH/USDC", WETH, USDC)


def forward(exchange_id, amount_out, amount_in=LOAN):
    return PriceQuote(exchange_id, WETH, USDC, amount_in, amount_out, 0.0)


def reverse(exchange_id, amount_in, amount_out):
    return PriceQuote(exchange_id, USDC, WETH, amount_in, amount_out, 0.0)


class TestTradingPair:
    def test_addresses_are_checksummed(self):
        pair = TradingPair("WETH/USDC", WETH.lower(), USDC.lower())
        assert (pair.token_a, pair.token_b) == (WETH, USDC)

    def test_same_token_rejected_case_insensitively(self):
        with pytest.raises(InvalidPairError):
            TradingPair("WETH/WETH", WETH, WETH.lower())

    def test_invalid_address(self):
        with pytest.raises(ValidationError):
            TradingPair("bad", "0x1234", USDC)


class TestEvaluate:
    def test_profitable_round_trip(self):
        # 5 WETH -> 15300 USDC on uniswap -> 5.1 WETH on sushiswap
        opportunity = evaluate(
            PAIR,
            forward("uniswap", 15_300 * 10**6),
            reverse("sushiswap", 15_300 * 10**6, 5_100_000_000_000_000_000),
            LOAN,
            5,
        )
        assert opportunity.flash_loan_fee == 2_500_000_000_000_000
        assert opportunity.estimated_profit == 97_500_000_000_000_000
        assert opportunity.roi_bps == 195
        assert opportunity.first_exchange == "uniswap"
        assert opportunity.second_exchange == "sushiswap"
        assert opportunity.is_profitable

    def test_eighteen_decimal_round_trip_is_exact(self):
        opportunity = evaluate(
            PAIR,
            forward("uniswap", 5_020_000_000_000_000_000),
            reverse("sushiswap", 5_020_000_000_000_000_000, 5_100_000_000_000_000_000),
            LOAN,
            5,
        )
        assert opportunity.intermediate_amount == 5_020_000_000_000_000_000
        assert opportunity.estimated_profit == 97_500_000_000_000_000

    def test_losing_round_trip_has_negative_profit(self):
        opportunity = evaluate(
            PAIR,
            forward("uniswap", 15_000 * 10**6),
            reverse("sushiswap", 15_000 * 10**6, 4_990_000_000_000_000_000),
            LOAN,
            5,
            Direction.B_TO_A,
        )
        assert opportunity.estimated_profit == -12_500_000_000_000_000
        assert opportunity.roi_bps == -25
        assert not opportunity.is_profitable
        assert opportunity.direction == Direction.B_TO_A

    def test_break_even_is_not_profitable(self):
        fee = LOAN * 5 // 10_000
        opportunity = evaluate(
            PAIR,
            forward("uniswap", 100),
            reverse("sushiswap", 100, LOAN + fee),
            LOAN,
            5,
        )
        assert opportunity.estimated_profit == 0
        assert not opportunity.is_profitable

    def test_zero_fee(self):
        opportunity = evaluate(
            PAIR, forward("uniswap", 100), reverse("sushiswap", 100, LOAN + 1), LOAN, 0
        )
        assert opportunity.flash_loan_fee == 0
        assert opportunity.estimated_profit == 1

    def test_zero_amount_rejected(self):
        with pytest.raises(ValidationError):
            evaluate(PAIR, forward("uniswap", 1, 0), reverse("sushiswap", 1, 1), 0, 5)

    def test_amount_above_uint256_rejected(self):
        with pytest.raises(ValueError):
            evaluate(
                PAIR,
                forward("uniswap", 1, UINT256_MAX + 1),
                reverse("sushiswap", 1, 1),
                UINT256_MAX + 1,
                5,
            )

    def test_reverse_must_sell_forward_output(self):
        with pytest.raises(ValidationError, match="Reverse quote"):
            evaluate(
                PAIR,
                forward("uniswap", 15_300 * 10**6),
                reverse("sushiswap", 15_000 * 10**6, LOAN),
                LOAN,
                5,
            )

    def test_forward_must_match_pair(self):
        wrong = PriceQuote("uniswap", WETH, DAI, LOAN, 100, 0.0)
        with pytest.raises(ValidationError, match="Forward quote"):
            evaluate(PAIR, wrong, reverse("sushiswap", 100, LOAN), LOAN, 5)

    def test_to_dict_keeps_amounts_exact(self):
        opportunity = evaluate(
            PAIR,
            forward("uniswap", 15_300 * 10**6),
            reverse("sushiswap", 15_300 * 10**6, 5_100_000_000_000_000_000),
            LOAN,
            5,
        )
        data = opportunity.to_dict()
        assert data["estimated_profit"] == "97500000000000000"
        assert data["estimated_profit_eth"] == "0.0975"
        assert data["direction"] == "A_TO_B"


class TestBestOpportunity:
    def _opportunity(self, profit, direction, first="uniswap", second="sushiswap"):
        return evaluate(
            PAIR,
            forward(first, 100),
            reverse(second, 100, LOAN + LOAN * 5 // 10_000 + profit),
            LOAN,
            5,
            direction,
        )

    def test_picks_higher_profit(self):
        low = self._opportunity(10, Direction.A_TO_B)
        high = self._opportunity(20, Direction.B_TO_A, "sushiswap", "uniswap")
        assert best_opportunity([low, high]) is high

    def test_tie_goes_to_first_candidate(self):
        first = self._opportunity(10, Direction.A_TO_B)
        second = self._opportunity(10, Direction.B_TO_A, "sushiswap", "uniswap")
        assert best_opportunity([first, second]) is first

    def test_no_profitable_candidate(self):
        assert best_opportunity([self._opportunity(0, Direction.A_TO_B)]) is None
        assert best_opportunity([]) is None
