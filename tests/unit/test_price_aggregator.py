"""Tests for cross-exchange quoting."""

import pytest

from flash_arbitrage.config_schema import DAI, USDC, WETH
from flash_arbitrage.dex.price_aggregator import PriceQuote, compute_spread
from flash_arbitrage.exceptions import (
    ConfigurationError,
    InvalidPairError,
    QuoteError,
    ValidationError,
)

ETHER = 10**18


def quote(exchange_id, amount_out, amount_in=ETHER):
    return PriceQuote(exchange_id, WETH, USDC, amount_in, amount_out, 0.0)


class TestComputeSpread:
    def test_difference_and_favored_exchange(self):
        spread = compute_spread(quote("uniswap", 3_000_000_000), quote("sushiswap", 3_060_000_000))
        # 60 / 3060 of the larger output, floored
        assert spread.difference_bps == 196
        assert spread.favored_exchange == "sushiswap"

    def test_equal_outputs_favor_first(self):
        spread = compute_spread(quote("uniswap", 100), quote("sushiswap", 100))
        assert spread.difference_bps == 0
        assert spread.favored_exchange == "uniswap"

    def test_both_zero(self):
        spread = compute_spread(quote("uniswap", 0), quote("sushiswap", 0))
        assert spread.difference_bps == 0


class TestGetQuote:
    @pytest.mark.asyncio
    async def test_quote_uses_router_output(self, components, fake_chain):
        fake_chain.rates[("uniswap", WETH)] = (3000 * 10**6, ETHER)

        result = await components.aggregator.get_quote("uniswap", WETH, USDC, 2 * ETHER)

        assert result.amount_out == 6000 * 10**6
        assert result.amount_in == 2 * ETHER
        assert fake_chain.quote_calls == [("uniswap", 2 * ETHER, (WETH, USDC))]

    @pytest.mark.asyncio
    async def test_default_amount_is_one_whole_token(self, components, fake_chain):
        fake_chain.decimals[USDC] = 6
        result = await components.aggregator.get_quote("uniswap", USDC, WETH)
        assert result.amount_in == 10**6

    @pytest.mark.asyncio
    async def test_lowercase_addresses_are_checksummed(self, components):
        result = await components.aggregator.get_quote(
            "uniswap", WETH.lower(), USDC.lower(), ETHER
        )
        assert result.token_in == WETH
        assert result.token_out == USDC

    @pytest.mark.asyncio
    async def test_repeated_quote_served_from_cache(self, components, fake_chain):
        aggregator = components.aggregator
        await aggregator.get_quote("uniswap", WETH, USDC, ETHER)
        await aggregator.get_quote("uniswap", WETH, USDC, ETHER)
        assert len(fake_chain.quote_calls) == 1

        await aggregator.get_quote("uniswap", WETH, USDC, ETHER, use_cache=False)
        assert len(fake_chain.quote_calls) == 2

    @pytest.mark.asyncio
    async def test_same_token_rejected(self, components, fake_chain):
        with pytest.raises(InvalidPairError):
            await components.aggregator.get_quote("uniswap", WETH, WETH.lower(), ETHER)
        assert fake_chain.quote_calls == []

    @pytest.mark.asyncio
    async def test_unknown_exchange(self, components):
        with pytest.raises(ConfigurationError, match="Unknown exchange"):
            await components.aggregator.get_quote("curve", WETH, USDC, ETHER)

    @pytest.mark.asyncio
    async def test_invalid_address(self, components):
        with pytest.raises(ValidationError):
            await components.aggregator.get_quote("uniswap", "0x1234", USDC, ETHER)

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, components):
        with pytest.raises(ValidationError):
            await components.aggregator.get_quote("uniswap", WETH, USDC, 0)

    @pytest.mark.asyncio
    async def test_router_failure_is_not_cached(self, components, fake_chain):
        fake_chain.failures["get_amounts_out"] = QuoteError("no liquidity", exchange="uniswap")
        with pytest.raises(QuoteError):
            await components.aggregator.get_quote("uniswap", WETH, USDC, ETHER)

        del fake_chain.failures["get_amounts_out"]
        result = await components.aggregator.get_quote("uniswap", WETH, USDC, ETHER)
        assert result.amount_out == ETHER


class TestSpreadAndHealth:
    @pytest.mark.asyncio
    async def test_get_spread_quotes_both_exchanges(self, components, fake_chain):
        fake_chain.rates[("uniswap", WETH)] = (3060 * 10**6, ETHER)
        fake_chain.rates[("sushiswap", WETH)] = (3000 * 10**6, ETHER)

        spread = await components.aggregator.get_spread(WETH, USDC, ETHER)

        assert spread.quote_a.exchange_id == "uniswap"
        assert spread.quote_b.exchange_id == "sushiswap"
        assert spread.favored_exchange == "uniswap"

    @pytest.mark.asyncio
    async def test_get_spread_same_token(self, components):
        with pytest.raises(InvalidPairError):
            await components.aggregator.get_spread(USDC, USDC)

    @pytest.mark.asyncio
    async def test_health_check_quotes_reference_pair(self, components, fake_chain):
        result = await components.aggregator.health_check()

        assert result.healthy
        assert result.name == "price_service"
        assert {call[2] for call in fake_chain.quote_calls} == {(WETH, DAI)}

    @pytest.mark.asyncio
    async def test_health_check_failure(self, components, fake_chain):
        fake_chain.failures["get_amounts_out"] = QuoteError("router down")
        result = await components.aggregator.health_check()
        assert not result.healthy
        assert "router down" in result.detail

    @pytest.mark.asyncio
    async def test_clear_cache(self, components):
        await components.aggregator.get_quote("uniswap", WETH, USDC, ETHER)
        assert components.aggregator.clear_cache() == 1
        assert components.aggregator.stats()["cache"]["total_cached"] == 0
