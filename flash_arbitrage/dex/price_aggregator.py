"""
Price aggregation across the two configured exchanges.

Quotes are exact router outputs in token base units. Each request is
throttled by the shared rate limiter and cached for a short freshness window.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from web3 import Web3

from ..config_schema import EngineConfig
from ..exceptions import (
    ConfigurationError,
    FlashArbitrageError,
    InvalidPairError,
    ValidationError,
)
from ..fixed_point import BPS_DENOMINATOR, check_uint256
from ..models import ServiceHealth
from .chain_client import ChainClient
from .quote_cache import QuoteCache, RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuote:
    """Router output for ``amount_in`` of ``token_in`` on one exchange."""

    exchange_id: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    sampled_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exchange_id": self.exchange_id,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "sampled_at": self.sampled_at,
        }


@dataclass(frozen=True)
class Spread:
    """Two quotes for the same path and how far apart they are."""

    quote_a: PriceQuote
    quote_b: PriceQuote
    difference_bps: int
    favored_exchange: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quote_a": self.quote_a.to_dict(),
            "quote_b": self.quote_b.to_dict(),
            "difference_bps": self.difference_bps,
            "favored_exchange": self.favored_exchange,
        }


def compute_spread(quote_a: PriceQuote, quote_b: PriceQuote) -> Spread:
    """
    Spread between two quotes of the same amount.

    ``difference_bps`` is ``|a - b| * 10000 // max(a, b)``, zero when both
    outputs are zero. The exchange with the larger output is favored; the
    first quote wins a tie.
    """
    out_a, out_b = quote_a.amount_out, quote_b.amount_out
    larger = max(out_a, out_b)
    difference_bps = 0 if larger == 0 else abs(out_a - out_b) * BPS_DENOMINATOR // larger
    favored = quote_a.exchange_id if out_a >= out_b else quote_b.exchange_id
    return Spread(quote_a, quote_b, difference_bps, favored)


def _normalize_token(token: str) -> str:
    if not isinstance(token, str) or not Web3.is_address(token):
        raise ValidationError(f"Invalid token address: {token!r}")
    return Web3.to_checksum_address(token)


class PriceAggregator:
    """Fetches and compares router quotes on both configured exchanges."""

    def __init__(
        self,
        chain: ChainClient,
        config: EngineConfig,
        cache: Optional[QuoteCache] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        self.chain = chain
        self.config = config
        self.cache = cache or QuoteCache(ttl=config.price_cache_ttl)
        self.limiter = limiter or RateLimiter(config.max_requests_per_minute)
        self.exchange_ids: List[str] = [exchange.id for exchange in config.exchanges]

    async def get_quote(
        self,
        exchange_id: str,
        token_in: str,
        token_out: str,
        amount_in: Optional[int] = None,
        use_cache: bool = True,
    ) -> PriceQuote:
        """
        Quote ``token_in -> token_out`` on one exchange.

        Args:
            exchange_id: Configured exchange id
            token_in: Input token address
            token_out: Output token address
            amount_in: Input amount in base units; one whole token by default
            use_cache: Serve a fresh cached quote when available

        Raises:
            InvalidPairError: Input and output token are the same
            ConfigurationError: Unknown exchange id
            QuoteError: The router call failed or timed out
        """
        token_in = _normalize_token(token_in)
        token_out = _normalize_token(token_out)
        if token_in == token_out:
            raise InvalidPairError(
                f"Cannot quote {token_in} against itself",
                token_a=token_in,
                token_b=token_out,
            )
        if exchange_id not in self.exchange_ids:
            raise ConfigurationError(f"Unknown exchange: {exchange_id}")

        if amount_in is None:
            decimals = await self.chain.get_token_decimals(token_in)
            amount_in = 10**decimals
        check_uint256(amount_in, "amount_in")
        if amount_in == 0:
            raise ValidationError("amount_in must be positive")

        async def fetch() -> PriceQuote:
            await self.limiter.throttle()
            amounts = await self.chain.get_amounts_out(
                exchange_id, amount_in, [token_in, token_out]
            )
            return PriceQuote(
                exchange_id=exchange_id,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                amount_out=amounts[-1],
                sampled_at=time.time(),
            )

        if not use_cache:
            return await fetch()

        key = (exchange_id, token_in, token_out, amount_in)
        return await self.cache.get_or_fetch(key, fetch)

    async def get_spread(
        self, token_in: str, token_out: str, amount_in: Optional[int] = None
    ) -> Spread:
        """Quote the same path on both exchanges concurrently and compare."""
        if _normalize_token(token_in) == _normalize_token(token_out):
            raise InvalidPairError(
                f"Cannot compute a spread for {token_in} against itself",
                token_a=token_in,
                token_b=token_out,
            )

        first, second = self.exchange_ids
        quote_a, quote_b = await asyncio.gather(
            self.get_quote(first, token_in, token_out, amount_in),
            self.get_quote(second, token_in, token_out, amount_in),
        )
        spread = compute_spread(quote_a, quote_b)
        logger.debug(
            f"Spread {token_in}->{token_out}: {spread.difference_bps} bps, "
            f"favoring {spread.favored_exchange}"
        )
        return spread

    async def health_check(self, timeout: Optional[float] = None) -> ServiceHealth:
        """Quote the reference pair on both exchanges, bypassing the cache."""
        pair = self.config.reference_pair
        timeout = timeout or self.config.quote_timeout
        started = time.monotonic()

        try:
            quotes = await asyncio.wait_for(
                asyncio.gather(
                    *(
                        self.get_quote(exchange_id, pair.token_a, pair.token_b, use_cache=False)
                        for exchange_id in self.exchange_ids
                    )
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return ServiceHealth(
                "price_service", False, f"reference quote timed out after {timeout}s"
            )
        except FlashArbitrageError as e:
            return ServiceHealth("price_service", False, str(e))

        return ServiceHealth(
            "price_service",
            True,
            f"{pair.name} quoted on {len(quotes)} exchanges",
            latency_ms=(time.monotonic() - started) * 1000,
            data={quote.exchange_id: str(quote.amount_out) for quote in quotes},
        )

    def clear_cache(self) -> int:
        cleared = self.cache.clear()
        logger.info(f"Cleared {cleared} cached quotes")
        return cleared

    def stats(self) -> Dict[str, Any]:
        return {"cache": self.cache.stats(), "rate_limiter": self.limiter.stats()}
