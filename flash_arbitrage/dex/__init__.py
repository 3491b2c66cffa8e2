"""
On-chain data access: chain client, router quotes, caching and throttling.
"""

from .chain_client import ArbitrageCall, ChainClient, TxReceipt
from .price_aggregator import PriceAggregator, PriceQuote, Spread
from .quote_cache import QuoteCache, RateLimiter

__all__ = [
    "ArbitrageCall",
    "ChainClient",
    "TxReceipt",
    "PriceAggregator",
    "PriceQuote",
    "Spread",
    "QuoteCache",
    "RateLimiter",
]
