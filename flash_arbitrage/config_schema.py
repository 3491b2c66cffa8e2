"""
Configuration schema validation using Pydantic

Human-facing amounts (ETH, gwei, percent) are Decimals in the YAML file and
are exposed as exact integer properties for the engine.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from eth_account import Account
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from web3 import Web3

from .fixed_point import gwei_to_wei, to_wei

UNISWAP_V2_ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
SUSHISWAP_ROUTER = "0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F"
AAVE_V3_POOL = "0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"


def _checksum(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"{field_name} is not a valid address: {value!r}")
    return Web3.to_checksum_address(value)


class ExchangeConfig(BaseModel):
    """A Uniswap V2 style router the engine quotes and trades through"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Short identifier, e.g. 'uniswap'")
    router_address: str
    router_index: int = Field(
        ge=0, le=255, description="Router selector understood by the contract"
    )

    @field_validator("router_address")
    @classmethod
    def validate_router_address(cls, v):
        return _checksum(v, "router_address")


class PairConfig(BaseModel):
    """Token pair: token_a is borrowed, token_b is the intermediate asset"""

    model_config = ConfigDict(frozen=True)

    name: str = "WETH/USDC"
    token_a: str = WETH
    token_b: str = USDC

    @field_validator("token_a", "token_b")
    @classmethod
    def validate_token(cls, v, info):
        return _checksum(v, info.field_name)

    @model_validator(mode="after")
    def validate_distinct(self):
        if self.token_a == self.token_b:
            raise ValueError(f"pair {self.name} uses the same token on both sides")
        return self


class GasThresholds(BaseModel):
    """Gas level thresholds in gwei; each level is the closed-open interval below its bound"""

    model_config = ConfigDict(frozen=True)

    low_gwei: Decimal = Field(default=Decimal("10"), gt=0)
    medium_gwei: Decimal = Field(default=Decimal("30"), gt=0)
    high_gwei: Decimal = Field(default=Decimal("50"), gt=0)
    extreme_gwei: Decimal = Field(default=Decimal("100"), gt=0)

    @model_validator(mode="after")
    def validate_ascending(self):
        bounds = [self.low_gwei, self.medium_gwei, self.high_gwei, self.extreme_gwei]
        if any(a >= b for a, b in zip(bounds, bounds[1:])):
            raise ValueError("gas thresholds must be strictly ascending")
        return self

    @property
    def bounds_wei(self) -> List[int]:
        return [
            gwei_to_wei(self.low_gwei),
            gwei_to_wei(self.medium_gwei),
            gwei_to_wei(self.high_gwei),
            gwei_to_wei(self.extreme_gwei),
        ]


def _default_exchanges() -> List[ExchangeConfig]:
    return [
        ExchangeConfig(id="uniswap", router_address=UNISWAP_V2_ROUTER, router_index=0),
        ExchangeConfig(id="sushiswap", router_address=SUSHISWAP_ROUTER, router_index=1),
    ]


class EngineConfig(BaseModel):
    """Immutable engine configuration snapshot"""

    model_config = ConfigDict(frozen=True)

    # Network
    network: str = "mainnet"
    chain_id: int = Field(default=1, ge=1)
    rpc_url: str = Field(min_length=1)
    rpc_timeout: float = Field(default=10.0, gt=0, le=120)

    # Wallet and contracts
    private_key: str = Field(repr=False)
    wallet_address: Optional[str] = None
    contract_address: str
    flash_loan_pool_address: str = AAVE_V3_POOL

    # Markets
    exchanges: List[ExchangeConfig] = Field(default_factory=_default_exchanges)
    pair: PairConfig = Field(default_factory=PairConfig)
    reference_pair: PairConfig = Field(
        default_factory=lambda: PairConfig(name="WETH/DAI", token_a=WETH, token_b=DAI)
    )

    # Trading thresholds
    min_profit_eth: Decimal = Field(default=Decimal("0.003"), ge=0)
    flash_loan_amount_eth: Decimal = Field(default=Decimal("5"), gt=0)
    flash_loan_fee_bps: int = Field(default=5, ge=0, le=10000)
    max_fee_eth: Decimal = Field(default=Decimal("0.012"), gt=0)
    max_slippage_pct: Decimal = Field(default=Decimal("0.3"), ge=0, le=100)
    min_wallet_balance_eth: Decimal = Field(default=Decimal("0.02"), ge=0)

    # Gas
    max_gas_price_gwei: Decimal = Field(default=Decimal("50"), gt=0)
    min_gas_price_gwei: Decimal = Field(default=Decimal("5"), gt=0)
    gas_limit: int = Field(default=3_000_000, gt=21_000)
    max_gas_estimate: int = Field(default=3_000_000, gt=21_000)
    gas_limit_buffer_pct: int = Field(default=120, ge=100, le=300)
    gas_balance_margin_pct: int = Field(default=20, ge=0, le=500)
    gas_thresholds: GasThresholds = Field(default_factory=GasThresholds)
    gas_trend_stable_pct: Decimal = Field(default=Decimal("5"), ge=0)
    gas_trend_wait_pct: Decimal = Field(default=Decimal("10"), ge=0)
    gas_cache_ttl: float = Field(default=5.0, ge=0)
    gas_history_size: int = Field(default=100, ge=2)
    gas_oracle_url: Optional[str] = None
    gas_oracle_api_key: Optional[str] = Field(default=None, repr=False)

    # Timing
    check_interval: float = Field(default=8.0, gt=0)
    block_based_execution: bool = True
    min_execution_interval: float = Field(default=5.0, ge=0)
    liquidity_check_interval: float = Field(default=60.0, gt=0)
    confirmation_timeout: float = Field(default=300.0, gt=0)
    gas_check_interval: float = Field(default=60.0, gt=0)
    health_check_interval: float = Field(default=300.0, gt=0)
    stats_interval: float = Field(default=60.0, gt=0)
    memory_check_interval: float = Field(default=60.0, gt=0)

    # Quotes
    price_cache_ttl: float = Field(default=8.0, ge=0)
    max_requests_per_minute: int = Field(default=80, ge=1)
    quote_timeout: float = Field(default=10.0, gt=0)

    # Supervision
    max_consecutive_errors: int = Field(default=5, ge=1)
    restart_delay: float = Field(default=5.0, ge=0)
    max_failed_health_checks: int = Field(default=2, ge=0)
    max_block_age: float = Field(default=300.0, gt=0)
    max_memory_mb: int = Field(default=512, gt=0)
    memory_pressure_mb: int = Field(default=400, gt=0)
    trade_history_size: int = Field(default=50, ge=1)
    log_dir: str = "logs"

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v):
        key = v.strip()
        if not key.startswith("0x"):
            key = "0x" + key
        if len(key) != 66:
            raise ValueError("private_key must be 32 bytes of hex")
        try:
            int(key, 16)
        except ValueError:
            raise ValueError("private_key must be hex encoded") from None
        return key

    @field_validator("wallet_address", "contract_address", "flash_loan_pool_address")
    @classmethod
    def validate_addresses(cls, v, info):
        if v is None:
            return v
        return _checksum(v, info.field_name)

    @field_validator("exchanges")
    @classmethod
    def validate_exchanges(cls, v):
        if len(v) != 2:
            raise ValueError("exactly two exchanges are required")
        if v[0].id == v[1].id:
            raise ValueError("exchange ids must be unique")
        if v[0].router_index == v[1].router_index:
            raise ValueError("exchange router_index values must differ")
        return v

    @model_validator(mode="after")
    def validate_consistency(self):
        if (
            self.wallet_address is not None
            and self.wallet_address != self.account_address
        ):
            raise ValueError("private_key does not match wallet_address")
        if self.min_gas_price_gwei > self.max_gas_price_gwei:
            raise ValueError("min_gas_price_gwei must not exceed max_gas_price_gwei")
        if self.memory_pressure_mb > self.max_memory_mb:
            raise ValueError("memory_pressure_mb must not exceed max_memory_mb")
        return self

    def with_overrides(self, **changes: Any) -> "EngineConfig":
        """Return a new validated snapshot with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return EngineConfig.model_validate(data)

    def redacted(self) -> Dict[str, Any]:
        """Config as a dict with secrets removed, for logs and the status API."""
        return self.model_dump(
            mode="json", exclude={"private_key", "gas_oracle_api_key"}
        )

    @property
    def account_address(self) -> str:
        """Checksummed address derived from the private key."""
        return Account.from_key(self.private_key).address

    # Integer views used by the engine

    @property
    def min_profit_wei(self) -> int:
        return to_wei(self.min_profit_eth)

    @property
    def flash_loan_amount_wei(self) -> int:
        return to_wei(self.flash_loan_amount_eth)

    @property
    def max_fee_wei(self) -> int:
        return to_wei(self.max_fee_eth)

    @property
    def min_wallet_balance_wei(self) -> int:
        return to_wei(self.min_wallet_balance_eth)

    @property
    def max_gas_price_wei(self) -> int:
        return gwei_to_wei(self.max_gas_price_gwei)

    @property
    def min_gas_price_wei(self) -> int:
        return gwei_to_wei(self.min_gas_price_gwei)

    @property
    def max_slippage_bps(self) -> int:
        return int(self.max_slippage_pct * 100)

    def exchange(self, exchange_id: str) -> Optional[ExchangeConfig]:
        for exchange in self.exchanges:
            if exchange.id == exchange_id:
                return exchange
        return None
