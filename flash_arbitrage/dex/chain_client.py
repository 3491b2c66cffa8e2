"""
Chain client for the engine's RPC and contract calls.

Wraps a synchronous web3 instance. Every call is dispatched to the default
thread pool with ``run_in_executor`` and bounded by ``asyncio.wait_for`` so a
stalled endpoint surfaces as an error instead of hanging the event loop.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from ..config_schema import EngineConfig
from ..exceptions import ExecutionError, NetworkError, QuoteError
from ..fixed_point import check_uint256
from .abi import AAVE_POOL_ABI, ARBITRAGE_CONTRACT_ABI, ERC20_ABI, ROUTER_V2_ABI

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_DECIMALS = 18
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class ArbitrageCall:
    """Arguments of the contract's ``arbitrage`` entry point."""

    borrowed_token: str
    amount: int
    swap_token: str
    min_profit: int
    first_router: int
    second_router: int

    def as_args(self) -> tuple:
        return (
            Web3.to_checksum_address(self.borrowed_token),
            check_uint256(self.amount, "amount"),
            (
                Web3.to_checksum_address(self.swap_token),
                check_uint256(self.min_profit, "min_profit"),
                self.first_router,
                self.second_router,
            ),
        )


@dataclass(frozen=True)
class TxReceipt:
    """The parts of a transaction receipt the engine uses."""

    tx_hash: str
    status: int
    gas_used: int
    effective_gas_price: int
    block_number: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient:
    """Async facade over a web3 HTTP connection."""

    def __init__(self, config: EngineConfig, web3: Optional[Web3] = None):
        self.config = config
        self.timeout = config.rpc_timeout
        self.endpoint = config.rpc_url

        if web3 is None:
            web3 = Web3(
                Web3.HTTPProvider(
                    config.rpc_url, request_kwargs={"timeout": config.rpc_timeout}
                )
            )
        self.w3 = web3

        self.account = Account.from_key(config.private_key)
        self.contract = self.w3.eth.contract(
            address=config.contract_address, abi=ARBITRAGE_CONTRACT_ABI
        )
        self.flash_loan_pool = self.w3.eth.contract(
            address=config.flash_loan_pool_address, abi=AAVE_POOL_ABI
        )
        self.routers = {
            exchange.id: self.w3.eth.contract(
                address=exchange.router_address, abi=ROUTER_V2_ABI
            )
            for exchange in config.exchanges
        }
        self._decimals: Dict[str, int] = {}

        logger.info(
            f"Chain client ready for {config.network} (chain {config.chain_id}), "
            f"wallet {self.account.address}"
        )

    @property
    def wallet_address(self) -> str:
        return self.account.address

    async def _run(
        self, fn: Callable[..., Any], *args: Any, timeout: Optional[float] = None
    ) -> Any:
        """Run a blocking web3 call in the thread pool with a timeout."""
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, functools.partial(fn, *args)),
            timeout=timeout or self.timeout,
        )

    async def _rpc(self, what: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Run an RPC call, converting failures into NetworkError."""
        try:
            return await self._run(fn, *args)
        except asyncio.TimeoutError:
            raise NetworkError(
                f"{what} timed out after {self.timeout}s",
                endpoint=self.endpoint,
                timeout=self.timeout,
            ) from None
        except Exception as e:
            raise NetworkError(f"{what} failed: {e}", endpoint=self.endpoint) from e

    # === Network state ===

    async def get_block_number(self) -> int:
        return await self._rpc("eth_blockNumber", lambda: self.w3.eth.block_number)

    async def get_latest_block(self) -> Dict[str, int]:
        block = await self._rpc("eth_getBlockByNumber", self.w3.eth.get_block, "latest")
        return {"number": int(block["number"]), "timestamp": int(block["timestamp"])}

    async def get_chain_id(self) -> int:
        return await self._rpc("eth_chainId", lambda: self.w3.eth.chain_id)

    async def get_gas_price(self) -> int:
        return await self._rpc("eth_gasPrice", lambda: self.w3.eth.gas_price)

    async def get_balance(self, address: Optional[str] = None) -> int:
        return await self._rpc(
            "eth_getBalance", self.w3.eth.get_balance, address or self.wallet_address
        )

    # === Contracts ===

    async def get_contract_owner(self) -> str:
        owner = await self._rpc("owner()", self.contract.functions.owner().call)
        return Web3.to_checksum_address(owner)

    async def has_flash_loan_liquidity(self, asset: str) -> bool:
        """True when the lending pool has an active reserve for ``asset``."""
        reserve = await self._rpc(
            "getReserveData",
            self.flash_loan_pool.functions.getReserveData(
                Web3.to_checksum_address(asset)
            ).call,
        )
        liquidity_index = reserve[1]
        return int(liquidity_index) > 0

    async def get_token_decimals(self, token: str) -> int:
        """Token decimals, cached; falls back to 18 when the call fails."""
        token = Web3.to_checksum_address(token)
        if token in self._decimals:
            return self._decimals[token]

        erc20 = self.w3.eth.contract(address=token, abi=ERC20_ABI)
        try:
            decimals = int(await self._rpc("decimals()", erc20.functions.decimals().call))
        except NetworkError as e:
            logger.warning(
                f"Could not read decimals for {token}, assuming "
                f"{DEFAULT_TOKEN_DECIMALS}: {e}"
            )
            return DEFAULT_TOKEN_DECIMALS

        self._decimals[token] = decimals
        return decimals

    async def get_amounts_out(
        self, exchange_id: str, amount_in: int, path: List[str]
    ) -> List[int]:
        """Router ``getAmountsOut``; raises QuoteError on any failure."""
        router = self.routers.get(exchange_id)
        if router is None:
            raise QuoteError(f"Unknown exchange {exchange_id}", exchange=exchange_id)

        checksummed = [Web3.to_checksum_address(token) for token in path]
        call = router.functions.getAmountsOut(
            check_uint256(amount_in, "amount_in"), checksummed
        ).call
        try:
            amounts = await self._run(call)
        except asyncio.TimeoutError:
            raise QuoteError(
                f"Quote on {exchange_id} timed out after {self.timeout}s",
                exchange=exchange_id,
                path=checksummed,
            ) from None
        except Exception as e:
            raise QuoteError(
                f"Quote on {exchange_id} failed: {e}",
                exchange=exchange_id,
                path=checksummed,
            ) from e

        return [int(amount) for amount in amounts]

    # === Transactions ===

    async def estimate_arbitrage_gas(self, call: ArbitrageCall) -> int:
        """
        Estimate gas for the arbitrage entry point.

        Raises:
            ExecutionError: The call would revert (not retryable for this
                opportunity)
            NetworkError: The estimate could not be obtained
        """
        fn = self.contract.functions.arbitrage(*call.as_args())
        try:
            return int(
                await self._run(fn.estimate_gas, {"from": self.wallet_address})
            )
        except ContractLogicError as e:
            raise ExecutionError(
                f"Arbitrage call would revert: {e}", retryable=False
            ) from e
        except asyncio.TimeoutError:
            raise NetworkError(
                "Gas estimate timed out", endpoint=self.endpoint, timeout=self.timeout
            ) from None
        except Exception as e:
            raise NetworkError(f"Gas estimate failed: {e}", endpoint=self.endpoint) from e

    async def send_arbitrage(
        self, call: ArbitrageCall, gas_limit: int, gas_price: int
    ) -> str:
        """Sign and broadcast the arbitrage transaction; returns its hash."""
        try:
            nonce = await self._run(
                self.w3.eth.get_transaction_count, self.wallet_address, "pending"
            )
            tx = await self._run(
                self.contract.functions.arbitrage(*call.as_args()).build_transaction,
                {
                    "from": self.wallet_address,
                    "nonce": nonce,
                    "gas": gas_limit,
                    "gasPrice": gas_price,
                    "chainId": self.config.chain_id,
                },
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = await self._run(
                self.w3.eth.send_raw_transaction, signed.raw_transaction
            )
        except asyncio.TimeoutError:
            raise ExecutionError("Transaction submission timed out") from None
        except Exception as e:
            raise ExecutionError(f"Transaction submission failed: {e}") from e

        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(
        self, tx_hash: str, timeout: float, poll_interval: float = 1.0
    ) -> TxReceipt:
        """
        Poll for a transaction receipt.

        Raises:
            ExecutionError: If the transaction is not mined within ``timeout``
        """
        deadline = time.monotonic() + timeout

        while time.monotonic() < deadline:
            try:
                receipt = await self._run(
                    self.w3.eth.get_transaction_receipt, tx_hash
                )
                if receipt:
                    return TxReceipt(
                        tx_hash=tx_hash,
                        status=int(receipt["status"]),
                        gas_used=int(receipt["gasUsed"]),
                        effective_gas_price=int(receipt.get("effectiveGasPrice") or 0),
                        block_number=int(receipt["blockNumber"]),
                    )
            except TransactionNotFound:
                pass
            except asyncio.TimeoutError:
                logger.debug(f"Receipt poll for {tx_hash} timed out, retrying")
            except Exception as e:
                logger.warning(f"Receipt poll for {tx_hash} failed: {e}")

            await asyncio.sleep(poll_interval)

        raise ExecutionError(
            f"Transaction {tx_hash} not confirmed after {timeout}s",
            tx_hash=tx_hash,
            retryable=True,
        )
