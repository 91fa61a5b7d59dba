# /gasprof/adapters/web3_oracle.py
# ChainOracle backed by an AsyncWeb3 HTTP provider.

import asyncio
from decimal import Decimal
from typing import Any, Dict

from web3 import AsyncWeb3
from web3.providers import AsyncHTTPProvider

from gasprof.adapters.chain import ChainOracle
from gasprof.core.config import settings
from gasprof.core.decorators import retriable_network_call
from gasprof.core.errors import ConnectivityError, EstimationFailure, GasProfilerError, StrategyUnsupported
from gasprof.core.logger import get_logger
from gasprof.core.models import CallRequest, FeeData, TraceResult, TxReceipt

log = get_logger(__name__)

METHOD_NOT_FOUND = -32601
# Nodes that answer without the -32601 code still name the method.
_UNSUPPORTED_HINTS = ("method not found", "method not supported", "method not available", "method disabled",
                     "debug_tracecall does not exist", "debug_tracecall is not available")
DEFAULT_PRIORITY_FEE = int(Decimal("1.5") * 10**9)


class Web3ChainOracle(ChainOracle):
    """
    Talks to a single JSON-RPC node. Transport failures surface as
    ConnectivityError (retried for read-only calls); anything the node answers
    with, including reverts, is passed through for the caller to interpret.
    """
    def __init__(self, rpc_url: str | None = None, private_key: str | None = None,
                 priority_multiplier: Decimal = Decimal("1.2"), w3: AsyncWeb3 | None = None):
        rpc_url = rpc_url or settings.rpc_url
        if w3 is None:
            if not rpc_url:
                raise ValueError("An RPC URL is required to build a Web3ChainOracle.")
            w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": settings.RPC_TIMEOUT_SECONDS}))
        self.w3 = w3
        self.priority_multiplier = priority_multiplier

        key = private_key
        if key is None and settings.EXECUTOR_PRIVATE_KEY is not None:
            key = settings.EXECUTOR_PRIVATE_KEY.get_secret_value()
        self.account = self.w3.eth.account.from_key(key) if key else None
        self._nonce: int | None = None
        self._nonce_lock = asyncio.Lock()

    @property
    def address(self) -> str | None:
        return self.account.address if self.account else None

    async def connect(self) -> None:
        if not await self.w3.is_connected():
            raise ConnectivityError("RPC node is unreachable.")
        chain_id = await self._rpc("eth_chainId", self.w3.eth.chain_id)
        log.info("WEB3_ORACLE_CONNECTED", chain_id=chain_id, executor=self.address)

    async def _rpc(self, label: str, awaitable):
        try:
            return await awaitable
        except (OSError, asyncio.TimeoutError) as e:
            raise ConnectivityError(f"{label}: {e}") from e

    @staticmethod
    def _raw_tx(call: CallRequest) -> Dict[str, Any]:
        tx: Dict[str, Any] = {"to": call.to, "data": "0x" + call.data.hex(), "value": hex(call.value)}
        if call.sender:
            tx["from"] = call.sender
        if call.gas is not None:
            tx["gas"] = hex(call.gas)
        return tx

    @retriable_network_call
    async def get_code(self, address: str) -> bytes:
        return bytes(await self._rpc("eth_getCode", self.w3.eth.get_code(AsyncWeb3.to_checksum_address(address))))

    @retriable_network_call
    async def get_balance(self, address: str) -> int:
        return int(await self._rpc("eth_getBalance", self.w3.eth.get_balance(AsyncWeb3.to_checksum_address(address))))

    @retriable_network_call
    async def get_fee_data(self) -> FeeData:
        gas_price = await self._rpc("eth_gasPrice", self.w3.eth.gas_price)
        try:
            priority_fee = await self._rpc("eth_maxPriorityFeePerGas", self.w3.eth.max_priority_fee)
        except ConnectivityError:
            raise
        except Exception:
            log.warning("MAX_PRIORITY_FEE_RPC_UNSUPPORTED_FALLING_BACK")
            priority_fee = DEFAULT_PRIORITY_FEE
        latest = await self._rpc("eth_getBlockByNumber", self.w3.eth.get_block("latest"))
        base_fee = latest.get("baseFeePerGas")
        if base_fee is None:
            # Pre-London chain: only a legacy gas price exists.
            return FeeData(gas_price=int(gas_price))
        final_priority_fee = int(Decimal(priority_fee) * self.priority_multiplier)
        return FeeData(
            gas_price=int(gas_price),
            max_fee_per_gas=int(base_fee) + final_priority_fee,
            max_priority_fee_per_gas=final_priority_fee,
        )

    @retriable_network_call
    async def estimate_gas(self, call: CallRequest) -> int:
        return int(await self._rpc("eth_estimateGas", self.w3.eth.estimate_gas(call.to_tx())))

    @retriable_network_call
    async def static_call(self, call: CallRequest) -> bytes:
        return bytes(await self._rpc("eth_call", self.w3.eth.call(call.to_tx())))

    @retriable_network_call
    async def trace_call(self, call: CallRequest) -> TraceResult:
        response = await self._rpc(
            "debug_traceCall",
            self.w3.provider.make_request("debug_traceCall", [self._raw_tx(call), "latest", {"tracer": "callTracer"}]),
        )
        error = response.get("error")
        if error:
            message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            if code == METHOD_NOT_FOUND or any(hint in message.lower() for hint in _UNSUPPORTED_HINTS):
                raise StrategyUnsupported("trace", message)
            raise EstimationFailure("trace", message)
        result = response.get("result") or {}
        if result.get("error"):
            raise EstimationFailure("trace", f"call reverted: {result['error']}")
        output = result.get("output") or "0x"
        return TraceResult(
            gas_used=int(result["gasUsed"], 16),
            output=bytes.fromhex(output[2:]),
            call_type=result.get("type", "CALL"),
        )

    async def _next_nonce(self) -> int:
        if self._nonce is None:
            self._nonce = await self._rpc(
                "eth_getTransactionCount", self.w3.eth.get_transaction_count(self.account.address, "pending")
            )
            log.info("NONCE_FROM_RPC", nonce=self._nonce)
        nonce = self._nonce
        self._nonce += 1
        return nonce

    async def send_transaction(self, call: CallRequest) -> TxReceipt:
        if self.account is None:
            raise GasProfilerError("EXECUTOR_PRIVATE_KEY is required for transaction execution")

        async with self._nonce_lock:
            nonce = await self._next_nonce()
            tx = {
                "from": self.account.address,
                "to": call.to,
                "data": "0x" + call.data.hex(),
                "value": call.value,
                "nonce": nonce,
                "chainId": settings.CHAIN_ID,
            }
            try:
                tx["gas"] = call.gas or await self._rpc("eth_estimateGas", self.w3.eth.estimate_gas(tx))
                fees = await self.get_fee_data()
                if fees.max_fee_per_gas is not None:
                    tx["maxFeePerGas"] = fees.max_fee_per_gas
                    tx["maxPriorityFeePerGas"] = fees.max_priority_fee_per_gas
                else:
                    tx["gasPrice"] = fees.gas_price
                signed = self.account.sign_transaction(tx)
                tx_hash = await self._rpc("eth_sendRawTransaction", self.w3.eth.send_raw_transaction(signed.raw_transaction))
            except Exception as e:
                # Nothing was broadcast; re-sync from the node next time.
                self._nonce = None
                log.error("TRANSACTION_SUBMISSION_FAILED", nonce=nonce, error=str(e))
                raise

        log.info("TRANSACTION_BROADCASTED", tx_hash=tx_hash.hex(), nonce=nonce)
        receipt = await self._rpc(
            "eth_getTransactionReceipt",
            self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=settings.RPC_TIMEOUT_SECONDS * 12),
        )
        if receipt["status"] != 1:
            raise GasProfilerError(f"Transaction {tx_hash.hex()} reverted on-chain")
        return TxReceipt(
            gas_used=int(receipt["gasUsed"]),
            tx_hash=tx_hash.hex(),
            block_number=int(receipt["blockNumber"]),
            status=int(receipt["status"]),
        )
