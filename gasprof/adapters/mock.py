# /gasprof/adapters/mock.py
# In-memory ChainOracle for unit tests and dry runs.
# Responses are configured per (address, selector); anything unconfigured
# reverts the way a real node would.

from typing import Any, Dict, List, Optional, Tuple, Union

from web3 import Web3
from web3.exceptions import ContractLogicError

from gasprof.adapters.chain import ChainOracle
from gasprof.core.encoding import function_selector, to_hex
from gasprof.core.errors import ConnectivityError, StrategyUnsupported
from gasprof.core.logger import get_logger
from gasprof.core.models import CallRequest, FeeData, TraceResult, TxReceipt

log = get_logger(__name__)

Response = Union[int, bytes, TraceResult, TxReceipt, Exception, List[Any]]


def _selector_key(selector: Optional[str]) -> Optional[str]:
    if selector is None:
        return None
    if "(" in selector:
        return to_hex(function_selector(selector))
    return selector.lower()


class MockChainOracle(ChainOracle):
    """
    A scriptable oracle. Values may be a single response, an exception to raise,
    or a list of responses consumed one per call (the last one repeats).
    """
    def __init__(self, fee_data: Optional[FeeData] = None, trace_supported: bool = False):
        self.codes: Dict[str, bytes] = {}
        self.balances: Dict[str, int] = {}
        self.fee_data: Optional[FeeData] = fee_data if fee_data is not None else FeeData(gas_price=10**9)
        self.fee_error: Optional[Exception] = None
        self.trace_supported = trace_supported
        self.offline = False
        self.estimates: Dict[Tuple[str, Optional[str]], Response] = {}
        self.static_results: Dict[Tuple[str, Optional[str]], Response] = {}
        self.traces: Dict[Tuple[str, Optional[str]], Response] = {}
        self.receipts: List[Union[int, TxReceipt, Exception]] = []
        self.sent: List[CallRequest] = []
        self.calls: List[Tuple[str, Any]] = []
        self._block = 1
        log.info("MOCK_CHAIN_ORACLE_INITIALIZED", trace_supported=trace_supported)

    # --- Configuration ---

    def set_code(self, address: str, code: bytes):
        self.codes[Web3.to_checksum_address(address)] = code

    def set_balance(self, address: str, wei: int):
        self.balances[Web3.to_checksum_address(address)] = wei

    def set_estimate(self, address: str, response: Response, selector: Optional[str] = None):
        """``selector`` may be a 0x-prefixed selector or a full signature; ``None`` matches any call."""
        self.estimates[(Web3.to_checksum_address(address), _selector_key(selector))] = response

    def set_static(self, address: str, response: Response, selector: Optional[str] = None):
        self.static_results[(Web3.to_checksum_address(address), _selector_key(selector))] = response

    def set_trace(self, address: str, response: Response, selector: Optional[str] = None):
        self.traces[(Web3.to_checksum_address(address), _selector_key(selector))] = response

    def queue_receipts(self, *receipts: Union[int, TxReceipt, Exception]):
        self.receipts.extend(receipts)

    # --- Internals ---

    def _check_online(self, method: str):
        if self.offline:
            log.error("MOCK_ORACLE_OFFLINE", method=method)
            raise ConnectivityError(f"{method}: connection refused")

    @staticmethod
    def _next(table: Dict, key) -> Any:
        response = table[key]
        if isinstance(response, list):
            # Consume in order; keep the last response for later calls.
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return response

    def _lookup(self, table: Dict, call: CallRequest) -> Any:
        address = Web3.to_checksum_address(call.to)
        selector = to_hex(call.data[:4]) if len(call.data) >= 4 else None
        for key in ((address, selector), (address, None)):
            if key in table:
                return self._next(table, key)
        raise ContractLogicError("execution reverted")

    # --- ChainOracle ---

    async def get_code(self, address: str) -> bytes:
        self._check_online("eth_getCode")
        self.calls.append(("get_code", address))
        return self.codes.get(Web3.to_checksum_address(address), b"")

    async def get_balance(self, address: str) -> int:
        self._check_online("eth_getBalance")
        self.calls.append(("get_balance", address))
        return self.balances.get(Web3.to_checksum_address(address), 0)

    async def get_fee_data(self) -> FeeData:
        self._check_online("eth_gasPrice")
        self.calls.append(("get_fee_data", None))
        if self.fee_error is not None:
            raise self.fee_error
        return self.fee_data

    async def estimate_gas(self, call: CallRequest) -> int:
        self._check_online("eth_estimateGas")
        self.calls.append(("estimate_gas", call))
        return int(self._lookup(self.estimates, call))

    async def static_call(self, call: CallRequest) -> bytes:
        self._check_online("eth_call")
        self.calls.append(("static_call", call))
        return bytes(self._lookup(self.static_results, call))

    async def trace_call(self, call: CallRequest) -> TraceResult:
        self._check_online("debug_traceCall")
        self.calls.append(("trace_call", call))
        if not self.trace_supported:
            raise StrategyUnsupported("trace", "the method debug_traceCall does not exist/is not available")
        result = self._lookup(self.traces, call)
        if isinstance(result, int):
            result = TraceResult(gas_used=result)
        return result

    async def send_transaction(self, call: CallRequest) -> TxReceipt:
        self._check_online("eth_sendRawTransaction")
        self.calls.append(("send_transaction", call))
        if self.receipts:
            response = self.receipts.pop(0)
        else:
            response = self._lookup(self.estimates, call)
        if isinstance(response, Exception):
            log.error("MOCK_TX_FORCED_FAILURE", to=call.to, error=str(response))
            raise response
        self.sent.append(call)
        self._block += 1
        if isinstance(response, TxReceipt):
            return response
        receipt = TxReceipt(gas_used=int(response), tx_hash=f"0x{len(self.sent):064x}", block_number=self._block)
        log.info("MOCK_TRANSACTION_SENT", tx_hash=receipt.tx_hash, gas_used=receipt.gas_used)
        return receipt
