# /gasprof/adapters/chain.py
# The ChainOracle interface every estimator, classifier and profiler talks to.

from gasprof.core.models import CallRequest, FeeData, TraceResult, TxReceipt


class ChainOracle:
    """
    Read/write access to the network. All methods are coroutines.

    Implementations raise ConnectivityError when the node cannot be reached,
    StrategyUnsupported from trace_call when tracing is not available, and any
    other exception for an ordinary revert/failure.
    """
    async def get_code(self, address: str) -> bytes:
        raise NotImplementedError

    async def get_balance(self, address: str) -> int:
        raise NotImplementedError

    async def get_fee_data(self) -> FeeData:
        raise NotImplementedError

    async def estimate_gas(self, call: CallRequest) -> int:
        raise NotImplementedError

    async def static_call(self, call: CallRequest) -> bytes:
        raise NotImplementedError

    async def trace_call(self, call: CallRequest) -> TraceResult:
        raise NotImplementedError

    async def send_transaction(self, call: CallRequest) -> TxReceipt:
        """Submit a transaction and block until it is mined."""
        raise NotImplementedError
