# /gasprof/strategies/static_call.py
# Read-only eth_call. The node reports no gas figure, so one is derived from
# the calldata, a fixed execution allowance and the size of the return data.

from gasprof.core.encoding import calldata_gas
from gasprof.strategies.base import AbstractEstimationStrategy


class StaticCallStrategy(AbstractEstimationStrategy):
    name = "staticCall"

    async def estimate(self, oracle, request) -> int:
        output = await oracle.static_call(request.to_call())
        words = (len(output) + 31) // 32
        return (
            self.tables.intrinsic_gas
            + calldata_gas(request.calldata)
            + self.tables.static_call_execution_gas
            + words * self.tables.memory_gas_per_word
        )
