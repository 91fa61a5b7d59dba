# /gasprof/strategies/trace.py
# Instruction-level trace via debug_traceCall. Most accurate, least available.

from gasprof.strategies.base import AbstractEstimationStrategy


class TraceStrategy(AbstractEstimationStrategy):
    name = "trace"

    async def estimate(self, oracle, request) -> int:
        result = await oracle.trace_call(request.to_call())
        return result.gas_used
