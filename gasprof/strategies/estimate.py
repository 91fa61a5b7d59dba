# /gasprof/strategies/estimate.py

from gasprof.strategies.base import AbstractEstimationStrategy


class EstimateGasStrategy(AbstractEstimationStrategy):
    """Plain eth_estimateGas."""
    name = "estimate"

    async def estimate(self, oracle, request) -> int:
        return int(await oracle.estimate_gas(request.to_call()))
