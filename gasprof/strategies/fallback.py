# /gasprof/strategies/fallback.py

from typing import Optional

from gasprof.strategies.base import AbstractEstimationStrategy


class FallbackStrategy(AbstractEstimationStrategy):
    """
    Conservative fixed estimate keyed on the function name. Never touches the
    oracle and never fails.
    """
    name = "fallback"

    def gas_for(self, function_name: Optional[str]) -> int:
        if function_name:
            lowered = function_name.lower()
            for pattern, gas in self.tables.fallback_gas_by_name.items():
                if pattern in lowered:
                    return gas
        return self.tables.fallback_gas_default

    async def estimate(self, oracle, request) -> int:
        return self.gas_for(request.function_name)
