# /gasprof/strategies/base.py
# Defines the AbstractEstimationStrategy interface shared by every strategy.

from gasprof.adapters.chain import ChainOracle
from gasprof.core.errors import ConnectivityError, EstimationFailure
from gasprof.core.models import EstimationRequest
from gasprof.core.tables import DEFAULT_STRATEGY_TABLES, StrategyTables


class AbstractEstimationStrategy:
    """
    One way of turning a request into a gas number. Subclasses implement
    ``estimate``; ``run`` normalizes every non-connectivity failure into an
    EstimationFailure tagged with the strategy name so the engine can move on.
    """
    name: str = ""

    def __init__(self, tables: StrategyTables = DEFAULT_STRATEGY_TABLES):
        self.tables = tables

    @property
    def confidence(self) -> int:
        return self.tables.confidence[self.name]

    async def estimate(self, oracle: ChainOracle, request: EstimationRequest) -> int:
        raise NotImplementedError

    async def run(self, oracle: ChainOracle, request: EstimationRequest) -> int:
        try:
            gas = await self.estimate(oracle, request)
        except (ConnectivityError, EstimationFailure):
            raise
        except Exception as e:
            raise EstimationFailure(self.name, str(e) or type(e).__name__) from e
        if gas < 0:
            raise EstimationFailure(self.name, f"negative gas figure {gas}")
        return gas
