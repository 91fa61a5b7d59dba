# /gasprof/__init__.py
# Public API: wires an oracle into the estimator, classifier, cost model and profiler.
from typing import Optional, Sequence

from gasprof.adapters.chain import ChainOracle
from gasprof.adapters.reputation import RunEventSink
from gasprof.core.batch import ProfileJob, profile_batch
from gasprof.core.classifier import PaymasterClassifier
from gasprof.core.cost_model import PaymasterCostModel
from gasprof.core.gas_estimator import GasEstimationEngine
from gasprof.core.models import EstimationRequest, PaymasterProfile
from gasprof.core.profiler import ProfilingAggregator

__all__ = ["Toolkit", "build_toolkit", "EstimationRequest", "ProfileJob"]


class Toolkit:
    def __init__(self, oracle: ChainOracle, engine: GasEstimationEngine, classifier: PaymasterClassifier,
                 cost_model: PaymasterCostModel, profiler: ProfilingAggregator):
        self.oracle = oracle
        self.engine = engine
        self.classifier = classifier
        self.cost_model = cost_model
        self.profiler = profiler

    async def simulate(self, request: EstimationRequest):
        return await self.engine.simulate(request)

    async def classify(self, address: str):
        return await self.classifier.classify(address)

    async def compute_overhead(self, profile: PaymasterProfile, request: Optional[EstimationRequest] = None):
        return await self.cost_model.compute_overhead(profile, request)

    async def analyze_costs(self, address: str, **options):
        return await self.cost_model.analyze_costs(address, **options)

    async def profile_function(self, target: str, function: str, args: Sequence = (), **kwargs):
        return await self.profiler.profile_function(target, function, args, **kwargs)

    async def profile_batch(self, jobs: Sequence[ProfileJob], max_parallel: Optional[int] = None):
        return await profile_batch(self.profiler, jobs, max_parallel)


def build_toolkit(oracle: ChainOracle, sink: Optional[RunEventSink] = None, **profiler_kwargs) -> Toolkit:
    """One engine, classifier, cost model and profiler sharing a single oracle."""
    engine = GasEstimationEngine(oracle)
    classifier = PaymasterClassifier(oracle)
    cost_model = PaymasterCostModel(oracle, classifier, engine=engine)
    engine.cost_model = cost_model
    profiler = ProfilingAggregator(oracle, engine, sink=sink, **profiler_kwargs)
    return Toolkit(oracle, engine, classifier, cost_model, profiler)
