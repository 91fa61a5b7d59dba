# /gasprof/core/gas_estimator.py
# Multi-strategy gas estimation with graceful degradation.
import time
from typing import Any, Callable, Dict, List, Optional, Set

from gasprof.adapters.chain import ChainOracle
from gasprof.core.cache import TTLCache, canonical_key
from gasprof.core.classifier import PaymasterClassifier
from gasprof.core.config import settings
from gasprof.core.cost_model import PaymasterCostModel
from gasprof.core.encoding import ZERO_ADDRESS
from gasprof.core.errors import AllStrategiesExhausted, ConnectivityError, EstimationFailure, StrategyUnsupported
from gasprof.core.logger import get_logger, ESTIMATES_TOTAL, ESTIMATE_FALLBACKS
from gasprof.core.models import Attempt, EstimationRequest, EstimationResult, FeeData, StrategyMode
from gasprof.core.tables import DEFAULT_STRATEGY_TABLES, StrategyTables
from gasprof.core.user_operation import build_user_operation, encode_paymaster_and_data, estimate_user_operation_gas
from gasprof.strategies.base import AbstractEstimationStrategy
from gasprof.strategies.estimate import EstimateGasStrategy
from gasprof.strategies.fallback import FallbackStrategy
from gasprof.strategies.static_call import StaticCallStrategy
from gasprof.strategies.trace import TraceStrategy

log = get_logger(__name__)

AUTO_ORDER = ("trace", "estimate", "staticCall")
PAYMASTER_STRATEGY = "paymaster_simulation"


class GasEstimationEngine:
    """
    Tries trace, estimateGas and a static call in decreasing order of
    confidence, remembering which strategies the oracle cannot serve, and
    falls back to a fixed conservative figure when everything fails.

    One engine owns exactly one oracle; the unsupported-strategy memory and the
    result cache are both scoped to it.
    """
    def __init__(self, oracle: ChainOracle, tables: StrategyTables = DEFAULT_STRATEGY_TABLES,
                 cost_model=None, cache_ttl: Optional[float] = None, cache_max_entries: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.oracle = oracle
        self.tables = tables
        self.cost_model = cost_model
        self.strategies: Dict[str, AbstractEstimationStrategy] = {
            s.name: s for s in (TraceStrategy(tables), EstimateGasStrategy(tables), StaticCallStrategy(tables))
        }
        self.fallback = FallbackStrategy(tables)
        self.unsupported: Set[str] = set()
        self.cache = TTLCache(
            "estimation",
            ttl_seconds=cache_ttl or settings.ESTIMATION_CACHE_TTL_SECONDS,
            max_entries=cache_max_entries or settings.CACHE_MAX_ENTRIES,
            clock=clock,
        )
        log.info("GAS_ESTIMATION_ENGINE_INITIALIZED", strategies=list(self.strategies))

    def paymaster_cost_model(self) -> PaymasterCostModel:
        if self.cost_model is None:
            self.cost_model = PaymasterCostModel(self.oracle, PaymasterClassifier(self.oracle), engine=self)
        return self.cost_model

    @staticmethod
    def cache_key(request: EstimationRequest) -> str:
        return canonical_key(
            request.target, request.selector, request.data, request.mode.value, request.paymaster_address
        )

    def _plan(self, request: EstimationRequest) -> List[str]:
        remaining = [name for name in AUTO_ORDER if name not in self.unsupported]
        if request.mode in (StrategyMode.AUTO, StrategyMode.PAYMASTER):
            return remaining
        # The explicitly requested strategy always gets a try.
        return [request.mode.value] + [name for name in remaining if name != request.mode.value]

    async def simulate(self, request: EstimationRequest) -> EstimationResult:
        """
        Estimate gas for one call. With ``fallback_on_error`` (the default) it
        never raises: strategy errors, including an unreachable node, end in
        the conservative fallback result. Only an explicit mode with
        ``fallback_on_error=False`` re-raises the failing strategy's error.
        """
        key = self.cache_key(request)
        if request.use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                log.debug("ESTIMATION_CACHE_HIT", target=request.target, selector=request.selector)
                return cached.model_copy(update={"from_cache": True})

        explicit = request.mode not in (StrategyMode.AUTO, StrategyMode.PAYMASTER)
        attempts: List[Attempt] = []
        strategy: Optional[AbstractEstimationStrategy] = None
        base_gas = 0

        for name in self._plan(request):
            candidate = self.strategies[name]
            try:
                base_gas = await candidate.run(self.oracle, request)
            except StrategyUnsupported as e:
                self.unsupported.add(name)
                attempts.append(Attempt(strategy=name, error=e.reason))
                log.info("STRATEGY_MARKED_UNSUPPORTED", strategy=name, reason=e.reason)
                if explicit and not request.fallback_on_error:
                    raise
                continue
            except EstimationFailure as e:
                attempts.append(Attempt(strategy=name, error=e.reason))
                log.debug("ESTIMATION_STRATEGY_FAILED", strategy=name, target=request.target, reason=e.reason)
                if explicit and not request.fallback_on_error:
                    raise
                continue
            except ConnectivityError as e:
                attempts.append(Attempt(strategy=name, error=str(e)))
                log.warning("ESTIMATION_STRATEGY_UNREACHABLE", strategy=name, target=request.target, error=str(e))
                if explicit and not request.fallback_on_error:
                    raise
                continue
            attempts.append(Attempt(strategy=name))
            strategy = candidate
            break

        if strategy is None:
            return self._exhausted(request, attempts)

        ESTIMATES_TOTAL.labels(strategy.name).inc()
        if request.paymaster_address:
            result = await self._with_paymaster(request, base_gas, strategy, attempts)
        else:
            result = EstimationResult(
                success=True,
                gas_used=base_gas,
                base_gas=base_gas,
                confidence=strategy.confidence,
                strategy_used=strategy.name,
                attempts=attempts,
            )
        if request.use_cache:
            self.cache.set(key, result)
        return result

    def _exhausted(self, request: EstimationRequest, attempts: List[Attempt]) -> EstimationResult:
        gas = self.fallback.gas_for(request.function_name)
        ESTIMATE_FALLBACKS.inc()
        log.warning(
            "ALL_STRATEGIES_EXHAUSTED",
            target=request.target,
            selector=request.selector,
            fallback_gas=gas,
            attempts=[a.strategy for a in attempts],
        )
        return EstimationResult(
            success=False,
            gas_used=gas,
            base_gas=gas,
            confidence=self.fallback.confidence,
            strategy_used=self.fallback.name,
            attempts=attempts + [Attempt(strategy=self.fallback.name)],
            error=str(AllStrategiesExhausted(attempts)),
            fallback=True,
        )

    async def _with_paymaster(self, request: EstimationRequest, base_gas: int,
                              strategy: AbstractEstimationStrategy, attempts: List[Attempt]) -> EstimationResult:
        overhead = await self.paymaster_cost_model().overhead_for(request.paymaster_address, request)
        details: Dict[str, Any] = {"base_strategy": strategy.name}
        if request.mode == StrategyMode.PAYMASTER:
            details.update(await self._user_operation_details(request, base_gas))
        return EstimationResult(
            success=True,
            gas_used=base_gas + overhead.total_overhead,
            base_gas=base_gas,
            confidence=min(strategy.confidence, overhead.confidence),
            strategy_used=PAYMASTER_STRATEGY,
            attempts=attempts,
            paymaster_overhead=overhead,
            details=details,
        )

    async def _user_operation_details(self, request: EstimationRequest, base_gas: int) -> Dict[str, Any]:
        try:
            fees = await self.oracle.get_fee_data()
        except Exception as e:
            log.warning("USER_OPERATION_FEES_UNAVAILABLE", error=str(e))
            fees = FeeData()
        op = build_user_operation(
            sender=request.sender or settings.DEFAULT_SENDER or ZERO_ADDRESS,
            call_data=request.calldata,
            call_gas_limit=max(base_gas, 1),
            max_fee_per_gas=fees.max_fee_per_gas or fees.gas_price or 0,
            max_priority_fee_per_gas=fees.max_priority_fee_per_gas or 0,
            # validUntil 0 never expires, so cached results carry no wall-clock value.
            paymaster_and_data=encode_paymaster_and_data(request.paymaster_address, valid_until=0),
        )
        return {"user_operation": op.to_rpc(), "user_operation_gas": estimate_user_operation_gas(op)}

    async def simulate_all(self, request: EstimationRequest) -> Dict[str, Any]:
        """
        Debug mode: run every strategy the oracle supports and report each
        outcome alongside the highest-confidence success.
        """
        results: Dict[str, EstimationResult] = {}
        errors: Dict[str, str] = {}
        for name in AUTO_ORDER:
            if name in self.unsupported:
                errors[name] = "unsupported"
                continue
            single = request.model_copy(update={"mode": StrategyMode(name), "fallback_on_error": False,
                                                "use_cache": False, "paymaster_address": None})
            try:
                results[name] = await self.simulate(single)
            except EstimationFailure as e:
                errors[name] = e.reason
            except ConnectivityError as e:
                errors[name] = str(e)
        if not results:
            raise AllStrategiesExhausted([Attempt(strategy=n, error=e) for n, e in errors.items()])
        best = max(results.values(), key=lambda r: r.confidence)
        log.info("SIMULATE_ALL_COMPLETE", succeeded=list(results), failed=list(errors), best=best.strategy_used)
        return {"results": results, "errors": errors, "best": best}

    def clear_cache(self) -> None:
        self.cache.clear()
        log.info("ESTIMATION_CACHE_CLEARED")

    def cache_stats(self) -> Dict[str, Any]:
        return {**self.cache.stats(), "unsupported_strategies": sorted(self.unsupported)}
