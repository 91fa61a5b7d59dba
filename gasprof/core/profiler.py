# /gasprof/core/profiler.py
# Repeated-run profiling of a single contract function.
import asyncio
import time
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Sequence

import sentry_sdk
from pydantic import ValidationError

from gasprof.adapters.chain import ChainOracle
from gasprof.adapters.reputation import LoggingRunEventSink, RunEventSink
from gasprof.core.config import settings
from gasprof.core.errors import GasProfilerError, InvalidRequestError, RunFailure
from gasprof.core.gas_estimator import GasEstimationEngine, PAYMASTER_STRATEGY
from gasprof.core.logger import (
    get_logger, bind_profile_context, clear_profile_context, PROFILE_RUNS, RUN_FAILURES,
)
from gasprof.core.models import AggregatedStats, EstimationRequest, FunctionProfile, ProfilingRun, RunEvent

log = get_logger(__name__)

MODES = ("simulate", "execute")
WEI_PER_ETHER = Decimal(10**18)


class StatsAccumulator:
    """Running min/max/total over gas and (optionally) cost; avg is computed once at the end."""
    def __init__(self):
        self.min: Optional[int] = None
        self.max: Optional[int] = None
        self.total = 0
        self.count = 0
        self.min_cost: Optional[Decimal] = None
        self.max_cost: Optional[Decimal] = None
        self.total_cost: Optional[Decimal] = None

    def add(self, gas: int, cost: Optional[Decimal] = None) -> None:
        self.min = gas if self.min is None else min(self.min, gas)
        self.max = gas if self.max is None else max(self.max, gas)
        self.total += gas
        self.count += 1
        if cost is not None:
            self.min_cost = cost if self.min_cost is None else min(self.min_cost, cost)
            self.max_cost = cost if self.max_cost is None else max(self.max_cost, cost)
            self.total_cost = cost if self.total_cost is None else self.total_cost + cost

    def finalize(self) -> AggregatedStats:
        if self.count == 0:
            raise GasProfilerError("no runs to aggregate")
        # Integer round-half-up of total / count.
        avg = (2 * self.total + self.count) // (2 * self.count)
        stats = AggregatedStats(min=self.min, max=self.max, avg=avg, total=self.total, call_count=self.count)
        if self.total_cost is None:
            return stats
        return stats.model_copy(update={
            "min_cost": self.min_cost,
            "max_cost": self.max_cost,
            "avg_cost": self.total_cost / self.count,
            "total_cost": self.total_cost,
        })


class ProfilingAggregator:
    """
    Runs one function ``run_count`` times, strictly sequentially, and
    aggregates the gas figures. A run that raises aborts the whole profile:
    statistics are never computed over a partial set. A simulation that fell
    back to the conservative estimate is kept, flagged and at its lower
    confidence.
    """
    def __init__(self, oracle: ChainOracle, engine: GasEstimationEngine, sink: Optional[RunEventSink] = None,
                 delay: Callable[[float], Awaitable[None]] = asyncio.sleep, run_delay: Optional[float] = None):
        self.oracle = oracle
        self.engine = engine
        self.sink = sink or LoggingRunEventSink()
        self.delay = delay
        self.run_delay = settings.RUN_DELAY_SECONDS if run_delay is None else run_delay

    async def _fee_rate(self) -> Optional[int]:
        try:
            fees = await self.oracle.get_fee_data()
        except Exception as e:
            log.warning("FEE_DATA_UNAVAILABLE_COSTS_OMITTED", error=str(e))
            return None
        return fees.rate

    async def _simulate_run(self, index: int, request: EstimationRequest, args: List) -> ProfilingRun:
        result = await self.engine.simulate(request)
        if result.fallback:
            # Kept as a low-confidence run; the conservative figure stands in.
            log.warning("PROFILING_RUN_USED_FALLBACK", run=index, gas_used=result.gas_used, error=result.error)
        return ProfilingRun(
            run=index,
            args=args,
            gas_used=result.gas_used,
            mode="simulate",
            strategy_used=result.strategy_used,
            fallback=result.fallback,
            paymaster_used=result.strategy_used == PAYMASTER_STRATEGY,
            paymaster_address=request.paymaster_address,
            confidence=result.confidence,
        )

    async def _execute_run(self, index: int, request: EstimationRequest, args: List) -> ProfilingRun:
        receipt = await self.oracle.send_transaction(request.to_call())
        gas = receipt.gas_used
        if request.paymaster_address:
            # Settlement is not performed; the sponsor's share is modeled.
            overhead = await self.engine.paymaster_cost_model().overhead_for(request.paymaster_address, request)
            gas += overhead.total_overhead
        return ProfilingRun(
            run=index,
            args=args,
            gas_used=gas,
            mode="execute",
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            paymaster_used=request.paymaster_address is not None,
            paymaster_address=request.paymaster_address,
        )

    def _build_request(self, target: str, function: str, args: Sequence,
                       paymaster_address: Optional[str]) -> EstimationRequest:
        try:
            return EstimationRequest.for_function(
                target,
                function,
                args,
                sender=settings.DEFAULT_SENDER,
                paymaster_address=paymaster_address,
                use_cache=False,
            )
        except (ValidationError, ValueError) as e:
            raise InvalidRequestError(f"Invalid profiling request for {function}: {e}") from e

    async def profile_function(self, target: str, function: str, args: Sequence = (),
                               run_count: Optional[int] = None, mode: str = "simulate",
                               paymaster_address: Optional[str] = None) -> FunctionProfile:
        run_count = settings.DEFAULT_RUN_COUNT if run_count is None else run_count
        if run_count <= 0:
            raise InvalidRequestError(f"run_count must be positive, got {run_count}")
        if not function or not function.strip():
            raise InvalidRequestError("function signature must not be empty")
        if mode not in MODES:
            raise InvalidRequestError(f"Unknown profiling mode {mode!r}; expected one of {MODES}")
        request = self._build_request(target, function, args, paymaster_address)
        args = list(args)
        reporting_address = request.paymaster_address or request.target

        bind_profile_context(function, request.target)
        try:
            rate = await self._fee_rate()
            acc = StatsAccumulator()
            runs: List[ProfilingRun] = []
            for index in range(1, run_count + 1):
                if mode == "execute" and index > 1:
                    await self.delay(self.run_delay)
                started = time.monotonic()
                try:
                    if mode == "execute":
                        run = await self._execute_run(index, request, args)
                    else:
                        run = await self._simulate_run(index, request, args)
                except Exception as e:
                    self.sink.record(reporting_address, RunEvent(
                        success=False, duration=time.monotonic() - started, error=str(e),
                    ))
                    RUN_FAILURES.inc()
                    sentry_sdk.capture_exception(e)
                    log.error("PROFILING_RUN_FAILED", run=index, mode=mode, error=str(e))
                    raise RunFailure(index, e) from e

                cost: Optional[Decimal] = None
                if rate:
                    cost_wei = run.gas_used * rate
                    cost = Decimal(cost_wei) / WEI_PER_ETHER
                    run = run.model_copy(update={"cost_in_wei": cost_wei, "cost_in_token": cost, "gas_price": rate})

                self.sink.record(reporting_address, RunEvent(
                    success=True, gas_used=run.gas_used, cost=run.cost_in_wei or 0,
                    duration=time.monotonic() - started,
                ))
                PROFILE_RUNS.labels(mode).inc()
                log.debug("PROFILING_RUN_COMPLETE", run=index, gas_used=run.gas_used)
                acc.add(run.gas_used, cost)
                runs.append(run)

            aggregated = acc.finalize()
            log.info(
                "FUNCTION_PROFILED",
                mode=mode,
                runs=aggregated.call_count,
                min=aggregated.min,
                max=aggregated.max,
                avg=aggregated.avg,
                has_cost=aggregated.has_cost,
                fallback_runs=sum(1 for r in runs if r.fallback),
            )
            return FunctionProfile(
                signature=function,
                target=request.target,
                mode=mode,
                paymaster_address=request.paymaster_address,
                runs=runs,
                aggregated=aggregated,
            )
        finally:
            clear_profile_context()
