# /gasprof/core/batch.py
# Bounded-parallel profiling of independent functions/contracts.
import asyncio
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, Field

from gasprof.core.config import settings
from gasprof.core.errors import InvalidRequestError
from gasprof.core.logger import get_logger
from gasprof.core.models import FunctionProfile
from gasprof.core.profiler import ProfilingAggregator

log = get_logger(__name__)


class ProfileJob(BaseModel):
    target: str
    function: str
    args: List[Any] = Field(default_factory=list)
    run_count: Optional[int] = None
    mode: str = "simulate"
    paymaster_address: Optional[str] = None


class BatchOutcome(BaseModel):
    job: ProfileJob
    profile: Optional[FunctionProfile] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.profile is not None


async def profile_batch(aggregator: ProfilingAggregator, jobs: Sequence[ProfileJob],
                        max_parallel: Optional[int] = None) -> List[BatchOutcome]:
    """
    Profile every job with at most ``max_parallel`` sessions in flight. Each
    session is itself sequential. Returns one outcome per job, in job order;
    a failing job never affects the others.
    """
    if max_parallel is None:
        max_parallel = settings.MAX_PARALLEL_SESSIONS
    if max_parallel <= 0:
        raise InvalidRequestError(f"max_parallel must be positive, got {max_parallel}")
    semaphore = asyncio.Semaphore(max_parallel)

    async def _run(job: ProfileJob) -> BatchOutcome:
        async with semaphore:
            try:
                profile = await aggregator.profile_function(
                    job.target,
                    job.function,
                    job.args,
                    run_count=job.run_count,
                    mode=job.mode,
                    paymaster_address=job.paymaster_address,
                )
            except Exception as e:
                log.error("BATCH_JOB_FAILED", target=job.target, function=job.function, error=str(e))
                return BatchOutcome(job=job, error=str(e))
            return BatchOutcome(job=job, profile=profile)

    log.info("BATCH_PROFILING_STARTED", jobs=len(jobs), max_parallel=max_parallel)
    outcomes = await asyncio.gather(*(_run(job) for job in jobs))
    log.info("BATCH_PROFILING_COMPLETE", succeeded=sum(1 for o in outcomes if o.ok), failed=sum(1 for o in outcomes if not o.ok))
    return list(outcomes)
