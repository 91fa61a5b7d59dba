import asyncio

import pytest

from gasprof import ProfileJob
from gasprof.core.batch import profile_batch
from gasprof.core.errors import InvalidRequestError

from conftest import PAYMASTER, SENDER, TARGET


@pytest.mark.asyncio
async def test_batch_returns_one_outcome_per_job(toolkit, oracle):
    oracle.set_estimate(TARGET, 30000, selector="approve(address,uint256)")
    oracle.set_estimate(TARGET, 45000, selector="transfer(address,uint256)")
    jobs = [
        ProfileJob(target=TARGET, function="approve(address,uint256)", args=[SENDER, 1], run_count=2),
        ProfileJob(target=TARGET, function="transfer(address,uint256)", args=[SENDER, 1], run_count=2),
        ProfileJob(target=TARGET, function="transfer(address,uint256)", args=[SENDER], run_count=2),
    ]

    outcomes = await toolkit.profile_batch(jobs, max_parallel=2)

    assert len(outcomes) == 3
    assert outcomes[0].ok and outcomes[0].profile.aggregated.avg == 30000
    assert outcomes[1].ok and outcomes[1].profile.aggregated.avg == 45000
    assert not outcomes[2].ok
    assert outcomes[2].error


@pytest.mark.asyncio
async def test_batch_respects_parallel_bound(toolkit):
    in_flight = 0
    peak = 0

    async def fake_profile(target, function, args, **kwargs):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        raise RuntimeError("not needed")

    toolkit.profiler.profile_function = fake_profile
    jobs = [ProfileJob(target=TARGET, function=f"f{i}()") for i in range(6)]

    outcomes = await profile_batch(toolkit.profiler, jobs, max_parallel=2)

    assert peak == 2
    assert all(o.error == "not needed" for o in outcomes)


@pytest.mark.asyncio
@pytest.mark.parametrize("bound", [0, -1])
async def test_batch_rejects_non_positive_bound(toolkit, bound):
    with pytest.raises(InvalidRequestError):
        await profile_batch(toolkit.profiler, [ProfileJob(target=PAYMASTER, function="f()")], max_parallel=bound)
