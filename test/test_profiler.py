from decimal import Decimal

import pytest
from web3.exceptions import ContractLogicError

from gasprof.core.errors import GasProfilerError, InvalidRequestError, RunFailure
from gasprof.core.gas_estimator import GasEstimationEngine
from gasprof.core.profiler import ProfilingAggregator, StatsAccumulator

from conftest import PAYMASTER, SENDER, TARGET, TOKEN_ADDR, address_word, make_code

TRANSFER = "transfer(address,uint256)"
ARGS = [SENDER, 1000]


@pytest.mark.asyncio
async def test_simulated_runs_are_aggregated(toolkit, oracle, delay):
    oracle.set_estimate(TARGET, [40000, 42000, 41000])

    profile = await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=3)

    stats = profile.aggregated
    assert (stats.min, stats.max, stats.avg, stats.total, stats.call_count) == (40000, 42000, 41000, 123000, 3)
    assert [r.run for r in profile.runs] == [1, 2, 3]
    assert all(r.mode == "simulate" for r in profile.runs)
    assert stats.total_cost == Decimal(123000 * 10**9) / Decimal(10**18)
    assert profile.runs[0].cost_in_wei == 40000 * 10**9
    # no pacing between simulated runs
    assert delay.calls == []


@pytest.mark.asyncio
async def test_avg_rounds_half_up(toolkit, oracle):
    oracle.set_estimate(TARGET, [40000, 40001])

    profile = await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=2)

    assert profile.aggregated.avg == 40001


@pytest.mark.asyncio
async def test_exhausted_simulation_keeps_fallback_runs(toolkit):
    profile = await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=2)

    assert profile.aggregated.min == 65000
    assert profile.aggregated.call_count == 2
    assert all(r.fallback and r.confidence == 25 for r in profile.runs)
    assert profile.runs[0].strategy_used == "fallback"
    assert profile.fallback_runs == 2


@pytest.mark.asyncio
async def test_reverting_run_falls_back_without_aborting(toolkit, oracle):
    oracle.set_estimate(TARGET, [40000, ContractLogicError("execution reverted"), 41000])

    profile = await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=3)

    assert [r.gas_used for r in profile.runs] == [40000, 65000, 41000]
    assert [r.fallback for r in profile.runs] == [False, True, False]
    assert profile.runs[0].strategy_used == "estimate"


@pytest.mark.asyncio
async def test_failing_run_raises_with_index(toolkit, oracle, sink, monkeypatch):
    oracle.set_estimate(TARGET, 40000)
    simulate = toolkit.engine.simulate
    seen = []

    async def crashing_simulate(request):
        seen.append(request)
        if len(seen) == 2:
            raise GasProfilerError("engine crashed")
        return await simulate(request)

    monkeypatch.setattr(toolkit.engine, "simulate", crashing_simulate)

    with pytest.raises(RunFailure) as excinfo:
        await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=3)

    assert excinfo.value.run_index == 2
    assert str(excinfo.value).startswith("Run 2 failed")
    events = sink.events[TARGET]
    assert [e.success for e in events] == [True, False]


@pytest.mark.asyncio
async def test_cost_fields_absent_without_fee_data(toolkit, oracle):
    oracle.fee_error = ValueError("eth_gasPrice unsupported")
    oracle.set_estimate(TARGET, 40000)

    profile = await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=2)

    stats = profile.aggregated
    assert not stats.has_cost
    assert "total_cost" not in stats.to_dict()
    assert "avg_cost" not in stats.to_dict()
    assert profile.runs[0].cost_in_wei is None


@pytest.mark.asyncio
async def test_execute_mode_paces_runs(toolkit, oracle, delay):
    oracle.queue_receipts(50000, 51000, 52000)

    profile = await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=3, mode="execute")

    assert delay.calls == [0.1, 0.1]
    assert [r.gas_used for r in profile.runs] == [50000, 51000, 52000]
    assert all(r.tx_hash for r in profile.runs)
    assert profile.aggregated.avg == 51000


@pytest.mark.asyncio
async def test_execute_failure_discards_previous_runs(toolkit, oracle):
    oracle.queue_receipts(50000, RuntimeError("nonce too low"))

    with pytest.raises(RunFailure) as excinfo:
        await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=3, mode="execute")

    assert excinfo.value.run_index == 2
    assert isinstance(excinfo.value.cause, RuntimeError)


@pytest.mark.asyncio
async def test_sponsored_simulation(toolkit, oracle, sink):
    oracle.set_code(PAYMASTER, make_code("token()"))
    oracle.set_static(PAYMASTER, address_word(TOKEN_ADDR), selector="token()")
    oracle.set_estimate(TARGET, 40000)

    profile = await toolkit.profile_function(TARGET, TRANSFER, ARGS, run_count=2, paymaster_address=PAYMASTER)

    assert all(r.paymaster_used for r in profile.runs)
    assert profile.aggregated.min > 40000
    assert len(sink.events[PAYMASTER]) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("run_count", [0, -1])
async def test_non_positive_run_count_is_rejected_before_io(oracle, run_count):
    aggregator = ProfilingAggregator(oracle, GasEstimationEngine(oracle))

    with pytest.raises(InvalidRequestError):
        await aggregator.profile_function(TARGET, TRANSFER, ARGS, run_count=run_count)
    assert oracle.calls == []


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(toolkit):
    with pytest.raises(InvalidRequestError):
        await toolkit.profile_function(TARGET, "", [])
    with pytest.raises(InvalidRequestError):
        await toolkit.profile_function(TARGET, TRANSFER, [SENDER])
    with pytest.raises(InvalidRequestError):
        await toolkit.profile_function(TARGET, TRANSFER, ARGS, mode="replay")


def test_accumulator_keeps_invariants():
    acc = StatsAccumulator()
    for gas in (21000, 90000, 35000, 35001):
        acc.add(gas)

    stats = acc.finalize()

    assert stats.min <= stats.avg <= stats.max
    assert stats.avg == 45250
    assert stats.to_dict() == {"min": 21000, "max": 90000, "avg": 45250, "total": 181001, "call_count": 4}
