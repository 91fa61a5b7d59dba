import pytest

from gasprof.abis import paymaster as pm
from gasprof.core.classifier import PaymasterClassifier
from gasprof.core.cost_model import PaymasterCostModel
from gasprof.core.errors import InvalidRequestError
from gasprof.core.models import PaymasterProfile, PaymasterType

from conftest import PAYMASTER, TOKEN_ADDR, address_word, make_code

# One SSTORE (5) + one SLOAD (2) => complexity score 7.
OPCODES = b"\x55\x54"


def token_paymaster(oracle):
    oracle.set_code(PAYMASTER, make_code("token()", opcodes=OPCODES))
    oracle.set_static(PAYMASTER, address_word(TOKEN_ADDR), selector="token()")


@pytest.mark.asyncio
async def test_overhead_from_type_defaults(toolkit, oracle):
    token_paymaster(oracle)
    profile = await toolkit.classify(PAYMASTER)

    breakdown = await toolkit.compute_overhead(profile)

    assert breakdown.fallback is False
    assert breakdown.base.gas == 21000
    assert breakdown.validation.gas == 50000
    assert breakdown.post_op.gas == 25000
    assert breakdown.storage.gas == 7000
    assert breakdown.complexity.gas == 7000
    assert breakdown.type_items == {"tokenOperations": 15000, "priceConversion": 5000, "transferLogic": 5000}
    assert breakdown.feature_items == {}
    assert breakdown.multiplier == 1.1
    # 21000 + 50000 + 25000 + 7000 + ceil((7000 + 25000) * 1.1)
    assert breakdown.total_overhead == 138200
    # 15 + 10 + 10 + 15 + round(15 * 0.70)
    assert breakdown.confidence == 60
    assert not breakdown.measured_validation


@pytest.mark.asyncio
async def test_measured_validation_is_preferred(toolkit, oracle):
    token_paymaster(oracle)
    oracle.set_estimate(PAYMASTER, 41000, selector=pm.VALIDATE_PAYMASTER_USER_OP)
    profile = await toolkit.classify(PAYMASTER)

    breakdown = await toolkit.compute_overhead(profile)

    assert breakdown.measured_validation
    assert not breakdown.measured_post_op
    # intrinsic 21000 is already part of the base overhead
    assert breakdown.validation.gas == 20000
    assert breakdown.total_overhead == 108200
    assert breakdown.confidence == 75


@pytest.mark.asyncio
async def test_static_call_figure_is_not_a_measurement(toolkit, oracle):
    token_paymaster(oracle)
    oracle.set_static(PAYMASTER, bytes(32), selector=pm.VALIDATE_PAYMASTER_USER_OP)
    profile = await toolkit.classify(PAYMASTER)

    breakdown = await toolkit.compute_overhead(profile)

    assert not breakdown.measured_validation
    assert breakdown.validation.gas == 50000
    assert breakdown.total_overhead == 138200
    assert breakdown.confidence == 60


@pytest.mark.asyncio
async def test_unknown_profile_gets_conservative_fallback(toolkit):
    profile = await toolkit.classify(PAYMASTER)

    breakdown = await toolkit.compute_overhead(profile)

    assert breakdown.fallback
    assert breakdown.total_overhead == 96000
    assert breakdown.confidence == 25


@pytest.mark.asyncio
async def test_internal_failure_gets_conservative_fallback(oracle):
    classifier = PaymasterClassifier(oracle)
    model = PaymasterCostModel(oracle, classifier)
    profile = PaymasterProfile(address=PAYMASTER, primary_type=PaymasterType.TOKEN, confidence=70)
    oracle.offline = True

    breakdown = await model.compute_overhead(profile)

    assert breakdown.fallback
    assert breakdown.total_overhead == 96000
    assert breakdown.error


@pytest.mark.asyncio
async def test_total_is_never_below_base(oracle):
    oracle.set_code(PAYMASTER, make_code())
    classifier = PaymasterClassifier(oracle)
    model = PaymasterCostModel(oracle, classifier)

    breakdown = await model.overhead_for(PAYMASTER)

    assert breakdown.profile_type == PaymasterType.SPONSORSHIP
    assert breakdown.total_overhead >= breakdown.base.gas
    # sponsorship, low complexity: 21000 + 30000 + 8000 + 5000 + ceil(8000 * 0.9)
    assert breakdown.total_overhead == 71200


@pytest.mark.asyncio
async def test_analyze_costs_report(toolkit, oracle):
    token_paymaster(oracle)
    oracle.set_balance(PAYMASTER, 10**16)

    report = await toolkit.analyze_costs(PAYMASTER, timeframe="7d")

    assert report.per_operation_gas == 138200 - 21000
    titles = [r.title for r in report.recommendations]
    assert "Reduce validation complexity" in titles
    assert "Optimize token operations" in titles
    assert "Insufficient balance" in titles
    assert any(r.priority == "critical" for r in report.recommendations)
    assert report.metrics.cost_stability == 60
    assert report.risk_assessment["compatibility"] == "medium"
    assert [s.name for s in report.predictions.scenarios] == ["conservative", "moderate", "aggressive"]
    base_cost = report.per_operation_gas * 10**9
    assert report.predictions.scenarios[1].estimated_cost_wei == base_cost * 14 // 10
    assert len(report.alternatives) == 3
    assert all(a.paymaster_type != PaymasterType.TOKEN for a in report.alternatives)
    assert report.volume_projections["1k"] == report.per_operation_gas * 1000
    assert report.gas_price_impact["high"] == 2 * report.gas_price_impact["current"]


@pytest.mark.asyncio
async def test_analyze_costs_is_deterministic(toolkit, oracle):
    token_paymaster(oracle)
    oracle.set_balance(PAYMASTER, 10**18)

    first = await toolkit.analyze_costs(PAYMASTER)
    toolkit.cost_model.cache.clear()
    toolkit.classifier.cache.clear()
    second = await toolkit.analyze_costs(PAYMASTER)

    assert first.model_dump() == second.model_dump()


@pytest.mark.asyncio
async def test_analyze_costs_rejects_unknown_timeframe(toolkit):
    with pytest.raises(InvalidRequestError):
        await toolkit.analyze_costs(PAYMASTER, timeframe="1y")
