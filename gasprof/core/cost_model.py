# /gasprof/core/cost_model.py
# Turns a PaymasterProfile into an itemized overhead estimate and an
# optimization report.
import math
import time
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from gasprof.abis import paymaster as pm
from gasprof.adapters.chain import ChainOracle
from gasprof.core.cache import TTLCache, canonical_key
from gasprof.core.classifier import PaymasterClassifier
from gasprof.core.config import settings
from gasprof.core.encoding import ZERO_ADDRESS, weighted_opcode_score
from gasprof.core.errors import InvalidRequestError
from gasprof.core.logger import get_logger, OVERHEAD_FALLBACKS
from gasprof.core.models import (
    Alternative, CostBreakdown, CostComponent, CostMetrics, CostPrediction, CostReport, EstimationRequest,
    GasComplexity, PaymasterProfile, PaymasterType, Recommendation, Scenario,
)
from gasprof.core.tables import DEFAULT_BENCHMARK_TABLES, DEFAULT_COST_TABLES, BenchmarkTables, CostTables
from gasprof.core.user_operation import build_user_operation, encode_paymaster_and_data

log = get_logger(__name__)

# Only these report gas the node actually metered.
MEASURING_STRATEGIES = ("trace", "estimate")

# Feature cost label, and the primary type that already prices it in.
FEATURE_ITEMS = {
    "has_time_restrictions": ("timeValidation", None),
    "has_whitelist": ("whitelistCheck", None),
    "has_conditional_logic": ("additionalConditionals", PaymasterType.CONDITIONAL),
    "requires_deposit": ("depositChecks", PaymasterType.DEPOSIT),
}

ALTERNATIVES = {
    PaymasterType.SPONSORSHIP: (
        "Simple gas sponsorship",
        ["Lower gas costs", "Simpler implementation", "Higher reliability"],
        ["No advanced features", "No user restrictions", "Higher sponsorship burden"],
    ),
    PaymasterType.VERIFYING: (
        "Signature-based sponsorship",
        ["Controlled sponsorship", "Moderate gas costs", "Flexible policies"],
        ["Centralized control", "Off-chain infrastructure needed"],
    ),
    PaymasterType.CONDITIONAL: (
        "Rule-based sponsorship",
        ["Custom eligibility rules", "No off-chain signer"],
        ["Condition evaluation cost", "Rules are harder to change"],
    ),
    PaymasterType.DEPOSIT: (
        "Prefunded per-application deposits",
        ["Predictable budgeting", "Simple accounting"],
        ["Deposits must be monitored", "Capital locked up front"],
    ),
    PaymasterType.TOKEN: (
        "User pays with tokens",
        ["Users pay their own costs", "Sustainable model", "Token utility"],
        ["Higher gas usage", "Token price volatility", "User experience complexity"],
    ),
    PaymasterType.STAKING: (
        "Stake-gated sponsorship",
        ["Aligns user incentives", "Sybil resistance"],
        ["Highest gas usage", "Users must lock tokens"],
    ),
}


class PaymasterCostModel:
    """
    Overhead = base + validation + postOp + storage
               + ceil((complexity + type + feature) * multiplier)

    Validation and postOp are measured against the paymaster's own entry
    points when an estimation engine is attached; otherwise per-type defaults
    are used at lower confidence. Any failure degrades to the fixed
    conservative breakdown instead of raising.
    """
    def __init__(self, oracle: ChainOracle, classifier: PaymasterClassifier, engine=None,
                 tables: CostTables = DEFAULT_COST_TABLES, benchmarks: BenchmarkTables = DEFAULT_BENCHMARK_TABLES,
                 cache_ttl: Optional[float] = None, cache_max_entries: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.oracle = oracle
        self.classifier = classifier
        self.engine = engine
        self.tables = tables
        self.benchmarks = benchmarks
        self.cache = TTLCache(
            "paymaster_overhead",
            ttl_seconds=cache_ttl or settings.ESTIMATION_CACHE_TTL_SECONDS,
            max_entries=cache_max_entries or settings.CACHE_MAX_ENTRIES,
            clock=clock,
        )

    # --- Overhead ---

    async def overhead_for(self, address: str, request: Optional[EstimationRequest] = None) -> CostBreakdown:
        profile = await self.classifier.classify(address)
        return await self.compute_overhead(profile, request)

    async def compute_overhead(self, profile: PaymasterProfile,
                               request: Optional[EstimationRequest] = None) -> CostBreakdown:
        key = canonical_key(profile.address, self.engine.cache_key(request) if request and self.engine else None)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        if profile.primary_type == PaymasterType.UNKNOWN:
            return self._fallback(profile, profile.error or "paymaster could not be classified")
        try:
            breakdown = await self._compute(profile, request)
        except Exception as e:
            log.exception("PAYMASTER_OVERHEAD_FAILED", paymaster=profile.address)
            return self._fallback(profile, str(e))

        log.info(
            "PAYMASTER_OVERHEAD_COMPUTED",
            paymaster=profile.address,
            total_overhead=breakdown.total_overhead,
            confidence=breakdown.confidence,
            measured_validation=breakdown.measured_validation,
        )
        self.cache.set(key, breakdown)
        return breakdown

    def _fallback(self, profile: PaymasterProfile, error: str) -> CostBreakdown:
        OVERHEAD_FALLBACKS.inc()
        log.warning("PAYMASTER_OVERHEAD_FALLBACK", paymaster=profile.address, error=error)
        parts = self.tables.fallback_components
        return CostBreakdown(
            paymaster=profile.address,
            profile_type=profile.primary_type,
            base=CostComponent(gas=parts["base"], description="Fixed paymaster base overhead"),
            validation=CostComponent(gas=parts["validation"], description="Conservative validation estimate"),
            post_op=CostComponent(gas=parts["post_op"], description="Conservative postOp estimate"),
            storage=CostComponent(gas=parts["storage"], description="Conservative storage estimate"),
            complexity=CostComponent(gas=parts["complexity"], description="Conservative complexity estimate"),
            type_specific=CostComponent(gas=0, description="Not computed"),
            feature_specific=CostComponent(gas=0, description="Not computed"),
            total_overhead=self.tables.fallback_total,
            confidence=self.tables.fallback_confidence,
            fallback=True,
            error=error,
        )

    async def _measure(self, address: str, signature: str, args: tuple) -> Optional[int]:
        if self.engine is None:
            return None
        request = EstimationRequest.for_function(address, signature, args, sender=pm.ENTRY_POINT_V06)
        result = await self.engine.simulate(request)
        if result.strategy_used not in MEASURING_STRATEGIES:
            # staticCall and fallback figures are synthetic, not measurements.
            return None
        return max(0, result.gas_used - self.engine.tables.intrinsic_gas)

    def _validation_args(self, address: str, request: Optional[EstimationRequest]) -> tuple:
        op = build_user_operation(
            sender=(request.sender if request and request.sender else ZERO_ADDRESS),
            call_data=request.calldata if request else b"\x00" * 4,
            call_gas_limit=self.tables.base_overhead,
            paymaster_and_data=encode_paymaster_and_data(address, valid_until=0),
        )
        user_op = (
            op.sender, op.nonce, op.init_code, op.call_data, op.call_gas_limit, op.verification_gas_limit,
            op.pre_verification_gas, op.max_fee_per_gas, op.max_priority_fee_per_gas, op.paymaster_and_data,
            op.signature,
        )
        return (user_op, b"\x00" * 32, 0)

    async def _compute(self, profile: PaymasterProfile, request: Optional[EstimationRequest]) -> CostBreakdown:
        t = self.tables
        kind = profile.primary_type
        flags = profile.characteristics
        confidence = 0

        measured_validation = await self._measure(
            profile.address, pm.VALIDATE_PAYMASTER_USER_OP, self._validation_args(profile.address, request)
        )
        if measured_validation is not None:
            validation = CostComponent(gas=measured_validation, description="Measured validatePaymasterUserOp gas")
            confidence += t.measured_validation_confidence
        else:
            validation = CostComponent(gas=t.default_validation_gas[kind], description=f"Default {kind.value} validation gas")
            confidence += t.default_validation_confidence

        measured_post_op = await self._measure(profile.address, pm.POST_OP, (0, b"", 0))
        if measured_post_op is not None:
            post_op = CostComponent(gas=measured_post_op, description="Measured postOp gas")
            confidence += t.measured_post_op_confidence
        else:
            post_op = CostComponent(gas=t.default_post_op_gas[kind], description=f"Default {kind.value} postOp gas")
            confidence += t.default_post_op_confidence

        storage_gas = t.storage_base + sum(
            gas for name, gas in t.storage_increments.items() if getattr(flags, name)
        )
        storage = CostComponent(gas=storage_gas, description="Storage reads/writes for active features")
        confidence += t.storage_confidence

        code = await self.oracle.get_code(profile.address)
        score = weighted_opcode_score(code, t.opcode_weights, t.opcode_score_cap)
        complexity = CostComponent(
            gas=score * t.gas_per_complexity_point, description=f"Opcode complexity score {score}/{t.opcode_score_cap}"
        )
        confidence += t.complexity_confidence

        type_items = dict(t.type_costs.get(kind, {}))
        if kind == PaymasterType.TOKEN and flags.supports_multiple_tokens:
            type_items["multiTokenSupport"] = t.multi_token_cost
        feature_items: Dict[str, int] = {}
        for name, (label, priced_by) in FEATURE_ITEMS.items():
            if getattr(flags, name) and kind != priced_by:
                feature_items[label] = t.feature_costs[name]
        confidence += round(t.type_confidence * profile.confidence / 100)

        multiplier = t.complexity_multipliers[profile.gas_complexity]
        scaled = math.ceil(
            Decimal(complexity.gas + sum(type_items.values()) + sum(feature_items.values())) * Decimal(str(multiplier))
        )
        total = t.base_overhead + validation.gas + post_op.gas + storage.gas + scaled

        return CostBreakdown(
            paymaster=profile.address,
            profile_type=kind,
            base=CostComponent(gas=t.base_overhead, description="Fixed paymaster base overhead"),
            validation=validation,
            post_op=post_op,
            storage=storage,
            complexity=complexity,
            type_specific=CostComponent(gas=sum(type_items.values()), description=f"{kind.value} paymaster logic"),
            feature_specific=CostComponent(gas=sum(feature_items.values()), description="Optional feature checks"),
            type_items=type_items,
            feature_items=feature_items,
            multiplier=multiplier,
            total_overhead=total,
            confidence=min(100, confidence),
            measured_validation=measured_validation is not None,
            measured_post_op=measured_post_op is not None,
        )

    # --- Report ---

    async def _gas_price(self) -> int:
        try:
            fees = await self.oracle.get_fee_data()
        except Exception as e:
            log.warning("GAS_PRICE_UNAVAILABLE_USING_DEFAULT", error=str(e))
            return self.benchmarks.fallback_gas_price
        return fees.rate or self.benchmarks.fallback_gas_price

    def _metrics(self, profile: PaymasterProfile, per_op: int, gas_price: int, balance: int) -> CostMetrics:
        b = self.benchmarks
        kind = profile.primary_type
        benchmark = b.benchmarks.get(kind, b.baseline_gas)
        scalability = b.scalability_base
        if per_op > 70000:
            scalability -= 20
        elif per_op > 50000:
            scalability -= 10
        scalability += b.scalability_adjustments.get(kind, 0)
        return CostMetrics(
            average_cost_per_tx_wei=per_op * gas_price,
            gas_efficiency=round(max(0.0, 100 - per_op / b.baseline_gas * 100), 2),
            cost_stability=b.stability.get(kind, b.default_stability),
            sponsorship_capacity=round(min(100.0, balance / b.full_capacity_wei * 100), 2),
            competitiveness=round(max(0.0, min(100.0, 100 - (per_op - benchmark) / benchmark * 100)), 2),
            scalability=max(0, min(100, scalability)),
        )

    def _recommendations(self, profile: PaymasterProfile, breakdown: CostBreakdown, per_op: int,
                         balance: int) -> List[Recommendation]:
        recs: List[Recommendation] = []
        if per_op > self.benchmarks.high_overhead_threshold:
            recs.append(Recommendation(
                category="gas-optimization",
                priority="high",
                title="Reduce validation complexity",
                description=f"Per-operation overhead of {per_op} gas is above the {self.benchmarks.high_overhead_threshold} gas target",
                suggestions=[
                    "Optimize validation logic to reduce computational complexity",
                    "Minimize storage operations in validatePaymasterUserOp",
                    "Consider batching operations in postOp",
                    "Remove unnecessary external calls",
                ],
                potential_saving=min(20000, int(per_op * 0.3)),
            ))

        kind = profile.primary_type
        type_gas = breakdown.type_specific.gas
        if kind == PaymasterType.TOKEN and type_gas > 20000:
            recs.append(Recommendation(
                category="type-optimization",
                priority="medium",
                title="Optimize token operations",
                description="Token-related operations are consuming excessive gas",
                suggestions=[
                    "Cache token price data to reduce oracle calls",
                    "Implement token allowance pre-approval",
                    "Consider using permit() for gasless approvals",
                ],
                potential_saving=8000,
            ))
        elif kind == PaymasterType.VERIFYING:
            recs.append(Recommendation(
                category="type-optimization",
                priority="low",
                title="Signature verification efficiency",
                description="Signature checks dominate verifying paymaster cost",
                suggestions=[
                    "Use ecrecover directly instead of a full ECDSA library",
                    "Consider EIP-1271 for contract signatures",
                ],
                potential_saving=3000,
            ))
        elif kind == PaymasterType.STAKING and type_gas > 15000:
            recs.append(Recommendation(
                category="type-optimization",
                priority="medium",
                title="Optimize staking validation",
                description="Staking validation is consuming high gas",
                suggestions=[
                    "Pre-compute staking eligibility off-chain",
                    "Use merkle proofs for large staker sets",
                    "Implement staking snapshots to reduce storage reads",
                ],
                potential_saving=6000,
            ))

        if profile.characteristics.has_time_restrictions:
            recs.append(Recommendation(
                category="feature-optimization",
                priority="low",
                title="Optimize time restrictions",
                description="Time validation logic can be simplified",
                suggestions=["Compare block.timestamp against packed validUntil/validAfter only"],
                potential_saving=2000,
            ))

        if balance < self.benchmarks.low_balance_wei:
            recs.append(Recommendation(
                category="operational",
                priority="critical",
                title="Insufficient balance",
                description="Paymaster balance is critically low",
                suggestions=[
                    "Deposit additional funds to ensure continued operation",
                    "Implement balance monitoring and alerts",
                ],
            ))
        return recs

    @staticmethod
    def _savings(recs: List[Recommendation]) -> Dict[str, int]:
        savings = {"gas_optimization": 0, "type_optimization": 0, "feature_optimization": 0}
        for rec in recs:
            key = rec.category.replace("-", "_")
            if key in savings:
                savings[key] += rec.potential_saving
        savings["total_potential"] = sum(savings.values())
        return savings

    @staticmethod
    def _risks(profile: PaymasterProfile, recs: List[Recommendation]) -> Dict[str, str]:
        risks = {"implementation": "low", "compatibility": "low", "maintenance": "low"}
        if profile.gas_complexity == GasComplexity.HIGH:
            risks["implementation"] = "medium"
            risks["maintenance"] = "medium"
        if len(recs) > 3:
            risks["implementation"] = "medium"
        if profile.primary_type == PaymasterType.TOKEN:
            risks["compatibility"] = "medium"
        return risks

    def _predictions(self, timeframe: str, per_op: int, gas_price: int) -> CostPrediction:
        base_cost = per_op * gas_price
        scenarios = [
            Scenario(
                name=name,
                change_pct=pct * 100,
                estimated_cost_wei=int(base_cost * (1 + Decimal(str(pct)))),
            )
            for name, pct in self.benchmarks.trends[timeframe].items()
        ]
        return CostPrediction(timeframe=timeframe, current_gas_price=gas_price, scenarios=scenarios)

    def _alternatives(self, profile: PaymasterProfile, per_op: int) -> List[Alternative]:
        candidates = sorted(
            (gas, kind) for kind, gas in self.benchmarks.benchmarks.items() if kind != profile.primary_type
        )
        alternatives = []
        for gas, kind in candidates[:3]:
            description, pros, cons = ALTERNATIVES[kind]
            alternatives.append(Alternative(
                paymaster_type=kind, description=description, estimated_gas=gas,
                gas_saving=per_op - gas, pros=pros, cons=cons,
            ))
        return alternatives

    async def analyze_costs(self, address: str, timeframe: str = "24h", include_predictions: bool = True,
                            compare_alternatives: bool = True) -> CostReport:
        """
        Full cost report for one paymaster. Deterministic for fixed oracle
        responses: no timestamps or random identifiers are embedded.
        """
        if timeframe not in self.benchmarks.trends:
            raise InvalidRequestError(f"Unsupported timeframe {timeframe!r}; expected one of {list(self.benchmarks.trends)}")

        profile = await self.classifier.classify(address)
        validation = await self.classifier.validate_interface(address)
        breakdown = await self.compute_overhead(profile)
        gas_price = await self._gas_price()
        per_op = breakdown.per_operation_gas
        balance = validation.balance_wei

        recs = self._recommendations(profile, breakdown, per_op, balance)
        distribution_parts = {
            "validation": breakdown.validation.gas,
            "post_op": breakdown.post_op.gas,
            "storage": breakdown.storage.gas,
            "complexity": breakdown.complexity.gas,
            "type_specific": breakdown.type_specific.gas,
            "features": breakdown.feature_specific.gas,
        }
        distribution = {
            name: (round(gas / per_op * 100) if per_op else 0) for name, gas in distribution_parts.items()
        }

        confidence = 30
        if validation.valid:
            confidence += 30
        if breakdown.measured_validation:
            confidence += 20
        if profile.confidence > 70:
            confidence += 15
        if per_op > 0:
            confidence += 5

        current_cost = per_op * gas_price
        report = CostReport(
            paymaster=profile.address,
            timeframe=timeframe,
            profile=profile,
            breakdown=breakdown,
            per_operation_gas=per_op,
            metrics=self._metrics(profile, per_op, gas_price, balance),
            cost_distribution=distribution,
            recommendations=recs,
            potential_savings=self._savings(recs),
            risk_assessment=self._risks(profile, recs),
            priority_actions=[f"{r.title}: {r.description}" for r in recs if r.priority in ("critical", "high")],
            predictions=self._predictions(timeframe, per_op, gas_price) if include_predictions else None,
            alternatives=self._alternatives(profile, per_op) if compare_alternatives else [],
            volume_projections={label: per_op * volume for label, volume in self.benchmarks.volumes.items()},
            gas_price_impact={
                "low": current_cost // 2,
                "current": current_cost,
                "high": current_cost * 2,
            },
            confidence=min(100, confidence),
        )
        log.info(
            "PAYMASTER_COST_REPORT_READY",
            paymaster=profile.address,
            per_operation_gas=per_op,
            recommendations=len(recs),
            confidence=report.confidence,
        )
        return report
