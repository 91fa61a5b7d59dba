# /gasprof/core/tables.py
# Immutable cost and benchmark tables. Engines take a CostTables instance so
# tests can substitute their own fixtures; DEFAULT_TABLES is only a default.
from typing import Dict

from pydantic import BaseModel, Field

from gasprof.core.models import GasComplexity, PaymasterType

T = PaymasterType


class StrategyTables(BaseModel):
    confidence: Dict[str, int] = Field(default_factory=lambda: {
        "trace": 95,
        "estimate": 85,
        "staticCall": 70,
        "fallback": 25,
    })
    # Conservative defaults keyed by a substring of the function name.
    fallback_gas_by_name: Dict[str, int] = Field(default_factory=lambda: {
        "transfer": 65000,
        "approve": 45000,
        "mint": 70000,
        "burn": 50000,
        "swap": 150000,
        "withdraw": 70000,
        "deposit": 75000,
        "execute": 120000,
        "create": 100000,
        "set": 45000,
        "get": 25000,
    })
    fallback_gas_default: int = 50000
    intrinsic_gas: int = 21000
    static_call_execution_gas: int = 5000
    memory_gas_per_word: int = 3

    class Config:
        frozen = True


class ClassifierTables(BaseModel):
    complexity_weights: Dict[str, int] = Field(default_factory=lambda: {
        "is_token_based": 3,
        "is_verifying": 2,
        "is_staking": 3,
        "has_conditional_logic": 2,
        "supports_multiple_tokens": 2,
        "has_time_restrictions": 1,
        "has_whitelist": 1,
    })
    large_code_bytes: int = 25000
    medium_code_bytes: int = 10000
    high_threshold: int = 6
    medium_threshold: int = 3
    base_confidence: int = 30
    probe_confirmed_bonus: int = 40
    pattern_confirmed_bonus: int = 20
    corroboration_bonus: Dict[str, int] = Field(default_factory=lambda: {
        "has_conditional_logic": 10,
        "requires_deposit": 10,
        "has_time_restrictions": 5,
        "has_whitelist": 5,
    })
    corroboration_cap: int = 30
    unknown_probe_penalty: int = 5

    class Config:
        frozen = True


class CostTables(BaseModel):
    base_overhead: int = 21000
    default_validation_gas: Dict[PaymasterType, int] = Field(default_factory=lambda: {
        T.TOKEN: 50000,
        T.VERIFYING: 35000,
        T.STAKING: 55000,
        T.CONDITIONAL: 45000,
        T.DEPOSIT: 40000,
        T.SPONSORSHIP: 30000,
    })
    default_post_op_gas: Dict[PaymasterType, int] = Field(default_factory=lambda: {
        T.TOKEN: 25000,
        T.VERIFYING: 10000,
        T.STAKING: 20000,
        T.CONDITIONAL: 15000,
        T.DEPOSIT: 18000,
        T.SPONSORSHIP: 8000,
    })
    storage_base: int = 5000
    storage_increments: Dict[str, int] = Field(default_factory=lambda: {
        "requires_deposit": 3000,
        "has_whitelist": 2000,
        "is_staking": 4000,
        "is_token_based": 2000,
    })
    opcode_weights: Dict[str, int] = Field(default_factory=lambda: {
        "SSTORE": 5,
        "SLOAD": 2,
        "CALL": 3,
        "DELEGATECALL": 4,
        "STATICCALL": 2,
        "CREATE": 8,
        "CREATE2": 8,
        "SELFDESTRUCT": 10,
        "LOG0": 1,
        "LOG1": 1,
        "LOG2": 1,
        "LOG3": 1,
        "LOG4": 1,
    })
    opcode_score_cap: int = 25
    gas_per_complexity_point: int = 1000
    type_costs: Dict[PaymasterType, Dict[str, int]] = Field(default_factory=lambda: {
        T.TOKEN: {"tokenOperations": 15000, "priceConversion": 5000, "transferLogic": 5000},
        T.VERIFYING: {"signatureVerification": 8000, "signerValidation": 4000},
        T.STAKING: {"stakingValidation": 12000, "rewardCalculation": 5000, "stakingStorage": 3000},
        T.CONDITIONAL: {"conditionEvaluation": 10000, "userValidation": 5000},
        T.DEPOSIT: {"depositManagement": 12000, "balanceTracking": 6000},
        T.SPONSORSHIP: {"basicSponsorship": 8000},
    })
    multi_token_cost: int = 8000
    feature_costs: Dict[str, int] = Field(default_factory=lambda: {
        "has_time_restrictions": 3000,
        "has_whitelist": 4000,
        "has_conditional_logic": 5000,
        "requires_deposit": 4000,
    })
    complexity_multipliers: Dict[GasComplexity, float] = Field(default_factory=lambda: {
        GasComplexity.LOW: 0.9,
        GasComplexity.MEDIUM: 1.1,
        GasComplexity.HIGH: 1.3,
    })
    # Confidence contributions
    measured_validation_confidence: int = 30
    default_validation_confidence: int = 15
    measured_post_op_confidence: int = 20
    default_post_op_confidence: int = 10
    storage_confidence: int = 10
    complexity_confidence: int = 15
    type_confidence: int = 15
    # Returned whole when anything goes wrong.
    fallback_components: Dict[str, int] = Field(default_factory=lambda: {
        "base": 21000,
        "validation": 45000,
        "post_op": 15000,
        "storage": 5000,
        "complexity": 10000,
    })
    fallback_confidence: int = 25

    class Config:
        frozen = True

    @property
    def fallback_total(self) -> int:
        return sum(self.fallback_components.values())


class BenchmarkTables(BaseModel):
    baseline_gas: int = 50000
    benchmarks: Dict[PaymasterType, int] = Field(default_factory=lambda: {
        T.SPONSORSHIP: 35000,
        T.VERIFYING: 42000,
        T.TOKEN: 55000,
        T.CONDITIONAL: 48000,
        T.STAKING: 60000,
        T.DEPOSIT: 50000,
    })
    stability: Dict[PaymasterType, int] = Field(default_factory=lambda: {
        T.SPONSORSHIP: 95,
        T.VERIFYING: 90,
        T.DEPOSIT: 85,
        T.CONDITIONAL: 80,
        T.STAKING: 75,
        T.TOKEN: 60,
    })
    default_stability: int = 70
    scalability_base: int = 70
    scalability_adjustments: Dict[PaymasterType, int] = Field(default_factory=lambda: {
        T.SPONSORSHIP: 20,
        T.VERIFYING: 10,
        T.TOKEN: -10,
        T.STAKING: -15,
    })
    # Fractional growth per scenario over each timeframe.
    trends: Dict[str, Dict[str, float]] = Field(default_factory=lambda: {
        "1h": {"conservative": 0.05, "moderate": 0.1, "aggressive": 0.2},
        "24h": {"conservative": 0.1, "moderate": 0.2, "aggressive": 0.4},
        "7d": {"conservative": 0.2, "moderate": 0.4, "aggressive": 0.8},
        "30d": {"conservative": 0.4, "moderate": 0.8, "aggressive": 1.5},
    })
    high_overhead_threshold: int = 60000
    low_balance_wei: int = 5 * 10**16
    full_capacity_wei: int = 10**17
    fallback_gas_price: int = 10**9
    volumes: Dict[str, int] = Field(default_factory=lambda: {"1k": 1000, "10k": 10000, "100k": 100000})

    class Config:
        frozen = True


DEFAULT_STRATEGY_TABLES = StrategyTables()
DEFAULT_CLASSIFIER_TABLES = ClassifierTables()
DEFAULT_COST_TABLES = CostTables()
DEFAULT_BENCHMARK_TABLES = BenchmarkTables()
