# /gasprof/core/models.py
# Request/result types shared by the estimator, classifier, cost model and profiler.
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set

from pydantic import BaseModel, Field, field_validator, model_validator
from web3 import Web3

from gasprof.core.encoding import encode_call, hex_to_bytes, split_signature


def _checksum(value: str) -> str:
    if not Web3.is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return Web3.to_checksum_address(value)


class StrategyMode(str, Enum):
    AUTO = "auto"
    ESTIMATE = "estimate"
    STATIC_CALL = "staticCall"
    TRACE = "trace"
    PAYMASTER = "paymaster"


class PaymasterType(str, Enum):
    SPONSORSHIP = "sponsorship"
    TOKEN = "token"
    VERIFYING = "verifying"
    STAKING = "staking"
    CONDITIONAL = "conditional"
    DEPOSIT = "deposit"
    UNKNOWN = "unknown"


class GasComplexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProbeOutcome(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


# --- Oracle value types ---

class CallRequest(BaseModel):
    to: str
    data: bytes = b""
    sender: Optional[str] = None
    value: int = 0
    gas: Optional[int] = None

    class Config:
        frozen = True

    def to_tx(self) -> Dict[str, Any]:
        tx: Dict[str, Any] = {"to": self.to, "data": "0x" + self.data.hex(), "value": self.value}
        if self.sender:
            tx["from"] = self.sender
        if self.gas is not None:
            tx["gas"] = self.gas
        return tx


class FeeData(BaseModel):
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    class Config:
        frozen = True

    @property
    def rate(self) -> Optional[int]:
        """Per-gas price used for cost calculations."""
        return self.gas_price or self.max_fee_per_gas


class TraceResult(BaseModel):
    gas_used: int = Field(ge=0)
    output: bytes = b""
    call_type: str = "CALL"

    class Config:
        frozen = True


class TxReceipt(BaseModel):
    gas_used: int = Field(ge=0)
    tx_hash: str
    block_number: int
    status: int = 1

    class Config:
        frozen = True


# --- Estimation ---

class EstimationRequest(BaseModel):
    """
    A single gas-estimation request. Malformed requests are rejected at
    construction time, before any I/O happens.
    """
    target: str
    data: str
    function_name: Optional[str] = None
    sender: Optional[str] = None
    value: int = Field(default=0, ge=0)
    mode: StrategyMode = StrategyMode.AUTO
    paymaster_address: Optional[str] = None
    use_cache: bool = True
    fallback_on_error: bool = True

    class Config:
        frozen = True

    @field_validator("target")
    @classmethod
    def _target_is_address(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("sender", "paymaster_address")
    @classmethod
    def _optional_address(cls, value: Optional[str]) -> Optional[str]:
        return _checksum(value) if value else None

    @field_validator("data")
    @classmethod
    def _data_has_selector(cls, value: str) -> str:
        try:
            raw = hex_to_bytes(value)
        except ValueError:
            raise ValueError("call data must be hex encoded")
        if len(raw) < 4:
            raise ValueError("call data is missing a function selector")
        return "0x" + raw.hex()

    @model_validator(mode="after")
    def _paymaster_mode_needs_address(self) -> "EstimationRequest":
        if self.mode == StrategyMode.PAYMASTER and not self.paymaster_address:
            raise ValueError("paymaster mode requires a paymaster address")
        return self

    @classmethod
    def for_function(cls, target: str, signature: str, args: Sequence = (), **kwargs) -> "EstimationRequest":
        name, _ = split_signature(signature)
        return cls(target=target, data=encode_call(signature, args), function_name=name, **kwargs)

    @property
    def selector(self) -> str:
        return self.data[:10]

    @property
    def calldata(self) -> bytes:
        return hex_to_bytes(self.data)

    def to_call(self) -> CallRequest:
        return CallRequest(to=self.target, data=self.calldata, sender=self.sender, value=self.value)


class Attempt(BaseModel):
    strategy: str
    error: Optional[str] = None


class CostComponent(BaseModel):
    gas: int = Field(ge=0)
    description: str


class CostBreakdown(BaseModel):
    paymaster: str
    profile_type: PaymasterType = PaymasterType.UNKNOWN
    base: CostComponent
    validation: CostComponent
    post_op: CostComponent
    storage: CostComponent
    complexity: CostComponent
    type_specific: CostComponent
    feature_specific: CostComponent
    type_items: Dict[str, int] = Field(default_factory=dict)
    feature_items: Dict[str, int] = Field(default_factory=dict)
    multiplier: float = 1.0
    total_overhead: int = Field(ge=0)
    confidence: int = Field(ge=0, le=100)
    fallback: bool = False
    measured_validation: bool = False
    measured_post_op: bool = False
    error: Optional[str] = None

    class Config:
        frozen = True

    @property
    def per_operation_gas(self) -> int:
        """Sponsor-side gas per operation, excluding the fixed base overhead."""
        return self.total_overhead - self.base.gas


class EstimationResult(BaseModel):
    success: bool
    gas_used: int = Field(ge=0)
    base_gas: int = Field(default=0, ge=0)
    confidence: int = Field(ge=0, le=100)
    strategy_used: str
    attempts: List[Attempt] = Field(default_factory=list)
    paymaster_overhead: Optional[CostBreakdown] = None
    error: Optional[str] = None
    from_cache: bool = False
    fallback: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


# --- Paymaster classification ---

class Characteristics(BaseModel):
    is_token_based: bool = False
    is_verifying: bool = False
    is_staking: bool = False
    has_conditional_logic: bool = False
    requires_deposit: bool = False
    has_time_restrictions: bool = False
    has_whitelist: bool = False
    supports_multiple_tokens: bool = False

    class Config:
        frozen = True


class PaymasterProfile(BaseModel):
    address: str
    primary_type: PaymasterType
    sub_types: Set[str] = Field(default_factory=set)
    characteristics: Characteristics = Field(default_factory=Characteristics)
    supported_features: List[str] = Field(default_factory=list)
    recommended_use: List[str] = Field(default_factory=list)
    gas_complexity: GasComplexity = GasComplexity.HIGH
    confidence: int = Field(ge=0, le=100)
    code_size: int = 0
    probe_outcomes: Dict[str, ProbeOutcome] = Field(default_factory=dict)
    error: Optional[str] = None

    class Config:
        frozen = True


class PaymasterValidation(BaseModel):
    address: str
    valid: bool = False
    eip4337_compliant: bool = False
    has_validate_method: bool = False
    has_post_op_method: bool = False
    has_deposit_method: bool = False
    supports_interface: bool = False
    code_size: int = 0
    balance_wei: int = 0
    errors: List[str] = Field(default_factory=list)


# --- Cost report ---

class Recommendation(BaseModel):
    category: str
    priority: str
    title: str
    description: str
    suggestions: List[str] = Field(default_factory=list)
    potential_saving: int = 0


class CostMetrics(BaseModel):
    average_cost_per_tx_wei: int
    gas_efficiency: float
    cost_stability: int
    sponsorship_capacity: float
    competitiveness: float
    scalability: int


class Scenario(BaseModel):
    name: str
    change_pct: float
    estimated_cost_wei: int


class CostPrediction(BaseModel):
    timeframe: str
    current_gas_price: int
    scenarios: List[Scenario]


class Alternative(BaseModel):
    paymaster_type: PaymasterType
    description: str
    estimated_gas: int
    gas_saving: int
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)


class CostReport(BaseModel):
    paymaster: str
    timeframe: str
    profile: PaymasterProfile
    breakdown: CostBreakdown
    per_operation_gas: int
    metrics: CostMetrics
    cost_distribution: Dict[str, int]
    recommendations: List[Recommendation]
    potential_savings: Dict[str, int]
    risk_assessment: Dict[str, str]
    priority_actions: List[str]
    predictions: Optional[CostPrediction] = None
    alternatives: List[Alternative] = Field(default_factory=list)
    volume_projections: Dict[str, int] = Field(default_factory=dict)
    gas_price_impact: Dict[str, int] = Field(default_factory=dict)
    confidence: int = Field(ge=0, le=100)


# --- Profiling ---

class ProfilingRun(BaseModel):
    run: int = Field(ge=1)
    args: List[Any] = Field(default_factory=list)
    gas_used: int = Field(ge=0)
    mode: str
    tx_hash: Optional[str] = None
    strategy_used: Optional[str] = None
    fallback: bool = False
    block_number: Optional[int] = None
    paymaster_used: bool = False
    paymaster_address: Optional[str] = None
    cost_in_token: Optional[Decimal] = None
    cost_in_wei: Optional[int] = None
    gas_price: Optional[int] = None
    confidence: int = Field(default=100, ge=0, le=100)


class AggregatedStats(BaseModel):
    min: int
    max: int
    avg: int
    total: int
    call_count: int
    min_cost: Optional[Decimal] = None
    max_cost: Optional[Decimal] = None
    avg_cost: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None

    @property
    def has_cost(self) -> bool:
        return self.total_cost is not None

    def to_dict(self) -> Dict[str, Any]:
        # Cost fields are omitted entirely, never zeroed.
        return self.model_dump(exclude_none=True)


class FunctionProfile(BaseModel):
    signature: str
    target: str
    mode: str
    paymaster_address: Optional[str] = None
    runs: List[ProfilingRun]
    aggregated: AggregatedStats

    @property
    def fallback_runs(self) -> int:
        return sum(1 for run in self.runs if run.fallback)


class RunEvent(BaseModel):
    success: bool
    gas_used: int = 0
    cost: int = 0
    duration: float = 0.0
    error: Optional[str] = None
