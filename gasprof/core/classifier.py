# /gasprof/core/classifier.py
# Heuristic paymaster classification from read-only probes and bytecode patterns.
import time
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from web3 import Web3

from gasprof.abis import paymaster as pm
from gasprof.adapters.chain import ChainOracle
from gasprof.core.cache import TTLCache
from gasprof.core.config import settings
from gasprof.core.encoding import (
    ZERO_ADDRESS, code_text, encode_call, has_selector, hex_to_bytes, is_well_formed_word, word_to_address,
)
from gasprof.core.errors import ConnectivityError, ProbeFailure
from gasprof.core.logger import get_logger, PROBE_FAILURES
from gasprof.core.models import (
    CallRequest, Characteristics, GasComplexity, PaymasterProfile, PaymasterType, PaymasterValidation, ProbeOutcome,
)
from gasprof.core.tables import DEFAULT_BENCHMARK_TABLES, DEFAULT_CLASSIFIER_TABLES, ClassifierTables

log = get_logger(__name__)


def _non_zero_address(output: bytes) -> bool:
    return word_to_address(output) is not None


class Signal(NamedTuple):
    characteristic: str
    probe: Optional[str]
    probe_args: Tuple
    accepts: Optional[Callable[[bytes], bool]]
    patterns: Tuple[str, ...]
    selectors: Tuple[str, ...]


# Evaluated independently; combined afterwards by _score.
SIGNALS: List[Signal] = [
    Signal("is_token_based", pm.TOKEN, (), _non_zero_address, ("token", "erc20"), (pm.TOKEN,)),
    Signal("is_verifying", pm.VERIFYING_SIGNER, (), _non_zero_address,
           ("verifying", "signer", "ecdsa", "signature"), (pm.VERIFYING_SIGNER,)),
    Signal("is_staking", pm.STAKING_TOKEN, (), _non_zero_address, ("stake", "staking"), (pm.STAKING_TOKEN,)),
    Signal("has_conditional_logic", pm.IS_VALID_USER, (ZERO_ADDRESS,), is_well_formed_word,
           ("allowance", "whitelist", "blacklist", "permission"), (pm.IS_VALID_USER,)),
    Signal("requires_deposit", None, (), None, ("deposit", "addstake"), (pm.DEPOSIT, pm.ADD_STAKE)),
    Signal("has_time_restrictions", None, (), None, ("timestamp", "validuntil", "validafter"), ()),
    Signal("has_whitelist", None, (), None, ("whitelist", "allowlist", "authorized"), ()),
    Signal("supports_multiple_tokens", pm.ACCEPTED_TOKENS, (ZERO_ADDRESS,), is_well_formed_word,
           ("acceptedtokens", "supportedtokens"), (pm.ACCEPTED_TOKENS,)),
]

TYPE_PRIORITY = [
    ("is_token_based", PaymasterType.TOKEN),
    ("is_verifying", PaymasterType.VERIFYING),
    ("is_staking", PaymasterType.STAKING),
    ("has_conditional_logic", PaymasterType.CONDITIONAL),
    ("requires_deposit", PaymasterType.DEPOSIT),
]

SUB_TYPES = {
    "has_time_restrictions": "time-restricted",
    "has_whitelist": "whitelisted",
    "supports_multiple_tokens": "multi-token",
    "has_conditional_logic": "conditional",
}

FEATURES = {
    "is_token_based": "Token-based payments",
    "is_verifying": "Signature verification",
    "is_staking": "Staking requirements",
    "has_conditional_logic": "Conditional sponsorship",
    "requires_deposit": "Deposit funding",
    "has_time_restrictions": "Time-based restrictions",
    "has_whitelist": "User whitelisting",
    "supports_multiple_tokens": "Multiple token support",
}

RECOMMENDED_USE = {
    PaymasterType.TOKEN: [
        "Suitable for applications accepting token payments",
        "Users pay gas fees in supported tokens",
    ],
    PaymasterType.VERIFYING: [
        "Ideal for applications with centralized control",
        "Requires off-chain signature for sponsorship",
        "Good for private applications or MVPs",
    ],
    PaymasterType.STAKING: [
        "Perfect for DeFi applications with staking",
        "Users must stake tokens to receive sponsorship",
    ],
    PaymasterType.CONDITIONAL: [
        "Suitable for applications with usage restrictions",
        "Can implement custom sponsorship logic",
    ],
    PaymasterType.DEPOSIT: [
        "Suitable for sponsors that prefund gas per application",
        "Monitor the deposit balance to avoid failed sponsorships",
    ],
    PaymasterType.SPONSORSHIP: [
        "Simple gas sponsorship for all users",
        "Ideal for onboarding and user acquisition",
        "Lowest complexity and gas overhead",
    ],
    PaymasterType.UNKNOWN: [
        "Unknown paymaster type - use with caution",
        "Test thoroughly before production use",
    ],
}


class SignalReading(NamedTuple):
    present: bool
    probe_confirmed: bool
    outcome: Optional[ProbeOutcome]


class PaymasterClassifier:
    """
    Infers a paymaster's archetype and feature set. Probe results are strong
    evidence; bytecode text/selector matches are weaker and admit false
    positives. Probe errors never fail a classification.
    """
    def __init__(self, oracle: ChainOracle, tables: ClassifierTables = DEFAULT_CLASSIFIER_TABLES,
                 cache_ttl: Optional[float] = None, cache_max_entries: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.oracle = oracle
        self.tables = tables
        self.cache = TTLCache(
            "paymaster_profile",
            ttl_seconds=cache_ttl or settings.ESTIMATION_CACHE_TTL_SECONDS,
            max_entries=cache_max_entries or settings.CACHE_MAX_ENTRIES,
            clock=clock,
        )

    async def _call_probe(self, address: str, signal: Signal) -> bytes:
        call = CallRequest(to=address, data=hex_to_bytes(encode_call(signal.probe, signal.probe_args)))
        try:
            return await self.oracle.static_call(call)
        except ConnectivityError:
            raise
        except Exception as e:
            raise ProbeFailure(f"{signal.probe}: {e}") from e

    async def _probe(self, address: str, signal: Signal) -> ProbeOutcome:
        try:
            output = await self._call_probe(address, signal)
        except ConnectivityError as e:
            PROBE_FAILURES.labels(signal.probe).inc()
            log.warning("PAYMASTER_PROBE_UNREACHABLE", address=address, probe=signal.probe, error=str(e))
            return ProbeOutcome.UNKNOWN
        except ProbeFailure as e:
            # A revert here just means the getter does not exist.
            log.debug("PAYMASTER_PROBE_ABSENT", address=address, probe=signal.probe, error=str(e))
            return ProbeOutcome.ABSENT
        return ProbeOutcome.PRESENT if signal.accepts(output) else ProbeOutcome.ABSENT

    async def _read(self, address: str, code: bytes, text: str, signal: Signal) -> SignalReading:
        outcome = await self._probe(address, signal) if signal.probe else None
        if outcome == ProbeOutcome.PRESENT:
            return SignalReading(True, True, outcome)
        matched = any(p in text for p in signal.patterns) or any(has_selector(code, s) for s in signal.selectors)
        return SignalReading(matched, False, outcome)

    def _complexity(self, characteristics: Characteristics, code_size: int) -> GasComplexity:
        score = sum(w for name, w in self.tables.complexity_weights.items() if getattr(characteristics, name))
        if code_size > self.tables.large_code_bytes:
            score += 2
        elif code_size > self.tables.medium_code_bytes:
            score += 1
        if score >= self.tables.high_threshold:
            return GasComplexity.HIGH
        if score >= self.tables.medium_threshold:
            return GasComplexity.MEDIUM
        return GasComplexity.LOW

    def _score(self, primary: Optional[str], readings: Dict[str, SignalReading], unknown_probes: int) -> int:
        t = self.tables
        confidence = t.base_confidence
        if primary is not None:
            confidence += t.probe_confirmed_bonus if readings[primary].probe_confirmed else t.pattern_confirmed_bonus
        corroboration = sum(bonus for name, bonus in t.corroboration_bonus.items() if readings[name].present)
        confidence += min(corroboration, t.corroboration_cap)
        confidence -= unknown_probes * t.unknown_probe_penalty
        return max(0, min(100, confidence))

    def _unknown(self, address: str, error: str) -> PaymasterProfile:
        return PaymasterProfile(
            address=address,
            primary_type=PaymasterType.UNKNOWN,
            confidence=0,
            gas_complexity=GasComplexity.HIGH,
            recommended_use=RECOMMENDED_USE[PaymasterType.UNKNOWN],
            error=error,
        )

    async def classify(self, address: str) -> PaymasterProfile:
        address = Web3.to_checksum_address(address)
        cached = self.cache.get(address)
        if cached is not None:
            return cached

        try:
            code = await self.oracle.get_code(address)
        except Exception as e:
            log.error("PAYMASTER_CODE_LOOKUP_FAILED", address=address, error=str(e))
            return self._unknown(address, f"code lookup failed: {e}")
        if not code:
            log.warning("PAYMASTER_HAS_NO_CODE", address=address)
            return self._unknown(address, "no contract code at address")

        text = code_text(code)
        readings = {s.characteristic: await self._read(address, code, text, s) for s in SIGNALS}
        characteristics = Characteristics(**{name: r.present for name, r in readings.items()})
        probe_outcomes = {
            s.probe: readings[s.characteristic].outcome for s in SIGNALS if s.probe is not None
        }
        unknown_probes = sum(1 for o in probe_outcomes.values() if o == ProbeOutcome.UNKNOWN)

        primary_flag, primary_type = next(
            ((flag, kind) for flag, kind in TYPE_PRIORITY if readings[flag].present),
            (None, PaymasterType.SPONSORSHIP),
        )
        recommended = list(RECOMMENDED_USE[primary_type])
        if primary_type == PaymasterType.TOKEN and characteristics.supports_multiple_tokens:
            recommended.append("Supports multiple token types for flexibility")
        if primary_type == PaymasterType.CONDITIONAL and characteristics.has_whitelist:
            recommended.append("Restricted to whitelisted users")

        profile = PaymasterProfile(
            address=address,
            primary_type=primary_type,
            sub_types={tag for name, tag in SUB_TYPES.items() if readings[name].present},
            characteristics=characteristics,
            supported_features=[label for name, label in FEATURES.items() if readings[name].present],
            recommended_use=recommended,
            gas_complexity=self._complexity(characteristics, len(code)),
            confidence=self._score(primary_flag, readings, unknown_probes),
            code_size=len(code),
            probe_outcomes=probe_outcomes,
        )
        log.info(
            "PAYMASTER_CLASSIFIED",
            address=address,
            primary_type=profile.primary_type.value,
            confidence=profile.confidence,
            complexity=profile.gas_complexity.value,
            unknown_probes=unknown_probes,
        )
        self.cache.set(address, profile)
        return profile

    async def validate_interface(self, address: str) -> PaymasterValidation:
        """EIP-4337 conformance check: entry points, ERC-165 and funding."""
        address = Web3.to_checksum_address(address)
        errors: List[str] = []
        try:
            code = await self.oracle.get_code(address)
            balance = await self.oracle.get_balance(address)
        except Exception as e:
            log.error("PAYMASTER_VALIDATION_FAILED", address=address, error=str(e))
            return PaymasterValidation(address=address, errors=[f"lookup failed: {e}"])

        if not code:
            return PaymasterValidation(address=address, balance_wei=balance, errors=["no contract code at address"])

        has_validate = has_selector(code, pm.VALIDATE_PAYMASTER_USER_OP)
        has_post_op = has_selector(code, pm.POST_OP)
        has_deposit = has_selector(code, pm.DEPOSIT)
        if not has_validate:
            errors.append("validatePaymasterUserOp not found")
        if not has_post_op:
            errors.append("postOp not found")

        supports = False
        call = CallRequest(
            to=address, data=hex_to_bytes(encode_call(pm.SUPPORTS_INTERFACE, (pm.IPAYMASTER_INTERFACE_ID,)))
        )
        try:
            output = await self.oracle.static_call(call)
            supports = is_well_formed_word(output) and any(output[:32])
        except Exception as e:
            log.debug("PAYMASTER_ERC165_PROBE_FAILED", address=address, error=str(e))

        if balance < DEFAULT_BENCHMARK_TABLES.low_balance_wei:
            errors.append("balance below sponsorship threshold")

        valid = has_validate and has_post_op
        return PaymasterValidation(
            address=address,
            valid=valid,
            eip4337_compliant=valid and (supports or has_deposit),
            has_validate_method=has_validate,
            has_post_op_method=has_post_op,
            has_deposit_method=has_deposit,
            supports_interface=supports,
            code_size=len(code),
            balance_wei=balance,
            errors=errors,
        )
