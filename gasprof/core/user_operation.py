# /gasprof/core/user_operation.py
# EIP-4337 (entry point v0.6) UserOperation construction, validation and bundling.
# Used to describe what a sponsored call would look like; nothing here is signed
# or submitted.
import math
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator
from web3 import Web3

from gasprof.core.encoding import hex_to_bytes, to_hex
from gasprof.core.errors import InvalidRequestError
from gasprof.core.logger import get_logger

log = get_logger(__name__)

PRE_VERIFICATION_GAS = 21000
VERIFICATION_GAS_LIMIT = 150000
PAYMASTER_GAS = 50000
DEFAULT_VALIDITY_SECONDS = 3600
UINT48_MAX = 2**48 - 1


class UserOperation(BaseModel):
    sender: str
    nonce: int = Field(default=0, ge=0)
    init_code: bytes = b""
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int = VERIFICATION_GAS_LIMIT
    pre_verification_gas: int = PRE_VERIFICATION_GAS
    max_fee_per_gas: int = Field(default=0, ge=0)
    max_priority_fee_per_gas: int = Field(default=0, ge=0)
    paymaster_and_data: bytes = b""
    signature: bytes = b""

    class Config:
        frozen = True

    @field_validator("sender")
    @classmethod
    def _sender_is_address(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"Invalid sender address: {value!r}")
        return Web3.to_checksum_address(value)

    @property
    def sponsored(self) -> bool:
        return len(self.paymaster_and_data) > 0

    @property
    def total_gas_limit(self) -> int:
        return self.call_gas_limit + self.verification_gas_limit + self.pre_verification_gas

    def to_rpc(self) -> Dict[str, str]:
        """The eth_sendUserOperation wire form: hex quantities, camelCase keys."""
        return {
            "sender": self.sender,
            "nonce": hex(self.nonce),
            "initCode": to_hex(self.init_code),
            "callData": to_hex(self.call_data),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": to_hex(self.paymaster_and_data),
            "signature": to_hex(self.signature),
        }


def encode_paymaster_and_data(paymaster: str, valid_until: Optional[int] = None, valid_after: int = 0,
                              data: bytes | str = b"") -> bytes:
    """paymaster address (20) | validUntil (uint48) | validAfter (uint48) | sponsor data."""
    if not Web3.is_address(paymaster):
        raise InvalidRequestError(f"Invalid paymaster address: {paymaster!r}")
    if valid_until is None:
        valid_until = int(time.time()) + DEFAULT_VALIDITY_SECONDS
    for name, value in (("valid_until", valid_until), ("valid_after", valid_after)):
        if not 0 <= value <= UINT48_MAX:
            raise InvalidRequestError(f"{name} does not fit in uint48: {value}")
    if isinstance(data, str):
        data = hex_to_bytes(data)
    return (
        hex_to_bytes(paymaster)
        + valid_until.to_bytes(6, "big")
        + valid_after.to_bytes(6, "big")
        + data
    )


def build_user_operation(sender: str, call_data: bytes | str, call_gas_limit: int, nonce: int = 0,
                         max_fee_per_gas: int = 0, max_priority_fee_per_gas: int = 0,
                         paymaster: Optional[str] = None, **kwargs) -> UserOperation:
    if isinstance(call_data, str):
        call_data = hex_to_bytes(call_data)
    if not call_data:
        raise InvalidRequestError("UserOperation call data must not be empty")
    if call_gas_limit <= 0:
        raise InvalidRequestError(f"call gas limit must be positive, got {call_gas_limit}")
    if not Web3.is_address(sender):
        raise InvalidRequestError(f"Invalid sender address: {sender!r}")
    paymaster_and_data = kwargs.pop("paymaster_and_data", b"")
    if paymaster and not paymaster_and_data:
        paymaster_and_data = encode_paymaster_and_data(paymaster)
    return UserOperation(
        sender=sender,
        nonce=nonce,
        call_data=call_data,
        call_gas_limit=call_gas_limit,
        max_fee_per_gas=max_fee_per_gas,
        max_priority_fee_per_gas=max_priority_fee_per_gas,
        paymaster_and_data=paymaster_and_data,
        **kwargs,
    )


def estimate_user_operation_gas(op: UserOperation) -> Dict[str, int]:
    estimates = {
        "pre_verification_gas": PRE_VERIFICATION_GAS,
        "verification_gas_limit": VERIFICATION_GAS_LIMIT,
        "call_gas_limit": op.call_gas_limit,
        "paymaster_gas": PAYMASTER_GAS if op.sponsored else 0,
    }
    estimates["total_gas"] = sum(estimates.values())
    return estimates


def is_valid_user_operation(op: Any) -> bool:
    """Structural check on either a UserOperation or its RPC dict form."""
    if isinstance(op, dict):
        try:
            op = UserOperation(
                sender=op["sender"],
                nonce=int(op["nonce"], 16),
                init_code=hex_to_bytes(op["initCode"]),
                call_data=hex_to_bytes(op["callData"]),
                call_gas_limit=int(op["callGasLimit"], 16),
                verification_gas_limit=int(op["verificationGasLimit"], 16),
                pre_verification_gas=int(op["preVerificationGas"], 16),
                max_fee_per_gas=int(op["maxFeePerGas"], 16),
                max_priority_fee_per_gas=int(op["maxPriorityFeePerGas"], 16),
                paymaster_and_data=hex_to_bytes(op["paymasterAndData"]),
                signature=hex_to_bytes(op["signature"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            log.warning("USER_OPERATION_MALFORMED", error=str(e))
            return False
    if not isinstance(op, UserOperation):
        return False
    for field in ("call_gas_limit", "verification_gas_limit", "pre_verification_gas"):
        if getattr(op, field) <= 0:
            log.warning("USER_OPERATION_INVALID_GAS_FIELD", field=field, value=getattr(op, field))
            return False
    return True


def _bundle_cost(ops: Sequence[UserOperation]) -> Dict[str, Any]:
    total_gas = sum(op.total_gas_limit for op in ops)
    avg_max_fee = round(sum(op.max_fee_per_gas for op in ops) / len(ops))
    cost_wei = total_gas * avg_max_fee
    return {
        "total_gas": total_gas,
        "avg_max_fee_per_gas": avg_max_fee,
        "estimated_cost_wei": cost_wei,
        "estimated_cost_eth": Decimal(cost_wei) / Decimal(10**18),
    }


def bundle_user_operations(ops: Sequence[Any], max_bundle_size: int = 10, gas_limit_buffer: float = 1.1,
                           prioritize_by_gas: bool = True) -> List[Dict[str, Any]]:
    """
    Drop invalid operations, optionally order by max fee (highest first) and
    split into bundles of at most ``max_bundle_size``. Always returns a list.
    """
    if not ops:
        raise InvalidRequestError("at least one UserOperation is required")
    if max_bundle_size <= 0:
        raise InvalidRequestError(f"max_bundle_size must be positive, got {max_bundle_size}")

    valid = [op for op in ops if isinstance(op, UserOperation) and is_valid_user_operation(op)]
    if not valid:
        raise InvalidRequestError("no valid UserOperations to bundle")
    if prioritize_by_gas:
        valid.sort(key=lambda op: op.max_fee_per_gas, reverse=True)

    bundles = []
    for start in range(0, len(valid), max_bundle_size):
        chunk = valid[start:start + max_bundle_size]
        digest = Web3.keccak(b"".join(Web3.keccak(text=repr(op.to_rpc())) for op in chunk))
        bundles.append({
            "bundle_id": to_hex(digest),
            "user_operations": chunk,
            "operation_count": len(chunk),
            "total_gas_limit": math.ceil(Decimal(sum(op.total_gas_limit for op in chunk)) * Decimal(str(gas_limit_buffer))),
            "estimated_cost": _bundle_cost(chunk),
            "paymaster_operations": sum(1 for op in chunk if op.sponsored),
        })
    log.info("USER_OPERATIONS_BUNDLED", operations=len(valid), bundles=len(bundles), dropped=len(ops) - len(valid))
    return bundles
