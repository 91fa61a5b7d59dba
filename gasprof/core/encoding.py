# /gasprof/core/encoding.py
# Calldata encoding and raw bytecode inspection helpers.

import re
from collections import Counter
from typing import List, Sequence, Tuple

from eth_abi import encode
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

PUSH1 = 0x60
PUSH4 = 0x63
PUSH32 = 0x7F

OPCODES = {
    "SLOAD": 0x54,
    "SSTORE": 0x55,
    "CREATE": 0xF0,
    "CALL": 0xF1,
    "DELEGATECALL": 0xF4,
    "CREATE2": 0xF5,
    "STATICCALL": 0xFA,
    "SELFDESTRUCT": 0xFF,
    "LOG0": 0xA0,
    "LOG1": 0xA1,
    "LOG2": 0xA2,
    "LOG3": 0xA3,
    "LOG4": 0xA4,
}
OPCODE_NAMES = {value: name for name, value in OPCODES.items()}

_PRINTABLE_RUN = re.compile(rb"[\x20-\x7e]{4,}")


def hex_to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(text)


def to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def split_signature(signature: str) -> Tuple[str, List[str]]:
    """Split ``name(type1,(a,b),type3)`` into its name and top-level argument types."""
    signature = signature.replace(" ", "")
    open_idx = signature.find("(")
    if open_idx <= 0 or not signature.endswith(")"):
        raise ValueError(f"Malformed function signature: {signature!r}")
    name = signature[:open_idx]
    body = signature[open_idx + 1:-1]
    types: List[str] = []
    depth = 0
    current = ""
    for char in body:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        current += char
    if current:
        types.append(current)
    if depth != 0:
        raise ValueError(f"Unbalanced parentheses in signature: {signature!r}")
    return name, types


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature.replace(" ", "")))[:4]


def encode_call(signature: str, args: Sequence = ()) -> str:
    """ABI-encode a call as hex calldata (selector + arguments)."""
    _, types = split_signature(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} expects {len(types)} arguments, got {len(args)}")
    payload = encode(types, list(args)) if types else b""
    return to_hex(function_selector(signature) + payload)


def calldata_gas(data: bytes) -> int:
    """Intrinsic calldata cost: 4 gas per zero byte, 16 per non-zero byte."""
    zeros = data.count(0)
    return zeros * 4 + (len(data) - zeros) * 16


def opcode_histogram(code: bytes) -> Counter:
    """Count opcodes in deployed bytecode, skipping PUSH immediates."""
    counts: Counter = Counter()
    i = 0
    while i < len(code):
        opcode = code[i]
        counts[opcode] += 1
        if PUSH1 <= opcode <= PUSH32:
            i += 1 + (opcode - PUSH1 + 1)
        else:
            i += 1
    return counts


def weighted_opcode_score(code: bytes, weights: dict, cap: int) -> int:
    histogram = opcode_histogram(code)
    score = 0
    for name, weight in weights.items():
        score += histogram.get(OPCODES[name], 0) * weight
    return min(score, cap)


def code_text(code: bytes) -> str:
    """Lowercase printable-string rendering of bytecode (revert strings, metadata)."""
    return " ".join(run.decode("ascii") for run in _PRINTABLE_RUN.findall(code)).lower()


def has_selector(code: bytes, signature: str) -> bool:
    # Solidity dispatchers compare calldata against a PUSH4 of each selector.
    return bytes([PUSH4]) + function_selector(signature) in code


def word_to_address(data: bytes) -> str | None:
    """Decode an ABI-encoded address word; ``None`` for zero or malformed output."""
    if len(data) < 32:
        return None
    word = data[:32]
    if any(word[:12]):
        return None
    if not any(word[12:]):
        return None
    return Web3.to_checksum_address(to_hex(word[12:]))


def is_well_formed_word(data: bytes) -> bool:
    return len(data) >= 32 and len(data) % 32 == 0
