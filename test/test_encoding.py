import pytest

from gasprof.core.encoding import (
    calldata_gas, code_text, encode_call, function_selector, has_selector, opcode_histogram, split_signature,
    weighted_opcode_score, word_to_address,
)

from conftest import SENDER, address_word


def test_transfer_selector_and_encoding():
    assert function_selector("transfer(address,uint256)").hex() == "a9059cbb"
    data = encode_call("transfer(address,uint256)", [SENDER, 1])
    assert data.startswith("0xa9059cbb")
    assert len(data) == 2 + 2 * (4 + 64)


def test_split_signature_handles_tuples():
    name, types = split_signature("validate((address,uint256),bytes32, uint256)")
    assert name == "validate"
    assert types == ["(address,uint256)", "bytes32", "uint256"]
    with pytest.raises(ValueError):
        split_signature("broken(")


def test_calldata_gas():
    assert calldata_gas(b"\x00\x00\x01") == 4 + 4 + 16


def test_push_immediates_are_not_counted_as_opcodes():
    # PUSH2 0x5555 then a real SSTORE
    code = b"\x61\x55\x55\x55"
    assert opcode_histogram(code)[0x55] == 1
    assert weighted_opcode_score(code, {"SSTORE": 5}, cap=25) == 5
    assert weighted_opcode_score(b"\x55" * 10, {"SSTORE": 5}, cap=25) == 25


def test_code_text_and_selectors():
    code = b"\x63" + function_selector("token()") + b"\x00ERC20: transfer failed\x00ab"
    assert "erc20: transfer failed" in code_text(code)
    assert "ab" not in code_text(code).split()
    assert has_selector(code, "token()")
    assert not has_selector(code, "owner()")


def test_word_to_address():
    assert word_to_address(address_word(SENDER)) == SENDER
    assert word_to_address(bytes(32)) is None
    assert word_to_address(b"\x01" * 32) is None
    assert word_to_address(b"\x01") is None
