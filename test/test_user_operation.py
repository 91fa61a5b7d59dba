import pytest

from gasprof.core.errors import InvalidRequestError
from gasprof.core.user_operation import (
    build_user_operation, bundle_user_operations, encode_paymaster_and_data, estimate_user_operation_gas,
    is_valid_user_operation,
)

from conftest import PAYMASTER, SENDER


def test_paymaster_and_data_layout():
    data = encode_paymaster_and_data(PAYMASTER, valid_until=1700000000, valid_after=5, data=b"\xab")

    assert data[:20] == bytes.fromhex(PAYMASTER[2:])
    assert int.from_bytes(data[20:26], "big") == 1700000000
    assert int.from_bytes(data[26:32], "big") == 5
    assert data[32:] == b"\xab"


def test_paymaster_and_data_rejects_overflow():
    with pytest.raises(InvalidRequestError):
        encode_paymaster_and_data(PAYMASTER, valid_until=2**48)


def test_build_and_estimate_sponsored_operation():
    op = build_user_operation(SENDER, "0xa9059cbb", call_gas_limit=60000, max_fee_per_gas=2, paymaster=PAYMASTER)

    rpc = op.to_rpc()
    assert rpc["callGasLimit"] == hex(60000)
    assert rpc["verificationGasLimit"] == hex(150000)
    assert op.sponsored
    assert estimate_user_operation_gas(op) == {
        "pre_verification_gas": 21000,
        "verification_gas_limit": 150000,
        "call_gas_limit": 60000,
        "paymaster_gas": 50000,
        "total_gas": 281000,
    }


@pytest.mark.parametrize("kwargs", [
    {"sender": "0x1234", "call_data": "0xa9059cbb", "call_gas_limit": 1},
    {"sender": SENDER, "call_data": "0x", "call_gas_limit": 1},
    {"sender": SENDER, "call_data": "0xa9059cbb", "call_gas_limit": 0},
])
def test_build_rejects_malformed_operations(kwargs):
    with pytest.raises(InvalidRequestError):
        build_user_operation(**kwargs)


def test_rpc_dict_validation():
    op = build_user_operation(SENDER, "0xa9059cbb", call_gas_limit=60000)
    rpc = op.to_rpc()

    assert is_valid_user_operation(op)
    assert is_valid_user_operation(rpc)
    del rpc["signature"]
    assert not is_valid_user_operation(rpc)
    assert not is_valid_user_operation({**op.to_rpc(), "preVerificationGas": "0x0"})


def test_bundling_orders_by_fee_and_splits():
    ops = [build_user_operation(SENDER, "0x01020304", call_gas_limit=10000, nonce=i, max_fee_per_gas=i + 1)
           for i in range(5)]

    bundles = bundle_user_operations(ops, max_bundle_size=2)

    assert [b["operation_count"] for b in bundles] == [2, 2, 1]
    assert [op.max_fee_per_gas for op in bundles[0]["user_operations"]] == [5, 4]
    # (10000 + 150000 + 21000) * 2 * 1.1
    assert bundles[0]["total_gas_limit"] == 398200
    assert bundles[0]["estimated_cost"]["total_gas"] == 362000
    assert bundles[0]["bundle_id"] != bundles[1]["bundle_id"]
    assert bundle_user_operations(ops, max_bundle_size=2)[0]["bundle_id"] == bundles[0]["bundle_id"]


def test_bundling_requires_valid_operations():
    with pytest.raises(InvalidRequestError):
        bundle_user_operations([])
