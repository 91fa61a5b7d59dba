import asyncio
from types import SimpleNamespace

import pytest

from gasprof.adapters.web3_oracle import Web3ChainOracle
from gasprof.core.errors import ConnectivityError, EstimationFailure, GasProfilerError, StrategyUnsupported
from gasprof.core.models import CallRequest

from conftest import SENDER, TARGET

GWEI = 10**9


async def _value(value):
    return value


class DummyEth:
    def __init__(self):
        self.base_fee = 10 * GWEI
        self.tx_count = 5
        self.sent = []
        self.fail_next_send = False

    @property
    def chain_id(self):
        return _value(31337)

    @property
    def gas_price(self):
        return _value(3 * GWEI)

    @property
    def max_priority_fee(self):
        return _value(1 * GWEI)

    async def get_block(self, _):
        return {"baseFeePerGas": self.base_fee} if self.base_fee is not None else {}

    async def estimate_gas(self, _):
        return 21000

    async def get_transaction_count(self, *_):
        await asyncio.sleep(0)
        return self.tx_count

    async def send_raw_transaction(self, raw):
        await asyncio.sleep(0)
        if self.fail_next_send:
            self.fail_next_send = False
            raise ValueError("nonce too low")
        return bytes([len(self.sent) + 1]) * 32

    async def wait_for_transaction_receipt(self, tx_hash, timeout):
        return {"status": 1, "gasUsed": 21000, "blockNumber": 7}


class DummyAccount:
    address = SENDER

    def __init__(self, eth):
        self.eth = eth

    def sign_transaction(self, tx):
        self.eth.sent.append(tx)
        return SimpleNamespace(raw_transaction=b"raw")


class DummyProvider:
    def __init__(self):
        self.response = {}

    async def make_request(self, method, params):
        return self.response


class DummyW3:
    def __init__(self):
        self.eth = DummyEth()
        self.provider = DummyProvider()

    async def is_connected(self):
        return True


@pytest.fixture
def w3():
    return DummyW3()


@pytest.fixture
def oracle(w3):
    oracle = Web3ChainOracle(w3=w3, private_key=None)
    oracle.account = DummyAccount(w3.eth)
    return oracle


CALL = CallRequest(to=TARGET, data=bytes.fromhex("a9059cbb"))


@pytest.mark.asyncio
async def test_eip1559_fee_data(oracle):
    fees = await oracle.get_fee_data()

    assert fees.gas_price == 3 * GWEI
    assert fees.max_priority_fee_per_gas == 1_200_000_000
    assert fees.max_fee_per_gas == 10 * GWEI + 1_200_000_000


@pytest.mark.asyncio
async def test_legacy_fee_data(oracle, w3):
    w3.eth.base_fee = None

    fees = await oracle.get_fee_data()

    assert fees.gas_price == 3 * GWEI
    assert fees.max_fee_per_gas is None


@pytest.mark.asyncio
async def test_trace_call_parses_call_tracer_output(oracle, w3):
    w3.provider.response = {"result": {"gasUsed": "0xa410", "output": "0x01", "type": "CALL"}}

    trace = await oracle.trace_call(CALL)

    assert trace.gas_used == 42000
    assert trace.output == b"\x01"


@pytest.mark.asyncio
async def test_missing_debug_namespace_is_unsupported(oracle, w3):
    w3.provider.response = {"error": {"code": -32601, "message": "the method debug_traceCall does not exist"}}

    with pytest.raises(StrategyUnsupported):
        await oracle.trace_call(CALL)


@pytest.mark.asyncio
async def test_ordinary_node_errors_do_not_disable_tracing(oracle, w3):
    w3.provider.response = {"error": {"code": -32000, "message": "header not found"}}

    with pytest.raises(EstimationFailure) as exc:
        await oracle.trace_call(CALL)
    assert not isinstance(exc.value, StrategyUnsupported)

    w3.provider.response = {"error": {"code": -32000, "message": "Method not found"}}
    with pytest.raises(StrategyUnsupported):
        await oracle.trace_call(CALL)


@pytest.mark.asyncio
async def test_traced_revert_is_an_estimation_failure(oracle, w3):
    w3.provider.response = {"result": {"gasUsed": "0x5208", "error": "execution reverted"}}

    with pytest.raises(EstimationFailure) as exc:
        await oracle.trace_call(CALL)
    assert not isinstance(exc.value, StrategyUnsupported)


@pytest.mark.asyncio
async def test_transport_errors_become_connectivity_errors(oracle):
    async def broken():
        raise ConnectionRefusedError("connection refused")

    with pytest.raises(ConnectivityError):
        await oracle._rpc("eth_getCode", broken())


@pytest.mark.asyncio
async def test_concurrent_sends_get_sequential_nonces(oracle, w3):
    receipts = await asyncio.gather(oracle.send_transaction(CALL), oracle.send_transaction(CALL))

    assert sorted(tx["nonce"] for tx in w3.eth.sent) == [5, 6]
    assert all(r.gas_used == 21000 and r.block_number == 7 for r in receipts)
    assert w3.eth.sent[0]["maxFeePerGas"] == 10 * GWEI + 1_200_000_000


@pytest.mark.asyncio
async def test_failed_submission_resyncs_nonce(oracle, w3):
    w3.eth.fail_next_send = True
    with pytest.raises(ValueError):
        await oracle.send_transaction(CALL)
    assert oracle._nonce is None

    await oracle.send_transaction(CALL)
    assert w3.eth.sent[-1]["nonce"] == 5


@pytest.mark.asyncio
async def test_send_requires_an_executor_key(w3):
    oracle = Web3ChainOracle(w3=w3, private_key=None)
    oracle.account = None

    with pytest.raises(GasProfilerError):
        await oracle.send_transaction(CALL)


@pytest.mark.asyncio
async def test_connect_reads_chain_id(oracle):
    await oracle.connect()
