import pytest

from gasprof import build_toolkit
from gasprof.adapters.mock import MockChainOracle
from gasprof.adapters.reputation import InMemoryRunEventSink
from gasprof.core.encoding import function_selector

TARGET = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
PAYMASTER = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
TOKEN_ADDR = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def address_word(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def make_code(*signatures: str, text: bytes = b"", opcodes: bytes = b"") -> bytes:
    """Minimal dispatcher-looking bytecode: PUSH4 <selector> per signature."""
    code = b"\x60\x80\x60\x40\x52"
    for signature in signatures:
        code += b"\x63" + function_selector(signature) + b"\x14"
    return code + opcodes + b"\x00" + text


class RecordingDelay:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture
def oracle():
    return MockChainOracle()


@pytest.fixture
def sink():
    return InMemoryRunEventSink()


@pytest.fixture
def delay():
    return RecordingDelay()


@pytest.fixture
def toolkit(oracle, sink, delay):
    return build_toolkit(oracle, sink=sink, delay=delay)
