from structlog.contextvars import get_contextvars

from gasprof.core.logger import PROFILE_RUNS, bind_profile_context, clear_profile_context, get_logger


def test_profile_context_and_prometheus():
    bind_profile_context("transfer(address,uint256)", "0xabc")
    assert get_contextvars()["function"] == "transfer(address,uint256)"
    get_logger("test").info("UNIT_TEST_EVENT", data=1)
    clear_profile_context()
    assert "function" not in get_contextvars()

    c = PROFILE_RUNS.labels("unit")
    initial = c._value.get()
    c.inc()
    assert c._value.get() == initial + 1
