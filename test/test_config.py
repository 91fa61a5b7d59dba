import pytest
from pydantic import SecretStr

from gasprof.core import config_validator
from gasprof.core.config import settings

from conftest import PAYMASTER, TARGET


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(settings, "RPC_URL", SecretStr("http://localhost:8545"))
    monkeypatch.setattr(settings, "PROFILE_TARGET", TARGET)
    monkeypatch.setattr(settings, "PROFILE_FUNCTIONS", ["transfer(address,uint256)"])
    monkeypatch.setattr(settings, "PROFILE_MODE", "simulate")
    monkeypatch.setattr(settings, "PAYMASTER_ADDRESS", PAYMASTER)
    monkeypatch.setattr(settings, "DEFAULT_SENDER", None)
    monkeypatch.setattr(settings, "EXECUTOR_PRIVATE_KEY", None)
    monkeypatch.setattr(settings, "DEFAULT_RUN_COUNT", 3)
    return monkeypatch


def test_complete_configuration_passes(configured):
    config_validator.validate()
    assert settings.rpc_url == "http://localhost:8545"


@pytest.mark.parametrize("name,value", [
    ("RPC_URL", None),
    ("PROFILE_FUNCTIONS", []),
    ("PROFILE_TARGET", "0x1234"),
    ("PROFILE_MODE", "replay"),
    ("DEFAULT_RUN_COUNT", 0),
])
def test_incomplete_configuration_halts(configured, name, value):
    configured.setattr(settings, name, value)
    with pytest.raises(ValueError):
        config_validator.validate()


def test_execute_mode_requires_a_key(configured):
    configured.setattr(settings, "PROFILE_MODE", "execute")
    with pytest.raises(ValueError):
        config_validator.validate()
