# /gasprof/core/config_validator.py
# Run at startup to validate the settings the entrypoint depends on.
from web3 import Web3

from gasprof.core.config import settings
from gasprof.core.logger import log


def validate():
    log.info("--- CONFIG VALIDATION START ---")
    required_vars = ['RPC_URL', 'PROFILE_TARGET', 'PROFILE_FUNCTIONS']
    if settings.PROFILE_MODE == "execute":
        required_vars.append('EXECUTOR_PRIVATE_KEY')
    errors = []

    for var in required_vars:
        if not getattr(settings, var, None):
            errors.append(f"Missing required configuration: {var}")

    if settings.PROFILE_MODE not in ("simulate", "execute"):
        errors.append(f"PROFILE_MODE must be 'simulate' or 'execute', got {settings.PROFILE_MODE!r}")
    for var in ('PROFILE_TARGET', 'PAYMASTER_ADDRESS', 'DEFAULT_SENDER'):
        value = getattr(settings, var, None)
        if value and not Web3.is_address(value):
            errors.append(f"{var} is not a valid address: {value}")
    if settings.DEFAULT_RUN_COUNT <= 0:
        errors.append("DEFAULT_RUN_COUNT must be positive")

    if errors:
        for error in errors:
            log.critical(error)
        raise ValueError("System configuration is incomplete. Halting.")

    log.info("--- CONFIG VALIDATION PASSED ---")

if __name__ == "__main__":
    validate()
