import sys
from pydantic_settings import BaseSettings
from pydantic import SecretStr
from typing import List

class Settings(BaseSettings):
    # Network
    RPC_URL: SecretStr | None = None
    CHAIN_ID: int = 50312
    RPC_TIMEOUT_SECONDS: int = 10

    # Executor used for real (non-simulated) profiling runs
    EXECUTOR_PRIVATE_KEY: SecretStr | None = None
    DEFAULT_SENDER: str | None = None

    # Estimation / caching
    ESTIMATION_CACHE_TTL_SECONDS: int = 300
    CACHE_MAX_ENTRIES: int = 256

    # Profiling
    RUN_DELAY_SECONDS: float = 0.1
    DEFAULT_RUN_COUNT: int = 3
    MAX_PARALLEL_SESSIONS: int = 4

    # Entrypoint job description (main.py)
    PROFILE_TARGET: str | None = None
    PROFILE_FUNCTIONS: List[str] = []
    PROFILE_MODE: str = "simulate"
    PAYMASTER_ADDRESS: str | None = None

    # Operational Settings
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: SecretStr | None = None

    @property
    def rpc_url(self) -> str | None:
        """Plain-text RPC endpoint, or ``None`` if not configured."""
        if self.RPC_URL is None:
            return None
        return self.RPC_URL.get_secret_value()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

try:
    settings = Settings()
except Exception as e:
    # structlog may not be configured yet; config errors go straight to stderr.
    print("FAILED_TO_LOAD_SETTINGS", e, file=sys.stderr)
    sys.exit(1)
