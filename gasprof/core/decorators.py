# Reusable decorators for operational resilience.
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential, before_sleep_log
from gasprof.core.errors import ConnectivityError
from gasprof.core.logger import get_logger
import logging

log = get_logger(__name__)

# Only transport-level failures are retried; reverts and unsupported methods
# are answers, not outages.
retriable_network_call = retry(
    retry=retry_if_exception_type(ConnectivityError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True
)
