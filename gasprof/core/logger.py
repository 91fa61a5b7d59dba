import logging
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars
import sentry_sdk
from prometheus_client import Counter
from gasprof.core.config import settings

# --- Prometheus Metrics ---
ESTIMATES_TOTAL = Counter("gasprof_estimates_total", "Gas estimates produced", ["strategy"])
ESTIMATE_FALLBACKS = Counter("gasprof_estimate_fallbacks_total", "Estimates that exhausted every strategy")
CACHE_HITS = Counter("gasprof_cache_hits_total", "Cache hits", ["cache"])
PROBE_FAILURES = Counter("gasprof_probe_failures_total", "Paymaster capability probes that failed", ["probe"])
PROFILE_RUNS = Counter("gasprof_profile_runs_total", "Profiling runs completed", ["mode"])
RUN_FAILURES = Counter("gasprof_run_failures_total", "Profiling batches aborted by a failed run")
OVERHEAD_FALLBACKS = Counter("gasprof_overhead_fallbacks_total", "Paymaster overhead computations that fell back")

def configure_logging():
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN.get_secret_value(), traces_sample_rate=1.0)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(settings.LOG_LEVEL)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

def get_logger(name: str):
    return structlog.get_logger(name)

def bind_profile_context(signature: str, target: str):
    bind_contextvars(function=signature, target=target)

def clear_profile_context():
    unbind_contextvars("function", "target")

configure_logging()
log = get_logger("gasprof.system")
