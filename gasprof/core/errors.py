# Error taxonomy shared by every layer.
#
# Estimation, classification and cost layers recover locally, an unreachable
# node included; the profiling layer fails fast with RunFailure.


class GasProfilerError(Exception):
    pass


class ConnectivityError(GasProfilerError):
    """The chain oracle could not be reached at all."""


class ProbeFailure(GasProfilerError):
    """A single read-only capability probe reverted or returned garbage."""


class EstimationFailure(GasProfilerError):
    """One estimation strategy failed; the next one may still succeed."""

    def __init__(self, strategy: str, message: str):
        super().__init__(f"{strategy}: {message}")
        self.strategy = strategy
        self.reason = message


class StrategyUnsupported(EstimationFailure):
    """The oracle does not implement the RPC a strategy depends on."""


class AllStrategiesExhausted(GasProfilerError):
    def __init__(self, attempts: list):
        super().__init__("All simulation strategies failed")
        self.attempts = attempts


class RunFailure(GasProfilerError):
    def __init__(self, run_index: int, cause: BaseException):
        super().__init__(f"Run {run_index} failed: {cause}")
        self.run_index = run_index
        self.cause = cause


class InvalidRequestError(GasProfilerError, ValueError):
    """Malformed request, rejected before any I/O."""
