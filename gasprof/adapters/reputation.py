# /gasprof/adapters/reputation.py
# Sinks for per-run outcomes. Long-term persistence lives elsewhere; the
# profiler only needs somewhere to report each run.

from collections import defaultdict
from typing import Dict, List

from gasprof.core.logger import get_logger
from gasprof.core.models import RunEvent

log = get_logger(__name__)


class RunEventSink:
    def record(self, address: str, event: RunEvent) -> None:
        raise NotImplementedError


class LoggingRunEventSink(RunEventSink):
    """Emits each run as a structured log line."""
    def record(self, address: str, event: RunEvent) -> None:
        if event.success:
            log.info("RUN_RECORDED", address=address, **event.model_dump(exclude={"error"}))
        else:
            log.warning("RUN_FAILURE_RECORDED", address=address, **event.model_dump())


class InMemoryRunEventSink(RunEventSink):
    def __init__(self):
        self.events: Dict[str, List[RunEvent]] = defaultdict(list)

    def record(self, address: str, event: RunEvent) -> None:
        self.events[address].append(event)

    def success_rate(self, address: str) -> float:
        events = self.events.get(address, [])
        if not events:
            return 0.0
        return sum(1 for e in events if e.success) / len(events)
