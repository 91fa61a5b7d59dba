# /main.py
# Env-driven entrypoint: profiles PROFILE_FUNCTIONS on PROFILE_TARGET and, when
# PAYMASTER_ADDRESS is set, classifies and costs the paymaster as well.
import asyncio
import json
import sys

from gasprof import ProfileJob, build_toolkit
from gasprof.adapters.reputation import LoggingRunEventSink
from gasprof.adapters.web3_oracle import Web3ChainOracle
from gasprof.core.config import settings
from gasprof.core.config_validator import validate as validate_config
from gasprof.core.logger import configure_logging, get_logger


async def main() -> int:
    configure_logging()
    log = get_logger("gasprof.system")
    validate_config()
    log.info("GAS_PROFILER_STARTING", mode=settings.PROFILE_MODE, functions=len(settings.PROFILE_FUNCTIONS))

    oracle = Web3ChainOracle()
    await oracle.connect()
    toolkit = build_toolkit(oracle, sink=LoggingRunEventSink())

    report = {}
    if settings.PAYMASTER_ADDRESS:
        cost_report = await toolkit.analyze_costs(settings.PAYMASTER_ADDRESS)
        report["paymaster"] = cost_report.model_dump(mode="json")

    jobs = [
        ProfileJob(
            target=settings.PROFILE_TARGET,
            function=signature,
            mode=settings.PROFILE_MODE,
            paymaster_address=settings.PAYMASTER_ADDRESS,
        )
        for signature in settings.PROFILE_FUNCTIONS
    ]
    outcomes = await toolkit.profile_batch(jobs)
    report["functions"] = {
        o.job.function: o.profile.aggregated.to_dict() if o.ok else {"error": o.error}
        for o in outcomes
    }

    print(json.dumps(report, indent=2, default=str))
    failed = [o.job.function for o in outcomes if not o.ok]
    if failed:
        log.error("GAS_PROFILER_FINISHED_WITH_FAILURES", failed=failed)
        return 1
    log.info("GAS_PROFILER_FINISHED")
    return 0

if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
