from __future__ import annotations

import argparse
import asyncio
import os
import signal
from pathlib import Path

import structlog

from januscope import __version__
from januscope.config import JanuscopeConfig, load_config
from januscope.errors import JanuscopeError
from januscope.log import configure_logging
from januscope.pipeline import CycleReport, Pipeline
from januscope.scheduler import CycleScheduler


logger = structlog.get_logger(__name__)


def _print_report(kind: str, report: CycleReport) -> None:
    print(
        f"{kind}: {report.checked - report.failing}/{report.checked} healthy, "
        f"alerts raised={report.alerts_raised} delivered={report.alerts_delivered}"
    )


async def _one_cycle(config: JanuscopeConfig, kind: str) -> int:
    pipeline = Pipeline.from_config(config)
    await pipeline.start()
    try:
        if kind == "certs":
            report = await pipeline.run_certificate_cycle()
            _print_report("certificates", report)
            for r in pipeline.store.latest_certificate_results():
                status = "valid" if r.is_valid else f"INVALID ({r.error_message})"
                print(f"  [{r.service_id}] {r.domain}: {status}, days_remaining={r.days_remaining}")
        else:
            report = await pipeline.run_uptime_cycle()
            _print_report("uptime", report)
    finally:
        await pipeline.stop()
    return 0 if report.failing == 0 else 1


async def _test_channels(config: JanuscopeConfig) -> int:
    pipeline = Pipeline.from_config(config)
    dispatcher = pipeline.dispatcher
    results = await dispatcher.test_channels()
    for name in dispatcher.available_channels():
        if name not in results:
            print(f"{name}: disabled")
        else:
            print(f"{name}: {'ok' if results[name] else 'FAILED'}")
    await dispatcher.aclose_channels()
    return 0 if all(results.values()) else 1


async def _run_forever(config: JanuscopeConfig) -> int:
    pipeline = Pipeline.from_config(config)
    scheduler = CycleScheduler(pipeline)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    await pipeline.start()
    try:
        scheduler.schedule_cycles()
        await scheduler.start()
        logger.info("Januscope running", version=__version__, jobs=len(scheduler.jobs))
        await stop.wait()
    finally:
        await scheduler.stop()
        await pipeline.stop()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(prog="januscope", description="Januscope uptime and certificate monitor")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $JANUSCOPE_CONFIG)")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (INFO, WARNING, ...); overrides the config file",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("check", help="Run one uptime cycle and exit")
    sub.add_parser("certs", help="Run one certificate cycle and exit")
    sub.add_parser("test-channels", help="Test connectivity of every enabled alert channel")
    sub.add_parser("run", help="Run cycles on their configured intervals until interrupted")
    args = parser.parse_args()

    try:
        config = load_config(Path(args.config) if args.config else None)
    except JanuscopeError as exc:
        configure_logging(args.log_level or os.getenv("JANUSCOPE_LOG_LEVEL", "INFO"))
        logger.error("Configuration error", error=str(exc))
        return 2

    configure_logging(args.log_level or config.log_level)

    if args.command == "test-channels":
        return asyncio.run(_test_channels(config))
    if args.command == "run":
        return asyncio.run(_run_forever(config))
    return asyncio.run(_one_cycle(config, args.command))


if __name__ == "__main__":
    raise SystemExit(main())
