"""Main entry point for the uptime monitor service."""

import argparse
import asyncio
import logging
import sys

import structlog
import uvicorn

from uptime_monitor.config import load_config
from uptime_monitor.runtime import open_runtime
from uptime_monitor.scheduler.ticks import run_agent_tick, run_monitor_tick


def configure_logging(level: str = "INFO") -> None:
    level_no = logging.getLevelName(str(level or "INFO").upper())
    if not isinstance(level_no, int):
        level_no = logging.INFO

    logging.basicConfig(level=level_no, format="%(message)s", stream=sys.stdout)
    # httpx logs full request URLs at INFO, which include Telegram bot tokens.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def run_once(config) -> int:
    async with open_runtime(config) as runtime:
        monitors = await run_monitor_tick(runtime)
        agents = await run_agent_tick(runtime)
    logger = structlog.get_logger(__name__)
    logger.info("single_pass_done", monitors=monitors.message, agents=agents.message)
    return 0 if monitors.success and agents.success else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Uptime monitor notification service")
    parser.add_argument("--config", default=None, help="Path to the YAML config file")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--once", action="store_true", help="Run one monitor tick and one agent tick, then exit")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.log_level:
        config = config.model_copy(update={"log_level": args.log_level})
    configure_logging(config.log_level)

    if args.once:
        return asyncio.run(run_once(config))

    from uptime_monitor.api import create_app

    app = create_app(config)
    uvicorn.run(app, host=config.api_host, port=config.api_port, log_level=config.log_level.lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
