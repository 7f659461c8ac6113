"""Reprocessor process entry point. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from config import load_config
from config.config import ReprocessorConfig
from core import __version__
from core.errors.exceptions import ConfigurationError
from core.logging.setup import setup_logging
from core.logging.utilities import format_cycle_output, get_log_output_mode, log_startup_banner
from core.utils import generate_worker_id
from reprocessor.common.signals import remove_shutdown_signal_handlers, setup_shutdown_signal_handlers
from reprocessor.workers import MainFlowWorker, RetryReprocessorWorker, execute_worker_with_shutdown

# __main__.py is at src/reprocessor/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

MODES = ("all", "main", "reprocessor")

EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("true", "1", "yes")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m reprocessor",
        description="Run the main consumption flow and/or the scheduled retry reprocessor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m reprocessor                      # main flow + reprocessor\n"
            "  python -m reprocessor --mode reprocessor   # retry topic only\n"
            "  python -m reprocessor --once               # drain the retry topic once and exit\n"
            "  python -m reprocessor --config /etc/reprocessor/config.yaml\n"
        ),
    )
    parser.add_argument("--mode", choices=MODES, default="all", help="Worker(s) to run (default: all)")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one reprocessing tick, print its summary and exit",
    )
    parser.add_argument("--config", default=None, help="Config YAML (default: src/config/config.yaml)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console log level (default: INFO)",
    )
    parser.add_argument("--log-dir", default=None, help="Log directory (default: LOG_DIR or logging.log_dir)")
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Log to stdout only, no files (also: LOG_TO_STDOUT=true)",
    )

    args = parser.parse_args(argv)
    if args.once and args.mode == "main":
        parser.error("--once runs a reprocessing tick and cannot be combined with --mode main")
    return args


def _setup_logging(args: argparse.Namespace, config: ReprocessorConfig, worker_id: str) -> bool:
    log_to_stdout = args.log_to_stdout or _env_flag("LOG_TO_STDOUT")
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or config.log_dir or "logs")

    setup_logging(
        name="reprocessor",
        stage="once" if args.once else args.mode,
        domain="reprocessor",
        log_dir=log_dir,
        json_format=json_logs,
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=log_to_stdout,
    )
    return log_to_stdout


async def run_once(config: ReprocessorConfig) -> int:
    worker = RetryReprocessorWorker(config)
    try:
        result = await worker.run_once()
    except Exception:
        logger.error("Reprocessing tick failed", exc_info=True)
        return EXIT_RUNTIME_ERROR

    print(
        format_cycle_output(
            cycle_count=1,
            succeeded=result.records_succeeded,
            failed=result.records_rerouted,
            skipped=result.records_skipped,
            topic_empty=result.topic_empty,
        ),
        flush=True,
    )
    return EXIT_OK


async def run_workers(config: ReprocessorConfig, mode: str) -> int:
    """Run the selected workers until a shutdown signal arrives.

    First signal: sets the shutdown event so workers stop gracefully and finish
    any in-flight tick. Second signal: cancels all tasks.
    """
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_signal():
        if not shutdown_event.is_set():
            logger.info("Received signal, initiating graceful shutdown")
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    setup_shutdown_signal_handlers(handle_signal)

    selected = []
    if mode in ("all", "main"):
        selected.append(("main_flow", MainFlowWorker(config)))
    if mode in ("all", "reprocessor"):
        selected.append(("reprocessor", RetryReprocessorWorker(config)))

    tasks = [
        asyncio.create_task(execute_worker_with_shutdown(worker, stage, shutdown_event), name=stage)
        for stage, worker in selected
    ]

    exit_code = EXIT_OK
    try:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                logger.error(
                    "Worker terminated with error",
                    extra={"worker_name": task.get_name()},
                    exc_info=result,
                )
                exit_code = EXIT_RUNTIME_ERROR
    except asyncio.CancelledError:
        logger.info("Workers cancelled, shutting down...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        remove_shutdown_signal_handlers()

    return exit_code


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    try:
        config = load_config(Path(args.config) if args.config else None)
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"[STARTUP] Configuration error: {e}", file=sys.stderr, flush=True)
        return EXIT_CONFIG_ERROR

    worker_id = os.getenv("WORKER_ID") or generate_worker_id(args.mode)
    log_to_stdout = _setup_logging(args, config, worker_id)

    log_startup_banner(
        logger,
        worker_name="Kafka Retry Reprocessor",
        version=__version__,
        worker_id=worker_id,
        mode="once" if args.once else args.mode,
        bootstrap_servers=config.bootstrap_servers,
        primary_topic=config.primary_topic,
        retry_topic=config.retry_topic,
        dlq_topic=config.dlq_topic,
        max_attempts=config.max_attempts,
        log_output_mode=get_log_output_mode(log_to_stdout),
    )

    try:
        if args.once:
            return asyncio.run(run_once(config))
        return asyncio.run(run_workers(config, args.mode))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        return EXIT_OK
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
