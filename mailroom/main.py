"""Main entry point for the mailroom notification service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import os
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from mailroom.bulk import BulkDispatcher
from mailroom.config.environment import EnvironmentConfig
from mailroom.config.exceptions import ConfigurationError
from mailroom.config.loader import load_config
from mailroom.config.models import AppConfig
from mailroom.lifecycle import LifecycleService
from mailroom.logging import get_logger
from mailroom.logging.config import configure_logging
from mailroom.logging.context import log_context
from mailroom.notifications import (
    EventLedger,
    SendPipeline,
    SMTPTransport,
    TemplateResolver,
)
from mailroom.persistence.database import close_database, init_database
from mailroom.reengage import ReengagementEngine
from mailroom.scheduler import (
    REENGAGE_JOB_ID,
    SCHEDULED_JOB_ID,
    NotificationScheduler,
    SchedulerService,
)

logger = get_logger(__name__, component="cli")

RUN_ONCE_CHOICES = ("scheduled", "reengage", "all")


@dataclass
class Services:
    """Wired components sharing one ledger, pipeline and transport."""

    ledger: EventLedger
    pipeline: SendPipeline
    scheduler: NotificationScheduler
    reengage: ReengagementEngine
    bulk: BulkDispatcher
    lifecycle: LifecycleService


def build_services(
    app_config: AppConfig,
    env_config: EnvironmentConfig,
    transport: Optional[SMTPTransport] = None,
) -> Services:
    """
    Wire every component from configuration.

    Args:
        app_config: Validated application configuration
        env_config: Environment configuration
        transport: Transport override (defaults to SMTP from env_config)

    Returns:
        Services container
    """
    transport = transport or SMTPTransport(env_config, app_config.transport)
    ledger = EventLedger()
    pipeline = SendPipeline(ledger, TemplateResolver(app_url=env_config.app_url), transport)
    scheduler = NotificationScheduler(
        pipeline, poll_batch_limit=app_config.scheduler.poll_batch_limit
    )
    return Services(
        ledger=ledger,
        pipeline=pipeline,
        scheduler=scheduler,
        reengage=ReengagementEngine(pipeline, ledger, app_config.reengage),
        bulk=BulkDispatcher(transport, app_config.bulk),
        lifecycle=LifecycleService(pipeline, scheduler),
    )


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > environment > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif env_config.log_level:
        pass
    elif app_config.logging and app_config.logging.level:
        env_config.log_level = app_config.logging.level
    else:
        env_config.log_level = "INFO"

    return app_config, env_config


def run_once(services: Services, mode: str) -> bool:
    """
    Run one processing cycle.

    Args:
        services: Wired components
        mode: "scheduled", "reengage" or "all"

    Returns:
        True if any job reported errors
    """
    had_errors = False

    if mode in ("scheduled", "all"):
        with log_context(job=SCHEDULED_JOB_ID):
            result = services.scheduler.process_due()
        logger.info(
            f"Scheduled notifications processed: {result.processed} delivered, "
            f"{len(result.errors)} errors",
            extra={"event": "service.run_once.scheduled", **result.to_dict()},
        )
        had_errors = had_errors or result.had_errors

    if mode in ("reengage", "all"):
        with log_context(job=REENGAGE_JOB_ID):
            result = services.reengage.run()
        logger.info(
            f"Re-engagement processed: {result.sent} sent, {result.skipped} skipped, "
            f"{len(result.errors)} errors",
            extra={"event": "service.run_once.reengage", **result.to_dict()},
        )
        had_errors = had_errors or result.had_errors

    return had_errors


def _guarded(job_id: str, func):
    """Wrap a periodic job so one failed run is logged instead of killing the job."""

    def run():
        with log_context(job=job_id):
            try:
                return func()
            except Exception as e:
                logger.error(
                    f"Job {job_id} failed: {e}",
                    extra={"event": "service.job.failed", "error_type": type(e).__name__},
                    exc_info=True,
                )
                return None

    return run


def main(argv=None) -> int:
    """
    Main entry point for the mailroom service.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    parser = argparse.ArgumentParser(
        description="Mailroom - transactional and scheduled notification delivery service"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    parser.add_argument(
        "--run-once",
        choices=RUN_ONCE_CHOICES,
        default=None,
        help="Run one processing cycle and exit instead of starting the daemon",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    args = parser.parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        environment = os.environ.get("ENVIRONMENT", "local")
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=environment,
        )

        logger.info(
            "Mailroom starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "run_once": args.run_once,
            },
        )

        init_database(env_config.database_url)
        services = build_services(app_config, env_config)

        logger.info(
            "Services initialized",
            extra={"event": "services.initialized"},
        )

        if args.run_once:
            try:
                had_errors = run_once(services, args.run_once)
            finally:
                close_database()

            uptime_seconds = time.time() - start_time
            logger.info(
                "Mailroom stopped",
                extra={
                    "event": "service.stopping",
                    "uptime_seconds": round(uptime_seconds, 2),
                },
            )
            return 1 if had_errors else 0

        shutdown_event = threading.Event()
        scheduler_service = SchedulerService(shutdown_event=shutdown_event)

        if app_config.scheduler.enabled:
            scheduler_service.add_job(
                SCHEDULED_JOB_ID,
                _guarded(SCHEDULED_JOB_ID, services.scheduler.process_due),
                app_config.scheduler.poll_interval_seconds,
                name="Process scheduled notifications",
            )
        if app_config.reengage.enabled:
            scheduler_service.add_job(
                REENGAGE_JOB_ID,
                _guarded(REENGAGE_JOB_ID, services.reengage.run),
                app_config.reengage.run_interval_seconds,
                name="Re-engage inactive users",
            )

        def signal_handler(signum, frame):
            logger.info(
                f"Received signal {signum}, shutting down",
                extra={"event": "service.signal_received", "signal": signum}
            )
            scheduler_service.shutdown(wait=False)
            close_database()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        scheduler_service.start()

        logger.info(
            "Scheduler started. Press Ctrl+C to stop",
            extra={"event": "service.daemon_mode.started"}
        )

        try:
            shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info(
                "Keyboard interrupt received, shutting down",
                extra={"event": "service.keyboard_interrupt"}
            )
            scheduler_service.shutdown(wait=False)
            close_database()

        uptime_seconds = time.time() - start_time
        logger.info(
            "Mailroom stopped",
            extra={
                "event": "service.stopping",
                "uptime_seconds": round(uptime_seconds, 2),
            }
        )
        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"}
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
