#!/usr/bin/env python3
"""
Dispute Mirror

Keeps a local copy of PayPal disputes in sync. Runs one-off syncs from the
command line, the automatic sync gate for cron, or a long-running scheduler
with observability endpoints.
"""

import argparse
import json
import logging
import signal
import sys
import time
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dispute_mirror.config.loader import cfg, load_config, validate_config
from dispute_mirror.jobs.auto_sync import check_and_run_auto_sync, run_sync_on_startup
from dispute_mirror.jobs.dispute_sync import (
    AccountNotFoundError,
    DisputeSyncService,
    SyncMode,
    SyncOptions,
)
from dispute_mirror.server import record_sync_result, set_scheduler_running, start_observability_server
from dispute_mirror.utils.crypto import ConfigurationError, CryptoError, get_vault


# Configure structured logging
def setup_logging():
    """Setup structured logging based on configuration."""
    log_level = cfg("global.log_level", "INFO")
    log_format = cfg("global.log_format", "json")

    if log_format == "json":
        import structlog

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=[
                    structlog.stdlib.add_logger_name,
                    structlog.stdlib.add_log_level,
                    structlog.processors.TimeStamper(fmt="iso"),
                    structlog.processors.format_exc_info,
                ],
            )
        )
        logging.basicConfig(level=getattr(logging, log_level.upper()), handlers=[handler])
    else:
        logging.basicConfig(
            level=getattr(logging, log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stdout)],
        )


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[BackgroundScheduler] = None


def build_service() -> DisputeSyncService:
    return DisputeSyncService(options=SyncOptions.from_config())


def print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_account_sync(account_id: str, mode: str) -> int:
    """Sync one account and exit."""
    service = build_service()
    try:
        result = service.sync_account(account_id, mode)
    except (AccountNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 2

    record_sync_result(account_id, result.model_dump())
    print_json(result.model_dump())
    return 0 if result.success else 1


def run_all_accounts_sync(mode: str) -> int:
    """Sync every active account and exit."""
    service = build_service()
    try:
        results = service.sync_all_accounts(mode)
    except ValueError as e:
        logger.error(str(e))
        return 2

    for result in results:
        record_sync_result(result.account_id, result.model_dump())
    print_json([r.model_dump() for r in results])
    return 0 if all(r.success for r in results) else 1


def run_auto_sync_once() -> int:
    """Evaluate the auto sync gate once; meant for cron."""
    outcome = check_and_run_auto_sync(build_service())
    if outcome.ran and outcome.results:
        for account in outcome.results["accounts"]:
            record_sync_result(account["account_id"], account)
    print_json(outcome._asdict())
    return 1 if outcome.error else 0


def auto_sync_job(service: DisputeSyncService) -> None:
    """Scheduler job: run the gate and record metrics for any accounts synced."""
    outcome = check_and_run_auto_sync(service)
    logger.info(f"Auto sync check: ran={outcome.ran}, {outcome.message}")
    if outcome.ran and outcome.results:
        for account in outcome.results["accounts"]:
            record_sync_result(account["account_id"], account)


def setup_job_scheduler(service: DisputeSyncService) -> BackgroundScheduler:
    """Setup and configure the job scheduler."""
    scheduler = BackgroundScheduler(
        timezone=cfg("global.timezone", "UTC"),
        job_defaults=cfg(
            "scheduler.job_defaults",
            {"coalesce": True, "max_instances": 1, "misfire_grace_time": 300},
        ),
    )

    # Job execution event handlers
    def job_listener(event: JobExecutionEvent):
        """Handle job execution events."""
        if event.exception:
            logger.error(f"Job {event.job_id} failed: {event.exception}")
        else:
            logger.debug(f"Job {event.job_id} completed")

    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    check_minutes = cfg("scheduler.check_interval_minutes", 5)
    scheduler.add_job(
        func=auto_sync_job,
        args=[service],
        trigger=IntervalTrigger(minutes=check_minutes),
        id="auto_sync_check",
        name="PayPal dispute auto sync check",
        replace_existing=True,
    )
    logger.info(f"Registered auto sync check every {check_minutes} minutes")
    return scheduler


def handle_shutdown(signum, frame):
    """Handle graceful shutdown signals."""
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")

    global scheduler

    if scheduler:
        logger.info("Shutting down scheduler...")
        set_scheduler_running(False)
        scheduler.shutdown(wait=True)
        logger.info("Scheduler shut down complete")

    logger.info("Graceful shutdown complete")
    sys.exit(0)


def serve() -> int:
    """Run the scheduler and observability server until stopped."""
    global scheduler

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    start_observability_server()

    service = build_service()
    run_sync_on_startup(service)

    scheduler = setup_job_scheduler(service)
    set_scheduler_running(True)
    scheduler.start()

    logger.info("Scheduler started successfully. Press Ctrl+C to stop.")

    # Keep main thread alive
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        handle_shutdown(signal.SIGINT, None)
    return 0


def main():
    """Main entrypoint for the dispute sync service."""
    modes = [mode.value for mode in SyncMode] + ["fixed-window"]

    parser = argparse.ArgumentParser(description="PayPal dispute mirror")
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--sync-account", metavar="ID", help="Sync one PayPal account")
    action.add_argument("--sync-all", action="store_true", help="Sync all active accounts")
    action.add_argument("--auto", action="store_true", help="Run the auto sync check once (cron)")
    action.add_argument("--serve", action="store_true", help="Run the scheduler and metrics server")
    action.add_argument("--encrypt", metavar="VALUE", help="Encrypt a credential for storage")
    action.add_argument("--validate-config", action="store_true", help="Validate configuration and exit")
    parser.add_argument("--mode", choices=modes, default="incremental", help="Sync mode")
    parser.add_argument("--config", help="Configuration file path (default: config/app.yaml)")

    args = parser.parse_args()

    # Load configuration before logging so log settings apply
    load_config(args.config)
    setup_logging()

    try:
        if args.encrypt is not None:
            print(get_vault().encrypt(args.encrypt))
            return 0

        validate_config()
        if args.validate_config:
            logger.info("Configuration is valid")
            return 0

        if args.sync_account:
            return run_account_sync(args.sync_account, args.mode)
        if args.sync_all:
            return run_all_accounts_sync(args.mode)
        if args.auto:
            return run_auto_sync_once()
        return serve()

    except (ConfigurationError, CryptoError, ValueError) as e:
        logger.error(str(e))
        return 2
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
