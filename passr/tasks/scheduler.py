"""
Periodic lifecycle jobs.

Two independent interval jobs run on the app's event loop:

- expired listing cleanup (every ``CLEANUP_INTERVAL_SECONDS``)
- expiration warnings (every ``WARNING_INTERVAL_SECONDS``)

``max_instances=1`` makes a fire that lands while the previous tick is still
running get skipped instead of overlapping it; ``coalesce`` folds a backlog of
missed fires into one run.
"""
import logging
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from passr.config import (
    CLEANUP_INTERVAL_SECONDS,
    ENABLE_EXPIRED_LISTING_CLEANUP,
    LISTING_TTL_HOURS,
    WARNING_INTERVAL_SECONDS,
    WARNING_WINDOW_END_HOURS,
    WARNING_WINDOW_START_HOURS,
)
from passr.tasks.expiration_warnings import run_expiration_warnings, window_fits_ttl
from passr.tasks.listing_cleanup import run_expired_listing_cleanup

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "expired_listing_cleanup"
WARNING_JOB_ID = "expiration_warnings"


def _on_job_error(event):
    logger.error("Scheduled job FAILED: job_id=%s error=%s", event.job_id, event.exception)


def _on_job_missed(event):
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def create_scheduler(cleanup_seconds: int = CLEANUP_INTERVAL_SECONDS,
                     warning_seconds: int = WARNING_INTERVAL_SECONDS) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 30,
        },
    )

    scheduler.add_job(
        run_expired_listing_cleanup,
        trigger=IntervalTrigger(seconds=cleanup_seconds),
        id=CLEANUP_JOB_ID,
        name="Delete Expired Listings",
        replace_existing=True,
    )
    scheduler.add_job(
        run_expiration_warnings,
        trigger=IntervalTrigger(seconds=warning_seconds),
        id=WARNING_JOB_ID,
        name="Send Expiration Warnings",
        replace_existing=True,
    )

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)
    return scheduler


def start_lifecycle_scheduler(enabled: bool = ENABLE_EXPIRED_LISTING_CLEANUP) -> Optional[AsyncIOScheduler]:
    """Start the lifecycle jobs if the feature flag allows it. Must be called from a running loop."""
    if not enabled:
        logger.info("Expired listing cleanup is disabled (ENABLE_EXPIRED_LISTING_CLEANUP != 'true')")
        return None

    if not window_fits_ttl(LISTING_TTL_HOURS, WARNING_WINDOW_START_HOURS, WARNING_WINDOW_END_HOURS):
        logger.warning(
            "Expiration warning window [%sh, %sh) does not fit inside the %sh listing TTL, "
            "some listings will expire without a warning",
            WARNING_WINDOW_START_HOURS,
            WARNING_WINDOW_END_HOURS,
            LISTING_TTL_HOURS,
        )

    scheduler = create_scheduler()
    scheduler.start()
    logger.info(
        "Lifecycle scheduler started: cleanup every %ss, expiration warnings every %ss",
        CLEANUP_INTERVAL_SECONDS,
        WARNING_INTERVAL_SECONDS,
    )
    return scheduler
