# service/scheduler.py
from __future__ import annotations

import logging
import threading
import time as _time
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from modules.listing_watch.lib.config import Settings
from modules.listing_watch.lib.watch import WatchService
from modules.listing_watch.main import build_service

from . import config_schema, runner
from .logging_utils import write_activity_log, write_error_log

LOG = logging.getLogger(__name__)

WATCH_JOB_ID = "listing_watch"

ServiceFactory = Callable[[Settings], WatchService]


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler so the CLI can manage lifecycle cleanly.
    Owns the WatchService too: stopping the scheduler closes the browser.
    """

    def __init__(self, scheduler: BackgroundScheduler, service: WatchService | None = None) -> None:
        self._scheduler = scheduler
        self._service = service
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # wait=False -> stop immediately; in-flight cycles are allowed to finish.
            self._scheduler.shutdown(wait=False)
        if self._service is not None:
            self._service.close()
            self._service = None
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is fully stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def start(config_path: str | None = None, *, service_factory: ServiceFactory | None = None) -> SchedulerController:
    """
    Load configuration, build the watch service and an APScheduler instance,
    register the polling job and start.

    The first cycle fires immediately; later ones every `interval_seconds`.
    Cycles are not serialized: a slow cycle may overlap the next tick, up
    to `max_overlapping_cycles` concurrent runs.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    settings = Settings.from_env_and_kwargs(cfg)

    service = (service_factory or build_service)(settings)
    scheduler = build_scheduler(settings)
    add_watch_job(scheduler, service, settings)

    scheduler.start()
    LOG.info(
        "Scheduler started: every %ss, %d configured user(s), notify=%s",
        settings.interval_seconds,
        len(settings.users),
        ",".join(settings.notify),
    )
    return SchedulerController(scheduler, service)


def build_scheduler(settings: Settings) -> BackgroundScheduler:
    job_defaults = {
        "coalesce": False,
        "max_instances": settings.max_overlapping_cycles,
    }
    executors = {"default": ThreadPoolExecutor(settings.max_overlapping_cycles)}
    jobstores = {"default": MemoryJobStore()}
    return BackgroundScheduler(
        timezone=_resolve_timezone(settings.timezone),
        job_defaults=job_defaults,
        executors=executors,
        jobstores=jobstores,
    )


def add_watch_job(scheduler: BackgroundScheduler, service: WatchService, settings: Settings) -> None:
    """
    Register the polling job with a wrapper that:

      - Logs start/finish + duration
      - Runs one cycle via ``runner.run_cycle_once()``
      - Writes an activity record per run and an error record on failure
      - Never re-raises, so a failed cycle does not stop later ticks
    """
    tz = scheduler.timezone

    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting", WATCH_JOB_ID)
        try:
            outcome = runner.run_cycle_once(
                service,
                trigger_type="scheduled",
                job_context={"job_id": WATCH_JOB_ID, "now_iso": datetime.now(tz).isoformat()},
            )
        except Exception as e:
            LOG.exception("Job[%s] raised an exception.", WATCH_JOB_ID)
            _write_error(e, duration_s=_time.monotonic() - started)
            _write_activity(status="error", duration_s=_time.monotonic() - started)
            return

        duration = _time.monotonic() - started
        LOG.info("Job[%s] finished in %.3fs (%d new)", WATCH_JOB_ID, duration, outcome.new_total)
        _write_activity(status="ok", duration_s=duration, new_total=outcome.new_total)

    scheduler.add_job(
        func=_job_wrapper,
        trigger=IntervalTrigger(seconds=settings.interval_seconds, timezone=tz),
        id=WATCH_JOB_ID,
        next_run_time=datetime.now(tz),
        max_instances=settings.max_overlapping_cycles,
        coalesce=False,
        replace_existing=True,
    )
    LOG.debug(
        "Registered job[%s] interval=%ss max_instances=%s",
        WATCH_JOB_ID,
        settings.interval_seconds,
        settings.max_overlapping_cycles,
    )


# ---- Helpers ----------------------------------------------------------------


def _resolve_timezone(tz_name: str | None):
    """APScheduler 3.x expects a pytz timezone; unknown names fall back to UTC."""
    try:
        return pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", tz_name)
        return pytz.UTC


def _write_activity(status: str, duration_s: float, new_total: int | None = None) -> None:
    try:
        write_activity_log({
            "ts": datetime.now().astimezone().isoformat(),
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": WATCH_JOB_ID,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "new_total": new_total,
            },
        })
    except OSError:
        LOG.debug("write_activity_log failed for job[%s]", WATCH_JOB_ID, exc_info=True)


def _write_error(error: BaseException, duration_s: float) -> None:
    record: dict[str, Any] = {
        "ts": datetime.now().astimezone().isoformat(),
        "source": "scheduler",
        "job_id": WATCH_JOB_ID,
        "error": repr(error),
        "error_type": type(error).__name__,
        "duration_ms": int(duration_s * 1000),
    }
    try:
        write_error_log(record)
    except OSError:
        LOG.debug("write_error_log failed for job[%s]", WATCH_JOB_ID, exc_info=True)
