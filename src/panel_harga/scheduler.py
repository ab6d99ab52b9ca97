"""Periodic job triggers driven by the ``schedule`` library.

Three jobs are registered on a private ``schedule.Scheduler``:

    ingestion  daily at scheduler.daily_ingestion_time
    expiry     hourly at scheduler.expiry_check_minute
    cleanup    weekly on scheduler.cleanup_day at scheduler.cleanup_time

Daily and weekly times are wall-clock times in scheduler.timezone, not
the host's local zone.

``run_pending`` is polled from an asyncio loop; each due job is started
as a task. A job that is still running when it comes due again is
skipped, never overlapped. Different jobs may run at the same time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import schedule

from panel_harga.core.models import IngestionRun
from panel_harga.pipeline import PricePipeline

logger = logging.getLogger(__name__)

INGESTION_JOB = "ingestion"
EXPIRY_JOB = "expiry"
CLEANUP_JOB = "cleanup"


class PriceScheduler:
    """Runs pipeline jobs on their cadence with a per-job running flag."""

    def __init__(self, pipeline: PricePipeline) -> None:
        self._pipeline = pipeline
        self._jobs: dict[str, Callable[[], Awaitable[Any]]] = {
            INGESTION_JOB: pipeline.run_daily_ingestion,
            EXPIRY_JOB: pipeline.expire_subscriptions,
            CLEANUP_JOB: pipeline.cleanup,
        }
        self._running: dict[str, bool] = {name: False for name in self._jobs}
        self._tasks: set[asyncio.Task] = set()
        self._scheduler = schedule.Scheduler()
        self._stopped = asyncio.Event()

    def setup_schedules(self) -> None:
        cfg = self._pipeline.config.scheduler
        self._scheduler.clear()
        self._scheduler.every().day.at(cfg.daily_ingestion_time, cfg.timezone).do(
            self._spawn, INGESTION_JOB
        ).tag(INGESTION_JOB)
        self._scheduler.every().hour.at(cfg.expiry_check_minute).do(
            self._spawn, EXPIRY_JOB
        ).tag(EXPIRY_JOB)
        getattr(self._scheduler.every(), cfg.cleanup_day).at(cfg.cleanup_time, cfg.timezone).do(
            self._spawn, CLEANUP_JOB
        ).tag(CLEANUP_JOB)
        logger.info(
            "Scheduled ingestion daily at %s, expiry hourly at %s, cleanup %s at %s (%s)",
            cfg.daily_ingestion_time, cfg.expiry_check_minute,
            cfg.cleanup_day, cfg.cleanup_time, cfg.timezone,
        )

    @property
    def jobs(self) -> list[schedule.Job]:
        return self._scheduler.get_jobs()

    def is_running(self, name: str) -> bool:
        return self._running[name]

    def _spawn(self, name: str) -> None:
        task = asyncio.get_running_loop().create_task(self.run_job(name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_job(self, name: str) -> Any | None:
        """Run one job unless it is already running.

        Returns the job's result, or None when skipped or failed. Failures
        are logged and never propagate to the polling loop.
        """
        if self._running[name]:
            logger.warning("Job %s is still running; skipping this trigger", name)
            return None

        self._running[name] = True
        try:
            logger.info("Job %s started", name)
            result = await self._jobs[name]()
            logger.info("Job %s finished", name)
            return result
        except Exception:
            logger.exception("Job %s failed", name)
            return None
        finally:
            self._running[name] = False

    async def trigger_ingestion_now(self) -> IngestionRun | None:
        """Manual re-run with the same contract and guard as the daily job."""
        return await self.run_job(INGESTION_JOB)

    async def run_forever(self) -> None:
        """Poll for due jobs until ``stop()`` is called."""
        if not self.jobs:
            self.setup_schedules()
        poll = self._pipeline.config.scheduler.poll_interval
        self._stopped.clear()
        logger.info("Scheduler started")
        while not self._stopped.is_set():
            self._scheduler.run_pending()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=poll)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

    async def stop(self, wait: bool = True) -> None:
        self._stopped.set()
        if wait and self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
