# profitra/sweeper.py
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from profitra.core.clock import Clock
from profitra.database import Database
from profitra.yield_engine import SweepResult, sweep_matured

logger = logging.getLogger(__name__)

JOB_ID = "sweep_matured_investments"


class MaturitySweeper:
    """Periodic payout of matured investments, independent of request handling."""

    def __init__(self, database: Database, clock: Clock, *, interval_seconds: int = 60):
        self.database = database
        self.clock = clock
        self.interval_seconds = interval_seconds
        self.last_result: Optional[SweepResult] = None
        self.scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": max(30, interval_seconds),
            },
            timezone="UTC",
        )

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def run_once(self) -> Optional[SweepResult]:
        # never let an exception escape into the scheduler thread
        try:
            result = sweep_matured(self.database, self.clock.now())
        except Exception:
            logger.exception("Maturity sweep failed")
            return None
        self.last_result = result
        return result

    def start(self) -> None:
        if self.running:
            return
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Sweep matured investments",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Maturity sweeper started (every %ss)", self.interval_seconds)

    def shutdown(self, wait: bool = False) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=wait)
        logger.info("Maturity sweeper stopped")
