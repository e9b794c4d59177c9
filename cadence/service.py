"""Long-running scheduler that fires catalog jobs on their cron triggers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from .errors import CadenceError
from .invoker import ScheduledInvoker
from .models import TRIGGER_MANUAL, TRIGGER_SCHEDULE, InvocationResult, JobSpec
from .schedule import DEFAULT_TIMEZONE, parse_cron

logger = logging.getLogger(__name__)


class SchedulerService:
    """Registers each job's cron triggers and runs them one at a time."""

    def __init__(
        self,
        invoker: ScheduledInvoker,
        jobs: Iterable[JobSpec],
        *,
        tz: str = DEFAULT_TIMEZONE,
        scheduler: Optional[BaseScheduler] = None,
    ) -> None:
        self.invoker = invoker
        self.job_specs = list(jobs)
        self.tz = tz
        self.scheduler = scheduler or BlockingScheduler(timezone=tz)
        self._registered = False

    def register(self) -> int:
        count = 0
        for job in self.job_specs:
            for index, expr in enumerate(job.triggers.cron):
                self.scheduler.add_job(
                    func=self._run_scheduled,
                    trigger=parse_cron(expr, self.tz),
                    args=[job.id],
                    id=f"{job.id}#{index}",
                    name=job.description or job.id,
                    replace_existing=True,
                    # one instance per job; a late run collapses into a single invocation
                    coalesce=True,
                    max_instances=1,
                    misfire_grace_time=60,
                )
                logger.info("Scheduled %s with cron %r", job.id, expr)
                count += 1
        self._registered = True
        return count

    def _run_scheduled(self, job_id: str) -> Optional[InvocationResult]:
        try:
            return self.invoker.invoke(job_id, TRIGGER_SCHEDULE)
        except CadenceError:
            logger.exception("Scheduled run of %s failed", job_id)
            return None

    def dispatch(self, job_id: str) -> Optional[InvocationResult]:
        """Manual trigger: invoke ``job_id`` immediately, exactly once."""

        return self.invoker.invoke(job_id, TRIGGER_MANUAL)

    def jobs(self, now: Optional[datetime] = None) -> List[Tuple[str, Optional[datetime]]]:
        if not self._registered:
            self.register()
        now = now or datetime.now(timezone.utc)
        return [
            (job.id, job.trigger.get_next_fire_time(None, now))
            for job in self.scheduler.get_jobs()
        ]

    def start(self) -> None:
        if not self._registered:
            self.register()
        if not self.scheduler.get_jobs():
            logger.warning("No scheduled jobs registered; nothing to do")
            return
        logger.info("Starting scheduler with %d trigger(s)", len(self.scheduler.get_jobs()))
        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Scheduler stopped")
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
