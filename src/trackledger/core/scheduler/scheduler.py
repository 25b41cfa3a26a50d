from __future__ import annotations

import logging
import os
from pathlib import Path
from zoneinfo import ZoneInfo

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from trackledger.core.logging import log_event
from trackledger.core.ops.doctor import run_doctor
from trackledger.core.store import default_state_dir

INTEGRITY_JOB_ID = "integrity-check"

logger = logging.getLogger("trackledger.ops")


def run_integrity_check(state_dir: str) -> bool:
    report = run_doctor(state_dir=state_dir, repair=False)
    if not report.ok:
        log_event(
            logger,
            "integrity_check_failed",
            level=logging.WARNING,
            invalid=report.summary.invalid_records,
            duplicates=report.summary.duplicate_ids,
            inconsistent=report.summary.inconsistent_progress,
        )
    return report.ok


class SchedulerService:
    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.test_mode = os.getenv("TRACKLEDGER_TEST_MODE", "").casefold() in {"1", "true", "yes", "on"}
        self.timezone = ZoneInfo(os.getenv("TRACKLEDGER_TIMEZONE", "UTC"))
        self.scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone=self.timezone,
        )
        self._started = False

    def start(self) -> None:
        if self.test_mode or self._started:
            return
        self.scheduler.start()
        self._started = True

    def shutdown(self) -> None:
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False

    def schedule_integrity_check(self, every_minutes: int) -> None:
        self.scheduler.add_job(
            run_integrity_check,
            trigger="interval",
            id=INTEGRITY_JOB_ID,
            minutes=every_minutes,
            kwargs={"state_dir": str(self.state_dir)},
            replace_existing=True,
        )

    def job_ids(self) -> list[str]:
        return [job.id for job in self.scheduler.get_jobs()]
