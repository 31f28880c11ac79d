from __future__ import annotations

"""Cron jobs for scheduled project summaries.

Daily summaries run on weekdays at ``daily_schedule_time``; weekly summaries
run on ``weekly_schedule_day`` at ``weekly_schedule_time``. Times are HH:MM in
UTC. Each job walks every project and isolates failures per project.
"""

from typing import Callable, Dict, Optional, Tuple
import logging
import re

from apscheduler.schedulers.background import BackgroundScheduler

from ..domain.models import SchedulerStatus, Settings
from ..infrastructure.storage import Storage, get_storage
from .summaries import SummaryError, generate_project_summary


logger = logging.getLogger("projectbot.services.scheduler")

DAILY_JOB_ID = "daily-summaries"
WEEKLY_JOB_ID = "weekly-summaries"
DEFAULT_TIME = (8, 0)
_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")
_DAYS = {
    "monday": "mon",
    "tuesday": "tue",
    "wednesday": "wed",
    "thursday": "thu",
    "friday": "fri",
    "saturday": "sat",
    "sunday": "sun",
}


def parse_time(value: Optional[str]) -> Tuple[int, int]:
    m = _TIME.match((value or "").strip())
    if not m:
        logger.error("Invalid schedule time %r; using 08:00", value)
        return DEFAULT_TIME
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        logger.error("Invalid schedule time %r; using 08:00", value)
        return DEFAULT_TIME
    return hour, minute


def cron_day(value: Optional[str]) -> str:
    return _DAYS.get((value or "").strip().lower(), "mon")


def project_enabled(settings: Settings, project_id: int, period: str) -> bool:
    override = settings.project_schedules.get(str(project_id)) or {}
    return bool(override.get(period, True))


def run_project_summaries(storage: Storage, period: str) -> Dict[str, int]:
    """Generate ``period`` summaries for every eligible project."""
    settings = storage.get_settings()
    counts = {"generated": 0, "skipped": 0, "failed": 0}
    for project in storage.list_projects():
        if not project.slack_channel_id:
            logger.info("Skipping %s summary for project %s: no Slack channel configured", period, project.name)
            counts["skipped"] += 1
            continue
        if not project_enabled(settings, project.id, "daily" if period == "daily" else "weekly"):
            logger.info("Skipping %s summary for project %s: disabled for this project", period, project.name)
            counts["skipped"] += 1
            continue
        try:
            result = generate_project_summary(
                storage, project.id, period, settings, slack_channel_id=project.slack_channel_id
            )
        except SummaryError as exc:
            counts["failed"] += 1
            logger.error("%s summary for project %s failed: %s", period, project.name, exc)
            continue
        except Exception:
            counts["failed"] += 1
            logger.exception("Unexpected error in %s summary for project %s", period, project.name)
            continue
        if result.summary is None:
            counts["skipped"] += 1
        else:
            counts["generated"] += 1
    logger.info("%s summaries finished: %s", period, counts)
    return counts


class SummaryScheduler:
    def __init__(self, storage_factory: Callable[[], Storage] = get_storage) -> None:
        self._storage_factory = storage_factory
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    def _run(self, period: str) -> None:
        run_project_summaries(self._storage_factory(), period)

    def start(self, settings: Settings) -> None:
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(timezone="UTC")
        self._apply(settings)
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Summary scheduler started")

    def reschedule(self, settings: Settings) -> None:
        if not self.running:
            return
        self._apply(settings)

    def _apply(self, settings: Settings) -> None:
        if self._scheduler is None:
            return
        for job_id in (DAILY_JOB_ID, WEEKLY_JOB_ID):
            if self._scheduler.get_job(job_id):
                self._scheduler.remove_job(job_id)
        if settings.enable_daily_schedule:
            hour, minute = parse_time(settings.daily_schedule_time)
            self._scheduler.add_job(
                self._run,
                trigger="cron",
                args=["daily"],
                day_of_week="mon-fri",
                hour=hour,
                minute=minute,
                id=DAILY_JOB_ID,
                replace_existing=True,
            )
            logger.info("Daily summaries scheduled for weekdays at %02d:%02d UTC", hour, minute)
        if settings.enable_weekly_schedule:
            hour, minute = parse_time(settings.weekly_schedule_time)
            day = cron_day(settings.weekly_schedule_day)
            self._scheduler.add_job(
                self._run,
                trigger="cron",
                args=["weekly"],
                day_of_week=day,
                hour=hour,
                minute=minute,
                id=WEEKLY_JOB_ID,
                replace_existing=True,
            )
            logger.info("Weekly summaries scheduled for %s at %02d:%02d UTC", day, hour, minute)

    def stop_all(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Summary scheduler stopped")
        self._scheduler = None

    def status(self) -> SchedulerStatus:
        if not self.running:
            return SchedulerStatus(running=False, active_tasks=[])
        jobs = self._scheduler.get_jobs()
        return SchedulerStatus(
            running=True,
            active_tasks=[j.id for j in jobs],
            next_runs={j.id: j.next_run_time.isoformat() if j.next_run_time else None for j in jobs},
        )


_scheduler: Optional[SummaryScheduler] = None


def get_scheduler() -> SummaryScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = SummaryScheduler()
    return _scheduler
