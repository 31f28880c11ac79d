import pytest

from src.projectbot.domain.models import ProjectCreate, Settings, SummaryResult
from src.projectbot.services import scheduler as scheduler_module
from src.projectbot.services.scheduler import (
    DAILY_JOB_ID,
    WEEKLY_JOB_ID,
    SummaryScheduler,
    cron_day,
    parse_time,
    project_enabled,
    run_project_summaries,
)
from src.projectbot.services.summaries import NoChatbotsError


@pytest.mark.parametrize(
    "raw,expected",
    [("08:00", (8, 0)), ("7:45", (7, 45)), ("23:59", (23, 59)), ("24:00", (8, 0)), ("noon", (8, 0)), (None, (8, 0))],
)
def test_parse_time(raw, expected):
    assert parse_time(raw) == expected


def test_cron_day():
    assert cron_day("Friday") == "fri"
    assert cron_day("someday") == "mon"


def test_project_overrides_default_to_enabled():
    settings = Settings(project_schedules={"2": {"daily": False}})
    assert project_enabled(settings, 1, "daily")
    assert not project_enabled(settings, 2, "daily")
    assert project_enabled(settings, 2, "weekly")


def test_run_skips_and_isolates_projects(storage, monkeypatch):
    no_channel = storage.create_project(ProjectCreate(name="No Channel"))
    disabled = storage.create_project(ProjectCreate(name="Disabled", slack_channel_id="C1"))
    broken = storage.create_project(ProjectCreate(name="Broken", slack_channel_id="C2"))
    quiet = storage.create_project(ProjectCreate(name="Quiet", slack_channel_id="C3"))
    busy = storage.create_project(ProjectCreate(name="Busy", slack_channel_id="C4"))
    storage.update_settings(project_schedules={str(disabled.id): {"daily": False}})

    called = []

    def fake_generate(storage_, project_id, period, settings, *, slack_channel_id=None, **kwargs):
        called.append(project_id)
        if project_id == broken.id:
            raise NoChatbotsError("no chatbots")
        if project_id == quiet.id:
            return SummaryResult(message="No activity found")
        summary = storage_.create_project_summary(project_id, "<p>x</p>", "Daily-x", slack_channel_id)
        return SummaryResult(summary=summary, slack_sent=True, message="ok")

    monkeypatch.setattr(scheduler_module, "generate_project_summary", fake_generate)

    counts = run_project_summaries(storage, "daily")

    assert called == [broken.id, quiet.id, busy.id]
    assert counts == {"generated": 1, "skipped": 3, "failed": 1}
    assert no_channel.id not in called


def test_scheduler_registers_jobs_from_settings(storage):
    sched = SummaryScheduler(storage_factory=lambda: storage)
    settings = Settings(
        enable_daily_schedule=True,
        daily_schedule_time="06:30",
        enable_weekly_schedule=True,
        weekly_schedule_day="friday",
        weekly_schedule_time="17:00",
    )
    try:
        sched.start(settings)
        status = sched.status()
        assert status.running
        assert sorted(status.active_tasks) == sorted([DAILY_JOB_ID, WEEKLY_JOB_ID])
        assert all(status.next_runs.values())

        sched.reschedule(Settings(enable_daily_schedule=True))
        assert sched.status().active_tasks == [DAILY_JOB_ID]
    finally:
        sched.stop_all()
    assert not sched.running
    assert sched.status().active_tasks == []


def test_reschedule_is_a_no_op_when_stopped():
    sched = SummaryScheduler()
    sched.reschedule(Settings(enable_daily_schedule=True))
    assert not sched.running
