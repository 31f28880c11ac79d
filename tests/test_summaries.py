from datetime import UTC, datetime

import pytest

from src.projectbot.domain.models import ProjectCreate, Settings
from src.projectbot.services import summaries
from src.projectbot.services.slack_client import SlackMessage
from src.projectbot.services.summaries import (
    NoActivityError,
    NoChatbotsError,
    ProjectNotFoundError,
    SummaryGenerationError,
    generate_chatbot_summary,
    generate_project_summary,
    summary_prompt,
    summary_window,
)

from .utils import seed_chatbot


class FakeSlack:
    configured = True

    def __init__(self, recent=None):
        self.recent = recent or []
        self.posted = []

    def post_message(self, channel_id, text):
        self.posted.append((channel_id, text))
        return True

    def recent_messages(self, channel_id, days=7, limit=200):
        return self.recent


@pytest.fixture
def sent_mail(monkeypatch):
    sent = []

    def fake_send(recipients, subject, html, settings=None, default_sender=None):
        sent.append({"recipients": list(recipients), "subject": subject, "html": html})
        return {"success": bool(recipients), "message": "sent"}

    monkeypatch.setattr(summaries, "send_html_email", fake_send)
    return sent


def _project_with_bots(storage, *names):
    project = storage.create_project(ProjectCreate(name="Maple Build", slack_channel_id="C42"))
    bots = [
        seed_chatbot(storage, name=name, public_token=f"tok-{i}", project_id=project.id)
        for i, name in enumerate(names)
    ]
    return project, bots


def test_daily_window_is_last_24_hours():
    now = datetime(2024, 5, 15, 9, 30, tzinfo=UTC)
    window = summary_window("daily", now)
    assert window.start == datetime(2024, 5, 14, 9, 30, tzinfo=UTC)
    assert window.end == now
    assert window.label == "Daily-2024-05-15"


def test_week_to_date_starts_monday_midnight():
    now = datetime(2024, 5, 15, 9, 30, tzinfo=UTC)
    window = summary_window("week-to-date", now)
    assert window.start == datetime(2024, 5, 13, tzinfo=UTC)
    assert window.label == "WeekToDate-2024-05-15"


def test_weekly_window_is_previous_iso_week():
    window = summary_window("weekly", datetime(2024, 5, 15, 9, 30, tzinfo=UTC))
    assert window.start == datetime(2024, 5, 6, tzinfo=UTC)
    assert window.end == datetime(2024, 5, 12, 23, 59, 59, 999999, tzinfo=UTC)
    assert window.label == "2024-W19"
    assert window.date_range == "May 6 - May 12, 2024"


def test_unknown_period_is_rejected():
    with pytest.raises(ValueError):
        summary_window("monthly")


def test_missing_project_and_empty_project_raise(storage):
    with pytest.raises(ProjectNotFoundError):
        generate_project_summary(storage, 42, "daily")
    project = storage.create_project(ProjectCreate(name="Empty"))
    with pytest.raises(NoChatbotsError):
        generate_project_summary(storage, project.id, "daily")


def test_no_activity_makes_no_model_calls_and_persists_nothing(storage, stub_llm, sent_mail):
    project, _ = _project_with_bots(storage, "Framing", "Roofing")
    slack = FakeSlack()

    result = generate_project_summary(storage, project.id, "daily", slack_channel_id="C42", slack=slack)

    assert result.summary is None
    assert result.message.startswith("No activity found")
    assert stub_llm.calls == []
    assert storage.list_project_summaries(project.id) == []
    assert slack.posted == []
    assert sent_mail == []


def test_project_summary_merges_active_chatbots(storage, stub_llm, sent_mail):
    project, (framing, roofing) = _project_with_bots(storage, "Framing", "Roofing")
    storage.create_message(framing.id, content="Walls are up", is_user_message=True)
    storage.add_project_recipient(project.id, "owner@example.com")
    stub_llm.reply = "<h2>Progress</h2><p>Walls are <strong>up</strong></p>"
    slack = FakeSlack()

    result = generate_project_summary(
        storage, project.id, "daily", Settings(), slack_channel_id="C42", slack=slack, now=datetime.now(UTC)
    )

    # one fragment for the active chatbot, one merge pass
    assert len(stub_llm.calls) == 2
    assert "Walls are up" in stub_llm.calls[0][1]["content"]
    assert "<h3>Framing</h3>" in stub_llm.calls[1][1]["content"]
    assert "Roofing" not in stub_llm.calls[1][1]["content"]

    stored = storage.list_project_summaries(project.id)
    assert [s.id for s in stored] == [result.summary.id]
    assert stored[0].week.startswith("Daily-")
    assert stored[0].slack_channel_id == "C42"

    assert result.slack_sent
    channel, text = slack.posted[0]
    assert channel == "C42"
    assert text.startswith("*Daily Summary: Maple Build*\n_Covering 2 chatbots_")
    assert "*Progress*" in text

    assert result.email_sent
    assert sent_mail[0]["recipients"] == ["owner@example.com"]
    assert sent_mail[0]["subject"] == "Daily Project Summary: Maple Build"


def test_merge_failure_is_reported(storage, stub_llm, sent_mail):
    project, (bot,) = _project_with_bots(storage, "Framing")
    storage.create_message(bot.id, content="hello", is_user_message=True)
    stub_llm.error = RuntimeError("provider down")

    with pytest.raises(SummaryGenerationError):
        generate_project_summary(storage, project.id, "daily", now=datetime.now(UTC))
    assert storage.list_project_summaries(project.id) == []


def test_summary_prompt_placeholder():
    assert "Maple Build homebuilding project" in summary_prompt("Maple Build", None)
    custom = Settings(summary_prompt="Summarize {{projectName}} briefly.")
    assert summary_prompt("Maple Build", custom) == "Summarize Maple Build briefly."


def test_chatbot_summary_without_slack_activity(storage, stub_llm):
    bot = seed_chatbot(storage, slack_channel_id="C1")
    with pytest.raises(NoActivityError):
        generate_chatbot_summary(storage, bot, slack=FakeSlack())
    assert stub_llm.calls == []


def test_chatbot_summary_is_stored_with_iso_week(storage, stub_llm, sent_mail):
    bot = seed_chatbot(storage, slack_channel_id="C1")
    storage.add_recipient(bot.id, "pm@example.com")
    slack = FakeSlack([SlackMessage(text="Inspection passed", user="U1", ts="1715763600")])
    stub_llm.reply = "<p>Inspection passed</p>"

    result = generate_chatbot_summary(storage, bot, slack=slack, now=datetime(2024, 5, 15, tzinfo=UTC))

    assert result.summary.week == "2024-W20"
    assert result.email_sent
    assert sent_mail[0]["subject"] == "Weekly Summary: Maple Street - May 15, 2024"
    assert "U1: Inspection passed" in stub_llm.calls[0][1]["content"]
