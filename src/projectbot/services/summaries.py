from __future__ import annotations

"""Project and chatbot summaries.

A project summary is built in two model passes: one HTML fragment per chatbot
with messages in the window, then a merge of those fragments into a single
project summary. A window without any messages returns early with no model
calls and nothing persisted.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Dict, List, Optional
import logging

from ..domain.models import (
    Chatbot,
    ChatbotSummaryResult,
    Message,
    Project,
    Settings,
    SummaryPeriod,
    SummaryResult,
)
from ..infrastructure.events import SUMMARY_CREATED, publish_event
from ..infrastructure.storage import Storage
from ..observability.metrics import SUMMARIES_GENERATED
from . import llm as llm_service
from .email_sender import DEFAULT_PROJECT_SENDER, send_html_email
from .html_to_slack import html_to_slack
from .slack_client import SlackClient, get_slack_client


logger = logging.getLogger("projectbot.services.summaries")

PERIODS = ("daily", "week-to-date", "weekly")
PERIOD_TITLES: Dict[str, str] = {"daily": "Daily", "week-to-date": "Week-to-Date", "weekly": "Weekly"}

_CHATBOT_SECTIONS: Dict[str, str] = {
    "daily": "1. Key Progress\n2. Issues & Blockers\n3. Next Steps",
    "week-to-date": "1. Weekly Overview\n2. Key Progress\n3. Issues & Blockers\n4. Next Steps",
    "weekly": "1. Weekly Overview\n2. Key Progress\n3. Issues & Blockers\n4. Next Steps / Action Items",
}

_CHATBOT_PROMPT = """Generate a {adjective} {period} summary for {chatbot} covering the period {date_range}.
Focus on key updates, progress made, issues raised, and next steps.
Organize the summary into sections:
{sections}

Format the response as HTML with appropriate headings, paragraphs, and lists."""

_PROJECT_PROMPT = (
    "You are an expert construction project manager. Merge the chatbot summaries below into one "
    "{title} for the {project} homebuilding project. Combine overlapping points and keep the facts "
    "stated in the chatbot summaries. Format the summary in HTML with sections for: "
    "1) Key Achievements, 2) Issues or Blockers, 3) Upcoming Work, and 4) Action Items. "
    "Keep it professional and informative."
)

DEFAULT_SUMMARY_PROMPT = (
    "You are an expert construction project manager. Create a concise weekly summary of activity for the "
    "{{projectName}} homebuilding project based on Slack channel messages. Focus on key decisions, progress "
    "updates, issues, and upcoming milestones. Format the summary in HTML with sections for: "
    "1) Key Achievements, 2) Issues or Blockers, 3) Upcoming Work, and 4) Action Items. "
    "Keep it professional and informative."
)


class SummaryError(RuntimeError):
    pass


class ProjectNotFoundError(SummaryError):
    pass


class NoChatbotsError(SummaryError):
    pass


class NoActivityError(SummaryError):
    pass


class SummaryGenerationError(SummaryError):
    pass


@dataclass
class SummaryWindow:
    period: str
    start: datetime
    end: datetime
    label: str

    @property
    def title(self) -> str:
        return PERIOD_TITLES[self.period]

    @property
    def date_range(self) -> str:
        return f"{self.start:%b} {self.start.day} - {self.end:%b} {self.end.day}, {self.end.year}"


def iso_week_label(moment: datetime) -> str:
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def summary_window(period: str, now: Optional[datetime] = None) -> SummaryWindow:
    """Resolve the message window for ``period`` in UTC."""
    if period not in PERIODS:
        raise ValueError(f"Unknown summary period: {period}")
    now = (now or datetime.now(UTC)).astimezone(UTC)
    monday = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "daily":
        return SummaryWindow(period, now - timedelta(days=1), now, f"Daily-{now:%Y-%m-%d}")
    if period == "week-to-date":
        return SummaryWindow(period, monday, now, f"WeekToDate-{now:%Y-%m-%d}")
    start = monday - timedelta(days=7)
    end = monday - timedelta(microseconds=1)
    return SummaryWindow(period, start, end, iso_week_label(start))


def _transcript(messages: List[Message]) -> str:
    lines = []
    for m in messages:
        speaker = "User" if m.is_user_message else "Assistant"
        lines.append(f"[{m.created_at}] {speaker}: {m.content}")
    return "\n".join(lines)


def chatbot_summary_prompt(chatbot_name: str, window: SummaryWindow) -> str:
    return _CHATBOT_PROMPT.format(
        adjective="comprehensive" if window.period == "weekly" else "concise",
        period=window.title.lower(),
        chatbot=chatbot_name,
        date_range=window.date_range,
        sections=_CHATBOT_SECTIONS[window.period],
    )


def summarize_chatbot_window(
    chatbot: Chatbot, messages: List[Message], window: SummaryWindow, settings: Optional[Settings]
) -> str:
    prompt = chatbot_summary_prompt(chatbot.name, window)
    payload = [
        {"role": "system", "content": prompt},
        {"role": "user", "content": f"Conversation messages for {chatbot.name}:\n\n{_transcript(messages)}"},
    ]
    return llm_service.complete(payload, settings, temperature=llm_service.SUMMARY_TEMPERATURE)


def merge_project_summary(
    project_name: str, fragments: List[tuple[str, str]], window: SummaryWindow, settings: Optional[Settings]
) -> str:
    title = f"{window.title} Summary ({window.date_range})"
    body = "\n\n".join(f"<h3>{name}</h3>\n{html}" for name, html in fragments)
    payload = [
        {"role": "system", "content": _PROJECT_PROMPT.format(title=title, project=project_name)},
        {"role": "user", "content": f"Chatbot summaries for the {project_name} project:\n\n{body}"},
    ]
    return llm_service.complete(payload, settings, temperature=llm_service.SUMMARY_TEMPERATURE)


def slack_summary_text(project_name: str, html: str, chatbot_count: int, period_title: str) -> str:
    header = f"*{period_title} Summary: {project_name}*"
    scope = f"_Covering {chatbot_count} chatbot{'s' if chatbot_count != 1 else ''}_"
    return f"{header}\n{scope}\n\n{html_to_slack(html)}"


def post_summary_to_slack(
    slack: SlackClient, channel_id: str, project_name: str, html: str, chatbot_count: int, period_title: str
) -> bool:
    if not slack.configured:
        logger.info("Slack not configured; summary for %s not posted", project_name)
        return False
    try:
        return slack.post_message(channel_id, slack_summary_text(project_name, html, chatbot_count, period_title))
    except Exception:
        logger.exception("Failed to post %s summary for %s to %s", period_title, project_name, channel_id)
        return False


def _project_and_chatbots(storage: Storage, project_id: int) -> tuple[Project, List[Chatbot]]:
    project = storage.get_project(project_id)
    if project is None:
        raise ProjectNotFoundError(f"Project with ID {project_id} not found")
    chatbots = storage.list_project_chatbots(project_id)
    if not chatbots:
        raise NoChatbotsError(f"No chatbots found for project {project.name} (ID: {project_id})")
    return project, chatbots


def generate_project_summary(
    storage: Storage,
    project_id: int,
    period: SummaryPeriod,
    settings: Optional[Settings] = None,
    *,
    slack_channel_id: Optional[str] = None,
    send_email: bool = True,
    slack: Optional[SlackClient] = None,
    now: Optional[datetime] = None,
) -> SummaryResult:
    project, chatbots = _project_and_chatbots(storage, project_id)
    window = summary_window(period, now)

    active: List[tuple[Chatbot, List[Message]]] = []
    for chatbot in chatbots:
        messages = storage.list_messages_between(chatbot.id, window.start, window.end)
        if messages:
            active.append((chatbot, messages))
        else:
            logger.info("No messages for chatbot %s in %s window; skipping", chatbot.name, period)

    if not active:
        SUMMARIES_GENERATED.labels(period=period, result="no_activity").inc()
        logger.info("No activity for project %s in %s window; nothing generated", project.name, period)
        return SummaryResult(message=f"No activity found for {project.name} in the {window.title.lower()} window")

    fragments: List[tuple[str, str]] = []
    for chatbot, messages in active:
        try:
            fragments.append((chatbot.name, summarize_chatbot_window(chatbot, messages, window, settings)))
        except Exception as exc:
            logger.error("Chatbot summary failed for %s (%s): %s", chatbot.name, period, exc)
    if not fragments:
        SUMMARIES_GENERATED.labels(period=period, result="failed").inc()
        raise SummaryGenerationError(f"Could not summarize any chatbot for project {project.name}")

    try:
        content = merge_project_summary(project.name, fragments, window, settings)
    except Exception as exc:
        SUMMARIES_GENERATED.labels(period=period, result="failed").inc()
        raise SummaryGenerationError(f"Project summary generation failed: {exc}") from exc

    summary = storage.create_project_summary(project.id, content, window.label, slack_channel_id or None)
    SUMMARIES_GENERATED.labels(period=period, result="generated").inc()
    publish_event(SUMMARY_CREATED, {"project_id": project.id, "summary_id": summary.id, "period": period})

    slack_sent = False
    if slack_channel_id:
        slack_sent = post_summary_to_slack(
            slack or get_slack_client(), slack_channel_id, project.name, content, len(chatbots), window.title
        )

    email_sent = False
    if send_email:
        recipients = [r.email for r in storage.list_project_recipients(project.id)]
        if recipients:
            result = send_html_email(
                recipients,
                f"{window.title} Project Summary: {project.name}",
                content,
                settings,
                default_sender=DEFAULT_PROJECT_SENDER,
            )
            email_sent = bool(result.get("success"))

    return SummaryResult(
        summary=summary,
        slack_sent=slack_sent,
        email_sent=email_sent,
        message=f"{window.title} summary generated for {project.name}",
    )


def summary_prompt(project_name: str, settings: Optional[Settings]) -> str:
    template = (settings.summary_prompt if settings else None) or DEFAULT_SUMMARY_PROMPT
    return template.replace("{{projectName}}", project_name)


def generate_chatbot_summary(
    storage: Storage,
    chatbot: Chatbot,
    settings: Optional[Settings] = None,
    *,
    slack: Optional[SlackClient] = None,
    now: Optional[datetime] = None,
) -> ChatbotSummaryResult:
    """Weekly summary of the chatbot's Slack channel, persisted and e-mailed."""
    slack = slack or get_slack_client()
    now = now or datetime.now(UTC)
    messages = []
    if chatbot.slack_channel_id and slack.configured:
        messages = slack.recent_messages(chatbot.slack_channel_id, days=7)
    if not messages:
        raise NoActivityError("No messages found for the past week")

    payload = [
        {"role": "system", "content": summary_prompt(chatbot.name, settings)},
        {
            "role": "user",
            "content": f"Here are the Slack messages from the past week for the {chatbot.name} project:\n\n"
            + "\n\n".join(f"{m.user}: {m.text}" for m in messages),
        },
    ]
    try:
        content = llm_service.complete(payload, settings, temperature=llm_service.SUMMARY_TEMPERATURE)
    except Exception as exc:
        SUMMARIES_GENERATED.labels(period="chatbot-weekly", result="failed").inc()
        raise SummaryGenerationError(f"Summary generation failed: {exc}") from exc

    summary = storage.create_summary(chatbot.id, content, iso_week_label(now))
    SUMMARIES_GENERATED.labels(period="chatbot-weekly", result="generated").inc()
    publish_event(SUMMARY_CREATED, {"chatbot_id": chatbot.id, "summary_id": summary.id, "period": "weekly"})

    recipients = [r.email for r in storage.list_recipients(chatbot.id)]
    email = send_html_email(
        recipients, f"Weekly Summary: {chatbot.name} - {now:%B} {now.day}, {now.year}", content, settings
    )
    return ChatbotSummaryResult(summary=summary, email_sent=bool(email.get("success")), email_details=email)
