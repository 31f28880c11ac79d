from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, List, Optional
import logging
import os

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from ..domain.models import Settings


logger = logging.getLogger("projectbot.services.slack")


@dataclass
class SlackMessage:
    text: str
    user: str
    ts: str

    @property
    def sent_at(self) -> datetime:
        try:
            return datetime.fromtimestamp(float(self.ts), tz=UTC)
        except (TypeError, ValueError):
            return datetime.fromtimestamp(0, tz=UTC)

    @property
    def formatted_date(self) -> str:
        return self.sent_at.strftime("%Y-%m-%d @ %H:%M UTC")


def format_for_context(message: SlackMessage, settings: Optional[Settings]) -> str:
    """Render one Slack message as a context line.

    Author and date are only attached when source details are enabled and the
    matching toggle is on.
    """
    prefix = "SLACK MESSAGE"
    if settings and settings.include_source_details:
        if settings.include_user_in_source and message.user:
            prefix += f" FROM: {message.user}"
        if settings.include_date_in_source:
            prefix += f" DATE: {message.formatted_date}"
    return f"{prefix}: {message.text}"


class SlackClient:
    def __init__(self, token: Optional[str] = None) -> None:
        self.token = token if token is not None else os.getenv("SLACK_BOT_TOKEN", "")
        self._client = WebClient(token=self.token or None)

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def history(self, channel_id: str, limit: int = 100) -> List[SlackMessage]:
        resp = self._client.conversations_history(channel=channel_id, limit=limit)
        out: List[SlackMessage] = []
        for m in resp.get("messages", []) or []:
            if m.get("subtype") == "bot_message":
                continue
            out.append(SlackMessage(text=m.get("text") or "", user=m.get("user") or "unknown", ts=m.get("ts") or "0"))
        # Slack returns newest first.
        out.reverse()
        return out

    def recent_messages(self, channel_id: str, days: int = 7, limit: int = 200) -> List[SlackMessage]:
        cutoff = datetime.now(UTC) - timedelta(days=days)
        return [m for m in self.history(channel_id, limit=limit) if m.sent_at >= cutoff]

    def validate_channel(self, channel_id: str) -> Dict[str, Any]:
        if not channel_id:
            return {"valid": False, "error": "No channel id"}
        if not self.configured:
            return {"valid": False, "error": "Slack token not configured"}
        try:
            info = self._client.conversations_info(channel=channel_id)
            channel = info.get("channel") or {}
            return {"valid": True, "name": channel.get("name"), "is_member": bool(channel.get("is_member"))}
        except SlackApiError as exc:
            return {"valid": False, "error": exc.response.get("error", str(exc))}

    def list_channels(self) -> List[Dict[str, Any]]:
        resp = self._client.conversations_list(limit=1000, exclude_archived=True)
        return [
            {"id": c.get("id"), "name": c.get("name"), "is_member": bool(c.get("is_member"))}
            for c in resp.get("channels", []) or []
        ]

    def post_message(self, channel_id: str, text: str) -> bool:
        resp = self._client.chat_postMessage(channel=channel_id, text=text)
        return bool(resp.get("ok"))

    def test_connection(self) -> Dict[str, Any]:
        if not self.configured:
            return {"connected": False, "error": "Slack token not configured"}
        try:
            resp = self._client.auth_test()
            return {"connected": True, "team": resp.get("team"), "user": resp.get("user")}
        except SlackApiError as exc:
            return {"connected": False, "error": exc.response.get("error", str(exc))}


_client: Optional[SlackClient] = None


def get_slack_client() -> SlackClient:
    global _client
    if _client is None:
        _client = SlackClient()
    return _client
