from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional
from pydantic import BaseModel, Field

from .models import Message


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    token: Optional[str] = None


class ChatReply(BaseModel):
    content: str
    citation: str


class ChatExchange(BaseModel):
    user_message: Message
    bot_message: Message


@dataclass
class AsanaTaskBlocks:
    """Pre-rendered task listings for one linked Asana project."""

    project_id: str
    label: str
    all_tasks: str
    overdue: str
    upcoming: str
    completed: str
    task_count: int = 0


@dataclass
class ChatContext:
    documents: List[str] = field(default_factory=list)
    slack_messages: List[str] = field(default_factory=list)
    asana: List[AsanaTaskBlocks] = field(default_factory=list)

    @property
    def has_asana_tasks(self) -> bool:
        return any(block.task_count > 0 for block in self.asana)
