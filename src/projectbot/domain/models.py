from __future__ import annotations

from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, EmailStr, Field


Role = Literal["admin", "user"]
SummaryPeriod = Literal["daily", "week-to-date", "weekly"]


class UserAccount(BaseModel):
    id: int
    username: str
    display_name: str
    initial: str
    role: Role = "user"
    created_at: str
    password_hash: str = Field(default="", exclude=True)


class UserCreate(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)
    display_name: str = Field(min_length=1)
    role: Role = "user"


class UserUpdate(BaseModel):
    display_name: Optional[str] = None
    role: Optional[Role] = None
    password: Optional[str] = Field(default=None, min_length=6)


class Project(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    slack_channel_id: Optional[str] = None
    created_at: str


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    slack_channel_id: Optional[str] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    slack_channel_id: Optional[str] = None


class Chatbot(BaseModel):
    id: int
    name: str
    slack_channel_id: str
    public_token: str
    is_active: bool = True
    require_auth: bool = False
    project_id: Optional[int] = None
    # Legacy single-project Asana link, kept alongside ChatbotAsanaProject rows.
    asana_project_id: Optional[str] = None
    system_prompt: Optional[str] = None
    output_format: Optional[str] = None
    created_by_id: int
    created_at: str


class ChatbotCreate(BaseModel):
    name: str = Field(min_length=1)
    slack_channel_id: str = ""
    is_active: bool = True
    require_auth: bool = False
    project_id: Optional[int] = None
    asana_project_id: Optional[str] = None
    system_prompt: Optional[str] = None
    output_format: Optional[str] = None


class ChatbotUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    slack_channel_id: Optional[str] = None
    is_active: Optional[bool] = None
    require_auth: Optional[bool] = None
    project_id: Optional[int] = None
    asana_project_id: Optional[str] = None
    system_prompt: Optional[str] = None
    output_format: Optional[str] = None


class PublicChatbot(BaseModel):
    id: int
    name: str
    public_token: str
    is_active: bool
    require_auth: bool


class ChatbotAsanaProject(BaseModel):
    id: int
    chatbot_id: int
    asana_project_id: str
    project_name: str
    project_type: str = "main"
    created_at: str


class ChatbotAsanaProjectCreate(BaseModel):
    asana_project_id: str = Field(min_length=1)
    project_name: str = Field(min_length=1)
    project_type: str = "main"


class Document(BaseModel):
    id: int
    chatbot_id: int
    original_name: str
    file_type: str
    content: str = Field(default="", exclude=True)
    uploaded_by_id: Optional[int] = None
    created_at: str


class Message(BaseModel):
    id: int
    chatbot_id: int
    user_id: Optional[int] = None
    content: str
    is_user_message: bool
    citation: Optional[str] = None
    created_at: str


class Summary(BaseModel):
    id: int
    chatbot_id: int
    content: str
    week: str
    sent_at: str


class ProjectSummary(BaseModel):
    id: int
    project_id: int
    content: str
    week: str
    slack_channel_id: Optional[str] = None
    sent_at: str


class EmailRecipient(BaseModel):
    id: int
    chatbot_id: int
    email: EmailStr


class ProjectEmailRecipient(BaseModel):
    id: int
    project_id: int
    email: EmailStr


class RecipientCreate(BaseModel):
    email: EmailStr


class Settings(BaseModel):
    """Application-wide settings row.

    ``system_prompt_template`` and ``summary_prompt`` are ``None`` until an
    admin overrides them; the built-in defaults apply in that case.
    ``project_schedules`` maps a project id to ``{"daily": bool, "weekly": bool}``
    overrides for the scheduled summary jobs.
    """

    openai_model: str = "gpt-4o"
    include_source_details: bool = False
    include_date_in_source: bool = False
    include_user_in_source: bool = False
    system_prompt_template: Optional[str] = None
    summary_prompt: Optional[str] = None
    smtp_enabled: bool = False
    smtp_host: Optional[str] = None
    smtp_port: str = "587"
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = Field(default=None, exclude=True)
    smtp_from: Optional[str] = None
    enable_daily_schedule: bool = False
    daily_schedule_time: str = "08:00"
    enable_weekly_schedule: bool = False
    weekly_schedule_day: str = "monday"
    weekly_schedule_time: str = "08:00"
    project_schedules: Dict[str, Dict[str, bool]] = Field(default_factory=dict)
    updated_at: Optional[str] = None


class SettingsUpdate(BaseModel):
    openai_model: Optional[str] = None
    include_source_details: Optional[bool] = None
    include_date_in_source: Optional[bool] = None
    include_user_in_source: Optional[bool] = None
    system_prompt_template: Optional[str] = None
    summary_prompt: Optional[str] = None
    smtp_enabled: Optional[bool] = None
    smtp_host: Optional[str] = None
    smtp_port: Optional[str] = None
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: Optional[str] = None
    enable_daily_schedule: Optional[bool] = None
    daily_schedule_time: Optional[str] = None
    enable_weekly_schedule: Optional[bool] = None
    weekly_schedule_day: Optional[str] = None
    weekly_schedule_time: Optional[str] = None
    project_schedules: Optional[Dict[str, Dict[str, bool]]] = None


class SummaryResult(BaseModel):
    summary: Optional[ProjectSummary] = None
    slack_sent: bool = False
    email_sent: bool = False
    message: str = ""


class ChatbotSummaryResult(BaseModel):
    summary: Summary
    email_sent: bool
    email_details: Dict[str, object] = Field(default_factory=dict)


class SchedulerStatus(BaseModel):
    running: bool
    active_tasks: List[str]
    next_runs: Dict[str, Optional[str]] = Field(default_factory=dict)
