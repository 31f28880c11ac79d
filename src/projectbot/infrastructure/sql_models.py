"""
SQLAlchemy table definitions backing the relational storage implementation.
"""
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    # Stored naive; SQLite drops tzinfo anyway.
    return datetime.now(UTC).replace(tzinfo=None)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False, unique=True, index=True)
    password = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    initial = Column(String, nullable=False)
    role = Column(String, nullable=False, default="user")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ProjectRow(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    slack_channel_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ChatbotRow(Base):
    __tablename__ = "chatbots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    slack_channel_id = Column(String, nullable=False, default="")
    public_token = Column(String, nullable=False, unique=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    require_auth = Column(Boolean, nullable=False, default=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    asana_project_id = Column(String, nullable=True)
    system_prompt = Column(Text, nullable=True)
    output_format = Column(Text, nullable=True)
    created_by_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ChatbotAsanaProjectRow(Base):
    __tablename__ = "chatbot_asana_projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chatbot_id = Column(Integer, ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True)
    asana_project_id = Column(String, nullable=False)
    project_name = Column(String, nullable=False)
    project_type = Column(String, nullable=False, default="main")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class DocumentRow(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chatbot_id = Column(Integer, ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True)
    original_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    uploaded_by_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chatbot_id = Column(Integer, ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)  # null means bot-authored
    content = Column(Text, nullable=False)
    is_user_message = Column(Boolean, nullable=False)
    citation = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class SummaryRow(Base):
    __tablename__ = "summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chatbot_id = Column(Integer, ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    week = Column(String, nullable=False)
    sent_at = Column(DateTime, nullable=False, default=utcnow)


class ProjectSummaryRow(Base):
    __tablename__ = "project_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    week = Column(String, nullable=False)
    slack_channel_id = Column(String, nullable=True)
    sent_at = Column(DateTime, nullable=False, default=utcnow)


class EmailRecipientRow(Base):
    __tablename__ = "email_recipients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chatbot_id = Column(Integer, ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, nullable=False)


class ProjectEmailRecipientRow(Base):
    __tablename__ = "project_email_recipients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, nullable=False)


class SettingsRow(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    openai_model = Column(String, nullable=False, default="gpt-4o")
    include_source_details = Column(Boolean, nullable=False, default=False)
    include_date_in_source = Column(Boolean, nullable=False, default=False)
    include_user_in_source = Column(Boolean, nullable=False, default=False)
    system_prompt_template = Column(Text, nullable=True)
    summary_prompt = Column(Text, nullable=True)
    smtp_enabled = Column(Boolean, nullable=False, default=False)
    smtp_host = Column(String, nullable=True)
    smtp_port = Column(String, nullable=False, default="587")
    smtp_user = Column(String, nullable=True)
    smtp_pass = Column(String, nullable=True)
    smtp_from = Column(String, nullable=True)
    enable_daily_schedule = Column(Boolean, nullable=False, default=False)
    daily_schedule_time = Column(String, nullable=False, default="08:00")
    enable_weekly_schedule = Column(Boolean, nullable=False, default=False)
    weekly_schedule_day = Column(String, nullable=False, default="monday")
    weekly_schedule_time = Column(String, nullable=False, default="08:00")
    project_schedules = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
