from __future__ import annotations

from fastapi import Depends, HTTPException, status

from ..domain.models import Chatbot, Project, Settings
from ..infrastructure.storage import Storage, get_storage


def get_settings(storage: Storage = Depends(get_storage)) -> Settings:
    """Settings row, read fresh for every request."""
    return storage.get_settings()


def require_chatbot(storage: Storage, chatbot_id: int) -> Chatbot:
    chatbot = storage.get_chatbot(chatbot_id)
    if chatbot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chatbot not found")
    return chatbot


def require_project(storage: Storage, project_id: int) -> Project:
    project = storage.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project
