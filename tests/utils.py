from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from fastapi.testclient import TestClient


def create_account(username: str, password: str = "secret123", *, role: str = "user", display_name: Optional[str] = None):
    from src.projectbot.infrastructure.storage import get_storage
    from src.projectbot.security.auth import create_user_account

    return create_user_account(get_storage(), username, password, display_name or username.title(), role)


def login(client: TestClient, username: str, password: str = "secret123") -> Tuple[Dict[str, str], Dict[str, Any]]:
    """Log in through the API, returning auth headers and the token payload."""
    res = client.post("/api/auth/login", json={"username": username, "password": password})
    assert res.status_code == 200, res.text
    data = res.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data


def admin_headers(client: TestClient) -> Dict[str, str]:
    create_account("admin", role="admin")
    headers, _ = login(client, "admin")
    return headers


def user_headers(client: TestClient, username: str = "pm") -> Dict[str, str]:
    create_account(username)
    headers, _ = login(client, username)
    return headers


def seed_chatbot(storage, *, name: str = "Maple Street", public_token: str = "abc", **fields):
    from src.projectbot.domain.models import ChatbotCreate

    return storage.create_chatbot(ChatbotCreate(name=name, **fields), created_by_id=1, public_token=public_token)


def parse_sse(body: str) -> List[Dict[str, str]]:
    """Split an SSE body into ``{"event", "data"}`` frames, skipping comments."""
    frames = []
    for raw in body.split("\n\n"):
        lines = [line for line in raw.split("\n") if line and not line.startswith(":")]
        if not lines:
            continue
        event = "message"
        data_lines = []
        for line in lines:
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data_lines.append(line[len("data: "):])
        frames.append({"event": event, "data": "\n".join(data_lines)})
    return frames
