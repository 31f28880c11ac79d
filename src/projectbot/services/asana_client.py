from __future__ import annotations

"""Asana task access and classification.

Tasks are fetched with the REST API (``/projects/{gid}/tasks``) and normalized
to ``AsanaTask`` records. The classification helpers are pure and take an
explicit ``today`` so callers and tests control the day boundary.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional
import logging
import os

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.chat_models import AsanaTaskBlocks


logger = logging.getLogger("projectbot.services.asana")

DEFAULT_BASE_URL = "https://app.asana.com/api/1.0"
TASK_FIELDS = "name,due_on,completed,assignee.name"
_TIMEOUT = (int(os.getenv("ASANA_CONNECT_TIMEOUT", "5")), int(os.getenv("ASANA_READ_TIMEOUT", "20")))


class AsanaError(RuntimeError):
    pass


@dataclass
class AsanaTask:
    name: str
    due_on: Optional[date] = None
    assignee: Optional[str] = None
    completed: bool = False


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _parse_due(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def task_from_payload(payload: Dict[str, Any]) -> AsanaTask:
    assignee = payload.get("assignee")
    if isinstance(assignee, dict):
        assignee = assignee.get("name")
    return AsanaTask(
        name=str(payload.get("name") or "Untitled task"),
        due_on=_parse_due(payload.get("due_on")),
        assignee=assignee or None,
        completed=bool(payload.get("completed")),
    )


class AsanaClient:
    def __init__(self, token: Optional[str] = None, base_url: Optional[str] = None) -> None:
        self.token = token if token is not None else os.getenv("ASANA_ACCESS_TOKEN", "")
        self.base_url = (base_url or os.getenv("ASANA_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self._session = _build_session()

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.configured:
            raise AsanaError("Asana access token not configured")
        try:
            resp = self._session.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {self.token}", "Accept": "application/json"},
                timeout=_TIMEOUT,
            )
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise AsanaError(f"Asana request failed: {exc}") from exc

    def project_name(self, project_gid: str) -> Optional[str]:
        data = self._get(f"/projects/{project_gid}", {"opt_fields": "name"})
        return (data.get("data") or {}).get("name")

    def list_tasks(self, project_gid: str) -> List[AsanaTask]:
        tasks: List[AsanaTask] = []
        params: Dict[str, Any] = {"opt_fields": TASK_FIELDS, "limit": 100}
        while True:
            data = self._get(f"/projects/{project_gid}/tasks", params)
            tasks.extend(task_from_payload(item) for item in data.get("data") or [])
            next_page = data.get("next_page") or {}
            offset = next_page.get("offset")
            if not offset:
                break
            params = dict(params, offset=offset)
        logger.debug("asana_tasks_fetched project=%s count=%s", project_gid, len(tasks))
        return tasks


def is_overdue(task: AsanaTask, today: date) -> bool:
    return (not task.completed) and task.due_on is not None and task.due_on < today


def overdue_tasks(tasks: Iterable[AsanaTask], today: date) -> List[AsanaTask]:
    return [t for t in tasks if is_overdue(t, today)]


def upcoming_tasks(tasks: Iterable[AsanaTask], today: date) -> List[AsanaTask]:
    pending = [t for t in tasks if not t.completed and not is_overdue(t, today)]
    return sorted(pending, key=lambda t: (t.due_on is None, t.due_on or today))


def completed_tasks(tasks: Iterable[AsanaTask]) -> List[AsanaTask]:
    return [t for t in tasks if t.completed]


def format_task(task: AsanaTask) -> str:
    due = task.due_on.isoformat() if task.due_on else "No due date"
    status = "Completed" if task.completed else "In Progress"
    return f'Task "{task.name}" - Due: {due}, Assigned to: {task.assignee or "Unassigned"}, Status: {status}'


def _block(label: str, view: str, tasks: List[AsanaTask]) -> str:
    header = f"ASANA TASK DATA: {label} - {view} ({len(tasks)}):"
    if not tasks:
        return f"{header}\nNo {view.lower()}."
    return header + "\n" + "\n".join(format_task(t) for t in tasks)


def build_task_blocks(project_gid: str, label: str, tasks: List[AsanaTask], today: date) -> AsanaTaskBlocks:
    return AsanaTaskBlocks(
        project_id=project_gid,
        label=label,
        all_tasks=_block(label, "All Tasks", tasks),
        overdue=_block(label, "Overdue Tasks", overdue_tasks(tasks, today)),
        upcoming=_block(label, "Upcoming Tasks", upcoming_tasks(tasks, today)),
        completed=_block(label, "Completed Tasks", completed_tasks(tasks)),
        task_count=len(tasks),
    )


_client: Optional[AsanaClient] = None


def get_asana_client() -> AsanaClient:
    global _client
    if _client is None:
        _client = AsanaClient()
    return _client
