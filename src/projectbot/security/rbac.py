from __future__ import annotations

"""Role based access control for the two account roles."""
from enum import Enum
from typing import Callable, Dict, Set

from fastapi import Depends, HTTPException, status

from ..domain.models import UserAccount
from .auth import get_current_user


class Permission(str, Enum):
    CHATBOT_READ = "chatbot:read"
    CHATBOT_WRITE = "chatbot:write"
    PROJECT_READ = "project:read"
    PROJECT_WRITE = "project:write"
    SETTINGS_READ = "settings:read"
    SETTINGS_WRITE = "settings:write"
    USERS_ADMIN = "users:admin"
    ADMIN = "admin:*"


ROLE_PERMISSIONS: Dict[str, Set[Permission]] = {
    "user": {
        Permission.CHATBOT_READ,
        Permission.CHATBOT_WRITE,
        Permission.PROJECT_READ,
        Permission.PROJECT_WRITE,
        Permission.SETTINGS_READ,
    },
    "admin": {Permission.ADMIN},
}


def user_permissions(user: UserAccount) -> Set[Permission]:
    return set(ROLE_PERMISSIONS.get(user.role, set()))


def is_authorized(user: UserAccount, required: Permission) -> bool:
    perms = user_permissions(user)
    if Permission.ADMIN in perms:
        return True
    return required in perms


def require_permission(required: Permission) -> Callable[..., UserAccount]:
    """FastAPI dependency to enforce a single permission on a route."""

    def dependency(user: UserAccount = Depends(get_current_user)) -> UserAccount:
        if not is_authorized(user, required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return dependency
