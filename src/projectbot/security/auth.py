from __future__ import annotations

"""Authentication: password hashing, JWT access/refresh tokens and the
FastAPI dependencies that resolve the current user.

Env vars:
- JWT_SECRET (required in prod; default for dev)
- JWT_EXPIRES_MIN (default 60)
- JWT_REFRESH_EXPIRES_MIN (default 10080, one week)
- PROJECTBOT_ADMIN_USERNAME / PROJECTBOT_ADMIN_PASSWORD (seeded admin)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import hashlib
import hmac
import logging
import os
import secrets

import jwt
from fastapi import Depends, Header, HTTPException, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from ..domain.models import UserAccount
from ..infrastructure.storage import Storage, get_storage


logger = logging.getLogger("projectbot.security.auth")
bearer_scheme = HTTPBearer(auto_error=False)

ACCESS_TOKEN_HEADER = "X-Access-Token"
_SCRYPT = {"n": 16384, "r": 8, "p": 1, "dklen": 64}


@dataclass
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 60
    refresh_expires_min: int = 60 * 24 * 7

    @staticmethod
    def from_env() -> "JwtConfig":
        return JwtConfig(
            secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            expires_min=int(os.getenv("JWT_EXPIRES_MIN", "60")),
            refresh_expires_min=int(os.getenv("JWT_REFRESH_EXPIRES_MIN", str(60 * 24 * 7))),
        )


class LoginRequest(BaseModel):
    username: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int
    user: UserAccount


class TokenExpired(Exception):
    pass


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.scrypt(password.encode(), salt=salt.encode(), **_SCRYPT)
    return f"{digest.hex()}.{salt}"


def verify_password(password: str, stored: str) -> bool:
    hashed, _, salt = (stored or "").partition(".")
    if not hashed or not salt:
        return False
    digest = hashlib.scrypt(password.encode(), salt=salt.encode(), **_SCRYPT)
    return hmac.compare_digest(digest.hex(), hashed)


def _encode(user: UserAccount, typ: str, minutes: int, cfg: JwtConfig) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "typ": typ,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def create_access_token(user: UserAccount, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    return _encode(user, "access", cfg.expires_min, cfg)


def create_refresh_token(user: UserAccount, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    return _encode(user, "refresh", cfg.refresh_expires_min, cfg)


def issue_tokens(user: UserAccount, cfg: Optional[JwtConfig] = None) -> TokenResponse:
    cfg = cfg or JwtConfig.from_env()
    return TokenResponse(
        access_token=create_access_token(user, cfg),
        refresh_token=create_refresh_token(user, cfg),
        expires_in=cfg.expires_min * 60,
        user=user,
    )


def decode_token(token: str, expected_typ: str = "access", cfg: Optional[JwtConfig] = None) -> Dict[str, Any]:
    cfg = cfg or JwtConfig.from_env()
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
    except jwt.ExpiredSignatureError:
        raise TokenExpired()
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if data.get("typ", "access") != expected_typ:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return data


def _load_user(storage: Storage, claims: Dict[str, Any]) -> UserAccount:
    try:
        user = storage.get_user(int(claims["sub"]))
    except (KeyError, ValueError):
        user = None
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user


def authenticate(storage: Storage, username: str, password: str) -> Optional[UserAccount]:
    user = storage.get_user_by_username(username)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def refresh_access_token(storage: Storage, refresh_token: str) -> tuple[UserAccount, str]:
    """Single refresh attempt; any failure is a 401."""
    try:
        claims = decode_token(refresh_token, expected_typ="refresh")
    except TokenExpired:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    user = _load_user(storage, claims)
    return user, create_access_token(user)


def get_current_user(
    response: Response,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_refresh_token: Optional[str] = Header(default=None),
    storage: Storage = Depends(get_storage),
) -> UserAccount:
    """Resolve the bearer token to a stored user.

    An expired access token plus an ``X-Refresh-Token`` header gets exactly one
    refresh; the new access token is returned in ``X-Access-Token``.
    """
    if creds is None or not creds.scheme or creds.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        claims = decode_token(creds.credentials)
    except TokenExpired:
        if not x_refresh_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
        user, access = refresh_access_token(storage, x_refresh_token)
        response.headers[ACCESS_TOKEN_HEADER] = access
        logger.info("access_token_refreshed user=%s", user.id)
        return user
    return _load_user(storage, claims)


def create_user_account(storage: Storage, username: str, password: str, display_name: str, role: str = "user") -> UserAccount:
    if storage.get_user_by_username(username) is not None:
        raise ValueError("Username already exists")
    return storage.create_user(username, hash_password(password), display_name, role)


def ensure_admin_user(storage: Storage) -> Optional[UserAccount]:
    """Seed the admin account from env when no user with that name exists."""
    username = os.getenv("PROJECTBOT_ADMIN_USERNAME")
    password = os.getenv("PROJECTBOT_ADMIN_PASSWORD")
    if not username or not password:
        return None
    existing = storage.get_user_by_username(username)
    if existing is not None:
        return existing
    logger.info("Seeding admin user %s", username)
    return storage.create_user(username, hash_password(password), username.capitalize(), "admin")

