from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...domain.models import UserAccount
from ...infrastructure.storage import Storage, get_storage
from ...security.auth import (
    LoginRequest,
    RefreshRequest,
    TokenResponse,
    JwtConfig,
    authenticate,
    get_current_user,
    issue_tokens,
    refresh_access_token,
)
from ...security.rate_limit import RateLimitExceeded, check_login

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, request: Request, storage: Storage = Depends(get_storage)) -> TokenResponse:
    try:
        check_login(f"{req.username}|{request.client.host if request.client else 'unknown'}")
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc
    user = authenticate(storage, req.username, req.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    return issue_tokens(user)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, storage: Storage = Depends(get_storage)) -> TokenResponse:
    user, access = refresh_access_token(storage, req.refresh_token)
    cfg = JwtConfig.from_env()
    return TokenResponse(access_token=access, expires_in=cfg.expires_min * 60, user=user)


@router.get("/me", response_model=UserAccount)
def me(user: UserAccount = Depends(get_current_user)) -> UserAccount:
    return user
