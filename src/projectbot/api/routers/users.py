from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...domain.models import UserAccount, UserCreate, UserUpdate
from ...infrastructure.storage import Storage, get_storage
from ...security.auth import create_user_account, hash_password
from ...security.rbac import Permission, require_permission

router = APIRouter(prefix="/users", tags=["users"])

admin_access = require_permission(Permission.USERS_ADMIN)


@router.get("", response_model=List[UserAccount])
def list_users(storage: Storage = Depends(get_storage), user: UserAccount = Depends(admin_access)) -> List[UserAccount]:
    return storage.list_users()


@router.post("", response_model=UserAccount, status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, storage: Storage = Depends(get_storage), user: UserAccount = Depends(admin_access)) -> UserAccount:
    try:
        return create_user_account(storage, payload.username, payload.password, payload.display_name, payload.role)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.patch("/{user_id}", response_model=UserAccount)
def update_user(
    user_id: int,
    payload: UserUpdate,
    storage: Storage = Depends(get_storage),
    user: UserAccount = Depends(admin_access),
) -> UserAccount:
    if storage.get_user(user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    fields = payload.model_dump(exclude_unset=True, exclude={"password"})
    if payload.password:
        fields["password_hash"] = hash_password(payload.password)
    return storage.update_user(user_id, **fields)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: int, storage: Storage = Depends(get_storage), user: UserAccount = Depends(admin_access)) -> Response:
    if user_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own account")
    if not storage.delete_user(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
