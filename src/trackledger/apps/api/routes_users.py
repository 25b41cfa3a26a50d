from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from trackledger.core.security.principal import Principal
from trackledger.core.users.service import UserDirectory

from .auth import current_principal
from .deps import get_user_directory
from .responses import ok

router = APIRouter()


@router.get("")
def list_users(
    principal: Principal = Depends(current_principal),
    directory: UserDirectory = Depends(get_user_directory),
) -> dict:
    return ok([user.public_record() for user in directory.list_users(principal)])


@router.post("")
def create_user(
    body: Any = Body(default=None),
    principal: Principal = Depends(current_principal),
    directory: UserDirectory = Depends(get_user_directory),
) -> dict:
    return ok(directory.create_user(principal, body).public_record())


@router.get("/{user_id}")
def get_user(
    user_id: str,
    principal: Principal = Depends(current_principal),
    directory: UserDirectory = Depends(get_user_directory),
) -> dict:
    return ok(directory.get_user(principal, user_id).public_record())


@router.put("/{user_id}")
def update_user(
    user_id: str,
    body: Any = Body(default=None),
    principal: Principal = Depends(current_principal),
    directory: UserDirectory = Depends(get_user_directory),
) -> dict:
    return ok(directory.update_user(principal, user_id, body).public_record())


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    principal: Principal = Depends(current_principal),
    directory: UserDirectory = Depends(get_user_directory),
) -> dict:
    deleted = directory.delete_user(principal, user_id)
    return ok({"id": deleted.id})
