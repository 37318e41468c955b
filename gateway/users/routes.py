"""User routes. /user/profile resolves the caller from the X-User-Id header."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status

from gateway.bootstrap import Gateway
from gateway.dependencies import get_current_user_id, get_gateway
from gateway.shared.schemas import (
    Paginated,
    UserCreate,
    UserDeleted,
    UserProfile,
    UserQuery,
    UserResponse,
    UserUpdate,
)

router = APIRouter(prefix="/user", tags=["users"])


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, gateway: Gateway = Depends(get_gateway)) -> UserResponse:
    user = await gateway.users.create(body)
    return UserResponse.model_validate(user)


@router.get("", response_model=Paginated[UserResponse], summary="List users")
async def list_users(
    query: UserQuery = Depends(),
    gateway: Gateway = Depends(get_gateway),
) -> Paginated[UserResponse]:
    return await gateway.users.find_all(query)


@router.get("/profile", response_model=UserProfile, summary="The caller's own profile")
async def get_profile(
    user_id: uuid.UUID = Depends(get_current_user_id),
    gateway: Gateway = Depends(get_gateway),
) -> UserProfile:
    return await gateway.users.find_one(user_id)


@router.patch("/profile/me", response_model=UserResponse)
async def update_profile(
    body: UserUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    gateway: Gateway = Depends(get_gateway),
) -> UserResponse:
    user = await gateway.users.update(user_id, body)
    return UserResponse.model_validate(user)


@router.get("/{user_id}", response_model=UserProfile)
async def get_user(user_id: uuid.UUID, gateway: Gateway = Depends(get_gateway)) -> UserProfile:
    return await gateway.users.find_one(user_id)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    gateway: Gateway = Depends(get_gateway),
) -> UserResponse:
    user = await gateway.users.update(user_id, body)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=UserDeleted)
async def delete_user(user_id: uuid.UUID, gateway: Gateway = Depends(get_gateway)) -> UserDeleted:
    return await gateway.users.remove(user_id)
