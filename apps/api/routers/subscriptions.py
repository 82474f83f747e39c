"""Clip subscription catalog router."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import ROLE_ADMIN, ROLE_BUSINESS
from routers.auth_scope import AuthContext, require_roles
from services.business_clips import send_plan_request
from services.clip_history import business_clip_history, list_clip_history
from services.subscriptions import (
    add_subscription,
    delete_subscription,
    list_subscriptions,
    update_subscription,
    view_subscription,
)

router = APIRouter()


class ListRequest(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    search: Optional[str] = None
    sort_key: Optional[str] = None
    sort_value: Literal["asc", "desc"] = "desc"


class HistoryListRequest(ListRequest):
    usage_type: Optional[Literal["applied", "purchased"]] = None


class CreateSubscriptionRequest(BaseModel):
    package_name: str = Field(min_length=1, max_length=200)
    package_description: Optional[str] = None
    price: float = Field(ge=0)
    total_clips: Optional[int] = Field(default=None, ge=0)
    validity_days: str = Field(min_length=1)
    monthly_duration: int = Field(ge=0)


class UpdateSubscriptionRequest(BaseModel):
    package_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    package_description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    total_clips: Optional[int] = Field(default=None, ge=0)
    validity_days: Optional[str] = Field(default=None, min_length=1)
    monthly_duration: Optional[int] = Field(default=None, ge=0)


@router.post("")
async def create_subscription(
    request: CreateSubscriptionRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await add_subscription(db, request.model_dump())


@router.post("/list")
async def subscription_list(
    request: ListRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN, ROLE_BUSINESS)),
    db: AsyncSession = Depends(get_db),
):
    return await list_subscriptions(
        db,
        business_id=auth.user_id if auth.role == ROLE_BUSINESS else None,
        page=request.page,
        limit=request.limit,
        search=request.search,
        sort_key=request.sort_key,
        sort_value=request.sort_value,
    )


@router.post("/history")
async def own_clip_history(
    request: HistoryListRequest,
    auth: AuthContext = Depends(require_roles(ROLE_BUSINESS)),
    db: AsyncSession = Depends(get_db),
):
    return await list_clip_history(
        db,
        business_id=auth.user_id,
        page=request.page,
        limit=request.limit,
        search=request.search,
        sort_key=request.sort_key,
        sort_value=request.sort_value,
        usage_type=request.usage_type,
    )


@router.post("/history/{business_id}")
async def business_history(
    business_id: str,
    request: ListRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await business_clip_history(
        db,
        business_id=business_id,
        page=request.page,
        limit=request.limit,
        search=request.search,
        sort_key=request.sort_key,
        sort_value=request.sort_value,
    )


@router.post("/request/{subscription_id}")
async def request_plan(
    subscription_id: str,
    auth: AuthContext = Depends(require_roles(ROLE_BUSINESS)),
    db: AsyncSession = Depends(get_db),
):
    return await send_plan_request(db, business_id=auth.user_id, subscription_id=subscription_id)


@router.get("/{subscription_id}")
async def get_subscription(
    subscription_id: str,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN, ROLE_BUSINESS)),
    db: AsyncSession = Depends(get_db),
):
    return await view_subscription(db, subscription_id)


@router.put("/{subscription_id}")
async def edit_subscription(
    subscription_id: str,
    request: UpdateSubscriptionRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await update_subscription(db, subscription_id, request.model_dump(exclude_unset=True))


@router.delete("/{subscription_id}")
async def remove_subscription(
    subscription_id: str,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await delete_subscription(db, subscription_id)
