"""Admin router for business clip ledgers."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import ROLE_ADMIN
from routers.auth_scope import AuthContext, require_roles
from routers.subscriptions import ListRequest
from services.business_clips import (
    add_refill_plan,
    add_renewal_plan,
    assign_business_plan,
    get_business,
    get_expiry_date,
    list_purchasing,
    update_payment,
    update_payment_status,
    view_purchasing,
)

router = APIRouter()


class AssignPlanRequest(BaseModel):
    business_id: str
    subscription_id: str
    validity_days: Optional[str] = Field(default=None, min_length=1)
    monthly_duration: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)


class RenewalRequest(BaseModel):
    business_id: str
    subscription_id: str
    validity_days: str = Field(min_length=1)
    monthly_duration: int = Field(ge=0)
    price: Optional[float] = Field(default=None, ge=0)


class RefillRequest(BaseModel):
    business_id: str
    clip: int = Field(ge=1)
    price: float = Field(ge=0)
    expiry_date: Optional[datetime] = None


class PaymentRequest(BaseModel):
    business_id: str
    price: float = Field(ge=0)
    validity_days: str = Field(min_length=1)


class PaymentStatusRequest(BaseModel):
    business_id: str
    payment_status: Literal["pending", "received", "rejected"]


@router.post("/assign-plan")
async def assign_plan(
    request: AssignPlanRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await assign_business_plan(db, **request.model_dump())


@router.post("/renewal")
async def renew_plan(
    request: RenewalRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await add_renewal_plan(db, **request.model_dump())


@router.post("/refill")
async def refill_plan(
    request: RefillRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await add_refill_plan(db, **request.model_dump())


@router.post("/payment")
async def record_payment(
    request: PaymentRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await update_payment(db, **request.model_dump())


@router.post("/payment-status")
async def change_payment_status(
    request: PaymentStatusRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await update_payment_status(db, **request.model_dump())


@router.post("/purchasing/list")
async def purchasing_list(
    request: ListRequest,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await list_purchasing(
        db,
        page=request.page,
        limit=request.limit,
        search=request.search,
        sort_key=request.sort_key,
        sort_value=request.sort_value,
    )


@router.get("/purchasing/{purchasing_id}")
async def purchasing_detail(
    purchasing_id: str,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await view_purchasing(db, purchasing_id)


@router.get("/{business_id}/expiry-date")
async def business_expiry_date(
    business_id: str,
    auth: AuthContext = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    await get_business(db, business_id)
    return await get_expiry_date(db, business_id)
