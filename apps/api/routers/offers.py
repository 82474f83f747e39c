"""Offer router: businesses spend clips to apply to projects."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.user import ROLE_BUSINESS
from routers.auth_scope import AuthContext, require_roles
from routers.rate_limit import rate_limit
from services.offers import apply_project

router = APIRouter()


class ApplyProjectRequest(BaseModel):
    project_id: str
    description: Optional[str] = Field(default=None, max_length=5000)
    estimated_duration: Optional[str] = None
    amount: Optional[float] = Field(default=None, ge=0)


@router.post("/apply")
async def apply_to_project(
    request: ApplyProjectRequest,
    _rate_limit: None = Depends(
        rate_limit("offers_apply", limit=settings.APPLY_RATE_LIMIT_PER_HOUR, window_seconds=3600)
    ),
    auth: AuthContext = Depends(require_roles(ROLE_BUSINESS)),
    db: AsyncSession = Depends(get_db),
):
    return await apply_project(db, business_id=auth.user_id, **request.model_dump())
