"""ClipSubscription model: admin-defined plan templates."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Float, String, Text
from sqlalchemy.sql import func

from database import Base


class ClipSubscription(Base):
    """Catalog plan. Soft-deleted once retired, never removed."""

    __tablename__ = "clip_subscriptions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    package_name = Column(String, nullable=False, index=True)
    package_description = Column(Text, nullable=True)
    price = Column(Float, nullable=True)
    total_clips = Column(Integer, nullable=True)
    validity_days = Column(String, nullable=True)  # e.g. "2 month", "1 year", "30 days"
    monthly_duration = Column(Integer, nullable=True)  # clips granted per calendar month
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
