"""ClipRefill model: out-of-band top-up purchases."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Float, String
from sqlalchemy.sql import func

from database import Base


class ClipRefill(Base):
    """Top-up record. Kept apart from the ledger month history."""

    __tablename__ = "clip_refills"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    price = Column(Float, nullable=False)
    clip = Column(Integer, nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    purchased_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
