"""BusinessClip model: per-business clip ledger for one subscription period."""

import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


CLIP_STATUS_ACTIVE = "active"
CLIP_STATUS_EXPIRED = "expired"

CLIP_PAYMENT_PENDING = "pending"
CLIP_PAYMENT_RECEIVED = "received"
CLIP_PAYMENT_REJECTED = "rejected"


class BusinessClip(Base):
    """
    Ledger row holding a frozen package snapshot, remaining clips and the
    month-by-month clip buckets. At most one row per business is active.
    """

    __tablename__ = "business_clips"
    __table_args__ = (
        Index(
            "uq_business_clips_one_active",
            "business_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(String, ForeignKey("clip_subscriptions.id"), nullable=True)

    # Package snapshot frozen at purchase time
    package_name = Column(String, nullable=True)
    package_description = Column(Text, nullable=True)
    price = Column(Float, nullable=True)
    validity_days = Column(String, nullable=True)
    monthly_duration = Column(Integer, nullable=True)
    total_clips = Column(Integer, nullable=True)

    remaining_clips = Column(Integer, nullable=False, default=0)
    month_history = Column(JSON, nullable=False, default=list)  # [{start_date, expiry_date, clip}]
    purchased_at = Column(DateTime(timezone=True), nullable=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True, index=True)
    status = Column(String, nullable=False, default=CLIP_STATUS_ACTIVE, index=True)  # active, expired
    payment_status = Column(String, nullable=False, default=CLIP_PAYMENT_PENDING)  # pending, received, rejected
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    business = relationship("User", back_populates="business_clips")
