"""ClipRenewal model: audit trail of plan renewals."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from database import Base


class ClipRenewal(Base):
    """Renewal record written alongside every ledger renewal."""

    __tablename__ = "clip_renewals"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(String, ForeignKey("clip_subscriptions.id"), nullable=False)
    validity_days = Column(String, nullable=False)
    monthly_duration = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
