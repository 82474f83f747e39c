"""ClipUsageHistory model: append-only audit of clip grants and spends."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


USAGE_APPLIED = "applied"
USAGE_PURCHASED = "purchased"


class ClipUsageHistory(Base):
    """Immutable usage entry."""

    __tablename__ = "clip_usage_history"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=True)
    clips_used = Column(Integer, nullable=False)
    usage_type = Column(String, nullable=False, index=True)  # applied, purchased
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    business = relationship("User", back_populates="usage_history")
