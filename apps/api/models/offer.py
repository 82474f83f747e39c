"""Offer model: a business application to a project."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Float, String, Text, UniqueConstraint
from sqlalchemy.sql import func
import uuid

from database import Base


class Offer(Base):
    """One offer per (business, project) pair."""

    __tablename__ = "offers"
    __table_args__ = (UniqueConstraint("business_id", "project_id", name="uq_offers_business_project"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    business_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    customer_id = Column(String, ForeignKey("users.id"), nullable=True)
    description = Column(Text, nullable=True)
    estimated_duration = Column(String, nullable=True)
    amount = Column(Float, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending, assigned, rejected, cancelled, completed
    clips_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
