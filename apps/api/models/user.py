"""User model for customers, businesses and admins."""

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


ROLE_ADMIN = "admin"
ROLE_BUSINESS = "business"
ROLE_CUSTOMER = "customer"

PAYMENT_PENDING = "pending"
PAYMENT_RECEIVED = "payment_received"
PAYMENT_REJECTED = "payment_rejected"


class User(Base):
    """Marketplace account. Business accounts carry plan activation flags."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default=ROLE_CUSTOMER, index=True)  # admin, business, customer
    business_name = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    plan_assigned = Column(Boolean, nullable=False, default=False)
    payment_status = Column(String, nullable=False, default=PAYMENT_PENDING)  # pending, payment_received, payment_rejected
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    business_clips = relationship("BusinessClip", back_populates="business", cascade="all, delete-orphan")
    usage_history = relationship("ClipUsageHistory", back_populates="business", cascade="all, delete-orphan")
