from uuid import uuid4

from sqlalchemy import BigInteger, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from mealpass_api.db.base import Base


class Customer(Base):
    """Meal subscriber; the subject of every entitlement and credential."""

    __tablename__ = "customers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(320), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    telegram_user_id = Column(BigInteger, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
