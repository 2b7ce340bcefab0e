from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, Enum as SqlEnum, ForeignKey, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from mealpass_api.db.base import Base


class SkipSourceEnum(str, Enum):
    TELEGRAM = "telegram"
    ADMIN = "admin"


class Skip(Base):
    """Customer opt-out for a single service date."""

    __tablename__ = "skips"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    skip_date = Column(Date, nullable=False)
    source = Column(
        SqlEnum(SkipSourceEnum, name="skip_source_enum"),
        nullable=False,
        default=SkipSourceEnum.TELEGRAM,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("customer_id", "skip_date", name="uq_skips_customer_date"),)
