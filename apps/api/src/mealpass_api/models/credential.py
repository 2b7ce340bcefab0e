from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from mealpass_api.db.base import Base


class Credential(Base):
    """Single-use kiosk credential for one customer on one service date."""

    __tablename__ = "credentials"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    service_date = Column(Date, nullable=False)
    token_id = Column(String(64), nullable=False, unique=True)
    short_code = Column(String(16), nullable=True, unique=True)
    signed_token = Column(Text, nullable=True)
    issued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("customer_id", "service_date", name="uq_credentials_customer_date"),
        Index("ix_credentials_expires_at", "expires_at"),
    )

    @property
    def is_complete(self) -> bool:
        return bool(self.short_code) and bool(self.signed_token)
