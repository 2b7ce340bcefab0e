from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from mealpass_api.db.base import Base


class Entitlement(Base):
    """Meals allowed and redeemed for one customer on one service date.

    ``meals_redeemed`` belongs to the kiosk redemption flow; issuance only ever
    writes it as 0 on insert.
    """

    __tablename__ = "entitlements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    service_date = Column(Date, nullable=False, index=True)
    meals_allowed = Column(Integer, nullable=False, default=1, server_default="1")
    meals_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("customer_id", "service_date", name="uq_entitlements_customer_date"),)
