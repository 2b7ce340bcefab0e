from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Enum as SqlEnum, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from mealpass_api.db.base import Base


class ServiceExceptionKind(str, Enum):
    HOLIDAY = "holiday"
    SPECIAL_EVENT = "special_event"


class ServiceRecurrence(str, Enum):
    ONE_TIME = "one-time"
    ANNUAL = "annual"
    FLOATING = "floating"


class ServicePattern(Base):
    """Singleton weekly service pattern (0 = Sunday ... 6 = Saturday)."""

    __tablename__ = "service_patterns"

    id = Column(Integer, primary_key=True, default=1)
    service_days = Column(JSON, nullable=False, default=lambda: [1, 2, 3, 4, 5])
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ServiceException(Base):
    """Calendar override for one date, optionally recurring."""

    __tablename__ = "service_exceptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    date = Column(Date, nullable=False, index=True)
    kind = Column(SqlEnum(ServiceExceptionKind, name="service_exception_kind_enum"), nullable=False)
    name = Column(String(255), nullable=False)
    is_service_day = Column(Boolean, nullable=False)
    recurrence = Column(
        SqlEnum(
            ServiceRecurrence,
            name="service_recurrence_enum",
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=ServiceRecurrence.ONE_TIME,
    )
    # JSON ({"month": 11, "day_of_week": 4, "occurrence": 4}) or text ("4th Thursday of November")
    recurrence_rule = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("date", "kind", name="uq_service_exceptions_date_kind"),)
