"""SQLAlchemy models package."""

from .credential import Credential  # noqa: F401
from .customer import Customer  # noqa: F401
from .entitlement import Entitlement  # noqa: F401
from .service_calendar import (  # noqa: F401
    ServiceException,
    ServiceExceptionKind,
    ServicePattern,
    ServiceRecurrence,
)
from .skip import Skip, SkipSourceEnum  # noqa: F401
from .subscription import Subscription, SubscriptionStatusEnum  # noqa: F401

__all__ = [
    "Credential",
    "Customer",
    "Entitlement",
    "ServiceException",
    "ServiceExceptionKind",
    "ServicePattern",
    "ServiceRecurrence",
    "Skip",
    "SkipSourceEnum",
    "Subscription",
    "SubscriptionStatusEnum",
]
