"""Per-day entitlement bookkeeping for meal subscribers."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mealpass_api.db.errors import is_unique_constraint_violation
from mealpass_api.models.entitlement import Entitlement
from mealpass_api.models.skip import Skip

ENTITLEMENT_CONSTRAINT = "uq_entitlements_customer_date"
ENTITLEMENT_COLUMNS = ("customer_id", "service_date")


class EntitlementLedger:
    """Record how many meals a customer may redeem on a service date.

    Writes are two-path on purpose: a new row is inserted with
    ``meals_redeemed = 0``; an existing row only has ``meals_allowed`` updated.
    Issuance never touches the redemption counter of an existing row.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def has_skip(self, customer_id: UUID, service_date: date) -> bool:
        stmt = select(Skip.id).where(Skip.customer_id == customer_id, Skip.skip_date == service_date).limit(1)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get(self, customer_id: UUID, service_date: date) -> Entitlement | None:
        stmt = select(Entitlement).where(
            Entitlement.customer_id == customer_id,
            Entitlement.service_date == service_date,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_entitlement(self, customer_id: UUID, service_date: date, *, has_skip: bool) -> int:
        """Create or refresh the entitlement row and return the resolved ``meals_allowed``.

        Changes are flushed but not committed. Losing the insert race rolls the
        session back before the allowance update, so call this first in a
        fresh transaction.
        """

        meals_allowed = 0 if has_skip else 1

        existing = await self.get(customer_id, service_date)
        if existing is not None:
            await self._update_allowed(customer_id, service_date, meals_allowed)
            return meals_allowed

        entitlement = Entitlement(
            customer_id=customer_id,
            service_date=service_date,
            meals_allowed=meals_allowed,
            meals_redeemed=0,
        )
        self._db.add(entitlement)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            if not is_unique_constraint_violation(
                exc,
                constraint=ENTITLEMENT_CONSTRAINT,
                columns=ENTITLEMENT_COLUMNS,
            ):
                raise
            await self._db.rollback()
            logger.info(
                "Entitlement created concurrently; updating allowance only",
                customer_id=str(customer_id),
                service_date=service_date.isoformat(),
            )
            await self._update_allowed(customer_id, service_date, meals_allowed)
        return meals_allowed

    async def _update_allowed(self, customer_id: UUID, service_date: date, meals_allowed: int) -> None:
        stmt = (
            update(Entitlement)
            .where(
                Entitlement.customer_id == customer_id,
                Entitlement.service_date == service_date,
            )
            .values(meals_allowed=meals_allowed)
            .execution_options(synchronize_session="fetch")
        )
        await self._db.execute(stmt)


__all__ = ["EntitlementLedger", "ENTITLEMENT_COLUMNS", "ENTITLEMENT_CONSTRAINT"]
