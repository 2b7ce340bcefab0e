"""Seed development customers with active subscriptions into the API database."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mealpass_api.core.settings import settings
from mealpass_api.models import Customer, ServicePattern, Subscription, SubscriptionStatusEnum


class SeedCustomer(TypedDict):
    email: str
    name: str
    external_subscription_id: str


DEV_CUSTOMERS: list[SeedCustomer] = [
    {
        "email": os.getenv("DEV_CUSTOMER_EMAIL", "diner@mealpass.dev").lower(),
        "name": "Diner QA",
        "external_subscription_id": "sub_dev_diner",
    },
    {
        "email": os.getenv("DEV_SECOND_CUSTOMER_EMAIL", "lunch@mealpass.dev").lower(),
        "name": "Lunch QA",
        "external_subscription_id": "sub_dev_lunch",
    },
]


async def seed_pattern(session: AsyncSession) -> None:
    pattern = await session.get(ServicePattern, 1)
    if pattern is None:
        session.add(ServicePattern(id=1, service_days=[1, 2, 3, 4, 5]))


async def seed_customers(session: AsyncSession) -> None:
    now = datetime.now(timezone.utc)
    for entry in DEV_CUSTOMERS:
        with session.no_autoflush:
            existing = await session.execute(select(Customer).where(Customer.email == entry["email"]))
        customer = existing.scalar_one_or_none()
        if customer is None:
            customer = Customer(email=entry["email"], name=entry["name"])
            session.add(customer)
            await session.flush()
        else:
            customer.name = entry["name"]

        with session.no_autoflush:
            existing_sub = await session.execute(
                select(Subscription).where(
                    Subscription.external_subscription_id == entry["external_subscription_id"]
                )
            )
        subscription = existing_sub.scalar_one_or_none()
        if subscription is None:
            subscription = Subscription(
                customer_id=customer.id,
                external_subscription_id=entry["external_subscription_id"],
                status=SubscriptionStatusEnum.ACTIVE,
            )
            session.add(subscription)
        subscription.status = SubscriptionStatusEnum.ACTIVE
        subscription.current_period_start = now - timedelta(days=15)
        subscription.current_period_end = now + timedelta(days=15)
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_pattern(session)
            await seed_customers(session)
        print("Development customers ready ✅")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
