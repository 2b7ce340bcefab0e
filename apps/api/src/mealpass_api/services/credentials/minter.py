"""Idempotent minting of per-day kiosk credentials."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable
from uuid import UUID
from zoneinfo import ZoneInfo

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mealpass_api.core.errors import CredentialRaceError
from mealpass_api.core.timezone import end_of_day
from mealpass_api.db.errors import is_unique_constraint_violation, translate_integrity_error
from mealpass_api.models.credential import Credential

from .short_code import DEFAULT_LENGTH, generate_short_code
from .signing import SigningKey, sign_credential_token

CREDENTIAL_CONSTRAINT = "uq_credentials_customer_date"
CREDENTIAL_COLUMNS = ("customer_id", "service_date")
SHORT_CODE_CONSTRAINT = "credentials_short_code_key"
SHORT_CODE_COLUMNS = ("short_code",)

Clock = Callable[[], datetime]


class MintOutcome(str, Enum):
    CREATED = "created"
    EXISTING = "existing"
    REPAIRED = "repaired"
    RACE_LOST = "race_lost"


@dataclass(slots=True)
class MintResult:
    credential: Credential
    outcome: MintOutcome


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialMinter:
    """Create, or fetch the already-created, credential for a (customer, date).

    New credentials are written with an insert, never an upsert, so that the
    ``(customer_id, service_date)`` uniqueness constraint arbitrates between
    concurrent runs. The run that loses the insert reads back the winner's row.
    """

    def __init__(
        self,
        session: AsyncSession,
        signing_key: SigningKey,
        *,
        issuer: str,
        timezone: ZoneInfo,
        short_code_length: int = DEFAULT_LENGTH,
        max_short_code_attempts: int = 3,
        clock: Clock | None = None,
    ) -> None:
        self._db = session
        self._key = signing_key
        self._issuer = issuer
        self._tz = timezone
        self._short_code_length = short_code_length
        self._max_short_code_attempts = max(max_short_code_attempts, 1)
        self._clock = clock or _utcnow

    async def mint_or_fetch(self, customer_id: UUID, service_date: date) -> MintResult:
        existing = await self.fetch(customer_id, service_date)
        if existing is not None:
            if existing.is_complete:
                logger.debug(
                    "Credential already issued",
                    customer_id=str(customer_id),
                    service_date=service_date.isoformat(),
                    issued_at=existing.issued_at.isoformat() if existing.issued_at else None,
                )
                return MintResult(credential=existing, outcome=MintOutcome.EXISTING)
            repaired = await self._repair(existing)
            return MintResult(credential=repaired, outcome=MintOutcome.REPAIRED)

        return await self._insert(customer_id, service_date)

    async def fetch(self, customer_id: UUID, service_date: date) -> Credential | None:
        stmt = select(Credential).where(
            Credential.customer_id == customer_id,
            Credential.service_date == service_date,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _insert(self, customer_id: UUID, service_date: date) -> MintResult:
        for attempt in range(1, self._max_short_code_attempts + 1):
            issued_at = self._clock()
            expires_at = end_of_day(service_date, self._tz)
            token_id = str(uuid.uuid4())
            credential = Credential(
                customer_id=customer_id,
                service_date=service_date,
                token_id=token_id,
                short_code=generate_short_code(self._short_code_length),
                signed_token=self._sign(customer_id, service_date, token_id, issued_at, expires_at),
                issued_at=issued_at,
                expires_at=expires_at,
                used_at=None,
            )
            self._db.add(credential)
            try:
                await self._db.flush()
            except IntegrityError as exc:
                await self._db.rollback()
                violation = translate_integrity_error(exc)
                if is_unique_constraint_violation(
                    violation,
                    constraint=CREDENTIAL_CONSTRAINT,
                    columns=CREDENTIAL_COLUMNS,
                ):
                    return await self._adopt_winner(customer_id, service_date)
                if attempt < self._max_short_code_attempts and is_unique_constraint_violation(
                    violation,
                    constraint=SHORT_CODE_CONSTRAINT,
                    columns=SHORT_CODE_COLUMNS,
                ):
                    logger.warning(
                        "Short code collision; regenerating",
                        customer_id=str(customer_id),
                        attempt=attempt,
                    )
                    continue
                raise violation from exc

            logger.info(
                "Created credential",
                customer_id=str(customer_id),
                service_date=service_date.isoformat(),
                token_id=token_id,
            )
            return MintResult(credential=credential, outcome=MintOutcome.CREATED)

        raise RuntimeError("unreachable: short code attempts exhausted without result")  # pragma: no cover

    async def _adopt_winner(self, customer_id: UUID, service_date: date) -> MintResult:
        winner = await self.fetch(customer_id, service_date)
        if winner is None:
            logger.error(
                "Credential race lost but winning row not found",
                customer_id=str(customer_id),
                service_date=service_date.isoformat(),
            )
            raise CredentialRaceError(
                f"Credential for customer {customer_id} on {service_date.isoformat()} exists but cannot be retrieved"
            )
        logger.info(
            "Credential race lost; using winning row",
            customer_id=str(customer_id),
            service_date=service_date.isoformat(),
            token_id=winner.token_id,
        )
        if not winner.is_complete:
            winner = await self._repair(winner)
        return MintResult(credential=winner, outcome=MintOutcome.RACE_LOST)

    async def _repair(self, credential: Credential) -> Credential:
        """Reissue the short code and signed token of a legacy row, keeping its token id."""

        # Rollback expires the instance, so read everything up front.
        credential_id = credential.id
        customer_id = credential.customer_id
        service_date = credential.service_date
        token_id = credential.token_id
        issued_at = credential.issued_at or self._clock()
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        expires_at = end_of_day(service_date, self._tz)

        for attempt in range(1, self._max_short_code_attempts + 1):
            values = {
                "short_code": generate_short_code(self._short_code_length),
                "signed_token": self._sign(customer_id, service_date, token_id, issued_at, expires_at),
                "expires_at": expires_at,
            }
            stmt = (
                update(Credential)
                .where(Credential.id == credential_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            try:
                await self._db.execute(stmt)
            except IntegrityError as exc:
                await self._db.rollback()
                if attempt < self._max_short_code_attempts and is_unique_constraint_violation(
                    exc,
                    constraint=SHORT_CODE_CONSTRAINT,
                    columns=SHORT_CODE_COLUMNS,
                ):
                    continue
                raise translate_integrity_error(exc) from exc
            break

        logger.info(
            "Repaired legacy credential",
            customer_id=str(customer_id),
            service_date=service_date.isoformat(),
            token_id=token_id,
        )
        await self._db.refresh(credential)
        return credential

    def _sign(
        self,
        customer_id: UUID,
        service_date: date,
        token_id: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        return sign_credential_token(
            self._key,
            issuer=self._issuer,
            subject=str(customer_id),
            token_id=token_id,
            service_date=service_date,
            issued_at=issued_at,
            expires_at=expires_at,
        )


__all__ = [
    "CREDENTIAL_COLUMNS",
    "CREDENTIAL_CONSTRAINT",
    "CredentialMinter",
    "MintOutcome",
    "MintResult",
]
