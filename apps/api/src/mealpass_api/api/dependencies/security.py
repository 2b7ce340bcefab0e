import hmac

from fastapi import Header, HTTPException, status
from loguru import logger

from mealpass_api.core.settings import get_settings


async def require_cron_secret(cron_secret: str = Header("", alias="Cron-Secret")) -> None:
    """Reject callers that do not present the shared scheduler secret.

    An unset ``CRON_SECRET`` rejects every request rather than opening the route.
    """

    expected = get_settings().cron_secret
    if not expected or not hmac.compare_digest(cron_secret.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected request with invalid cron secret", configured=bool(expected))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
