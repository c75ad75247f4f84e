import hmac
from typing import Optional

from fastapi import Request

from billcountdown.config.settings import settings
from billcountdown.utils.errors import AuthenticationError
from billcountdown.utils.logging import get_logger

logger = get_logger()


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def verify_cron_secret(request: Request) -> None:
    """
    Route dependency guarding the scheduler triggers.

    Runs before the route body, so a rejected call never reaches the database.
    """
    token = _bearer_token(request)
    if not settings.CRON_SECRET or token is None or not hmac.compare_digest(
        token.encode("utf-8"), settings.CRON_SECRET.encode("utf-8")
    ):
        logger.warning(f"Rejected cron trigger on {request.url.path}")
        raise AuthenticationError("Invalid or missing cron secret")
