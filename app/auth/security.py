import hashlib
import logging
from typing import Annotated, Optional

from fastapi import Depends, Security
from fastapi.security import APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import Context, DbSession
from app.db.models import Account
from app.domain.errors import AuthenticationError
from app.utils.guard import ConcurrencyGuard

logger = logging.getLogger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


def account_guard_key(api_key: str) -> str:
    # Guard keys show up in logs, so never use the raw key
    return "account:" + hashlib.sha256(api_key.encode()).hexdigest()[:16]


async def authenticate(
    session: AsyncSession,
    api_key: Optional[str],
    guard: Optional[ConcurrencyGuard] = None,
) -> Account:
    """Resolve an API key to its account (identity + billing tier)."""
    if not api_key:
        raise AuthenticationError("Missing API key", code="AUTH_HEADER_MISSING")

    stmt = select(Account).where(Account.api_key == api_key)
    if guard is not None:
        account = await guard.run(account_guard_key(api_key), lambda: session.scalar(stmt))
    else:
        account = await session.scalar(stmt)

    if not account:
        logger.info("Rejected unknown API key")
        raise AuthenticationError("Invalid API key", code="TOKEN_INVALID")

    return account


async def get_current_account(
    session: DbSession,
    ctx: Context,
    api_key: Optional[str] = Security(API_KEY_HEADER),
) -> Account:
    return await authenticate(session, api_key, ctx.guard)


CurrentAccount = Annotated[Account, Depends(get_current_account)]
