from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Fixed key for the dispatch leader lock (Postgres advisory locks take a bigint).
LEADER_LOCK_KEY = 84728473


async def try_advisory_lock(session: AsyncSession, key: int = LEADER_LOCK_KEY) -> bool:
    """
    Attempts to acquire a Postgres transaction-level advisory lock.
    Returns True if acquired, False otherwise.

    The lock is released when the session's transaction ends, so the holder
    keeps the transaction open for as long as it needs leadership.

    Other backends have no cross-process lock; a single process is assumed
    there and the call always succeeds.
    """
    if session.get_bind().dialect.name != "postgresql":
        return True

    result = await session.execute(
        text("SELECT pg_try_advisory_xact_lock(:key)"),
        {"key": key}
    )
    return result.scalar() is True
