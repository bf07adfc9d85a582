import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import QuotaRecord, utcnow
from app.domain.models import QuotaDecision, QuotaSnapshot
from app.domain.tiers import TierTable

logger = logging.getLogger(__name__)


def month_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc)


def next_reset_date(now: datetime) -> datetime:
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


class QuotaLedger:
    """
    Per-account monthly usage counter.

    Check and consumption are one conditional UPDATE, so two admissions for
    the same account cannot both pass on the last unit. The caller owns the
    transaction: the reservation commits together with the job insert.
    """

    def __init__(self, tiers: TierTable, clock: Callable[[], datetime] = utcnow):
        self.tiers = tiers
        self.clock = clock

    async def check_and_reserve(self, session: AsyncSession, account_id: str, tier: str) -> QuotaDecision:
        now = self.clock()
        limit = self.tiers.policy(tier).monthly_allowance
        reset_date = next_reset_date(now)

        if limit <= 0:
            return QuotaDecision(allowed=False, remaining=0, limit=0, reset_date=reset_date)

        await self._prepare_record(session, account_id, tier, now)

        stmt = (
            update(QuotaRecord)
            .where(QuotaRecord.account_id == account_id, QuotaRecord.used < limit)
            .values(used=QuotaRecord.used + 1, tier=tier, updated_at=now)
            .returning(QuotaRecord.used)
            .execution_options(synchronize_session=False)
        )
        used = (await session.execute(stmt)).scalar_one_or_none()

        if used is None:
            logger.info(f"Quota exhausted for account={account_id} tier={tier} limit={limit}")
            return QuotaDecision(allowed=False, remaining=0, limit=limit, reset_date=reset_date)

        return QuotaDecision(allowed=True, remaining=max(0, limit - used), limit=limit, reset_date=reset_date)

    async def snapshot(self, session: AsyncSession, account_id: str, tier: str) -> QuotaSnapshot:
        now = self.clock()
        limit = self.tiers.policy(tier).monthly_allowance
        reset_date = next_reset_date(now)

        if limit <= 0:
            return QuotaSnapshot(limit=0, used=0, remaining=0, reset_date=reset_date)

        await self._prepare_record(session, account_id, tier, now)
        stmt = select(QuotaRecord.used).where(QuotaRecord.account_id == account_id)
        used = (await session.execute(stmt)).scalar_one()
        return QuotaSnapshot(limit=limit, used=used, remaining=max(0, limit - used), reset_date=reset_date)

    async def _prepare_record(self, session: AsyncSession, account_id: str, tier: str, now: datetime) -> None:
        await self._ensure_record(session, account_id, tier, now)
        await self._rollover(session, account_id, tier, now)

    async def _ensure_record(self, session: AsyncSession, account_id: str, tier: str, now: datetime) -> None:
        values = dict(account_id=account_id, tier=tier, used=0, period_start=now, updated_at=now)
        dialect = session.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = postgresql.insert(QuotaRecord).values(**values).on_conflict_do_nothing(index_elements=["account_id"])
        elif dialect == "sqlite":
            stmt = sqlite.insert(QuotaRecord).values(**values).on_conflict_do_nothing(index_elements=["account_id"])
        else:
            existing = await session.get(QuotaRecord, account_id)
            if existing is not None:
                return
            session.add(QuotaRecord(**values))
            await session.flush()
            return

        await session.execute(stmt)

    async def _rollover(self, session: AsyncSession, account_id: str, tier: str, now: datetime) -> None:
        """
        Reset the counter when the stored period is not the current calendar
        month. The period condition makes the reset idempotent: only the first
        reader in a new month matches.
        """
        current_start = month_start(now)
        next_start = next_reset_date(now)
        stmt = (
            update(QuotaRecord)
            .where(
                QuotaRecord.account_id == account_id,
                or_(QuotaRecord.period_start < current_start, QuotaRecord.period_start >= next_start),
            )
            .values(used=0, period_start=now, tier=tier, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        res = await session.execute(stmt)
        if res.rowcount:
            logger.info(f"Quota period rolled over for account={account_id} (tier={tier})")
