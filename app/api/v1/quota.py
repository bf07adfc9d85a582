from fastapi import APIRouter

from app.api.deps import Context, DbSession
from app.auth.security import CurrentAccount

router = APIRouter()


@router.get("")
async def get_quota(account: CurrentAccount, session: DbSession, ctx: Context):
    snapshot = await ctx.guard.run(
        f"quota:{account.id}",
        lambda: ctx.quota.snapshot(session, account.id, account.tier),
    )
    await session.commit()
    return {
        "accountId": account.id,
        "tier": account.tier,
        "limit": snapshot.limit,
        "used": snapshot.used,
        "remaining": snapshot.remaining,
        "resetDate": snapshot.reset_date.isoformat(),
        "featureAvailable": ctx.tiers.is_allowed(account.tier),
    }
