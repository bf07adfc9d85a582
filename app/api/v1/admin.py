import logging
from secrets import token_urlsafe
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from app.api.deps import AdminGuard, DbSession
from app.db.models import Account

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[AdminGuard])

TierName = Literal["free", "pro", "premium", "vip"]


class AccountCreate(BaseModel):
    id: str
    name: str
    tier: TierName = "free"
    api_key: Optional[str] = None


class TierUpdate(BaseModel):
    tier: TierName


@router.post("/accounts", status_code=201)
async def create_account(payload: AccountCreate, session: DbSession):
    api_key = payload.api_key or f"rq-{token_urlsafe(24)}"
    account = Account(id=payload.id, name=payload.name, tier=payload.tier, api_key=api_key)
    session.add(account)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=409, detail="Account already exists")

    logger.info(f"Created account {account.id} (tier={account.tier})")
    return {"id": account.id, "name": account.name, "tier": account.tier, "api_key": api_key}


@router.put("/accounts/{account_id}/tier")
async def update_tier(account_id: str, payload: TierUpdate, session: DbSession):
    account = await session.get(Account, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    previous = account.tier
    account.tier = payload.tier
    await session.commit()

    logger.info(f"Account {account_id} tier changed {previous} -> {payload.tier}")
    return {"id": account.id, "name": account.name, "tier": account.tier}
