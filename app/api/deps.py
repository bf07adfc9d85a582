from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import QueueContext
from app.db.session import get_db_session
from app.domain.errors import AuthenticationError


def get_context(request: Request) -> QueueContext:
    return request.app.state.context


# Dependency for DB session
DbSession = Annotated[AsyncSession, Depends(get_db_session)]

# Runtime collaborators built at startup
Context = Annotated[QueueContext, Depends(get_context)]


async def require_admin(ctx: Context, x_admin_token: Optional[str] = Header(default=None)) -> None:
    """Admin and queue routes are open unless ADMIN_TOKEN is configured."""
    expected = ctx.settings.ADMIN_TOKEN
    if expected and x_admin_token != expected:
        raise AuthenticationError("Invalid admin token", code="TOKEN_INVALID")


AdminGuard = Depends(require_admin)
