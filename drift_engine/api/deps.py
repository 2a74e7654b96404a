"""
Drift Engine - Shared API dependencies

Identity is established upstream by the gateway, which forwards the acting
user in the ``X-User-Id`` header.  The engine trusts it as given.
"""

from __future__ import annotations

import uuid
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drift_engine.database import get_session_factory, session_scope


def parse_user_id(raw: Optional[str]) -> uuid.UUID | None:
    if not raw:
        return None
    try:
        return uuid.UUID(raw.strip())
    except ValueError:
        return None


async def current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> uuid.UUID:
    """Resolve the acting user from the gateway header, or reject with 401."""
    user_id = parse_user_id(x_user_id)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="A valid X-User-Id header is required.",
        )
    return user_id


async def db_session(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: committed after the handler, events published
    after the commit."""
    async with session_scope(factory) as session:
        yield session
