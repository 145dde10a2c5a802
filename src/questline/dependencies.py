"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException

from questline.database import get_session as _get_session
from questline.redis_client import get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None when events are disabled)."""
    yield get_redis_or_none()


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the acting user from the gateway-authenticated X-User-Id header.

    Authentication happens upstream; the engine trusts the id it is given.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user_id = x_user_id.strip()
    if len(user_id) > 64:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header")
    return user_id
