from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ...infra.sql import Gated
from ._redis import ChargeSessionStore as RedisChargeSessionStore
from ._sql import ChargeSessionStore as SqlChargeSessionStore


# Factory keeps server.py simple and constructor-agnostic:
def new_store(backend: str, *, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              gated: Optional[Gated] = None):
    if backend == "sql":
        if db is None:
            raise RuntimeError(
                "ChargeSessionStore(sql) requires db=AsyncSession"
            )
        if gated is None:
            raise RuntimeError(
                "ChargeSessionStore(sql) requires gated=Gated"
            )
        return SqlChargeSessionStore(db=db, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError(
                "ChargeSessionStore(redis) requires r=redis.Redis"
            )
        return RedisChargeSessionStore(r=r)
    raise RuntimeError(f"unknown CHARGESESSION_BACKEND '{backend}'")


ChargeSessionStore = RedisChargeSessionStore | SqlChargeSessionStore
__all__ = ["ChargeSessionStore", "new_store"]
