from __future__ import annotations
import json
import time
from typing import Any, Dict, Optional

import redis.asyncio as redis


# ---- keys
def k_charge(order_id: str) -> str: return f"charge:{order_id}"


class ChargeSessionStore:
    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    async def save_charge(self, order_id: str, data: Dict[str, Any],
                          expires_at: float) -> None:
        ttl = int(expires_at - time.time())
        if ttl <= 0:
            return
        await self.r.set(k_charge(order_id), json.dumps(data), ex=ttl)

    async def get_charge(self, order_id: str) -> Optional[Dict[str, Any]]:
        # redis drops the key on expiry
        raw = await self.r.get(k_charge(order_id))
        return json.loads(raw) if raw else None

    async def drop_charge(self, order_id: str) -> None:
        await self.r.delete(k_charge(order_id))
