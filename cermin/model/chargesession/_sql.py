from __future__ import annotations
import json
import time
from typing import Any, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import ChargeSession
from ...infra.sql import Gated


class ChargeSessionStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def save_charge(self, order_id: str, data: Dict[str, Any],
                          expires_at: float) -> None:
        async with self.gated():
            async with self.db.begin():
                await self.db.merge(ChargeSession(
                    order_id=order_id,
                    data=json.dumps(data),
                    expires_at=float(expires_at),
                ))

    async def get_charge(self, order_id: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                row = await self.db.get(ChargeSession, order_id,
                                        populate_existing=True)
                if row is None:
                    return None
                if row.expires_at <= time.time():
                    # housekeeping: expired charge
                    await self.db.delete(row)
                    return None
                return json.loads(row.data)

    async def drop_charge(self, order_id: str) -> None:
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    delete(ChargeSession)
                    .where(ChargeSession.order_id == order_id)
                )
