# Event lookups: a plain key-value read for the order core. Events are
# managed elsewhere; put_event exists for seeding.
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .db import Event


async def get_event(db: AsyncSession, event_id: str) -> Optional[Event]:
    return await db.get(Event, event_id)


async def put_event(db: AsyncSession, event_id: str, title: str,
                    price: Decimal, location: str = "",
                    starts_at: Optional[float] = None) -> Event:
    event = await db.get(Event, event_id)
    if event is None:
        event = Event(id=event_id)
        db.add(event)
    event.title = title
    event.price = Decimal(str(price))
    event.location = location
    event.starts_at = starts_at
    await db.flush()
    return event
