import secrets
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .db import Ticket
from ..helpers import now_ts

# 24 random bytes -> 32 url-safe chars
TOKEN_BYTES = 24


def new_qr_token() -> str:
    return f"TCK-{secrets.token_urlsafe(TOKEN_BYTES)}"


async def get_ticket(db: AsyncSession, order_id: str) -> Optional[Ticket]:
    return (await db.execute(
        select(Ticket).where(Ticket.order_id == order_id)
    )).scalar_one_or_none()


async def issue_ticket_if_absent(db: AsyncSession, order_id: str) -> Ticket:
    """
    Return the order's ticket, creating it on first call.

    Must run inside the caller's transaction. Two racing callers are
    separated by the UNIQUE(order_id) constraint: the loser's flush raises
    IntegrityError and its whole transaction rolls back.
    """
    ticket = await get_ticket(db, order_id)
    if ticket is not None:
        return ticket

    ticket = Ticket(
        id=uuid.uuid4().hex,
        order_id=order_id,
        qr_token=new_qr_token(),
        is_valid=True,
        created_at=now_ts(),
    )
    db.add(ticket)
    await db.flush()
    return ticket
