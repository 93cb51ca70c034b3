from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .db import (
    Order, Participant, Payment, Ticket,
    ORDER_STATUSES, PENDING, PAID, FAILED, CHALLENGE, CANCELLED,
)
from .events import get_event
from .tickets import get_ticket
from ..config import DEFAULT_FEE_MINIMUM, DEFAULT_FEE_RATE
from ..errors import (
    Conflict, DuplicatePaidOrder, HasDependents, InvalidTransition, NotFound,
    ValidationError,
)
from ..fees import gross_amount
from ..helpers import is_valid_email, normalize_email, now_ts
from ..infra.sql import Gated

logger = logging.getLogger(__name__)

# manual transitions; reconciliation only ever leaves PENDING
ALLOWED_TRANSITIONS = {
    PENDING: {PAID, FAILED, CHALLENGE, CANCELLED},
    CHALLENGE: {PAID, FAILED, CANCELLED},
    PAID: {CANCELLED},
    FAILED: {CANCELLED},
    CANCELLED: set(),
}


async def has_paid_order(db: AsyncSession, event_id: str,
                         participant_id: str,
                         exclude_order_id: Optional[str] = None) -> bool:
    """True if the participant already holds a paid order for the event."""
    stmt = select(Order.id).where(
        Order.event_id == event_id,
        Order.participant_id == participant_id,
        Order.status == PAID,
    )
    if exclude_order_id is not None:
        stmt = stmt.where(Order.id != exclude_order_id)
    row = (await db.execute(stmt.limit(1))).first()
    return row is not None


@dataclass
class ParticipantInput:
    name: str
    email: str
    phone: Optional[str] = None

    def validated(self) -> "ParticipantInput":
        name = (self.name or "").strip()
        email = (self.email or "").strip()
        if not name:
            raise ValidationError("name is required")
        if not is_valid_email(email):
            raise ValidationError(
                "email is required and must be a valid email address"
            )
        phone = (self.phone or "").strip() or None
        return ParticipantInput(
            name=name, email=normalize_email(email), phone=phone
        )


class OrderStore:
    def __init__(self, *, db: AsyncSession, gated: Gated,
                 fee_rate: Decimal = DEFAULT_FEE_RATE,
                 fee_minimum: int = DEFAULT_FEE_MINIMUM) -> None:
        self.db = db
        self.gated = gated
        self.fee_rate = fee_rate
        self.fee_minimum = fee_minimum

    async def create_order(self, event_id: str,
                           who: ParticipantInput) -> Order:
        if not event_id:
            raise ValidationError("event_id is required")
        who = who.validated()

        async with self.gated():
            async with self.db.begin():
                event = await get_event(self.db, event_id)
                if event is None:
                    raise NotFound("Event not found")

                participant = await self._participant_by_email(who.email)
                if participant is not None:
                    if await has_paid_order(self.db, event_id,
                                            participant.id):
                        raise DuplicatePaidOrder(event_id, participant.id)
                    # refresh contact details with the latest request
                    participant.name = who.name
                    participant.phone = who.phone
                else:
                    participant = Participant(
                        id=uuid.uuid4().hex,
                        name=who.name,
                        email=who.email,
                        phone=who.phone,
                        created_at=now_ts(),
                    )
                    self.db.add(participant)
                    # no relationship() between the tables: the participant
                    # row must exist before the order references it
                    try:
                        await self.db.flush()
                    except IntegrityError as e:
                        # a concurrent request registered the same email
                        raise Conflict(
                            "Concurrent registration, please retry"
                        ) from e

                price, fee, total = gross_amount(
                    event.price, self.fee_rate, self.fee_minimum
                )
                order = Order(
                    id=uuid.uuid4().hex,
                    event_id=event.id,
                    participant_id=participant.id,
                    price=price,
                    admin_fee=fee,
                    amount=total,
                    status=PENDING,
                    created_at=now_ts(),
                )
                self.db.add(order)

        logger.info("order %s created: event=%s price=%s fee=%s total=%s",
                    order.id, event_id, order.price, order.admin_fee,
                    order.amount)
        return order

    async def update_order_status(self, order_id: str,
                                  new_status: str) -> Order:
        if new_status not in ORDER_STATUSES:
            raise ValidationError(f"unknown order status '{new_status}'")

        async with self.gated():
            async with self.db.begin():
                order = await self._locked_order(order_id)
                if order.status == new_status:
                    # setting the same status twice is a no-op
                    return order
                if new_status not in ALLOWED_TRANSITIONS[order.status]:
                    raise InvalidTransition(order.status, new_status)
                if new_status == PAID and await has_paid_order(
                        self.db, order.event_id, order.participant_id,
                        exclude_order_id=order.id):
                    raise DuplicatePaidOrder(order.event_id,
                                             order.participant_id)
                logger.info("order %s: %s -> %s", order_id, order.status,
                            new_status)
                order.status = new_status
        return order

    async def delete_order(self, order_id: str) -> None:
        async with self.gated():
            async with self.db.begin():
                order = await self._locked_order(order_id)
                payments = (await self.db.execute(
                    select(func.count()).select_from(Payment)
                    .where(Payment.order_id == order_id)
                )).scalar_one()
                tickets = (await self.db.execute(
                    select(func.count()).select_from(Ticket)
                    .where(Ticket.order_id == order_id)
                )).scalar_one()
                if payments or tickets:
                    raise HasDependents(order_id)
                await self.db.delete(order)
        logger.info("order %s deleted", order_id)

    async def get_order(self, order_id: str) -> Order:
        async with self.gated():
            async with self.db.begin():
                order = await self.db.get(Order, order_id,
                                          populate_existing=True)
        if order is None:
            raise NotFound("Order not found")
        return order

    async def get_participant(self, participant_id: str) -> Participant:
        async with self.gated():
            async with self.db.begin():
                participant = await self.db.get(Participant, participant_id)
        if participant is None:
            raise NotFound("Participant not found")
        return participant

    async def list_payments(self, order_id: str) -> List[Payment]:
        await self.get_order(order_id)
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(Payment)
                    .where(Payment.order_id == order_id)
                    .order_by(Payment.created_at.desc())
                )).scalars().all()
        return list(rows)

    async def get_ticket(self, order_id: str) -> Ticket:
        async with self.gated():
            async with self.db.begin():
                ticket = await get_ticket(self.db, order_id)
        if ticket is None:
            raise NotFound("Ticket not found")
        return ticket

    async def ensure_no_paid_sibling(self, order: Order) -> None:
        """Reject paying for an order whose pair already holds a paid one."""
        async with self.gated():
            async with self.db.begin():
                paid = await has_paid_order(
                    self.db, order.event_id, order.participant_id,
                    exclude_order_id=order.id,
                )
        if paid:
            raise DuplicatePaidOrder(order.event_id, order.participant_id)

    # ---
    # internals, called inside an open transaction
    # ---
    async def _participant_by_email(self,
                                    email: str) -> Optional[Participant]:
        return (await self.db.execute(
            select(Participant).where(Participant.email == email)
        )).scalar_one_or_none()

    async def _locked_order(self, order_id: str) -> Order:
        order = (await self.db.execute(
            select(Order).where(Order.id == order_id).with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found")
        return order
