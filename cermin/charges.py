import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from .gateway import Charge, PaymentAdapter
from .helpers import now_ts
from .infra.sql import Gated
from .model.chargesession import ChargeSessionStore
from .model.db import Payment, PENDING
from .model.orders import OrderStore

logger = logging.getLogger(__name__)


async def initiate_charge(order_id: str, *, db: AsyncSession, gated: Gated,
                          orders: OrderStore, adapter: PaymentAdapter,
                          sessions: ChargeSessionStore) -> Charge:
    """
    Start (or resume) payment of a pending order.

    Re-initiating is safe: while the previous charge has not expired the
    cached descriptor is returned and the gateway is not called again. Every
    charge that reaches the gateway appends a pending Payment row. An order
    whose participant already paid for the event through another order is
    rejected with DuplicatePaidOrder.
    """
    order = await orders.get_order(order_id)
    adapter.ensure_chargeable(order)
    await orders.ensure_no_paid_sibling(order)

    cached = await sessions.get_charge(order_id)
    if cached is not None:
        charge = Charge.from_dict(cached)
        if charge.expires_at > now_ts():
            logger.info("order %s: reusing active charge %s", order_id,
                        charge.gateway_transaction_id)
            return charge

    participant = await orders.get_participant(order.participant_id)
    charge = await adapter.initiate_charge(order, participant)

    async with gated():
        async with db.begin():
            db.add(Payment(
                id=uuid.uuid4().hex,
                order_id=order.id,
                gateway_transaction_id=charge.gateway_transaction_id,
                channel=charge.channel,
                status=PENDING,
                paid_at=None,
                created_at=now_ts(),
            ))
    await sessions.save_charge(order_id, charge.as_dict(), charge.expires_at)
    logger.info("order %s: charge %s via %s, %s due, expires %.0f",
                order_id, charge.gateway_transaction_id, adapter.name,
                charge.gross_amount, charge.expires_at)
    return charge
