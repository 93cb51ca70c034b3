"""
Reconciliation: gateway notification -> Order / Ticket / Payment.

    verify -> map status -> idempotency guard -> one transaction
      (CAS order status; on paid: ticket-if-absent + Payment(paid) row)
    -> commit -> notifier (failures logged only)

Correctness under redelivery and concurrent delivery rests on two things:
the guard (order already in the mapped status => duplicate) and the
UNIQUE(tickets.order_id) constraint. A delivery that loses the ticket race
rolls back entirely and is acknowledged as a duplicate. A partial unique
index keeps a second order of the same (event, participant) from being
paid; such a settlement is acknowledged as stale for manual review.
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    DuplicatePaidOrder, InternalError, InvalidTransition, NotFound,
)
from .gateway import Notification, PaymentAdapter
from .helpers import now_ts
from .infra.sql import Gated
from .model.db import (
    Event, Order, Participant, Payment, Ticket, WebhookLog,
    PENDING, PAID, FAILED, CHALLENGE,
)
from .model.orders import OrderStore, has_paid_order
from .model.tickets import issue_ticket_if_absent
from .notifier import Notifier

logger = logging.getLogger(__name__)

# outcomes
APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"
STALE = "stale"  # order left PENDING already, or its pair is already paid

FAILED_STATUSES = ("cancel", "deny", "expire")


def map_status(gateway_status: str,
               fraud_status: Optional[str] = None) -> Optional[str]:
    """Gateway vocabulary -> Order status; None means leave the order be."""
    if gateway_status == "capture":
        if fraud_status == "accept":
            return PAID
        if fraud_status == "challenge":
            return CHALLENGE
        return None
    if gateway_status == "settlement":
        return PAID
    if gateway_status in FAILED_STATUSES:
        return FAILED
    return None


@dataclass
class Result:
    outcome: str
    order_id: str
    order_status: Optional[str] = None
    ticket_id: Optional[str] = None
    payment_id: Optional[str] = None


# everything the notifier needs, loaded inside the transaction
Delivery = Tuple[Order, Participant, Event, Ticket, Payment]


class ReconciliationEngine:
    def __init__(self, *, db: AsyncSession, gated: Gated,
                 adapter: PaymentAdapter, notifier: Notifier,
                 sessions=None) -> None:
        self.db = db
        self.gated = gated
        self.adapter = adapter
        self.notifier = notifier
        self.sessions = sessions

    async def handle(self, payload: bytes, headers: dict) -> Result:
        # raises InvalidNotification; nothing below runs on bad input
        note = self.adapter.verify_notification(payload, headers)
        return await self.reconcile(note)

    async def reconcile(self, note: Notification) -> Result:
        target = map_status(note.gateway_status, note.fraud_status)
        try:
            if target is None:
                logger.info("order %s: ignoring gateway status %s/%s",
                            note.order_id, note.gateway_status,
                            note.fraud_status)
                await self._record(note, IGNORED)
                return Result(IGNORED, note.order_id)

            try:
                result, delivery = await self._apply(
                    note.order_id, target,
                    transaction_id=note.gateway_transaction_id,
                    channel=note.channel,
                    from_statuses=(PENDING,),
                    note=note,
                )
            except IntegrityError:
                # a concurrent delivery of the same notification won
                logger.info("order %s: lost settlement race, "
                            "duplicate delivery", note.order_id)
                await self._record(note, DUPLICATE)
                return Result(DUPLICATE, note.order_id, target)
        except SQLAlchemyError as e:
            logger.exception("order %s: storage failure in reconciliation",
                             note.order_id)
            raise InternalError("Storage failure, please retry") from e

        if result.outcome == APPLIED:
            await self._after_commit(result, delivery)
        return result

    async def override_status(self, orders: OrderStore, order_id: str,
                              status: str) -> Order:
        """
        Manual (admin) status change. Settling goes through the same path
        as a gateway settlement so the ticket is still issued exactly once.
        """
        if status != PAID:
            return await orders.update_order_status(order_id, status)
        try:
            result, delivery = await self._apply(
                order_id, PAID,
                transaction_id=None,
                channel="manual",
                from_statuses=(PENDING, CHALLENGE),
                strict=True,
            )
        except IntegrityError:
            logger.info("order %s: concurrent settlement won", order_id)
        except SQLAlchemyError as e:
            logger.exception("order %s: storage failure in override",
                             order_id)
            raise InternalError("Storage failure, please retry") from e
        else:
            if result.outcome == APPLIED:
                await self._after_commit(result, delivery)
        return await orders.get_order(order_id)

    # ---
    # transactional core
    # ---
    async def _apply(self, order_id: str, target: str, *,
                     transaction_id: Optional[str], channel: str,
                     from_statuses: Iterable[str],
                     note: Optional[Notification] = None,
                     strict: bool = False,
                     ) -> Tuple[Result, Optional[Delivery]]:
        delivery = None
        async with self.gated():
            async with self.db.begin():
                order = (await self.db.execute(
                    select(Order).where(Order.id == order_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )).scalar_one_or_none()
                if order is None:
                    raise NotFound("Order not found")

                # idempotency guard
                if order.status == target:
                    logger.info("order %s: already %s, duplicate delivery",
                                order_id, target)
                    self._log_row(note, DUPLICATE)
                    return Result(DUPLICATE, order_id, order.status), None

                if order.status not in from_statuses:
                    if strict:
                        raise InvalidTransition(order.status, target)
                    logger.warning(
                        "order %s: is %s, not applying %s from gateway "
                        "status %s; needs manual review",
                        order_id, order.status, target,
                        note.gateway_status if note else "-",
                    )
                    self._log_row(note, STALE)
                    return Result(STALE, order_id, order.status), None

                if target == PAID and await has_paid_order(
                        self.db, order.event_id, order.participant_id,
                        exclude_order_id=order.id):
                    if strict:
                        raise DuplicatePaidOrder(order.event_id,
                                                 order.participant_id)
                    # paid twice for the same seat: no second ticket
                    logger.warning(
                        "order %s: participant %s already holds a paid "
                        "order for event %s; needs manual review (refund)",
                        order_id, order.participant_id, order.event_id,
                    )
                    self._log_row(note, STALE)
                    return Result(STALE, order_id, order.status), None

                previous = order.status
                res = await self.db.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.status == previous)
                    .values(status=target)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    # status moved under us; the other writer owns it
                    self._log_row(note, DUPLICATE)
                    return Result(DUPLICATE, order_id, target), None
                await self.db.refresh(order)

                result = Result(APPLIED, order_id, target)
                if target == PAID:
                    ticket = await issue_ticket_if_absent(self.db, order_id)
                    ts = now_ts()
                    payment = Payment(
                        id=uuid.uuid4().hex,
                        order_id=order_id,
                        gateway_transaction_id=transaction_id,
                        channel=channel,
                        status=PAID,
                        paid_at=ts,
                        created_at=ts,
                    )
                    self.db.add(payment)
                    await self.db.flush()
                    result.ticket_id = ticket.id
                    result.payment_id = payment.id

                    participant = await self.db.get(Participant,
                                                    order.participant_id)
                    event = await self.db.get(Event, order.event_id)
                    delivery = (order, participant, event, ticket, payment)

                self._log_row(note, APPLIED, result.payment_id)
                logger.info("order %s: %s -> %s (ticket=%s payment=%s)",
                            order_id, previous, target, result.ticket_id,
                            result.payment_id)
        return result, delivery

    def _log_row(self, note: Optional[Notification], outcome: str,
                 payment_id: Optional[str] = None) -> None:
        if note is None:
            return
        self.db.add(WebhookLog(
            id=uuid.uuid4().hex,
            order_id=note.order_id,
            gateway_transaction_id=note.gateway_transaction_id,
            gateway_status=note.gateway_status,
            fraud_status=note.fraud_status,
            outcome=outcome,
            related_payment_id=payment_id,
            payload=note.raw,
            received_at=now_ts(),
        ))

    async def _record(self, note: Notification, outcome: str) -> None:
        async with self.gated():
            async with self.db.begin():
                self._log_row(note, outcome)

    # ---
    # after commit: nothing here may undo or fail the reconciliation
    # ---
    async def _after_commit(self, result: Result,
                            delivery: Optional[Delivery]) -> None:
        if self.sessions is not None:
            try:
                await self.sessions.drop_charge(result.order_id)
            except Exception:
                logger.exception("order %s: could not drop charge session",
                                 result.order_id)

        if delivery is None:
            return
        try:
            await self.notifier.send_ticket(*delivery)
        except Exception:
            logger.exception("order %s: ticket notification failed",
                             result.order_id)
