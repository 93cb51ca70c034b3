"""Unit tests for OrderStore and the ticket issuer.

Run with: pytest tests/test_orders.py -v
"""

from decimal import Decimal

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from cermin.errors import (
    DuplicatePaidOrder, HasDependents, InvalidTransition, NotFound,
    ValidationError,
)
from cermin.model.db import Order, Participant, Payment, Ticket
from cermin.model.events import put_event
from cermin.model.orders import ParticipantInput
from cermin.model.tickets import issue_ticket_if_absent

from conftest import EVENT_ID


def who(email="budi@example.com", name="Budi", phone=None):
    return ParticipantInput(name=name, email=email, phone=phone)


class TestCreateOrder:
    """Tests for OrderStore.create_order."""

    async def test_prices_order_from_event(self, orders):
        order = await orders.create_order(EVENT_ID, who())
        assert order.status == "pending"
        assert order.price == Decimal("49000")
        assert order.admin_fee == 1000
        assert order.amount == Decimal("50000")

    async def test_event_price_change_does_not_touch_existing_order(
            self, orders, db):
        order = await orders.create_order(EVENT_ID, who())
        async with db.begin():
            await put_event(db, EVENT_ID, "Cermin Fest", Decimal("120000"))
        again = await orders.get_order(order.id)
        assert again.price == Decimal("49000")
        assert again.amount == Decimal("50000")

    async def test_unknown_event_raises_not_found(self, orders):
        with pytest.raises(NotFound):
            await orders.create_order("nope", who())

    @pytest.mark.parametrize("name,email", [
        ("", "budi@example.com"),
        ("Budi", ""),
        ("Budi", "not-an-email"),
    ])
    async def test_missing_fields_raise_validation_error(self, orders, name,
                                                         email):
        with pytest.raises(ValidationError):
            await orders.create_order(EVENT_ID, who(email=email, name=name))

    async def test_missing_event_id_raises_validation_error(self, orders):
        with pytest.raises(ValidationError):
            await orders.create_order("", who())

    async def test_participant_reused_by_email(self, orders, db):
        first = await orders.create_order(EVENT_ID, who(phone="0811"))
        second = await orders.create_order(
            EVENT_ID, who(email="  BUDI@example.com ", name="Budi S",
                          phone="0822"),
        )
        assert first.participant_id == second.participant_id

        async with db.begin():
            rows = (await db.execute(select(Participant))).scalars().all()
        assert len(rows) == 1
        assert rows[0].email == "budi@example.com"
        assert rows[0].name == "Budi S"
        assert rows[0].phone == "0822"

    async def test_new_participant_is_stored_with_order(self, orders, db):
        order = await orders.create_order(
            EVENT_ID, who(email="new@example.com", name="Nia")
        )
        async with db.begin():
            participant = await db.get(Participant, order.participant_id)
            stored = await db.get(Order, order.id)
        assert participant.email == "new@example.com"
        assert stored.participant_id == participant.id

    async def test_pending_orders_do_not_block_new_ones(self, orders):
        await orders.create_order(EVENT_ID, who())
        await orders.create_order(EVENT_ID, who())

    async def test_paid_order_blocks_second_order(self, orders):
        order = await orders.create_order(EVENT_ID, who())
        await orders.update_order_status(order.id, "paid")
        with pytest.raises(DuplicatePaidOrder):
            await orders.create_order(EVENT_ID, who())

    async def test_paid_order_for_other_event_does_not_block(self, orders,
                                                             db):
        async with db.begin():
            await put_event(db, "evt-other", "Other", Decimal("10000"))
        order = await orders.create_order(EVENT_ID, who())
        await orders.update_order_status(order.id, "paid")
        other = await orders.create_order("evt-other", who())
        assert other.status == "pending"


class TestUpdateOrderStatus:
    """Tests for OrderStore.update_order_status."""

    async def test_same_status_twice_is_noop(self, orders, pending_order):
        await orders.update_order_status(pending_order.id, "failed")
        order = await orders.update_order_status(pending_order.id, "failed")
        assert order.status == "failed"

    async def test_unknown_status_rejected(self, orders, pending_order):
        with pytest.raises(ValidationError):
            await orders.update_order_status(pending_order.id, "settled")

    async def test_terminal_status_cannot_go_back(self, orders,
                                                  pending_order):
        await orders.update_order_status(pending_order.id, "failed")
        with pytest.raises(InvalidTransition):
            await orders.update_order_status(pending_order.id, "pending")

    async def test_unknown_order(self, orders):
        with pytest.raises(NotFound):
            await orders.update_order_status("missing", "paid")

    async def test_second_order_of_pair_cannot_be_paid(self, orders):
        first = await orders.create_order(EVENT_ID, who())
        second = await orders.create_order(EVENT_ID, who())
        second_id = second.id
        await orders.update_order_status(first.id, "paid")
        with pytest.raises(DuplicatePaidOrder):
            await orders.update_order_status(second_id, "paid")
        assert (await orders.get_order(second_id)).status == "pending"

    async def test_storage_rejects_second_paid_order(self, orders, db):
        first = await orders.create_order(EVENT_ID, who())
        second = await orders.create_order(EVENT_ID, who())
        await orders.update_order_status(first.id, "paid")
        with pytest.raises(IntegrityError):
            async with db.begin():
                await db.execute(
                    update(Order).where(Order.id == second.id)
                    .values(status="paid")
                )

    async def test_cancelled_paid_order_frees_the_pair(self, orders):
        first = await orders.create_order(EVENT_ID, who())
        second = await orders.create_order(EVENT_ID, who())
        await orders.update_order_status(first.id, "paid")
        await orders.update_order_status(first.id, "cancelled")
        order = await orders.update_order_status(second.id, "paid")
        assert order.status == "paid"


class TestDeleteOrder:
    """Tests for OrderStore.delete_order."""

    async def test_delete_order_without_dependents(self, orders,
                                                   pending_order):
        await orders.delete_order(pending_order.id)
        with pytest.raises(NotFound):
            await orders.get_order(pending_order.id)

    async def test_delete_rejected_while_payment_exists(self, orders,
                                                        pending_order, db):
        # the failed delete rolls back and expires the loaded order
        order_id = pending_order.id
        async with db.begin():
            db.add(Payment(id="pay-1", order_id=order_id,
                           channel="qris", status="pending",
                           created_at=1.0))
        with pytest.raises(HasDependents):
            await orders.delete_order(order_id)
        assert (await orders.get_order(order_id)).id == order_id

    async def test_delete_rejected_while_ticket_exists(self, orders,
                                                       pending_order, db):
        async with db.begin():
            await issue_ticket_if_absent(db, pending_order.id)
        with pytest.raises(HasDependents):
            await orders.delete_order(pending_order.id)


class TestTicketIssuer:
    """Tests for issue_ticket_if_absent."""

    async def test_second_call_returns_same_ticket(self, db, pending_order):
        async with db.begin():
            first = await issue_ticket_if_absent(db, pending_order.id)
        async with db.begin():
            second = await issue_ticket_if_absent(db, pending_order.id)
        assert first.id == second.id
        assert first.qr_token == second.qr_token
        assert first.is_valid is True

    async def test_token_is_not_derived_from_order_id(self, db,
                                                      pending_order):
        async with db.begin():
            ticket = await issue_ticket_if_absent(db, pending_order.id)
        assert ticket.qr_token.startswith("TCK-")
        assert pending_order.id not in ticket.qr_token
        assert len(ticket.qr_token) >= 32

    async def test_storage_rejects_second_ticket(self, db, pending_order):
        async with db.begin():
            await issue_ticket_if_absent(db, pending_order.id)
        with pytest.raises(IntegrityError):
            async with db.begin():
                db.add(Ticket(id="t-dup", order_id=pending_order.id,
                              qr_token="TCK-other", is_valid=True,
                              created_at=1.0))
