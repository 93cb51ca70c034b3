"""Tests for ticket delivery.

Run with: pytest tests/test_notifier.py -v
"""

import base64
import json
from decimal import Decimal

import httpx
import pytest

from cermin.config import Config
from cermin.model.db import Event, Order, Participant, Payment, Ticket
from cermin.notifier import (
    LogNotifier, MailNotifier, money, new_notifier, qr_png_base64,
    render_ticket,
)

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@pytest.fixture
def delivery():
    order = Order(id="0123456789abcdef", event_id="evt-1",
                  participant_id="p-1", price=Decimal("49000"),
                  admin_fee=1000, amount=Decimal("50000"), status="paid")
    participant = Participant(id="p-1", name="Sari <b>",
                              email="sari@example.com", phone=None)
    event = Event(id="evt-1", title="Cermin Fest", location="Jakarta",
                  starts_at=None, price=Decimal("49000"))
    ticket = Ticket(id="t-1", order_id=order.id, qr_token="TCK-abc",
                    is_valid=True)
    payment = Payment(id="pay-1", order_id=order.id, channel="qris",
                      status="paid")
    return order, participant, event, ticket, payment


def test_money_uses_dot_thousands():
    assert money(Decimal("50000.00")) == "Rp50.000"
    assert money(1000) == "Rp1.000"


def test_qr_is_png():
    assert base64.b64decode(qr_png_base64("TCK-abc")).startswith(PNG_MAGIC)


def test_render_ticket(delivery):
    html = render_ticket(*delivery)
    assert "Cermin Fest" in html
    assert "TCK-abc" in html
    assert "Rp50.000" in html
    assert "#01234567" in html
    # participant input is escaped
    assert "Sari &lt;b&gt;" in html


async def test_mail_notifier_posts_message(delivery):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"messageId": "m-1"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler)
    ) as http:
        notifier = MailNotifier(http=http, api_url="https://mail.test/send",
                                api_key="k", sender="tickets@cermin.id",
                                sender_name="Cermin")
        await notifier.send_ticket(*delivery)

    assert seen["headers"]["api-key"] == "k"
    body = seen["body"]
    assert body["to"] == [{"email": "sari@example.com", "name": "Sari <b>"}]
    assert body["subject"] == "E-Ticket: Cermin Fest"
    attachment = body["attachment"][0]
    assert attachment["name"] == "ticket-qr.png"
    assert base64.b64decode(attachment["content"]).startswith(PNG_MAGIC)


async def test_mail_notifier_raises_on_rejection(delivery):
    def handler(request):
        return httpx.Response(401, json={"message": "Key not found"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler)
    ) as http:
        notifier = MailNotifier(http=http, api_url="https://mail.test/send",
                                api_key="bad", sender="a@b.c",
                                sender_name="x")
        with pytest.raises(httpx.HTTPStatusError):
            await notifier.send_ticket(*delivery)


async def test_log_notifier_does_not_raise(delivery, caplog):
    caplog.set_level("INFO", logger="cermin.notifier")
    await LogNotifier().send_ticket(*delivery)
    assert "TCK-abc" in caplog.text


def test_new_notifier_selects_backend():
    assert isinstance(new_notifier(Config(notifier="log"), None),
                      LogNotifier)
    assert isinstance(new_notifier(Config(notifier="mail"), None),
                      MailNotifier)
