"""
Ticket delivery after a successful payment.

The reconciliation engine calls ``send_ticket`` once the paid transition is
committed. Implementations may raise; the engine logs and moves on.
"""
from __future__ import annotations
import base64
import io
import logging
from abc import ABC, abstractmethod
from datetime import datetime

import httpx
import qrcode
from jinja2 import Environment, DictLoader, select_autoescape

from .config import Config
from .model.db import Event, Order, Participant, Payment, Ticket

logger = logging.getLogger(__name__)

TEMPLATES = {
    "ticket.html": """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1>E-Ticket &amp; Payment Receipt</h1>
  <h2>{{ event.title }}</h2>
  <p>{{ starts_at }}{% if event.location %} &middot; {{ event.location }}{% endif %}</p>
  <table>
    <tr><td>Name</td><td>{{ participant.name }}</td></tr>
    <tr><td>Email</td><td>{{ participant.email }}</td></tr>
    <tr><td>Phone</td><td>{{ participant.phone or '-' }}</td></tr>
  </table>
  <p>Show the attached QR code (ticket-qr.png) at check-in.</p>
  <p>Token: {{ ticket.qr_token }}</p>
  <table>
    <tr><td>Order</td><td>#{{ order.id[:8] }}</td></tr>
    <tr><td>Status</td><td>PAID</td></tr>
    <tr><td>Method</td><td>{{ payment.channel|upper }}</td></tr>
    <tr><td>Ticket price</td><td>{{ money(order.price) }}</td></tr>
    <tr><td>Admin fee</td><td>{{ money(order.admin_fee) }}</td></tr>
    <tr><td><b>Total</b></td><td><b>{{ money(order.amount) }}</b></td></tr>
  </table>
</div>
""",
}

env = Environment(loader=DictLoader(TEMPLATES),
                  autoescape=select_autoescape(["html"]))


def money(amount) -> str:
    return "Rp" + f"{int(amount):,}".replace(",", ".")


def qr_png_base64(token: str) -> str:
    img = qrcode.make(token)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode()


def render_ticket(order: Order, participant: Participant, event: Event,
                  ticket: Ticket, payment: Payment) -> str:
    starts_at = ""
    if event.starts_at is not None:
        starts_at = datetime.fromtimestamp(event.starts_at).strftime(
            "%A, %d %B %Y %H:%M"
        )
    return env.get_template("ticket.html").render(
        order=order, participant=participant, event=event, ticket=ticket,
        payment=payment, starts_at=starts_at, money=money,
    )


class Notifier(ABC):
    @abstractmethod
    async def send_ticket(self, order: Order, participant: Participant,
                          event: Event, ticket: Ticket,
                          payment: Payment) -> None: ...


class LogNotifier(Notifier):
    async def send_ticket(self, order, participant, event, ticket,
                          payment) -> None:
        logger.info("ticket %s for order %s issued to %s (%s)",
                    ticket.qr_token, order.id, participant.email,
                    event.title)


class MailNotifier(Notifier):
    """Transactional mail over HTTP (Brevo-style JSON API)."""

    def __init__(self, *, http: httpx.AsyncClient, api_url: str,
                 api_key: str, sender: str, sender_name: str,
                 timeout: float = 10.0) -> None:
        self.http = http
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.sender_name = sender_name
        self.timeout = timeout

    async def send_ticket(self, order, participant, event, ticket,
                          payment) -> None:
        body = {
            "sender": {"name": self.sender_name, "email": self.sender},
            "to": [{"email": participant.email, "name": participant.name}],
            "subject": f"E-Ticket: {event.title}",
            "htmlContent": render_ticket(order, participant, event, ticket,
                                         payment),
            "attachment": [{
                "name": "ticket-qr.png",
                "content": qr_png_base64(ticket.qr_token),
            }],
        }
        r = await self.http.post(
            self.api_url,
            json=body,
            headers={
                "accept": "application/json",
                "api-key": self.api_key,
            },
            timeout=self.timeout,
        )
        r.raise_for_status()
        logger.info("ticket mail for order %s sent to %s", order.id,
                    participant.email)


def new_notifier(cfg: Config, http: httpx.AsyncClient) -> Notifier:
    if cfg.notifier == "mail":
        return MailNotifier(
            http=http,
            api_url=cfg.mail_api_url,
            api_key=cfg.mail_api_key,
            sender=cfg.mail_from,
            sender_name=cfg.mail_from_name,
        )
    return LogNotifier()
