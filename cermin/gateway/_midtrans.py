"""
Midtrans Core API adapter (QRIS channel).

- charge:       POST {base}/v2/charge, HTTP basic auth with the server key
- notification: JSON body signed with
                sha512(order_id + status_code + gross_amount + server_key)
"""
from __future__ import annotations
import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import httpx

from . import Charge, Notification, PaymentAdapter
from ..errors import GatewayError, GatewayUnavailable, InvalidNotification
from ..helpers import now_ts, to_minor_int
from ..model.db import Order, Participant

logger = logging.getLogger(__name__)

# Midtrans reports expiry_time in Jakarta local time
WIB = timezone(timedelta(hours=7))
QR_ACTION = "generate-qr-code"
CHANNEL = "qris"


class Midtrans(PaymentAdapter):
    name = "midtrans"

    def __init__(self, *, server_key: str, base_url: str,
                 http: httpx.AsyncClient, timeout: float = 10.0,
                 expiry_minutes: int = 15) -> None:
        self.server_key = server_key
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.timeout = timeout
        self.expiry_minutes = expiry_minutes

    def charge_body(self, order: Order,
                    participant: Participant) -> Dict[str, Any]:
        return {
            "payment_type": CHANNEL,
            "transaction_details": {
                "order_id": order.id,
                "gross_amount": to_minor_int(order.amount),
            },
            "item_details": [
                {
                    "id": order.event_id,
                    "price": to_minor_int(order.price),
                    "quantity": 1,
                    "name": "Event ticket",
                },
                {
                    "id": "admin-fee",
                    "price": int(order.admin_fee),
                    "quantity": 1,
                    "name": "Admin fee",
                },
            ],
            "customer_details": {
                "first_name": participant.name,
                "email": participant.email,
                "phone": participant.phone or "",
            },
            "custom_expiry": {
                "expiry_duration": self.expiry_minutes,
                "unit": "minute",
            },
        }

    async def create_charge(self, order: Order,
                            participant: Participant) -> Charge:
        body = self.charge_body(order, participant)
        try:
            r = await self.http.post(
                f"{self.base_url}/v2/charge",
                json=body,
                auth=(self.server_key, ""),
                headers={"accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TransportError as e:
            # includes timeouts
            logger.warning("midtrans charge for %s failed: %r", order.id, e)
            raise GatewayUnavailable("Payment gateway unavailable") from e

        if r.status_code >= 500:
            raise GatewayUnavailable("Payment gateway unavailable")
        try:
            data = r.json()
        except ValueError as e:
            raise GatewayError("Unreadable payment gateway response") from e

        status_code = str(data.get("status_code", r.status_code))
        if status_code not in ("200", "201"):
            logger.warning("midtrans rejected charge for %s: %s %s",
                           order.id, status_code, data.get("status_message"))
            raise GatewayError(
                data.get("status_message") or "Payment gateway error"
            )

        action = self._pick_action(data.get("actions") or [])
        return Charge(
            order_id=order.id,
            gateway_transaction_id=data.get("transaction_id"),
            channel=data.get("payment_type") or CHANNEL,
            action_name=action.get("name", QR_ACTION),
            action_url=action.get("url", ""),
            qr_string=data.get("qr_string"),
            expires_at=self._expiry(data.get("expiry_time")),
            gross_amount=body["transaction_details"]["gross_amount"],
        )

    def verify_notification(self, payload: bytes,
                            headers: dict) -> Notification:
        try:
            raw = payload.decode()
            data = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise InvalidNotification("Invalid JSON")
        if not isinstance(data, dict):
            raise InvalidNotification("Invalid notification body")

        fields = {}
        for key in ("order_id", "status_code", "gross_amount",
                    "signature_key", "transaction_status"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise InvalidNotification(f"missing {key}")
            fields[key] = value

        expected = self.sign(fields["order_id"], fields["status_code"],
                             fields["gross_amount"])
        if not hmac.compare_digest(expected, fields["signature_key"]):
            raise InvalidNotification("Invalid signature")

        fraud = data.get("fraud_status")
        return Notification(
            order_id=fields["order_id"],
            gateway_transaction_id=data.get("transaction_id"),
            gateway_status=fields["transaction_status"].lower(),
            fraud_status=fraud.lower() if isinstance(fraud, str) else None,
            channel=data.get("payment_type") or CHANNEL,
            gross_amount=fields["gross_amount"],
            raw=raw,
        )

    def sign(self, order_id: str, status_code: str,
             gross_amount: str) -> str:
        return hashlib.sha512(
            (order_id + status_code + gross_amount + self.server_key).encode()
        ).hexdigest()

    @staticmethod
    def _pick_action(actions: list) -> dict:
        for a in actions:
            if a.get("name") == QR_ACTION:
                return a
        return actions[0] if actions else {}

    def _expiry(self, expiry_time: str | None) -> float:
        if expiry_time:
            try:
                dt = datetime.strptime(expiry_time, "%Y-%m-%d %H:%M:%S")
                return dt.replace(tzinfo=WIB).timestamp()
            except ValueError:
                logger.warning("unparseable expiry_time %r", expiry_time)
        return now_ts() + self.expiry_minutes * 60
