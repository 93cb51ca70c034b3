import base64
import hashlib
import hmac
import json
import uuid
from typing import Optional

from . import Charge, Notification, PaymentAdapter
from ..errors import InvalidNotification
from ..helpers import now_ts, to_minor_int
from ..model.db import Order, Participant

SIGNATURE_HEADER = "x-mockpay-signature"


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """Local stand-in for a gateway: redirects to /mockpay/{order_id} and
    posts HMAC-signed notifications back to the webhook."""

    name = "mock"

    def __init__(self, *, secret: str, expiry_minutes: int = 15) -> None:
        self.secret = secret
        self.expiry_minutes = expiry_minutes

    async def create_charge(self, order: Order,
                            participant: Participant) -> Charge:
        return Charge(
            order_id=order.id,
            gateway_transaction_id=f"mock_{uuid.uuid4().hex}",
            channel="qris",
            action_name="generate-qr-code",
            action_url=f"/mockpay/{order.id}",
            qr_string=f"MOCKQRIS:{order.id}",
            expires_at=now_ts() + self.expiry_minutes * 60,
            gross_amount=to_minor_int(order.amount),
        )

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def build_notification(self, order_id: str, status: str,
                           gross_amount: int,
                           transaction_id: Optional[str] = None,
                           fraud_status: Optional[str] = None) -> bytes:
        event = {
            "order_id": order_id,
            "transaction_id": transaction_id or f"mock_{uuid.uuid4().hex}",
            "transaction_status": status,
            "fraud_status": fraud_status,
            "payment_type": "qris",
            "gross_amount": str(gross_amount),
        }
        return json.dumps(event).encode()

    def verify_notification(self, payload: bytes,
                            headers: dict) -> Notification:
        sig = headers.get(SIGNATURE_HEADER)
        if not sig or not hmac.compare_digest(self.sign(payload), sig):
            raise InvalidNotification("Invalid signature")
        try:
            raw = payload.decode()
            event = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise InvalidNotification("Invalid JSON")
        if not isinstance(event, dict):
            raise InvalidNotification("Invalid notification body")

        order_id = event.get("order_id")
        status = event.get("transaction_status")
        if not isinstance(order_id, str) or not order_id:
            raise InvalidNotification("missing order_id")
        if not isinstance(status, str) or not status:
            raise InvalidNotification("missing transaction_status")

        fraud = event.get("fraud_status")
        return Notification(
            order_id=order_id,
            gateway_transaction_id=event.get("transaction_id"),
            gateway_status=status.lower(),
            fraud_status=fraud.lower() if isinstance(fraud, str) else None,
            channel=event.get("payment_type") or "qris",
            gross_amount=str(event.get("gross_amount", "")),
            raw=raw,
        )
