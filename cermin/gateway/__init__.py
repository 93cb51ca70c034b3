from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Optional

import httpx

from ..config import Config
from ..errors import OrderAlreadySettled, OrderNotPayable
from ..model.db import Order, Participant, PAID, PENDING


# ----------------------------
# Normalized gateway types
# ----------------------------
@dataclass(frozen=True)
class Charge:
    order_id: str
    gateway_transaction_id: Optional[str]
    channel: str
    action_name: str
    action_url: str
    qr_string: Optional[str]
    expires_at: float
    gross_amount: int

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Charge":
        return cls(
            order_id=d["order_id"],
            gateway_transaction_id=d.get("gateway_transaction_id"),
            channel=d["channel"],
            action_name=d["action_name"],
            action_url=d["action_url"],
            qr_string=d.get("qr_string"),
            expires_at=float(d["expires_at"]),
            gross_amount=int(d["gross_amount"]),
        )


@dataclass(frozen=True)
class Notification:
    """A verified gateway notification; the only shape reconciliation sees."""
    order_id: str
    gateway_transaction_id: Optional[str]
    gateway_status: str
    fraud_status: Optional[str]
    channel: str
    gross_amount: str
    raw: str


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    name = "abstract"

    @staticmethod
    def ensure_chargeable(order: Order) -> None:
        if order.status == PAID:
            raise OrderAlreadySettled(order.id)
        if order.status != PENDING:
            raise OrderNotPayable(order.id, order.status)

    async def initiate_charge(self, order: Order,
                              participant: Participant) -> Charge:
        # reject before calling out
        self.ensure_chargeable(order)
        return await self.create_charge(order, participant)

    @abstractmethod
    async def create_charge(self, order: Order,
                            participant: Participant) -> Charge: ...

    @abstractmethod
    def verify_notification(self, payload: bytes,
                            headers: dict) -> Notification: ...


def new_adapter(cfg: Config, http: httpx.AsyncClient) -> PaymentAdapter:
    if cfg.gateway == "mock":
        from ._mockpay import MockPay
        return MockPay(secret=cfg.mock_secret,
                       expiry_minutes=cfg.charge_expiry_minutes)
    if cfg.gateway == "midtrans":
        from ._midtrans import Midtrans
        if not cfg.midtrans_server_key:
            raise RuntimeError("GATEWAY=midtrans requires MIDTRANS_SERVER_KEY")
        return Midtrans(
            server_key=cfg.midtrans_server_key,
            base_url=cfg.midtrans_base_url,
            http=http,
            timeout=cfg.gateway_timeout,
            expiry_minutes=cfg.charge_expiry_minutes,
        )
    raise RuntimeError(f"unknown GATEWAY '{cfg.gateway}'")


__all__ = ["Charge", "Notification", "PaymentAdapter", "new_adapter"]
