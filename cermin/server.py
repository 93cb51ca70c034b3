from __future__ import annotations
import logging
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import Identity, require_auth, require_roles
from .charges import initiate_charge
from .config import Config, configure_logging
from .errors import CerminError, InternalError, ValidationError
from .gateway import PaymentAdapter, new_adapter
from .gateway._mockpay import MockPay, SIGNATURE_HEADER
from .helpers import json_amount, to_iso, to_minor_int
from .infra.sql import make_async_engine
from .model.chargesession import ChargeSessionStore, new_store
from .model.db import Base, Order, Payment, Ticket
from .model.orders import OrderStore, ParticipantInput
from .notifier import Notifier, new_notifier
from .reconcile import ReconciliationEngine

logger = logging.getLogger(__name__)


# ----------------------------
# Response shapes
# ----------------------------
def order_out(o: Order) -> dict:
    return {
        "id": o.id,
        "event_id": o.event_id,
        "participant_id": o.participant_id,
        "price": json_amount(o.price),
        "admin_fee": int(o.admin_fee),
        "amount": json_amount(o.amount),
        "status": o.status,
        "created_at": to_iso(o.created_at),
    }


def payment_out(p: Payment) -> dict:
    return {
        "id": p.id,
        "order_id": p.order_id,
        "gateway_transaction_id": p.gateway_transaction_id,
        "channel": p.channel,
        "status": p.status,
        "paid_at": to_iso(p.paid_at),
        "created_at": to_iso(p.created_at),
    }


def ticket_out(t: Ticket) -> dict:
    return {
        "id": t.id,
        "order_id": t.order_id,
        "qr_token": t.qr_token,
        "is_valid": t.is_valid,
        "created_at": to_iso(t.created_at),
    }


def create_app(cfg: Optional[Config] = None, *,
               adapter: Optional[PaymentAdapter] = None,
               notifier: Optional[Notifier] = None) -> FastAPI:
    cfg = cfg or Config.from_env()
    configure_logging(cfg.log_level)

    engine, SessionAsync, gated = make_async_engine(
        cfg.database_url,
        pool_size=cfg.db_pool_size,
        max_overflow=cfg.db_max_overflow,
        pool_timeout=cfg.db_pool_timeout,
    )
    http = httpx.AsyncClient(
        timeout=cfg.gateway_timeout,
        limits=httpx.Limits(max_connections=128,
                            max_keepalive_connections=64),
    )
    adapter = adapter or new_adapter(cfg, http)
    notifier = notifier or new_notifier(cfg, http)

    app = FastAPI(title="Cermin", default_response_class=ORJSONResponse)
    app.state.cfg = cfg
    app.state.engine = engine
    app.state.adapter = adapter
    app.state.notifier = notifier
    app.state.http = http
    app.state.redis = None

    # ---
    # dependencies
    # ---
    async def get_db() -> AsyncSession:
        async with SessionAsync() as session:
            yield session

    def order_store(db: AsyncSession = Depends(get_db)) -> OrderStore:
        return OrderStore(db=db, gated=gated, fee_rate=cfg.fee_rate,
                          fee_minimum=cfg.fee_minimum)

    def chargesessions(
        db: AsyncSession = Depends(get_db),
    ) -> ChargeSessionStore:
        if cfg.chargesession_backend == "redis":
            return new_store("redis", r=app.state.redis)
        return new_store("sql", db=db, gated=gated)

    def reconciler(
        db: AsyncSession = Depends(get_db),
        sessions: ChargeSessionStore = Depends(chargesessions),
    ) -> ReconciliationEngine:
        return ReconciliationEngine(db=db, gated=gated, adapter=adapter,
                                    notifier=notifier, sessions=sessions)

    require_admin = require_roles(cfg.admin_roles)

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        logger.info("=" * 50)
        logger.info("Cermin is starting up...")
        logger.info("   - Payment gateway:          %s", adapter.name)
        logger.info("   - Charge session backend:   %s",
                    cfg.chargesession_backend)
        logger.info("   - Notifier:                 %s",
                    type(notifier).__name__)
        logger.info("   - Admin fee:                %s%% (min %s)",
                    cfg.fee_rate * 100, cfg.fee_minimum)
        logger.info("=" * 50)

    @app.on_event("startup")
    async def _db_init():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @app.on_event("startup")
    async def _redis_start():
        if cfg.chargesession_backend == "redis":
            app.state.redis = redis.from_url(
                cfg.redis_url,
                decode_responses=True,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
                retry_on_timeout=True,
            )

    @app.on_event("shutdown")
    async def _http_client_stop():
        await http.aclose()

    @app.on_event("shutdown")
    async def _redis_stop():
        r = app.state.redis
        if r is not None:
            await r.aclose()
            app.state.redis = None

    @app.on_event("shutdown")
    async def _db_stop():
        await engine.dispose()

    # ---
    # errors
    # ---
    @app.exception_handler(CerminError)
    async def _cermin_error(request: Request, exc: CerminError):
        return ORJSONResponse(status_code=exc.status_code,
                              content={"error": exc.as_dict()})

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request,
                               exc: RequestValidationError):
        err = ValidationError("Malformed request body")
        return ORJSONResponse(status_code=err.status_code,
                              content={"error": err.as_dict()})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("unhandled error on %s %s", request.method,
                     request.url.path, exc_info=exc)
        err = InternalError("Internal server error")
        return ORJSONResponse(status_code=err.status_code,
                              content={"error": err.as_dict()})

    # ----------------------------
    # Routes
    # ----------------------------
    @app.get("/")
    async def root():
        return {"name": "Cermin API", "gateway": adapter.name}

    @app.post("/api/orders", status_code=201)
    async def create_order(
        payload: dict,
        who: Identity = Depends(require_auth),
        orders: OrderStore = Depends(order_store),
    ):
        order = await orders.create_order(
            str(payload.get("event_id") or "").strip(),
            ParticipantInput(
                name=payload.get("name") or "",
                email=payload.get("email") or "",
                phone=payload.get("phone"),
            ),
        )
        return order_out(order)

    @app.get("/api/orders/{order_id}")
    async def get_order(
        order_id: str,
        who: Identity = Depends(require_auth),
        orders: OrderStore = Depends(order_store),
    ):
        return order_out(await orders.get_order(order_id))

    @app.get("/api/orders/{order_id}/payments")
    async def get_order_payments(
        order_id: str,
        who: Identity = Depends(require_auth),
        orders: OrderStore = Depends(order_store),
    ):
        payments = await orders.list_payments(order_id)
        return {"items": [payment_out(p) for p in payments]}

    @app.get("/api/orders/{order_id}/ticket")
    async def get_order_ticket(
        order_id: str,
        who: Identity = Depends(require_auth),
        orders: OrderStore = Depends(order_store),
    ):
        return ticket_out(await orders.get_ticket(order_id))

    @app.put("/api/orders/{order_id}/status")
    async def update_order_status(
        order_id: str,
        payload: dict,
        who: Identity = Depends(require_admin),
        orders: OrderStore = Depends(order_store),
        engine: ReconciliationEngine = Depends(reconciler),
    ):
        status = str(payload.get("status") or "").strip().lower()
        if not status:
            raise ValidationError("status is required")
        logger.info("order %s: manual status %s by %s", order_id, status,
                    who.user_id)
        order = await engine.override_status(orders, order_id, status)
        return order_out(order)

    @app.delete("/api/orders/{order_id}")
    async def delete_order(
        order_id: str,
        who: Identity = Depends(require_admin),
        orders: OrderStore = Depends(order_store),
    ):
        await orders.delete_order(order_id)
        return {"ok": True}

    @app.post("/api/payments/charge", status_code=201)
    async def create_charge(
        payload: dict,
        who: Identity = Depends(require_auth),
        db: AsyncSession = Depends(get_db),
        orders: OrderStore = Depends(order_store),
        sessions: ChargeSessionStore = Depends(chargesessions),
    ):
        order_id = str(payload.get("order_id") or "").strip()
        if not order_id:
            raise ValidationError("order_id is required")
        charge = await initiate_charge(
            order_id, db=db, gated=gated, orders=orders, adapter=adapter,
            sessions=sessions,
        )
        return {
            "order_id": charge.order_id,
            "gateway_transaction_id": charge.gateway_transaction_id,
            "channel": charge.channel,
            "action": {"name": charge.action_name, "url": charge.action_url},
            "qr_string": charge.qr_string,
            "gross_amount": charge.gross_amount,
            "expires_at": to_iso(charge.expires_at),
        }

    # ----------------------------
    # Webhook endpoint (shared for Midtrans/Mock)
    # ----------------------------
    @app.post("/payments/webhook")
    async def payments_webhook(
        request: Request,
        engine: ReconciliationEngine = Depends(reconciler),
    ):
        payload = await request.body()
        headers = dict(request.headers)
        result = await engine.handle(payload, headers)
        return {
            "ok": True,
            "outcome": result.outcome,
            "order_status": result.order_status,
        }

    # ----------------------------
    # MockPay: emit a signed notification to our own webhook
    # ----------------------------
    if isinstance(adapter, MockPay):
        @app.post("/mockpay/{order_id}/emit")
        async def mockpay_emit(
            order_id: str,
            payload: dict,
            orders: OrderStore = Depends(order_store),
        ):
            status = str(payload.get("t") or "")
            if not status:
                raise ValidationError("t is required")
            order = await orders.get_order(order_id)
            body = adapter.build_notification(
                order_id, status, to_minor_int(order.amount),
                fraud_status=payload.get("fraud_status"),
            )
            try:
                r = await http.post(
                    cfg.mock_webhook_url,
                    content=body,
                    headers={
                        SIGNATURE_HEADER: adapter.sign(body),
                        "content-type": "application/json",
                    },
                )
                delivered = r.status_code
            except httpx.HTTPError as e:
                # the payer can simply retry
                logger.warning("mock webhook delivery failed: %r", e)
                delivered = None
            return {"ok": delivered == 200, "webhook_status": delivered}

    return app
