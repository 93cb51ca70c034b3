from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal


# ----------------------------
# Config & Constants
# ----------------------------
DEFAULT_DATABASE_URL = "sqlite:///./cermin.db"
MIDTRANS_SANDBOX_URL = "https://api.sandbox.midtrans.com"

# admin fee policy: 2% of the ticket price, at least 1000, rounded up to 100
DEFAULT_FEE_RATE = Decimal("0.02")
DEFAULT_FEE_MINIMUM = 1000


@dataclass
class Config:
    database_url: str = DEFAULT_DATABASE_URL
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30

    fee_rate: Decimal = DEFAULT_FEE_RATE
    fee_minimum: int = DEFAULT_FEE_MINIMUM

    gateway: str = "midtrans"  # 'midtrans' | 'mock'
    midtrans_server_key: str = ""
    midtrans_base_url: str = MIDTRANS_SANDBOX_URL
    gateway_timeout: float = 10.0
    charge_expiry_minutes: int = 15

    mock_secret: str = "supersecret"
    mock_webhook_url: str = "http://localhost:8000/payments/webhook"

    chargesession_backend: str = "sql"  # 'redis' | 'sql'
    redis_url: str = "redis://127.0.0.1:6379"

    notifier: str = "log"  # 'log' | 'mail'
    mail_api_url: str = "https://api.brevo.com/v3/smtp/email"
    mail_api_key: str = ""
    mail_from: str = "tickets@cermin.id"
    mail_from_name: str = "Cermin Event Platform"

    log_level: str = "INFO"
    admin_roles: tuple = field(default=("admin", "superadmin"))

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            db_pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            db_max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            db_pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            fee_rate=Decimal(os.getenv("FEE_RATE", str(DEFAULT_FEE_RATE))),
            fee_minimum=int(
                os.getenv("FEE_MINIMUM", str(DEFAULT_FEE_MINIMUM))
            ),
            gateway=os.getenv("GATEWAY", "midtrans").lower(),
            midtrans_server_key=os.getenv("MIDTRANS_SERVER_KEY", ""),
            midtrans_base_url=os.getenv(
                "MIDTRANS_BASE_URL", MIDTRANS_SANDBOX_URL
            ).rstrip("/"),
            gateway_timeout=float(os.getenv("GATEWAY_TIMEOUT", "10")),
            charge_expiry_minutes=int(
                os.getenv("CHARGE_EXPIRY_MINUTES", "15")
            ),
            mock_secret=os.getenv("MOCK_SECRET", "supersecret"),
            mock_webhook_url=os.getenv(
                "MOCK_WEBHOOK_URL", "http://localhost:8000/payments/webhook"
            ),
            chargesession_backend=os.getenv(
                "CHARGESESSION_BACKEND", "sql"
            ).lower(),
            redis_url=os.getenv("REDIS_URL", "redis://127.0.0.1:6379"),
            notifier=os.getenv("NOTIFIER", "log").lower(),
            mail_api_url=os.getenv(
                "MAIL_API_URL", "https://api.brevo.com/v3/smtp/email"
            ),
            mail_api_key=os.getenv("MAIL_API_KEY", ""),
            mail_from=os.getenv("MAIL_FROM", "tickets@cermin.id"),
            mail_from_name=os.getenv(
                "MAIL_FROM_NAME", "Cermin Event Platform"
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
