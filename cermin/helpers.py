import time
import re
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def json_amount(amount: Decimal | int | None) -> int | str | None:
    # orjson has no Decimal support; whole amounts go out as ints
    if amount is None:
        return None
    d = Decimal(str(amount))
    return int(d) if d == d.to_integral_value() else str(d)


def to_minor_int(amount: Decimal | int | str) -> int:
    # gateways reject fractional amounts; round half up to a whole unit
    return int(Decimal(str(amount)).quantize(Decimal("1"),
                                             rounding=ROUND_HALF_UP))
