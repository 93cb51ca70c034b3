from decimal import Decimal, ROUND_CEILING
from typing import Tuple

from .config import DEFAULT_FEE_MINIMUM, DEFAULT_FEE_RATE

FEE_STEP = Decimal(100)


def admin_fee(price, rate: Decimal = DEFAULT_FEE_RATE,
              minimum: int = DEFAULT_FEE_MINIMUM) -> int:
    """
    max(price * rate, minimum), rounded up to the next multiple of 100.
    Free (or nonsensical negative) prices carry no fee.
    """
    price = Decimal(str(price))
    if price <= 0:
        return 0
    fee = max(price * Decimal(str(rate)), Decimal(minimum))
    steps = (fee / FEE_STEP).to_integral_value(rounding=ROUND_CEILING)
    return int(steps * FEE_STEP)


def gross_amount(price, rate: Decimal = DEFAULT_FEE_RATE,
                 minimum: int = DEFAULT_FEE_MINIMUM) -> Tuple[Decimal, int,
                                                             Decimal]:
    """Returns (price, admin_fee, total)."""
    price = Decimal(str(price))
    fee = admin_fee(price, rate, minimum)
    return price, fee, price + fee
