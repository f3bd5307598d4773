import logging
import numpy as np

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

# Internal Imports
from logging_setup import resolve_logger

CENT = Decimal("0.01")


def as_currency(value: float) -> float:
    """
    Round to the cent, half away from zero.
    """
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def compounded_rate(rate: float, years: float) -> float:
    return (1 + rate) ** years


def adjusted_for_inflation(
    value: float,
    rate: float,
    years: float,
    logger: Optional[logging.Logger] = None,
) -> float:
    """
    Scale `value` by (1 + rate) ** years. A missing or malformed rate
    yields no adjustment instead of leaking NaN into currency math.
    """
    try:
        adjusted = value * compounded_rate(float(rate), years)
    except (TypeError, ValueError, OverflowError):
        adjusted = float("nan")

    if not np.isfinite(adjusted):
        resolve_logger(logger).warning(
            f"[Inflation] rate={rate!r} over {years} years is not a number; "
            f"using unadjusted ${value:,.2f}"
        )
        return value

    return adjusted


def as_percentage_of(amount: float, total: float) -> float:
    if total == 0:
        return 0.0
    return round(amount / total, 3)
