"""
Money Utilities

Every balance and amount in the ledger passes through this module before
any arithmetic. Inputs arrive in several shapes (floats from calculators,
Decimals from storage, strings from forms, None for missing values) and
leave as plain floats rounded to two decimal places.

DESIGN DECISION: Internal math uses floats rounded after each step, and
storage uses Decimal. Rounding after each step keeps float error from
accumulating across long transaction histories; `to_decimal` is the only
way back into storage.
"""

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

DECIMAL_PLACES = 2

# Two rounded amounts closer than this are the same amount of money
MONEY_TOLERANCE = 0.001

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")


def round_money(value: Any, decimals: int = DECIMAL_PLACES) -> float:
    """
    Round half-up (away from zero) to `decimals` places.

    Non-finite input rounds to 0 and negative zero is normalized to 0.
    """
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0

    quantum = Decimal(1).scaleb(-decimals)
    try:
        rounded = float(Decimal(repr(number)).quantize(quantum, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        # Beyond Decimal context precision cents are meaningless anyway
        rounded = round(number, decimals)
    return rounded if rounded != 0 else 0.0


def to_amount(value: Any) -> float:
    """
    Normalize a money-like value to a plain float.

    Accepts ints, floats, Decimals, numeric strings, objects exposing
    `to_number()`, and None (0). Anything unconvertible or non-finite is 0.
    """
    if value is None:
        return 0.0

    to_number = getattr(value, "to_number", None)
    if callable(to_number):
        value = to_number()

    try:
        number = float(value)
    except (TypeError, ValueError, InvalidOperation):
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_amount(text: Any) -> float:
    """
    Parse user-entered text into an amount.

    Reads the leading number the way a form field would ("12.50 INR" is
    12.5); empty, invalid or non-finite input is 0.
    """
    if text is None or text == "":
        return 0.0
    if isinstance(text, (int, float, Decimal)) and not isinstance(text, bool):
        number = float(text)
        return number if math.isfinite(number) else 0.0

    match = _LEADING_NUMBER.match(str(text))
    if not match:
        return 0.0
    number = float(match.group(1))
    return number if math.isfinite(number) else 0.0


def approximately_equal(a: Any, b: Any) -> bool:
    """True when two amounts are equal after rounding to cents."""
    return abs(round_money(to_amount(a)) - round_money(to_amount(b))) < MONEY_TOLERANCE


def to_decimal(value: Any) -> Decimal:
    """Round a money-like value and convert it for storage."""
    return Decimal(repr(round_money(to_amount(value)))).quantize(
        Decimal(1).scaleb(-DECIMAL_PLACES)
    )


def calculate_percentage(part: Any, whole: Any) -> float:
    """What percentage `part` is of `whole`, to one decimal place."""
    p = to_amount(part)
    w = to_amount(whole)
    if w == 0:
        return 0.0
    return round_money(p / w * 100, 1)


def calculate_percentage_change(current: Any, previous: Any) -> float:
    """
    Percentage change from `previous` to `current`, to one decimal place.

    With no previous value the change is reported as +100, -100 or 0
    depending on the sign of `current`.
    """
    curr = to_amount(current)
    prev = to_amount(previous)

    if prev == 0:
        if curr > 0:
            return 100.0
        if curr < 0:
            return -100.0
        return 0.0

    return round_money((curr - prev) / abs(prev) * 100, 1)
