from decimal import ROUND_HALF_UP, Decimal

from core.date_helper import dated_code

CENT = Decimal("0.01")


def booking_code() -> str:
    return dated_code("BK")


def transaction_code() -> str:
    return dated_code("TXN")


def to_money(value) -> Decimal:
    if isinstance(value, float):
        # Never let binary floats into the ledger.
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_commission(agreed_price: Decimal, rate: Decimal) -> Decimal:
    return to_money(Decimal(agreed_price) * Decimal(rate) / Decimal(100))
