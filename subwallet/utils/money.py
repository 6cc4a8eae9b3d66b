"""
Money formatting for alert messages and logs.

Usage:
    from subwallet.utils.money import format_money

    format_money(15000, "USD")        -> "15 000.00 USD"
    format_money("80.5", "EUR", 0)    -> "80 EUR"
"""
from decimal import Decimal, ROUND_HALF_UP


def format_money(amount, currency: str = "USD", decimals: int = 2) -> str:
    """
    Format an amount with space thousand separators and the currency code.

    Args:
        amount: int / Decimal / str
        currency: ISO currency code
        decimals: digits after the point
    """
    amount = Decimal(str(amount))
    quant = Decimal(1).scaleb(-decimals)
    rounded = amount.quantize(quant, rounding=ROUND_HALF_UP)
    formatted = f"{rounded:,.{decimals}f}".replace(",", " ")
    return f"{formatted} {currency}"


def format_percent(value, decimals: int = 2) -> str:
    return f"{Decimal(str(value)).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)}%"
