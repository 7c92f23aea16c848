"""
Validation utilities
"""
import re
from decimal import Decimal, InvalidOperation

# Fiat ISO codes and crypto tickers: 2..10 latin letters/digits
CURRENCY_PATTERN = re.compile(r"[A-Z0-9]{2,10}")


def normalize_decimal_input(value: str) -> str:
    """
    Normalize an amount typed by hand: comma decimal separator, spaces

    Example:
        >>> normalize_decimal_input("1 000,50")
        "1000.50"
    """
    return value.strip().replace(" ", "").replace(",", ".")


def parse_amount(value, max_decimal_places: int = 8) -> Decimal:
    """
    Parse an amount into Decimal

    Raises:
        ValueError: not a finite number or too many decimal places
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(normalize_decimal_input(str(value)))
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid amount: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    if -amount.as_tuple().exponent > max_decimal_places:
        raise ValueError(f"At most {max_decimal_places} decimal places allowed")
    return amount


def normalize_currency(code: str | None) -> str:
    """
    Upper-case and check a currency code

    Raises:
        ValueError: empty or malformed code
    """
    normalized = (code or "").strip().upper()
    if not normalized:
        raise ValueError("Currency is required")
    if not CURRENCY_PATTERN.fullmatch(normalized):
        raise ValueError(f"Invalid currency code: {code!r}")
    return normalized
