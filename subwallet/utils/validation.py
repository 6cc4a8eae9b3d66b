"""
Amount validation for API input (amounts travel as strings)
"""
import re
from decimal import Decimal, InvalidOperation

# Matches Numeric(36, 9) storage
MAX_DECIMAL_PLACES = 9


def normalize_decimal_input(value: str) -> str:
    """
    Normalize a typed amount: comma becomes a dot, surrounding spaces dropped

    Example:
        >>> normalize_decimal_input(" 100,50 ")
        "100.50"
    """
    return value.strip().replace(",", ".")


def validate_decimal_amount(value: str, max_decimal_places: int = MAX_DECIMAL_PLACES) -> tuple[bool, str | None]:
    """
    Validate a money amount

    Returns:
        (is_valid, error_message)

    Example:
        >>> validate_decimal_amount("100.50")
        (True, None)
        >>> validate_decimal_amount("1.0000000001")
        (False, "At most 9 decimal places")
    """
    normalized = normalize_decimal_input(value)

    try:
        decimal_value = Decimal(normalized)
    except (InvalidOperation, ValueError):
        return False, "Invalid amount"

    if not decimal_value.is_finite():
        return False, "Invalid amount"

    pattern = rf"^-?\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        return False, f"At most {max_decimal_places} decimal places"

    return True, None


def validate_and_normalize_amount(value: str, max_decimal_places: int = MAX_DECIMAL_PLACES) -> str:
    """
    Validate and normalize an amount (raises on error)

    Raises:
        ValueError: if validation fails
    """
    is_valid, error = validate_decimal_amount(value, max_decimal_places)
    if not is_valid:
        raise ValueError(error)

    return normalize_decimal_input(value)
