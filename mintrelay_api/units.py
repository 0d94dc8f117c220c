"""
Integer unit helpers.

Token amounts are handled as exact integers in base units. Human amounts
("5", "0.25") are converted with Decimal arithmetic so that float precision
never leaks into payment comparisons.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

UINT256_MAX = 2**256 - 1
UINT64_MAX = 2**64 - 1

# Gas limit safety buffer: estimate * 120 / 100
GAS_BUFFER_NUMERATOR = 120
GAS_BUFFER_DENOMINATOR = 100


def parse_units(value: Union[int, str, Decimal], decimals: int) -> int:
    """
    Convert a human-readable amount to integer base units.

    Args:
        value: Amount as int, str or Decimal (floats are rejected)
        decimals: Token decimals

    Returns:
        Amount in base units

    Raises:
        ValueError: Negative, non-numeric, too precise or out of uint256 range

    Examples:
        >>> parse_units("5", 6)
        5000000
        >>> parse_units("0.000001", 6)
        1
    """
    if isinstance(value, float):
        raise ValueError("Use str or Decimal amounts, not float")
    if decimals < 0:
        raise ValueError(f"Invalid decimals: {decimals}")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e

    if not dec_value.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    if dec_value < 0:
        raise ValueError(f"Negative amount: {value!r}")

    scaled = dec_value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {value!r} has more than {decimals} decimal places")

    result = int(scaled)
    if result > UINT256_MAX:
        raise ValueError(f"Amount {value!r} exceeds uint256")
    return result


def format_units(value: int, decimals: int) -> str:
    """Format base units as a plain decimal string ("5000000", 6 -> "5")."""
    dec_value = Decimal(value).scaleb(-decimals)
    text = format(dec_value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def apply_gas_buffer(estimate: int) -> int:
    """
    Apply the fixed 20% safety buffer to a gas estimate.

    Integer arithmetic only; the result must still fit a transaction's
    uint64 gas field.
    """
    if estimate < 0:
        raise ValueError(f"Negative gas estimate: {estimate}")
    buffered = estimate * GAS_BUFFER_NUMERATOR // GAS_BUFFER_DENOMINATOR
    if buffered > UINT64_MAX:
        raise ValueError(f"Buffered gas limit {buffered} exceeds uint64")
    return buffered
