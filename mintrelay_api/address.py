"""
Transaction hash and EVM address helpers.

Addresses are compared case-insensitively: every address is canonicalised to
its checksummed form before comparison or display.
"""

import re
from typing import Optional

from eth_utils import to_checksum_address

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_tx_hash(value: object) -> bool:
    """True for a 0x-prefixed, 32-byte hex string."""
    return isinstance(value, str) and TX_HASH_PATTERN.match(value) is not None


def normalize_tx_hash(value: str) -> str:
    """
    Validate and canonicalise a transaction hash (lowercase).

    Raises:
        ValueError: If the value is not 0x + 64 hex characters
    """
    if not is_tx_hash(value):
        raise ValueError("Invalid txHash format")
    return value.lower()


def is_address(value: object) -> bool:
    """True for a 0x-prefixed, 20-byte hex string (any case)."""
    return isinstance(value, str) and ADDRESS_PATTERN.match(value) is not None


def canonical_address(value: str) -> str:
    """
    Canonicalise an EVM address to checksum form.

    Mixed-case input is accepted without enforcing its checksum.

    Raises:
        ValueError: If the value is not 0x + 40 hex characters
    """
    if not is_address(value):
        raise ValueError(f"Invalid EVM address: {value!r}")
    return to_checksum_address(value.lower())


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive address equality; None never matches."""
    if a is None or b is None:
        return False
    return a.lower() == b.lower()
