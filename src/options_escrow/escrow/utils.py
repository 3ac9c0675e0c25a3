"""Constants and helpers shared by the escrow modules."""

import time
from decimal import Decimal, localcontext
from typing import Callable, Union

from eth_utils import is_address, to_checksum_address

from ..errors import InvalidAddress

# Fixed-point base: 1e18 == 100%
BASE = 10**18

# Zero address
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Fee caps (fractions of BASE)
MAX_MATCH_FEE = 2 * 10**17  # 20% of premium, protocol + dist partner
MAX_DIST_PARTNER_FEE = 2 * 10**17  # 20% of premium
MAX_EXERCISE_FEE = 5 * 10**15  # 0.5%
MAX_MINT_FEE = 2 * 10**17  # 20% of notional

# RFQ / direct mint: earliest exercise must leave this much time before expiry
MIN_TIME_BETWEEN_EARLIEST_EXERCISE_AND_EXPIRY = 86400

# ABI bounds for quote hashing
MAX_UINT48 = 2**48 - 1
MAX_UINT64 = 2**64 - 1
MAX_UINT128 = 2**128 - 1
MAX_UINT256 = 2**256 - 1

Clock = Callable[[], int]
"""Returns the current unix timestamp in seconds."""


def system_clock() -> int:
    """Wall-clock time in whole seconds."""
    return int(time.time())


def normalize_address(address: str, name: str = "address") -> str:
    """Validate an address and return its checksum form.

    Raises:
        InvalidAddress: If the value is not a 20-byte hex address
    """
    if not isinstance(address, str) or not is_address(address):
        raise InvalidAddress(f"Invalid {name}: {address}")
    return to_checksum_address(address)


def is_zero_address(address: str) -> bool:
    return int(address, 16) == 0


def format_units(amount: int, decimals: int) -> str:
    """Format an integer token amount to a human readable string.

    Args:
        amount: Amount in the token's smallest unit
        decimals: Token decimals

    Returns:
        Human readable string (e.g., format_units(1_500_000, 6) == "1.5")
    """
    sign = "-" if amount < 0 else ""
    whole, fraction = divmod(abs(amount), 10**decimals)
    fraction_text = str(fraction).rjust(decimals, "0").rstrip("0") if decimals else ""
    if fraction_text:
        return f"{sign}{whole}.{fraction_text}"
    return f"{sign}{whole}"


def parse_units(amount: Union[int, str, Decimal], decimals: int) -> int:
    """Parse a human readable amount to the token's smallest unit.

    Args:
        amount: Human readable amount (e.g., "1.5")
        decimals: Token decimals

    Returns:
        Integer amount, truncated toward zero (e.g., 1500000 for 6 decimals)
    """
    with localcontext() as ctx:
        ctx.prec = 80
        return int(Decimal(str(amount)).scaleb(decimals))


def format_rel(value: int) -> str:
    """Format a 1e18 fixed-point fraction as a percentage string.

    Args:
        value: Fraction of BASE (e.g., 5 * 10**15 == 0.5%)

    Returns:
        Percentage string (e.g., "0.5%")
    """
    return f"{format_units(value * 100, 18)}%"


def apply_rate(amount: int, rate: int) -> int:
    """Scale an amount by a 1e18 fixed-point rate, rounding down.

    Args:
        amount: Base amount
        rate: Fraction of BASE

    Returns:
        amount * rate // BASE
    """
    return (amount * rate) // BASE
