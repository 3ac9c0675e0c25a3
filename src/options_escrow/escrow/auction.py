"""Dutch auction pricing.

The ask starts at ``premium_start`` and decays linearly to
``premium_floor`` over ``decay_duration`` seconds, starting at
``decay_start``. All arithmetic is integer; the curve is non-increasing in
time and exact at both ends.
"""

from typing import Optional

from ..errors import InvalidInitialization
from .types import AuctionInitialization
from .utils import BASE, is_zero_address


def current_ask(
    now: int,
    decay_start: int,
    decay_duration: int,
    premium_start: int,
    premium_floor: int,
) -> int:
    """Return the ask at ``now``.

    Args:
        now: Current unix timestamp
        decay_start: Timestamp at which the decay begins
        decay_duration: Length of the decay in seconds (must be > 0)
        premium_start: Ask before and at the start of the decay
        premium_floor: Ask once the decay is over

    Returns:
        The relative premium currently asked (1e18 fixed point)
    """
    if now < decay_start:
        return premium_start
    elapsed = now - decay_start
    if elapsed < decay_duration:
        return premium_start - (premium_start - premium_floor) * elapsed // decay_duration
    return premium_floor


def auction_initialization_problem(init: AuctionInitialization) -> Optional[str]:
    """Return why an auction cannot be opened with these parameters, or None."""
    params = init.auction_params
    settings = init.advanced_settings
    if (
        is_zero_address(init.underlying_token)
        or is_zero_address(init.settlement_token)
        or init.underlying_token.lower() == init.settlement_token.lower()
    ):
        return "invalid token pair"
    if init.notional <= 0:
        return "notional must be positive"
    if params.rel_strike <= 0:
        return "relative strike must be positive"
    if params.tenor <= 0:
        return "tenor must be positive"
    if params.earliest_exercise_tenor < 0 or params.earliest_exercise_tenor > params.tenor:
        return "earliest exercise tenor must be within tenor"
    if params.rel_premium_start <= 0 or params.rel_premium_floor < 0:
        return "invalid relative premiums"
    if params.rel_premium_floor > params.rel_premium_start:
        return "premium floor above premium start"
    if params.decay_duration <= 0:
        return "decay duration must be positive"
    if params.min_spot < 0 or params.min_spot > params.max_spot:
        return "invalid min/max spot"
    if is_zero_address(settings.oracle):
        return "no oracle"
    if settings.borrow_cap < 0 or settings.borrow_cap > BASE:
        return "borrow cap above 100%"
    return None


def validate_auction_initialization(init: AuctionInitialization) -> None:
    """Raise InvalidInitialization unless the auction parameters are usable."""
    problem = auction_initialization_problem(init)
    if problem:
        raise InvalidInitialization(problem)
