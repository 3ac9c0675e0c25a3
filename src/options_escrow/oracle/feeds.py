"""Price feed interfaces and manual implementations.

``AggregatorFeed`` mirrors the round-based aggregator interface the adapter
reads; ``ManualFeed`` is a settable implementation for devnets and tests.
``FixedPriceOracle`` is a ``PriceOracle`` whose pair prices are set directly.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

from ..errors import InvalidAmount, NoOracle, OwnableUnauthorizedAccount
from ..escrow.utils import normalize_address

logger = logging.getLogger(__name__)


class PriceOracle(Protocol):
    """Answers price requests for token pairs."""

    address: str

    def get_price(self, base: str, quote: str, aux_data: bytes = b"") -> int:
        """Units of ``quote`` per one whole unit of ``base``, in ``quote`` decimals."""
        ...


@dataclass(frozen=True)
class RoundData:
    round_id: int
    answer: int
    started_at: int
    updated_at: int
    answered_in_round: int


class AggregatorFeed(Protocol):
    address: str
    decimals: int

    def latest_round_data(self) -> RoundData:
        ...


class ManualFeed:
    """Aggregator feed whose rounds are pushed by hand.

    Example:
        ```python
        eth_usd = ManualFeed(address=feed_addr, decimals=8)
        eth_usd.set_answer(2500 * 10**8, updated_at=int(time.time()))
        ```
    """

    def __init__(self, address: str, decimals: int, description: str = ""):
        self.address = normalize_address(address, "feed")
        self.decimals = decimals
        self.description = description
        self._round: Optional[RoundData] = None
        self._lock = threading.Lock()

    def set_round_data(self, round_data: RoundData) -> None:
        with self._lock:
            self._round = round_data

    def set_answer(self, answer: int, updated_at: int) -> RoundData:
        """Publish a new, well-formed round with the given answer."""
        with self._lock:
            round_id = self._round.round_id + 1 if self._round else 1
            self._round = RoundData(
                round_id=round_id,
                answer=answer,
                started_at=updated_at,
                updated_at=updated_at,
                answered_in_round=round_id,
            )
            return self._round

    def latest_round_data(self) -> RoundData:
        with self._lock:
            if self._round is None:
                return RoundData(0, 0, 0, 0, 0)
            return self._round


class FixedPriceOracle:
    """Price oracle with explicitly configured pair prices.

    Prices are set per ordered pair; the same asset always prices at one
    unit of itself.
    """

    def __init__(
        self,
        address: str,
        owner: str,
        decimals_of: Optional[Callable[[str], int]] = None,
    ):
        self.address = normalize_address(address, "oracle")
        self.owner = normalize_address(owner, "owner")
        self._decimals_of = decimals_of
        self._prices: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def set_price(self, caller: str, base: str, quote: str, price: int) -> None:
        if normalize_address(caller, "caller") != self.owner:
            raise OwnableUnauthorizedAccount(caller)
        if price <= 0:
            raise InvalidAmount(f"Invalid price: {price}")
        key = (normalize_address(base, "base"), normalize_address(quote, "quote"))
        with self._lock:
            self._prices[key] = price
        logger.info("price for %s/%s set to %d", key[0], key[1], price)

    def get_price(self, base: str, quote: str, aux_data: bytes = b"") -> int:
        base = normalize_address(base, "base")
        quote = normalize_address(quote, "quote")
        if base == quote and self._decimals_of is not None:
            return 10 ** self._decimals_of(quote)
        with self._lock:
            price = self._prices.get((base, quote))
        if price is None:
            raise NoOracle(base)
        return price
