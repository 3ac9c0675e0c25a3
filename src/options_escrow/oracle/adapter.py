"""Reference-currency oracle adapter.

Prices every asset in a common reference asset (e.g. WETH) and derives
pair prices from the two legs. Feeds with 8 decimals quote an asset in USD
and are converted through the reference/USD feed; feeds with 18 decimals
quote the asset in the reference asset directly. Every answer is checked for
round completeness, positivity and staleness before use.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Sequence

from ..errors import (
    InvalidAddress,
    InvalidArrayLength,
    InvalidMaxTimeSinceLastUpdate,
    InvalidOracleAnswer,
    InvalidOracleDecimals,
    NoOracle,
    OracleAlreadySet,
    OwnableUnauthorizedAccount,
)
from ..escrow.utils import BASE, Clock, is_zero_address, normalize_address, system_clock
from ..events import EventLog, OracleMappingAdded
from .feeds import AggregatorFeed

logger = logging.getLogger(__name__)

USD_FEED_DECIMALS = 8
REFERENCE_FEED_DECIMALS = 18


class ReferenceCurrencyOracle(ABC):
    """Base adapter; subclasses decide whether mappings may be overwritten.

    Use ``AppendOnlyOracleAdapter`` or ``MutableOracleAdapter``.
    """

    def __init__(
        self,
        address: str,
        assets: Sequence[str],
        feeds: Sequence[AggregatorFeed],
        reference_usd_feed: AggregatorFeed,
        owner: str,
        reference_asset: str,
        max_time_since_last_update: int,
        decimals_of: Callable[[str], int],
        clock: Clock = system_clock,
        event_log: Optional[EventLog] = None,
    ):
        """Create the adapter and register the initial feed mappings.

        Args:
            address: Address of the adapter
            assets: Assets to price
            feeds: Feed for each asset (8 decimals: USD, 18 decimals: reference)
            reference_usd_feed: Reference asset / USD feed (8 decimals)
            owner: Account allowed to add mappings
            reference_asset: Asset all prices are expressed in (priced at 1e18)
            max_time_since_last_update: Maximum age of a feed answer in seconds
            decimals_of: Returns the decimals of a token
            clock: Source of the current timestamp
            event_log: Where OracleMappingAdded events are emitted

        Raises:
            InvalidArrayLength: If assets and feeds differ in length
            InvalidAddress: If the reference asset or feed is unusable
            InvalidMaxTimeSinceLastUpdate: If the staleness bound is 0
            InvalidOracleDecimals: If a feed has unsupported decimals
        """
        if len(assets) != len(feeds):
            raise InvalidArrayLength("assets and feeds must have equal length")
        if is_zero_address(reference_usd_feed.address) or is_zero_address(reference_asset):
            raise InvalidAddress("Reference asset and feed must be set")
        if normalize_address(reference_asset) == normalize_address(reference_usd_feed.address):
            raise InvalidAddress("Reference asset cannot be its own feed")
        if max_time_since_last_update <= 0:
            raise InvalidMaxTimeSinceLastUpdate(
                f"Invalid max time since last update: {max_time_since_last_update}"
            )
        if reference_usd_feed.decimals != USD_FEED_DECIMALS:
            raise InvalidOracleDecimals(
                f"Reference feed must have {USD_FEED_DECIMALS} decimals"
            )

        self.address = normalize_address(address, "oracle")
        self._owner = normalize_address(owner, "owner")
        self.reference_asset = normalize_address(reference_asset, "reference asset")
        self.reference_usd_feed = reference_usd_feed
        self.max_time_since_last_update = max_time_since_last_update
        self._decimals_of = decimals_of
        self._clock = clock
        self._event_log = event_log
        self._feeds: Dict[str, AggregatorFeed] = {}
        self._lock = threading.RLock()

        self._add_mappings(assets, feeds)

    @property
    def owner(self) -> str:
        return self._owner

    def _only_owner(self, caller: str) -> None:
        if normalize_address(caller, "caller") != self._owner:
            raise OwnableUnauthorizedAccount(caller)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self._only_owner(caller)
        new_owner = normalize_address(new_owner, "new owner")
        if is_zero_address(new_owner):
            raise InvalidAddress("New owner cannot be the zero address")
        self._owner = new_owner

    def feed_of(self, asset: str) -> AggregatorFeed:
        asset = normalize_address(asset, "asset")
        with self._lock:
            feed = self._feeds.get(asset)
        if feed is None:
            raise NoOracle(asset)
        return feed

    def add_oracle_mapping(
        self, caller: str, assets: Sequence[str], feeds: Sequence[AggregatorFeed]
    ) -> None:
        """Register feeds for more assets (owner only)."""
        self._only_owner(caller)
        self._add_mappings(assets, feeds)

    @abstractmethod
    def _check_overwrite(self, asset: str, feed: AggregatorFeed) -> None:
        """Called before an existing mapping for ``asset`` is replaced."""

    def _add_mappings(self, assets: Sequence[str], feeds: Sequence[AggregatorFeed]) -> None:
        if len(assets) != len(feeds):
            raise InvalidArrayLength("assets and feeds must have equal length")
        reference_feed = normalize_address(self.reference_usd_feed.address)
        with self._lock:
            staged: Dict[str, AggregatorFeed] = {}
            for asset, feed in zip(assets, feeds):
                asset = normalize_address(asset, "asset")
                feed_address = normalize_address(feed.address, "feed")
                if is_zero_address(asset) or asset == self.reference_asset:
                    raise InvalidAddress(f"Invalid asset: {asset}")
                if is_zero_address(feed_address) or feed_address == reference_feed:
                    raise InvalidAddress(f"Invalid feed: {feed_address}")
                if feed.decimals not in (USD_FEED_DECIMALS, REFERENCE_FEED_DECIMALS):
                    raise InvalidOracleDecimals(
                        f"Feed {feed_address} has unsupported decimals {feed.decimals}"
                    )
                if asset in self._feeds or asset in staged:
                    self._check_overwrite(asset, feed)
                staged[asset] = feed
            self._feeds.update(staged)
        for asset, feed in staged.items():
            logger.info("oracle mapping added: %s -> %s", asset, feed.address)
            if self._event_log is not None:
                self._event_log.emit(
                    OracleMappingAdded(oracle=self.address, asset=asset, feed=feed.address)
                )

    def _checked_answer(self, feed: AggregatorFeed) -> int:
        round_data = feed.latest_round_data()
        now = self._clock()
        reason = None
        if round_data.round_id == 0:
            reason = "round not complete"
        elif round_data.answered_in_round < round_data.round_id:
            reason = "answer from an older round"
        elif round_data.answer <= 0:
            reason = "non-positive answer"
        elif round_data.updated_at > now:
            reason = "answer from the future"
        elif round_data.updated_at + self.max_time_since_last_update < now:
            reason = "stale answer"
        if reason is not None:
            logger.warning("rejected answer from feed %s: %s", feed.address, reason)
            raise InvalidOracleAnswer(feed.address, reason)
        return round_data.answer

    def price_of_token(self, asset: str) -> int:
        """Price of one whole unit of ``asset`` in the reference asset (18 decimals)."""
        asset = normalize_address(asset, "asset")
        if asset == self.reference_asset:
            return BASE
        feed = self.feed_of(asset)
        answer = self._checked_answer(feed)
        if feed.decimals == REFERENCE_FEED_DECIMALS:
            return answer
        return answer * BASE // self._checked_answer(self.reference_usd_feed)

    def get_price(self, base: str, quote: str, aux_data: bytes = b"") -> int:
        """Units of ``quote`` per one whole unit of ``base``, in ``quote`` decimals."""
        base = normalize_address(base, "base")
        quote = normalize_address(quote, "quote")
        quote_decimals = self._decimals_of(quote)
        if base == quote:
            return 10**quote_decimals
        return self.price_of_token(base) * 10**quote_decimals // self.price_of_token(quote)


class AppendOnlyOracleAdapter(ReferenceCurrencyOracle):
    """Mappings can be added but never replaced."""

    def _check_overwrite(self, asset: str, feed: AggregatorFeed) -> None:
        raise OracleAlreadySet(feed.address)


class MutableOracleAdapter(ReferenceCurrencyOracle):
    """The owner may replace an asset's feed."""

    def _check_overwrite(self, asset: str, feed: AggregatorFeed) -> None:
        logger.warning("oracle mapping for %s replaced with %s", asset, feed.address)
