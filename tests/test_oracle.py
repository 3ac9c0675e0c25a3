"""Tests for price feeds and the reference-currency oracle adapter."""

import pytest
from eth_utils import to_checksum_address

from options_escrow import (
    AppendOnlyOracleAdapter,
    EventLog,
    FixedPriceOracle,
    ManualFeed,
    MutableOracleAdapter,
    ReferenceCurrencyOracle,
    RoundData,
    TokenLedger,
)
from options_escrow.errors import (
    InvalidAddress,
    InvalidAmount,
    InvalidArrayLength,
    InvalidMaxTimeSinceLastUpdate,
    InvalidOracleAnswer,
    InvalidOracleDecimals,
    NoOracle,
    OracleAlreadySet,
    OwnableUnauthorizedAccount,
)
from options_escrow.events import OracleMappingAdded

from helpers import ADMIN, OTHER, START_TIME, USDC, WETH, FakeClock

UNI = to_checksum_address("0x" + "77" * 20)
ADAPTER = to_checksum_address("0x" + "88" * 20)
MAX_AGE = 3600


def _feed(byte: str, decimals: int, answer: int, updated_at: int = START_TIME) -> ManualFeed:
    feed = ManualFeed(to_checksum_address("0x" + byte * 20), decimals)
    feed.set_answer(answer, updated_at)
    return feed


@pytest.fixture
def tokens():
    ledger = TokenLedger()
    ledger.register_token(WETH, 18, "WETH")
    ledger.register_token(USDC, 6, "USDC")
    ledger.register_token(UNI, 18, "UNI")
    return ledger


@pytest.fixture
def feeds():
    return {
        "eth_usd": _feed("a1", 8, 2500 * 10**8),
        "usdc_usd": _feed("a2", 8, 10**8),
        "uni_eth": _feed("a3", 18, 2_972 * 10**12),
    }


def _adapter(tokens, feeds, cls=AppendOnlyOracleAdapter, clock=None, event_log=None):
    return cls(
        address=ADAPTER,
        assets=[USDC, UNI],
        feeds=[feeds["usdc_usd"], feeds["uni_eth"]],
        reference_usd_feed=feeds["eth_usd"],
        owner=ADMIN,
        reference_asset=WETH,
        max_time_since_last_update=MAX_AGE,
        decimals_of=tokens.decimals,
        clock=clock or FakeClock(),
        event_log=event_log,
    )


class TestAdapterPricing:
    """Tests for price derivation through the reference asset."""

    def test_usd_feed_pair(self, tokens, feeds):
        """Test pricing the reference asset against a USD-quoted token."""
        adapter = _adapter(tokens, feeds)
        assert adapter.get_price(WETH, USDC) == 2500 * 10**6

    def test_reference_feed_pair(self, tokens, feeds):
        """Test pricing a reference-quoted token in a USD-quoted token."""
        adapter = _adapter(tokens, feeds)
        assert adapter.get_price(UNI, USDC) == 7_430_000

    def test_inverse_pair(self, tokens, feeds):
        """Test pricing a USD-quoted token in the reference asset."""
        feeds["eth_usd"].set_answer(1500 * 10**8, START_TIME)
        adapter = _adapter(tokens, feeds)
        assert adapter.get_price(USDC, WETH) == 666_666_666_666_666

    def test_reference_asset_prices_at_one(self, tokens, feeds):
        """Test that the reference asset always prices at 1e18."""
        adapter = _adapter(tokens, feeds)
        assert adapter.price_of_token(WETH) == 10**18

    def test_same_asset(self, tokens, feeds):
        """Test that a token prices at one unit of itself."""
        adapter = _adapter(tokens, feeds)
        assert adapter.get_price(USDC, USDC) == 10**6

    def test_unmapped_asset(self, tokens, feeds):
        """Test that unmapped assets raise NoOracle."""
        adapter = _adapter(tokens, feeds)
        tokens.register_token(OTHER, 18)
        with pytest.raises(NoOracle):
            adapter.get_price(OTHER, USDC)


class TestAdapterAnswerChecks:
    """Tests for feed answer validation."""

    def test_stale_answer(self, tokens, feeds):
        """Test that answers older than the staleness bound are rejected."""
        clock = FakeClock()
        adapter = _adapter(tokens, feeds, clock=clock)
        clock.advance(MAX_AGE)
        assert adapter.get_price(WETH, USDC) == 2500 * 10**6
        clock.advance(1)
        with pytest.raises(InvalidOracleAnswer, match="stale"):
            adapter.get_price(WETH, USDC)

    def test_non_positive_answer(self, tokens, feeds):
        """Test that zero answers are rejected."""
        adapter = _adapter(tokens, feeds)
        feeds["usdc_usd"].set_answer(0, START_TIME)
        with pytest.raises(InvalidOracleAnswer, match="non-positive"):
            adapter.get_price(WETH, USDC)

    def test_incomplete_round(self, tokens, feeds):
        """Test that a feed with no completed round is rejected."""
        adapter = _adapter(tokens, feeds)
        feeds["usdc_usd"].set_round_data(RoundData(0, 10**8, START_TIME, START_TIME, 0))
        with pytest.raises(InvalidOracleAnswer, match="round not complete"):
            adapter.get_price(WETH, USDC)

    def test_answer_from_older_round(self, tokens, feeds):
        """Test that carried-over answers are rejected."""
        adapter = _adapter(tokens, feeds)
        feeds["usdc_usd"].set_round_data(RoundData(5, 10**8, START_TIME, START_TIME, 4))
        with pytest.raises(InvalidOracleAnswer, match="older round"):
            adapter.get_price(WETH, USDC)

    def test_answer_from_the_future(self, tokens, feeds):
        """Test that answers timestamped after now are rejected."""
        adapter = _adapter(tokens, feeds)
        feeds["usdc_usd"].set_answer(10**8, START_TIME + 1)
        with pytest.raises(InvalidOracleAnswer, match="future"):
            adapter.get_price(WETH, USDC)

    def test_reference_feed_checked(self, tokens, feeds):
        """Test that the reference/USD leg is validated too."""
        clock = FakeClock()
        adapter = _adapter(tokens, feeds, clock=clock)
        clock.advance(MAX_AGE + 1)
        feeds["usdc_usd"].set_answer(10**8, clock.now)
        with pytest.raises(InvalidOracleAnswer) as exc_info:
            adapter.get_price(WETH, USDC)
        assert exc_info.value.feed == feeds["eth_usd"].address


class TestAdapterConfiguration:
    """Tests for adapter construction and mapping management."""

    def test_array_length_mismatch(self, tokens, feeds):
        """Test that assets and feeds must line up."""
        with pytest.raises(InvalidArrayLength):
            AppendOnlyOracleAdapter(
                ADAPTER, [USDC, UNI], [feeds["usdc_usd"]], feeds["eth_usd"],
                ADMIN, WETH, MAX_AGE, tokens.decimals,
            )

    def test_zero_max_age(self, tokens, feeds):
        """Test that a zero staleness bound is rejected."""
        with pytest.raises(InvalidMaxTimeSinceLastUpdate):
            AppendOnlyOracleAdapter(
                ADAPTER, [], [], feeds["eth_usd"], ADMIN, WETH, 0, tokens.decimals
            )

    def test_reference_feed_decimals(self, tokens, feeds):
        """Test that the reference feed must quote in USD."""
        with pytest.raises(InvalidOracleDecimals):
            AppendOnlyOracleAdapter(
                ADAPTER, [], [], feeds["uni_eth"], ADMIN, WETH, MAX_AGE, tokens.decimals
            )

    def test_unsupported_feed_decimals(self, tokens, feeds):
        """Test that feeds must have 8 or 18 decimals."""
        odd = _feed("a4", 6, 10**6)
        with pytest.raises(InvalidOracleDecimals):
            AppendOnlyOracleAdapter(
                ADAPTER, [USDC], [odd], feeds["eth_usd"], ADMIN, WETH, MAX_AGE, tokens.decimals
            )

    def test_zero_reference_asset(self, tokens, feeds):
        """Test that the reference asset must be set."""
        with pytest.raises(InvalidAddress):
            AppendOnlyOracleAdapter(
                ADAPTER, [], [], feeds["eth_usd"], ADMIN, "0x" + "00" * 20, MAX_AGE,
                tokens.decimals,
            )

    def test_reference_asset_cannot_be_mapped(self, tokens, feeds):
        """Test that the reference asset cannot get its own feed."""
        adapter = _adapter(tokens, feeds)
        with pytest.raises(InvalidAddress):
            adapter.add_oracle_mapping(ADMIN, [WETH], [_feed("a5", 8, 10**8)])

    def test_append_only_rejects_overwrite(self, tokens, feeds):
        """Test that an append-only adapter keeps its first mapping."""
        adapter = _adapter(tokens, feeds)
        replacement = _feed("a6", 8, 2 * 10**8)
        with pytest.raises(OracleAlreadySet):
            adapter.add_oracle_mapping(ADMIN, [USDC], [replacement])
        assert adapter.feed_of(USDC) is feeds["usdc_usd"]

    def test_mutable_allows_overwrite(self, tokens, feeds):
        """Test that a mutable adapter replaces mappings."""
        adapter = _adapter(tokens, feeds, cls=MutableOracleAdapter)
        replacement = _feed("a6", 8, 2 * 10**8)
        adapter.add_oracle_mapping(ADMIN, [USDC], [replacement])
        assert adapter.get_price(WETH, USDC) == 1250 * 10**6

    def test_failed_batch_adds_nothing(self, tokens, feeds):
        """Test that a batch with one bad entry leaves mappings unchanged."""
        adapter = _adapter(tokens, feeds)
        new_token = to_checksum_address("0x" + "78" * 20)
        with pytest.raises(OracleAlreadySet):
            adapter.add_oracle_mapping(
                ADMIN, [new_token, USDC], [_feed("a7", 8, 10**8), _feed("a8", 8, 10**8)]
            )
        with pytest.raises(NoOracle):
            adapter.feed_of(new_token)

    def test_base_adapter_cannot_be_constructed(self, tokens, feeds):
        """Test that an adapter must choose an overwrite policy."""
        with pytest.raises(TypeError):
            _adapter(tokens, feeds, cls=ReferenceCurrencyOracle)

    def test_only_owner_adds_mappings(self, tokens, feeds):
        """Test that mappings are owner-gated."""
        adapter = _adapter(tokens, feeds)
        with pytest.raises(OwnableUnauthorizedAccount):
            adapter.add_oracle_mapping(OTHER, [OTHER], [_feed("a9", 8, 10**8)])

    def test_transfer_ownership(self, tokens, feeds):
        """Test that ownership moves to the new owner."""
        adapter = _adapter(tokens, feeds)
        adapter.transfer_ownership(ADMIN, OTHER)
        assert adapter.owner == OTHER
        with pytest.raises(OwnableUnauthorizedAccount):
            adapter.transfer_ownership(ADMIN, ADMIN)

    def test_mapping_events(self, tokens, feeds):
        """Test that each new mapping emits an event."""
        log = EventLog()
        _adapter(tokens, feeds, event_log=log)
        events = log.of_type(OracleMappingAdded)
        assert [e.asset for e in events] == [USDC, UNI]
        assert events[0].feed == feeds["usdc_usd"].address


class TestFixedPriceOracle:
    """Tests for the directly configured oracle."""

    def test_set_and_get(self, tokens):
        """Test a configured pair price."""
        oracle = FixedPriceOracle(ADAPTER, ADMIN, tokens.decimals)
        oracle.set_price(ADMIN, WETH, USDC, 2000 * 10**6)
        assert oracle.get_price(WETH, USDC) == 2000 * 10**6
        assert oracle.get_price(USDC, USDC) == 10**6

    def test_missing_pair(self, tokens):
        """Test that an unset pair raises NoOracle."""
        oracle = FixedPriceOracle(ADAPTER, ADMIN, tokens.decimals)
        with pytest.raises(NoOracle):
            oracle.get_price(USDC, WETH)

    def test_owner_and_price_checks(self):
        """Test owner gating and positive prices."""
        oracle = FixedPriceOracle(ADAPTER, ADMIN)
        with pytest.raises(OwnableUnauthorizedAccount):
            oracle.set_price(OTHER, WETH, USDC, 1)
        with pytest.raises(InvalidAmount):
            oracle.set_price(ADMIN, WETH, USDC, 0)

    def test_manual_feed_rounds(self):
        """Test that each published answer starts a new round."""
        feed = ManualFeed("0x" + "a0" * 20, 8)
        assert feed.latest_round_data().round_id == 0
        feed.set_answer(1, START_TIME)
        round_data = feed.set_answer(2, START_TIME + 1)
        assert round_data.round_id == 2
        assert round_data.answered_in_round == 2
        assert feed.latest_round_data().answer == 2
