"""Shared constants and builders for the options escrow tests."""

from dataclasses import replace

from eth_account import Account
from eth_utils import to_checksum_address

from options_escrow import (
    AdvancedSettings,
    AuctionInitialization,
    AuctionParams,
    OptionInfo,
    RFQInitialization,
    RFQQuote,
)

START_TIME = 1_700_000_000
DAY = 86400
BASE = 10**18

# Test wallets (DO NOT use in production)
ADMIN_KEY = "0x" + "ab" * 32
WRITER_KEY = "0x" + "01" * 32
MAKER_KEY = "0x" + "02" * 32
BUYER_KEY = "0x" + "03" * 32
OTHER_KEY = "0x" + "04" * 32

ADMIN = Account.from_key(ADMIN_KEY).address
WRITER = Account.from_key(WRITER_KEY).address
MAKER = Account.from_key(MAKER_KEY).address
BUYER = Account.from_key(BUYER_KEY).address
OTHER = Account.from_key(OTHER_KEY).address

WETH = to_checksum_address("0x" + "11" * 20)
USDC = to_checksum_address("0x" + "22" * 20)
ORACLE = to_checksum_address("0x" + "33" * 20)
FEE_HANDLER = to_checksum_address("0x" + "44" * 20)
DIST_PARTNER = to_checksum_address("0x" + "55" * 20)

SPOT = 2000 * 10**6  # 2000 USDC per WETH
MATCH_FEE = 10**16  # 1%
EXERCISE_FEE = 10**15  # 0.1%


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def make_auction_initialization(**settings) -> AuctionInitialization:
    """1 WETH call, strike 110% of spot, 10% -> 1% premium over 7 days."""
    params = AuctionParams(
        rel_strike=11 * 10**17,
        tenor=30 * DAY,
        earliest_exercise_tenor=0,
        rel_premium_start=10**17,
        rel_premium_floor=10**16,
        decay_duration=7 * DAY,
        min_spot=1,
        max_spot=10**30,
        decay_start_time=START_TIME,
    )
    return AuctionInitialization(
        underlying_token=WETH,
        settlement_token=USDC,
        notional=10**18,
        auction_params=params,
        advanced_settings=AdvancedSettings(oracle=ORACLE, **settings),
    )


def with_params(init: AuctionInitialization, **params) -> AuctionInitialization:
    return replace(init, auction_params=replace(init.auction_params, **params))


def make_option_info(now: int = START_TIME, **settings) -> OptionInfo:
    """1 WETH call struck at 2200 USDC, exercisable now, expiring in 30 days."""
    return OptionInfo(
        underlying_token=WETH,
        settlement_token=USDC,
        notional=10**18,
        strike=2200 * 10**6,
        earliest_exercise=now,
        expiry=now + 30 * DAY,
        advanced_settings=AdvancedSettings(oracle=ORACLE, **settings),
    )


def make_rfq(now: int = START_TIME, premium: int = 100 * 10**6, **settings) -> RFQInitialization:
    return RFQInitialization(
        option_info=make_option_info(now, **settings),
        rfq_quote=RFQQuote(premium=premium, valid_until=now + 3600),
    )
