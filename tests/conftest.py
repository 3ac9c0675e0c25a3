"""Shared fixtures for the options escrow tests."""

import pytest

from options_escrow import EscrowRouter, FeeHandler, FixedPriceOracle, TokenLedger

from helpers import (
    ADMIN,
    BUYER,
    EXERCISE_FEE,
    FEE_HANDLER,
    MAKER,
    MATCH_FEE,
    ORACLE,
    OTHER,
    SPOT,
    USDC,
    WETH,
    WRITER,
    FakeClock,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    ledger = TokenLedger()
    ledger.register_token(WETH, 18, "WETH")
    ledger.register_token(USDC, 6, "USDC")
    for account in (WRITER, MAKER, BUYER, OTHER):
        ledger.mint(WETH, account, 100 * 10**18)
        ledger.mint(USDC, account, 1_000_000 * 10**6)
    return ledger


@pytest.fixture
def oracle(ledger):
    oracle = FixedPriceOracle(ORACLE, ADMIN, ledger.decimals)
    oracle.set_price(ADMIN, WETH, USDC, SPOT)
    oracle.set_price(ADMIN, USDC, WETH, 5 * 10**14)  # 0.0005 WETH per USDC
    return oracle


@pytest.fixture
def fee_handler():
    return FeeHandler(FEE_HANDLER, ADMIN, match_fee=MATCH_FEE, exercise_fee=EXERCISE_FEE)


@pytest.fixture
def router(ledger, clock, oracle, fee_handler):
    router = EscrowRouter(ledger, {"owner": ADMIN, "chain_id": 1}, clock=clock)
    router.register_oracle(ADMIN, oracle)
    router.set_fee_handler(ADMIN, fee_handler)
    return router

