"""Dutch Auction + RFQ Options Escrow Example.

This example walks through both ways of writing a covered call:
- A Dutch auction whose premium decays until a buyer bids
- A maker's signed quote (RFQ) that a writer takes in one step

The auctioned option is then partly exercised. Everything runs against the
in-memory ledger.

Prerequisites:
1. pip install -e ".[examples]"
2. Optionally set environment variables:
   OPTIONS_ESCROW_CHAIN_ID   Chain ID quotes are signed for (default: 1)
   OPTIONS_ESCROW_MAKER_KEY  Maker private key (default: a throwaway key)

Usage:
    python auction_and_rfq.py
"""

import asyncio
import logging
import os
import time

from dotenv import load_dotenv
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address, to_hex

load_dotenv()


class LocalKeySigner:
    """MessageSigner backed by a local key (stands in for a wallet service)."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    async def get_address(self) -> str:
        return self._account.address

    async def sign_message(self, message_hash: str) -> str:
        signed = self._account.sign_message(encode_defunct(hexstr=message_hash))
        return to_hex(signed.signature)


async def main():
    from options_escrow import (
        AdvancedSettings,
        AuctionInitialization,
        AuctionParams,
        EscrowRouter,
        FeeHandler,
        FixedPriceOracle,
        OptionInfo,
        RFQInitialization,
        RFQQuote,
        TokenLedger,
        format_rel,
        format_units,
        sign_rfq_quote_with_signer,
    )

    chain_id = int(os.environ.get("OPTIONS_ESCROW_CHAIN_ID", "1"))
    maker_key = os.environ.get("OPTIONS_ESCROW_MAKER_KEY") or Account.create().key.hex()

    admin = Account.create().address
    writer = Account.create().address
    buyer = Account.create().address
    maker_signer = LocalKeySigner(maker_key)
    maker = await maker_signer.get_address()

    weth = to_checksum_address("0x" + "11" * 20)
    usdc = to_checksum_address("0x" + "22" * 20)

    print("=" * 60)
    print("  OPTIONS ESCROW: DUTCH AUCTION + RFQ")
    print("=" * 60)

    # Ledger, oracle and fee handler
    ledger = TokenLedger()
    ledger.register_token(weth, 18, "WETH")
    ledger.register_token(usdc, 6, "USDC")
    for account in (writer, buyer, maker):
        ledger.mint(weth, account, 10 * 10**18)
        ledger.mint(usdc, account, 100_000 * 10**6)

    oracle = FixedPriceOracle(to_checksum_address("0x" + "33" * 20), admin, ledger.decimals)
    oracle.set_price(admin, weth, usdc, 2_500 * 10**6)
    oracle.set_price(admin, usdc, weth, 4 * 10**14)

    fee_handler = FeeHandler(
        to_checksum_address("0x" + "44" * 20),
        admin,
        match_fee=10**16,  # 1% of premium
        exercise_fee=10**15,  # 0.1% of settlement
    )

    router = EscrowRouter(ledger, {"owner": admin, "chain_id": chain_id})
    router.register_oracle(admin, oracle)
    router.set_fee_handler(admin, fee_handler)
    print(f"\n[1] Router {router.address} on chain {chain_id}")
    print(f"    Match fee: {format_rel(fee_handler.match_fee)}")

    # Dutch auction
    print("\n[2] Writer opens a Dutch auction for 1 WETH...")
    now = int(time.time())
    auction = AuctionInitialization(
        underlying_token=weth,
        settlement_token=usdc,
        notional=10**18,
        auction_params=AuctionParams(
            rel_strike=11 * 10**17,  # 110% of spot
            tenor=30 * 86400,
            earliest_exercise_tenor=0,
            rel_premium_start=5 * 10**16,  # 5%
            rel_premium_floor=10**16,  # 1%
            decay_duration=86400,
            min_spot=1_000 * 10**6,
            max_spot=5_000 * 10**6,
            decay_start_time=now,
        ),
        advanced_settings=AdvancedSettings(oracle=oracle.address),
    )
    handle = router.create_auction(writer, writer, auction)
    escrow = router.get_escrow(handle)
    ask = escrow.current_ask()
    print(f"    Escrow: {escrow.address}")
    print(f"    Current ask: {format_rel(ask)}")

    spot = oracle.get_price(weth, usdc)
    preview = router.preview_bid(handle, ask, spot)
    print(f"\n[3] Bid preview: {preview.status.name}")
    print(f"    Premium: {format_units(preview.premium, 6)} USDC")
    print(f"    Strike:  {format_units(preview.strike, 6)} USDC")

    router.bid_on_auction(buyer, handle, buyer, ask, spot)
    print(f"    Buyer holds {format_units(escrow.balance_of(buyer), 18)} options")

    result = router.exercise(buyer, handle, buyer, 4 * 10**17)
    print("\n[4] Buyer exercises 0.4 WETH")
    print(f"    Paid {format_units(result.settlement_amount, 6)} USDC")
    print(f"    Fee  {format_units(result.fee, 6)} USDC")

    # RFQ
    print("\n[5] Maker signs a quote, writer takes it...")
    rfq = RFQInitialization(
        option_info=OptionInfo(
            underlying_token=weth,
            settlement_token=usdc,
            notional=10**18,
            strike=3_000 * 10**6,
            earliest_exercise=now,
            expiry=now + 7 * 86400,
            advanced_settings=AdvancedSettings(oracle=oracle.address),
        ),
        rfq_quote=RFQQuote(premium=40 * 10**6, valid_until=now + 600),
    )
    signed = await sign_rfq_quote_with_signer(maker_signer, rfq, chain_id)
    quote_preview = router.preview_take_quote(signed)
    print(f"    Quote status: {quote_preview.status.name}")

    rfq_handle = router.take_quote(writer, writer, signed)
    print(f"    Escrow: {router.get_escrow(rfq_handle).address}")
    print(f"    Writer USDC: {format_units(ledger.balance_of(usdc, writer), 6)}")

    print("\n" + "=" * 60)
    print(f"  {len(router.events)} events emitted")
    for event in router.events.all():
        print(f"  - {event.name}")
    print("=" * 60)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
