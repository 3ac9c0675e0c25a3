"""Tests for taking signed RFQ quotes through the router."""

from dataclasses import replace

import pytest
from eth_utils import to_checksum_address

from options_escrow import (
    DelegatedQuoteMaker,
    EscrowPhase,
    QuoteStatus,
    generate_quote_hash,
    sign_rfq_quote,
)
from options_escrow.errors import InsufficientBalance, InvalidTakeQuote
from options_escrow.events import TakeQuote

from helpers import (
    ADMIN,
    DAY,
    FEE_HANDLER,
    MAKER,
    MAKER_KEY,
    OTHER_KEY,
    START_TIME,
    USDC,
    WETH,
    WRITER,
    make_rfq,
)

PREMIUM = 100 * 10**6
CONTRACT_MAKER = to_checksum_address("0x" + "cc" * 20)
POOR = to_checksum_address("0x" + "99" * 20)


def signed_rfq(key=MAKER_KEY, **kwargs):
    return sign_rfq_quote(key, make_rfq(**kwargs), 1)


def with_maker(rfq, maker):
    return replace(rfq, rfq_quote=replace(rfq.rfq_quote, eip1271_maker=maker))


@pytest.fixture
def contract_maker(router, ledger):
    maker = DelegatedQuoteMaker(CONTRACT_MAKER, ADMIN, [MAKER])
    router.register_contract_signer(ADMIN, maker)
    ledger.mint(USDC, CONTRACT_MAKER, 1_000 * 10**6)
    return maker


class TestTakeQuote:
    """Tests for matching quotes."""

    def test_take_quote_settles(self, router, ledger):
        """Test that taking a quote locks collateral, mints and pays the premium."""
        rfq = signed_rfq()
        handle = router.take_quote(WRITER, WRITER, rfq)
        escrow = router.get_escrow(handle)

        assert escrow.phase == EscrowPhase.MINTED
        assert escrow.owner == WRITER
        assert escrow.balance_of(MAKER) == 10**18
        assert escrow.option_info == rfq.option_info
        assert ledger.balance_of(WETH, escrow.address) == 10**18
        assert ledger.balance_of(WETH, WRITER) == 99 * 10**18
        assert ledger.balance_of(USDC, MAKER) == 1_000_000 * 10**6 - PREMIUM
        assert ledger.balance_of(USDC, FEE_HANDLER) == 10**6
        assert ledger.balance_of(USDC, WRITER) == 1_000_000 * 10**6 + PREMIUM - 10**6

    def test_take_quote_event(self, router):
        """Test that TakeQuote records the maker and quote hash."""
        rfq = signed_rfq()
        handle = router.take_quote(WRITER, WRITER, rfq)
        event = router.events.last(TakeQuote)
        assert event.handle == handle
        assert event.maker == MAKER
        assert event.premium == PREMIUM
        assert event.match_fee_protocol == 10**6
        assert event.msg_hash == generate_quote_hash(rfq, 1)

    def test_quote_indexed_by_hash(self, router):
        """Test that the escrow can be found from the quote hash."""
        rfq = signed_rfq()
        handle = router.take_quote(WRITER, WRITER, rfq)
        assert router.handle_of_quote(generate_quote_hash(rfq, 1)) == handle

    def test_preview_matches_take(self, router):
        """Test that the preview shows what taking the quote settles."""
        rfq = signed_rfq()
        preview = router.preview_take_quote(rfq)
        assert preview.status == QuoteStatus.SUCCESS
        assert preview.maker == MAKER
        assert preview.premium_token == USDC
        assert preview.match_fee_protocol == 10**6
        router.take_quote(WRITER, WRITER, rfq)
        assert router.events.last(TakeQuote).msg_hash == preview.msg_hash

    def test_premium_in_underlying(self, router, ledger):
        """Test a quote whose premium is paid in the underlying."""
        rfq = signed_rfq(premium=10**17, premium_token_is_underlying=True)
        router.take_quote(WRITER, WRITER, rfq)
        assert ledger.balance_of(WETH, MAKER) == 100 * 10**18 - 10**17
        assert ledger.balance_of(WETH, FEE_HANDLER) == 10**15
        assert ledger.balance_of(WETH, WRITER) == 99 * 10**18 + 10**17 - 10**15

    def test_underfunded_taker_rolls_back(self, router, ledger):
        """Test that a taker without collateral leaves the quote usable."""
        rfq = signed_rfq()
        with pytest.raises(InsufficientBalance):
            router.take_quote(POOR, POOR, rfq)
        assert router.num_escrows == 0
        assert ledger.balance_of(USDC, MAKER) == 1_000_000 * 10**6
        assert router.preview_take_quote(rfq).status == QuoteStatus.SUCCESS
        router.take_quote(WRITER, WRITER, rfq)


class TestQuoteRejection:
    """Tests for each rejection status."""

    def _assert_rejected(self, router, rfq, status):
        assert router.preview_take_quote(rfq).status == status
        with pytest.raises(InvalidTakeQuote) as exc_info:
            router.take_quote(WRITER, WRITER, rfq)
        assert exc_info.value.status == status

    def test_expired(self, router, clock):
        """Test that a quote past its deadline cannot be taken."""
        rfq = signed_rfq()
        clock.advance(3601)
        self._assert_rejected(router, rfq, QuoteStatus.EXPIRED)

    def test_invalid_option_terms(self, router):
        """Test that earliest exercise must leave a day before expiry."""
        rfq = make_rfq()
        info = rfq.option_info
        rfq = replace(rfq, option_info=replace(info, earliest_exercise=info.expiry - DAY + 1))
        rfq = sign_rfq_quote(MAKER_KEY, rfq, 1)
        self._assert_rejected(router, rfq, QuoteStatus.INVALID_OPTION_TERMS)

    def test_earliest_exercise_exactly_one_day_before_expiry(self, router):
        """Test the boundary of the earliest exercise rule."""
        rfq = make_rfq()
        info = rfq.option_info
        rfq = replace(rfq, option_info=replace(info, earliest_exercise=info.expiry - DAY))
        assert router.preview_take_quote(sign_rfq_quote(MAKER_KEY, rfq, 1)).status == (
            QuoteStatus.SUCCESS
        )

    def test_quote_already_used(self, router):
        """Test that a quote can be taken only once."""
        rfq = signed_rfq()
        router.take_quote(WRITER, WRITER, rfq)
        self._assert_rejected(router, rfq, QuoteStatus.QUOTE_ALREADY_USED)
        assert router.num_escrows == 1

    def test_unsigned(self, router):
        """Test that an unsigned quote is rejected."""
        self._assert_rejected(router, make_rfq(), QuoteStatus.INVALID_SIGNATURE)

    def test_signer_mismatch(self, router):
        """Test that a quote naming a maker must be signed by it."""
        rfq = with_maker(make_rfq(), MAKER)
        rfq = sign_rfq_quote(OTHER_KEY, rfq, 1)
        self._assert_rejected(router, rfq, QuoteStatus.SIGNER_MISMATCH)

    def test_insufficient_funding(self, router):
        """Test that the maker must hold the premium."""
        rfq = signed_rfq(premium=2_000_000 * 10**6)
        self._assert_rejected(router, rfq, QuoteStatus.INSUFFICIENT_FUNDING)

    def test_signed_for_other_chain(self, router):
        """Test that a quote signed for another chain names the wrong maker."""
        rfq = with_maker(make_rfq(), MAKER)
        rfq = sign_rfq_quote(MAKER_KEY, rfq, 137)
        self._assert_rejected(router, rfq, QuoteStatus.SIGNER_MISMATCH)


class TestContractMaker:
    """Tests for quotes made by a contract signer."""

    def test_contract_maker_quote(self, router, ledger, contract_maker):
        """Test that an authorized key can quote for the contract maker."""
        rfq = sign_rfq_quote(MAKER_KEY, with_maker(make_rfq(), CONTRACT_MAKER), 1)
        handle = router.take_quote(WRITER, WRITER, rfq)
        escrow = router.get_escrow(handle)
        assert escrow.balance_of(CONTRACT_MAKER) == 10**18
        assert ledger.balance_of(USDC, CONTRACT_MAKER) == 900 * 10**6
        assert ledger.balance_of(USDC, MAKER) == 1_000_000 * 10**6

    def test_contract_maker_rejects_unknown_key(self, router, contract_maker):
        """Test that unauthorized keys cannot quote for the contract maker."""
        rfq = sign_rfq_quote(OTHER_KEY, with_maker(make_rfq(), CONTRACT_MAKER), 1)
        assert router.preview_take_quote(rfq).status == QuoteStatus.INVALID_CONTRACT_SIGNATURE

    def test_paused_contract_maker(self, router, contract_maker):
        """Test that a paused contract maker's quotes cannot be taken."""
        rfq = sign_rfq_quote(MAKER_KEY, with_maker(make_rfq(), CONTRACT_MAKER), 1)
        contract_maker.toggle_pause_quotes(ADMIN)
        with pytest.raises(InvalidTakeQuote) as exc_info:
            router.take_quote(WRITER, WRITER, rfq)
        assert exc_info.value.status == QuoteStatus.QUOTES_PAUSED

        contract_maker.toggle_pause_quotes(ADMIN)
        assert router.preview_take_quote(rfq).status == QuoteStatus.SUCCESS

    def test_contract_maker_funding(self, router, contract_maker):
        """Test that the contract maker, not its signing key, funds the premium."""
        rfq = sign_rfq_quote(
            MAKER_KEY, with_maker(make_rfq(premium=2_000 * 10**6), CONTRACT_MAKER), 1
        )
        assert router.preview_take_quote(rfq).status == QuoteStatus.INSUFFICIENT_FUNDING

    def test_quote_valid_until_deadline(self, router, contract_maker, clock):
        """Test that a contract maker quote is takeable up to its deadline."""
        assert clock.now == START_TIME
        rfq = sign_rfq_quote(MAKER_KEY, with_maker(make_rfq(), CONTRACT_MAKER), 1)
        clock.advance(3600)
        assert router.preview_take_quote(rfq).status == QuoteStatus.SUCCESS
