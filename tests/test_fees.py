"""Tests for fee calculation and the fee handler."""

import pytest

from options_escrow import (
    BASE,
    MAX_EXERCISE_FEE,
    MAX_MATCH_FEE,
    MAX_MINT_FEE,
    FeeHandler,
    compute_exercise_fee,
    compute_fees,
    compute_mint_fees,
)
from options_escrow.errors import (
    InvalidArrayLength,
    InvalidFee,
    OwnableUnauthorizedAccount,
)

from helpers import ADMIN, DIST_PARTNER, FEE_HANDLER, OTHER


class TestComputeFees:
    """Tests for the match fee split."""

    def test_no_fees(self):
        """Test that zero rates produce zero fees."""
        fees = compute_fees(1_000_000, 0, 0)
        assert fees.protocol_fee == 0
        assert fees.dist_partner_fee == 0
        assert fees.total == 0

    def test_protocol_only(self):
        """Test a 1% match fee with no distribution partner."""
        fees = compute_fees(200_000_000, 10**16, 0)
        assert fees.protocol_fee == 2_000_000
        assert fees.dist_partner_fee == 0

    def test_split_with_partner(self):
        """Test that the partner share is carved out of the match fee."""
        fees = compute_fees(200_000_000, 10**16, BASE // 4)
        assert fees.total == 2_000_000
        assert fees.dist_partner_fee == 500_000
        assert fees.protocol_fee == 1_500_000

    def test_caps_apply_to_excessive_rates(self):
        """Test that 110% rates are clamped to 20% total, all to the partner."""
        fees = compute_fees(100, 11 * 10**17, 11 * 10**17)
        assert fees.protocol_fee == 0
        assert fees.dist_partner_fee == 20

    def test_misconfigured_match_fee_capped(self):
        """Test that a 110% match fee realizes only 20% of the premium."""
        fees = compute_fees(100, 11 * 10**17, 0)
        assert fees.total == 20
        assert fees.protocol_fee == 20

    def test_total_capped_at_20_percent(self):
        """Test the combined cap with a 50% match fee."""
        fees = compute_fees(1_000_000, 5 * 10**17, 0)
        assert fees.total == 200_000
        assert fees.protocol_fee == 200_000

    def test_partner_fee_never_exceeds_match_fee(self):
        """Test that the partner share cannot exceed the total fee."""
        fees = compute_fees(1_000_000, 10**16, 2 * BASE)
        assert fees.dist_partner_fee == 10_000
        assert fees.protocol_fee == 0

    @pytest.mark.parametrize("premium", [0, 1, 7, 999, 10**6, 123_456_789_012])
    def test_fees_within_bounds(self, premium):
        """Test that fees never exceed their caps for any premium."""
        fees = compute_fees(premium, 3 * 10**17, 9 * 10**17)
        assert 0 <= fees.total <= premium * MAX_MATCH_FEE // BASE
        assert fees.dist_partner_fee <= premium * 2 * 10**17 // BASE

    def test_exercise_fee_capped(self):
        """Test that the exercise fee is capped at 0.5%."""
        assert compute_exercise_fee(1_000_000, 10**15) == 1_000
        assert compute_exercise_fee(1_000_000, BASE) == 1_000_000 * MAX_EXERCISE_FEE // BASE

    def test_mint_fees(self):
        """Test that the mint fee uses the mint cap."""
        fees = compute_mint_fees(10**18, 10**16, BASE // 2)
        assert fees.total == 10**16
        assert fees.dist_partner_fee == 5 * 10**15


class TestFeeHandler:
    """Tests for the owner-managed fee handler."""

    def test_defaults(self):
        """Test that a new handler charges nothing."""
        handler = FeeHandler(FEE_HANDLER, ADMIN)
        assert handler.get_match_fee_info(DIST_PARTNER) == (0, 0)
        assert handler.exercise_fee == 0
        assert handler.mint_fee == 0

    def test_set_fees(self):
        """Test that the owner can set every fee up to its cap."""
        handler = FeeHandler(FEE_HANDLER, ADMIN)
        handler.set_match_fee(ADMIN, MAX_MATCH_FEE)
        handler.set_exercise_fee(ADMIN, MAX_EXERCISE_FEE)
        handler.set_mint_fee(ADMIN, MAX_MINT_FEE)
        assert handler.match_fee == MAX_MATCH_FEE
        assert handler.exercise_fee == MAX_EXERCISE_FEE
        assert handler.mint_fee == MAX_MINT_FEE

    def test_fees_above_cap_rejected(self):
        """Test that fees above their caps are rejected."""
        handler = FeeHandler(FEE_HANDLER, ADMIN)
        with pytest.raises(InvalidFee):
            handler.set_match_fee(ADMIN, MAX_MATCH_FEE + 1)
        with pytest.raises(InvalidFee):
            handler.set_exercise_fee(ADMIN, MAX_EXERCISE_FEE + 1)
        with pytest.raises(InvalidFee):
            handler.set_mint_fee(ADMIN, MAX_MINT_FEE + 1)

    def test_only_owner(self):
        """Test that non-owners cannot change fees."""
        handler = FeeHandler(FEE_HANDLER, ADMIN)
        with pytest.raises(OwnableUnauthorizedAccount):
            handler.set_match_fee(OTHER, 10**16)
        with pytest.raises(OwnableUnauthorizedAccount):
            handler.set_dist_partner_fee_shares(OTHER, [DIST_PARTNER], [BASE])

    def test_dist_partner_shares(self):
        """Test setting and removing a distribution partner share."""
        handler = FeeHandler(FEE_HANDLER, ADMIN, match_fee=10**16)
        handler.set_dist_partner_fee_shares(ADMIN, [DIST_PARTNER], [BASE // 2])
        assert handler.get_match_fee_info(DIST_PARTNER) == (10**16, BASE // 2)
        assert handler.get_match_fee_info(OTHER) == (10**16, 0)

        handler.set_dist_partner_fee_shares(ADMIN, [DIST_PARTNER], [0])
        assert handler.dist_partner_fee_share(DIST_PARTNER) == 0

    def test_dist_partner_share_above_100_percent_rejected(self):
        """Test that a partner share above 100% is rejected."""
        handler = FeeHandler(FEE_HANDLER, ADMIN)
        with pytest.raises(InvalidFee):
            handler.set_dist_partner_fee_shares(ADMIN, [DIST_PARTNER], [BASE + 1])

    def test_dist_partner_array_length_mismatch(self):
        """Test that accounts and shares must line up."""
        handler = FeeHandler(FEE_HANDLER, ADMIN)
        with pytest.raises(InvalidArrayLength):
            handler.set_dist_partner_fee_shares(ADMIN, [DIST_PARTNER, OTHER], [BASE])
        with pytest.raises(InvalidArrayLength):
            handler.set_dist_partner_fee_shares(ADMIN, [], [])
