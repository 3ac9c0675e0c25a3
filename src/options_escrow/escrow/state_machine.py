"""Escrow state machine.

One ``Escrow`` holds the collateral of a single option position and
tracks its lifecycle:

    UNINITIALIZED -> AUCTION -> MINTED -> EXPIRED
    UNINITIALIZED -----------> MINTED        (RFQ match, direct mint)

Mutating entry points may only be called by the router that created the
escrow. Each runs under the escrow's lock inside a transaction: state effects
are applied before asset transfers, and any failure restores both the escrow
state and every ledger balance touched by the call.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol, TYPE_CHECKING

from ..errors import (
    AlreadyInitialized,
    AmountTooLarge,
    BorrowingNotAllowed,
    InvalidAddress,
    InvalidAmount,
    InvalidBid,
    InvalidExercise,
    InvalidInitialization,
    InvalidTime,
    InvalidWithdraw,
    NoAllowedDelegateRegistry,
    NoOptionMinted,
    NoOracle,
    NonTransferrable,
    NotInitialized,
    NotReverseExercisable,
    NothingToRedeem,
    NothingToRepay,
    Unauthorized,
    VotingDelegationNotAllowed,
    ZeroSettlementAmount,
)
from .auction import current_ask, validate_auction_initialization
from .fees import FeeInfoProvider, compute_exercise_fee, compute_fees
from .types import (
    AdvancedSettings,
    AuctionInitialization,
    AuctionParams,
    BidPreview,
    BidStatus,
    BorrowResult,
    EscrowPhase,
    EscrowState,
    ExerciseResult,
    FeeSplit,
    OptionInfo,
    RepayResult,
    RFQInitialization,
    ReverseExerciseResult,
)
from .utils import (
    BASE,
    MIN_TIME_BETWEEN_EARLIEST_EXERCISE_AND_EXPIRY,
    ZERO_ADDRESS,
    Clock,
    is_zero_address,
    normalize_address,
    system_clock,
)

if TYPE_CHECKING:
    from ..ledger import DelegateRegistry, TokenLedger
    from ..oracle.feeds import PriceOracle

logger = logging.getLogger(__name__)


class EscrowController(FeeInfoProvider, Protocol):
    """The router an escrow answers to."""

    address: str


def option_info_problem(option_info: OptionInfo, now: int) -> Optional[str]:
    """Return why fixed option terms are unusable, or None."""
    if (
        is_zero_address(option_info.underlying_token)
        or is_zero_address(option_info.settlement_token)
        or option_info.underlying_token.lower() == option_info.settlement_token.lower()
    ):
        return "invalid token pair"
    if option_info.notional <= 0:
        return "notional must be positive"
    if option_info.strike <= 0:
        return "strike must be positive"
    if option_info.expiry <= now:
        return "expiry in the past"
    if option_info.earliest_exercise < 0 or (
        option_info.earliest_exercise + MIN_TIME_BETWEEN_EARLIEST_EXERCISE_AND_EXPIRY
        > option_info.expiry
    ):
        return "earliest exercise too close to expiry"
    settings = option_info.advanced_settings
    if settings.borrow_cap < 0 or settings.borrow_cap > BASE:
        return "borrow cap above 100%"
    return None


def validate_option_info(option_info: OptionInfo, now: int) -> None:
    problem = option_info_problem(option_info, now)
    if problem:
        raise InvalidInitialization(problem)


class Escrow:
    """Collateral and option-share book of one option position."""

    def __init__(
        self,
        address: str,
        router: EscrowController,
        ledger: "TokenLedger",
        clock: Clock = system_clock,
    ):
        self.address = normalize_address(address, "escrow")
        self._router = router
        self._ledger = ledger
        self._clock = clock
        self._state = EscrowState()
        self._oracle: Optional["PriceOracle"] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def phase(self) -> EscrowPhase:
        with self._lock:
            state = self._state
            if not state.initialized:
                return EscrowPhase.UNINITIALIZED
            if not state.option_minted:
                return EscrowPhase.AUCTION
            if self._clock() >= state.option_info.expiry:
                return EscrowPhase.EXPIRED
            return EscrowPhase.MINTED

    @property
    def owner(self) -> str:
        return self._state.owner

    @property
    def option_minted(self) -> bool:
        return self._state.option_minted

    @property
    def option_info(self) -> Optional[OptionInfo]:
        return self._state.option_info

    @property
    def auction_params(self) -> Optional[AuctionParams]:
        return self._state.auction_params

    @property
    def auction_initialization(self) -> Optional[AuctionInitialization]:
        return self._state.auction_initialization

    @property
    def dist_partner(self) -> str:
        return self._state.dist_partner

    @property
    def total_supply(self) -> int:
        return self._state.total_supply

    @property
    def total_borrowed(self) -> int:
        return self._state.total_borrowed

    @property
    def voting_delegate(self) -> str:
        return self._state.voting_delegate

    @property
    def oracle(self) -> Optional["PriceOracle"]:
        return self._oracle

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._state.balances.get(normalize_address(account, "account"), 0)

    def borrowed_underlying_amount(self, borrower: str) -> int:
        with self._lock:
            return self._state.borrowed_underlying.get(normalize_address(borrower, "borrower"), 0)

    def exercised_amount(self, account: str) -> int:
        with self._lock:
            return self._state.exercised_underlying.get(normalize_address(account, "account"), 0)

    def current_ask(self) -> int:
        params = self._state.auction_params
        if params is None:
            raise NotInitialized("Escrow has no auction")
        return current_ask(
            self._clock(),
            params.decay_start_time,
            params.decay_duration,
            params.rel_premium_start,
            params.rel_premium_floor,
        )

    def advanced_settings(self) -> AdvancedSettings:
        state = self._state
        if state.option_info is not None:
            return state.option_info.advanced_settings
        if state.auction_initialization is not None:
            return state.auction_initialization.advanced_settings
        raise NotInitialized("Escrow is not initialized")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, sender: str) -> Iterator[EscrowState]:
        if normalize_address(sender, "sender") != normalize_address(self._router.address):
            raise Unauthorized(f"{sender} is not the router of escrow {self.address}")
        with self._lock:
            snapshot = (copy.deepcopy(self._state), self._oracle)
            try:
                with self._ledger.atomic():
                    yield self._state
            except Exception:
                self._state, self._oracle = snapshot
                raise

    def _bid_dist_partner(self, dist_partner: str) -> str:
        if is_zero_address(dist_partner):
            return self._state.dist_partner
        return normalize_address(dist_partner, "dist partner")

    def _require_owner(self, caller: str) -> None:
        if normalize_address(caller, "caller") != self._state.owner:
            raise Unauthorized(f"{caller} is not the owner of escrow {self.address}")

    def _require_minted(self) -> OptionInfo:
        if not self._state.option_minted:
            raise NoOptionMinted("No option minted")
        return self._state.option_info

    def _underlying_unit(self, option_info: OptionInfo) -> int:
        return 10 ** self._ledger.decimals(option_info.underlying_token)

    def _settlement_amount(self, option_info: OptionInfo, underlying_amount: int) -> int:
        return option_info.strike * underlying_amount // self._underlying_unit(option_info)

    def _mint_shares(self, account: str, amount: int) -> None:
        if amount <= 0:
            return
        account = normalize_address(account, "account")
        balances = self._state.balances
        balances[account] = balances.get(account, 0) + amount
        self._state.total_supply += amount

    def _burn_shares(self, account: str, amount: int) -> None:
        account = normalize_address(account, "account")
        balances = self._state.balances
        held = balances.get(account, 0)
        if amount > held:
            raise InvalidAmount(f"Amount {amount} exceeds option balance {held}")
        balances[account] = held - amount
        self._state.total_supply -= amount

    def _fee_receiver(self) -> str:
        return self._router.fee_receiver or ZERO_ADDRESS

    def _settle_premium(
        self, payer: str, token: str, premium: int, fees: FeeSplit, dist_partner: str
    ) -> None:
        if fees.protocol_fee:
            self._ledger.transfer(token, payer, self._fee_receiver(), fees.protocol_fee)
        if fees.dist_partner_fee:
            self._ledger.transfer(token, payer, dist_partner, fees.dist_partner_fee)
        self._ledger.transfer(token, payer, self._state.owner, premium - fees.total)

    def _check_exercise_window(self, option_info: OptionInfo) -> None:
        now = self._clock()
        if now < option_info.earliest_exercise or now >= option_info.expiry:
            raise InvalidTime(
                f"Exercise window is [{option_info.earliest_exercise}, {option_info.expiry})"
            )

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize_auction(
        self,
        sender: str,
        owner: str,
        funder: str,
        auction_initialization: AuctionInitialization,
        dist_partner: str,
        oracle: "PriceOracle",
    ) -> None:
        """Open a Dutch auction and pull ``notional`` underlying from ``funder``.

        Raises:
            AlreadyInitialized: If the escrow was initialized before
            InvalidInitialization: If the auction parameters are invalid
        """
        with self._transaction(sender) as state:
            if state.initialized:
                raise AlreadyInitialized("Escrow already initialized")
            validate_auction_initialization(auction_initialization)
            state.initialized = True
            state.owner = normalize_address(owner, "owner")
            state.auction_params = auction_initialization.auction_params
            state.auction_initialization = auction_initialization
            state.dist_partner = normalize_address(dist_partner, "dist partner")
            self._oracle = oracle
            self._ledger.transfer(
                auction_initialization.underlying_token,
                funder,
                self.address,
                auction_initialization.notional,
            )
        logger.info("escrow %s: auction opened by %s", self.address, owner)

    def initialize_rfq_match(
        self,
        sender: str,
        owner: str,
        funder: str,
        option_receiver: str,
        rfq_initialization: RFQInitialization,
        premium_payer: str,
        fees: FeeSplit,
        dist_partner: str,
        oracle: Optional["PriceOracle"] = None,
    ) -> None:
        """Lock collateral for a matched quote and mint the option in one step.

        The premium is paid by ``premium_payer`` (the maker), net of fees, to
        ``owner``.
        """
        option_info = rfq_initialization.option_info
        with self._transaction(sender) as state:
            if state.initialized:
                raise AlreadyInitialized("Escrow already initialized")
            validate_option_info(option_info, self._clock())
            state.initialized = True
            state.owner = normalize_address(owner, "owner")
            state.option_info = option_info
            state.option_minted = True
            state.dist_partner = normalize_address(dist_partner, "dist partner")
            self._oracle = oracle
            self._mint_shares(option_receiver, option_info.notional)

            self._ledger.transfer(
                option_info.underlying_token, funder, self.address, option_info.notional
            )
            premium_token = (
                option_info.underlying_token
                if option_info.advanced_settings.premium_token_is_underlying
                else option_info.settlement_token
            )
            self._settle_premium(
                premium_payer,
                premium_token,
                rfq_initialization.rfq_quote.premium,
                fees,
                state.dist_partner,
            )
        logger.info("escrow %s: quote matched, option minted to %s", self.address, option_receiver)

    def initialize_mint_option(
        self,
        sender: str,
        owner: str,
        funder: str,
        option_receiver: str,
        option_info: OptionInfo,
        mint_fees: FeeSplit,
        dist_partner: str,
        oracle: Optional["PriceOracle"] = None,
    ) -> None:
        """Mint an option directly with no premium; mint fees are paid in shares."""
        with self._transaction(sender) as state:
            if state.initialized:
                raise AlreadyInitialized("Escrow already initialized")
            validate_option_info(option_info, self._clock())
            state.initialized = True
            state.owner = normalize_address(owner, "owner")
            state.option_info = option_info
            state.option_minted = True
            state.dist_partner = normalize_address(dist_partner, "dist partner")
            self._oracle = oracle
            self._mint_shares(option_receiver, option_info.notional - mint_fees.total)
            self._mint_shares(self._fee_receiver(), mint_fees.protocol_fee)
            self._mint_shares(state.dist_partner, mint_fees.dist_partner_fee)

            self._ledger.transfer(
                option_info.underlying_token, funder, self.address, option_info.notional
            )
        logger.info("escrow %s: option minted to %s", self.address, option_receiver)

    # ------------------------------------------------------------------
    # Auction
    # ------------------------------------------------------------------

    def preview_bid(
        self,
        rel_bid: int,
        ref_spot: int,
        aux_data: bytes = b"",
        dist_partner: str = ZERO_ADDRESS,
    ) -> BidPreview:
        """Evaluate a bid without changing anything.

        ``dist_partner`` is the bidder's distribution partner; the zero address
        falls back to the partner the auction was created with.

        Checks run in a fixed order and the first failure decides the status:
        already minted, premium below the current ask, reference spot below
        the oracle spot, oracle spot outside [min_spot, max_spot], escrow not
        holding the full notional.

        Raises:
            NotInitialized: If the escrow has no auction
            OracleError: If the oracle cannot produce a price
        """
        with self._lock:
            state = self._state
            if not state.initialized:
                raise NotInitialized("Escrow is not initialized")
            if state.option_minted:
                return BidPreview(BidStatus.OPTION_ALREADY_MINTED)

            init = state.auction_initialization
            params = state.auction_params
            now = self._clock()
            ask = self.current_ask()
            if rel_bid < ask:
                return BidPreview(BidStatus.PREMIUM_TOO_LOW, current_ask=ask)

            oracle_spot = self._oracle.get_price(
                init.underlying_token, init.settlement_token, aux_data
            )
            if ref_spot < oracle_spot:
                return BidPreview(
                    BidStatus.SPOT_PRICE_TOO_LOW, current_ask=ask, oracle_spot_price=oracle_spot
                )
            if oracle_spot < params.min_spot or oracle_spot > params.max_spot:
                return BidPreview(
                    BidStatus.OUT_OF_RANGE_SPOT_PRICE,
                    current_ask=ask,
                    oracle_spot_price=oracle_spot,
                )
            if self._ledger.balance_of(init.underlying_token, self.address) < init.notional:
                return BidPreview(
                    BidStatus.INSUFFICIENT_FUNDING, current_ask=ask, oracle_spot_price=oracle_spot
                )

            if init.advanced_settings.premium_token_is_underlying:
                premium_token = init.underlying_token
                premium = ask * init.notional // BASE
            else:
                premium_token = init.settlement_token
                underlying_unit = 10 ** self._ledger.decimals(init.underlying_token)
                premium = ask * ref_spot * init.notional // (BASE * underlying_unit)

            partner = self._bid_dist_partner(dist_partner)
            match_fee, dist_partner_share = self._router.get_match_fee_info(partner)
            fees = compute_fees(premium, match_fee, dist_partner_share)
            return BidPreview(
                status=BidStatus.SUCCESS,
                settlement_token=init.settlement_token,
                strike=params.rel_strike * ref_spot // BASE,
                expiry=now + params.tenor,
                earliest_exercise=now + params.earliest_exercise_tenor,
                premium=premium,
                premium_token=premium_token,
                oracle_spot_price=oracle_spot,
                current_ask=ask,
                match_fee_protocol=fees.protocol_fee,
                match_fee_dist_partner=fees.dist_partner_fee,
                dist_partner=partner,
            )

    def handle_auction_bid(
        self,
        sender: str,
        bidder: str,
        rel_bid: int,
        option_receiver: str,
        ref_spot: int,
        aux_data: bytes = b"",
        dist_partner: str = ZERO_ADDRESS,
    ) -> BidPreview:
        """Accept a bid: fix the option terms, mint, and collect the premium.

        Returns:
            The successful preview (final option terms and premium split)

        Raises:
            InvalidBid: If the preview is not SUCCESS; nothing changes
        """
        with self._transaction(sender) as state:
            preview = self.preview_bid(rel_bid, ref_spot, aux_data, dist_partner)
            if preview.status != BidStatus.SUCCESS:
                logger.info("escrow %s: bid rejected: %s", self.address, preview.status.name)
                raise InvalidBid(preview.status)

            init = state.auction_initialization
            state.option_info = OptionInfo(
                underlying_token=init.underlying_token,
                settlement_token=init.settlement_token,
                notional=init.notional,
                strike=preview.strike,
                earliest_exercise=preview.earliest_exercise,
                expiry=preview.expiry,
                advanced_settings=init.advanced_settings,
            )
            state.option_minted = True
            self._mint_shares(option_receiver, init.notional)

            self._settle_premium(
                bidder,
                preview.premium_token,
                preview.premium,
                FeeSplit(preview.match_fee_protocol, preview.match_fee_dist_partner),
                preview.dist_partner,
            )
        logger.info(
            "escrow %s: bid accepted from %s, premium %d", self.address, bidder, preview.premium
        )
        return preview

    # ------------------------------------------------------------------
    # Borrowing
    # ------------------------------------------------------------------

    def handle_borrow(
        self, sender: str, borrower: str, underlying_receiver: str, underlying_amount: int
    ) -> BorrowResult:
        """Borrow underlying against settlement collateral at the strike.

        The borrower's option shares are burned; repaying re-mints them.
        """
        with self._transaction(sender) as state:
            option_info = self._require_minted()
            settings = option_info.advanced_settings
            if not settings.borrowing_allowed:
                raise BorrowingNotAllowed("Borrowing is not allowed")
            if self._clock() >= option_info.expiry:
                raise InvalidTime("Option expired")
            if underlying_amount <= 0:
                raise InvalidAmount("Borrow amount must be positive")
            borrow_limit = option_info.notional * settings.borrow_cap // BASE
            if state.total_borrowed + underlying_amount > borrow_limit:
                raise InvalidAmount(f"Borrow would exceed the cap of {borrow_limit}")
            collateral = self._settlement_amount(option_info, underlying_amount)
            if collateral == 0:
                raise ZeroSettlementAmount("Collateral rounds to zero")
            fee = compute_exercise_fee(collateral, self._router.get_exercise_fee())

            borrower = normalize_address(borrower, "borrower")
            self._burn_shares(borrower, underlying_amount)
            state.borrowed_underlying[borrower] = (
                state.borrowed_underlying.get(borrower, 0) + underlying_amount
            )
            state.borrowed_collateral[borrower] = (
                state.borrowed_collateral.get(borrower, 0) + collateral
            )
            state.total_borrowed += underlying_amount

            self._ledger.transfer(option_info.settlement_token, borrower, self.address, collateral)
            if fee:
                self._ledger.transfer(
                    option_info.settlement_token, borrower, self._fee_receiver(), fee
                )
            self._ledger.transfer(
                option_info.underlying_token, self.address, underlying_receiver, underlying_amount
            )
        return BorrowResult(option_info.settlement_token, collateral, fee)

    def handle_repay(
        self, sender: str, borrower: str, collateral_receiver: str, underlying_amount: int
    ) -> RepayResult:
        """Return borrowed underlying and get the matching collateral back."""
        with self._transaction(sender) as state:
            option_info = self._require_minted()
            if self._clock() >= option_info.expiry:
                raise InvalidTime("Option expired")
            if state.total_borrowed == 0:
                raise NothingToRepay("Nothing borrowed")
            borrower = normalize_address(borrower, "borrower")
            borrowed = state.borrowed_underlying.get(borrower, 0)
            if underlying_amount <= 0 or underlying_amount > borrowed:
                raise InvalidAmount(f"Repay amount must be in (0, {borrowed}]")

            locked = state.borrowed_collateral[borrower]
            collateral_returned = locked * underlying_amount // borrowed
            state.borrowed_underlying[borrower] = borrowed - underlying_amount
            state.borrowed_collateral[borrower] = locked - collateral_returned
            state.total_borrowed -= underlying_amount
            self._mint_shares(borrower, underlying_amount)

            self._ledger.transfer(
                option_info.underlying_token, borrower, self.address, underlying_amount
            )
            self._ledger.transfer(
                option_info.settlement_token, self.address, collateral_receiver, collateral_returned
            )
        return RepayResult(option_info.settlement_token, collateral_returned)

    # ------------------------------------------------------------------
    # Exercise
    # ------------------------------------------------------------------

    def handle_exercise(
        self,
        sender: str,
        exerciser: str,
        underlying_receiver: str,
        underlying_amount: int,
        pay_in_settlement_token: bool,
        aux_data: bytes = b"",
    ) -> ExerciseResult:
        """Exercise ``underlying_amount`` of the exerciser's options.

        Paying in the settlement token costs ``strike * amount`` plus the
        exercise fee. Paying in the underlying nets the strike cost out of
        the delivered underlying at the oracle price.
        """
        with self._transaction(sender) as state:
            option_info = self._require_minted()
            self._check_exercise_window(option_info)
            exerciser = normalize_address(exerciser, "exerciser")
            held = state.balances.get(exerciser, 0)
            if underlying_amount <= 0 or underlying_amount > held:
                raise InvalidAmount(f"Exercise amount must be in (0, {held}]")
            settlement_amount = self._settlement_amount(option_info, underlying_amount)
            if settlement_amount == 0:
                raise ZeroSettlementAmount("Settlement amount rounds to zero")
            exercise_fee = self._router.get_exercise_fee()
            self._burn_shares(exerciser, underlying_amount)

            if pay_in_settlement_token:
                fee = compute_exercise_fee(settlement_amount, exercise_fee)
                settings = option_info.advanced_settings
                if settings.reverse_exercisable:
                    state.exercised_underlying[exerciser] = (
                        state.exercised_underlying.get(exerciser, 0) + underlying_amount
                    )
                    settlement_receiver = self.address
                else:
                    settlement_receiver = state.owner
                self._ledger.transfer(
                    option_info.settlement_token, exerciser, settlement_receiver, settlement_amount
                )
                if fee:
                    self._ledger.transfer(
                        option_info.settlement_token, exerciser, self._fee_receiver(), fee
                    )
                delivered = underlying_amount
                self._ledger.transfer(
                    option_info.underlying_token, self.address, underlying_receiver, delivered
                )
                return ExerciseResult(option_info.settlement_token, settlement_amount, fee, delivered)

            if self._oracle is None:
                raise NoOracle(option_info.settlement_token)
            price = self._oracle.get_price(
                option_info.settlement_token, option_info.underlying_token, aux_data
            )
            settlement_unit = 10 ** self._ledger.decimals(option_info.settlement_token)
            cost = settlement_amount * price // settlement_unit
            fee = compute_exercise_fee(cost, exercise_fee)
            if cost == 0 or cost + fee >= underlying_amount:
                raise InvalidExercise("Option is not in the money at the oracle price")
            delivered = underlying_amount - cost - fee
            self._ledger.transfer(option_info.underlying_token, self.address, state.owner, cost)
            if fee:
                self._ledger.transfer(
                    option_info.underlying_token, self.address, self._fee_receiver(), fee
                )
            self._ledger.transfer(
                option_info.underlying_token, self.address, underlying_receiver, delivered
            )
        return ExerciseResult(option_info.underlying_token, cost, fee, delivered)

    def handle_reverse_exercise(
        self, sender: str, account: str, settlement_receiver: str, underlying_amount: int
    ) -> ReverseExerciseResult:
        """Undo an exercise: return underlying, get settlement back, re-mint shares."""
        with self._transaction(sender) as state:
            option_info = self._require_minted()
            if not option_info.advanced_settings.reverse_exercisable:
                raise NotReverseExercisable("Reverse exercise is disabled")
            self._check_exercise_window(option_info)
            if underlying_amount <= 0:
                raise InvalidAmount("Amount must be positive")
            account = normalize_address(account, "account")
            exercised = state.exercised_underlying.get(account, 0)
            if underlying_amount > exercised:
                raise AmountTooLarge(f"Only {exercised} exercised by {account}")
            settlement_amount = self._settlement_amount(option_info, underlying_amount)
            if settlement_amount == 0:
                raise ZeroSettlementAmount("Settlement amount rounds to zero")
            fee = compute_exercise_fee(settlement_amount, self._router.get_exercise_fee())

            state.exercised_underlying[account] = exercised - underlying_amount
            self._mint_shares(account, underlying_amount)

            self._ledger.transfer(
                option_info.underlying_token, account, self.address, underlying_amount
            )
            if fee:
                self._ledger.transfer(
                    option_info.settlement_token, self.address, self._fee_receiver(), fee
                )
            self._ledger.transfer(
                option_info.settlement_token,
                self.address,
                settlement_receiver,
                settlement_amount - fee,
            )
        return ReverseExerciseResult(option_info.settlement_token, settlement_amount - fee, fee)

    def handle_reverse_mint(
        self, sender: str, account: str, underlying_receiver: str, amount: int
    ) -> None:
        """Burn option shares held by the owner and release the same underlying."""
        with self._transaction(sender) as state:
            option_info = self._require_minted()
            if not option_info.advanced_settings.reverse_exercisable:
                raise NotReverseExercisable("Reverse mint is disabled")
            if self._clock() >= option_info.expiry:
                raise InvalidTime("Option expired")
            self._require_owner(account)
            if amount <= 0:
                raise InvalidAmount("Amount must be positive")
            held = state.balances.get(state.owner, 0)
            if amount > held:
                raise AmountTooLarge(f"Only {held} option shares held")
            self._burn_shares(state.owner, amount)
            self._ledger.transfer(
                option_info.underlying_token, self.address, underlying_receiver, amount
            )

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def handle_redeem(self, sender: str, caller: str, receiver: str) -> int:
        """Burn every option share the owner holds for the same underlying.

        Returns:
            Amount of underlying released
        """
        with self._transaction(sender) as state:
            self._require_owner(caller)
            option_info = self._require_minted()
            amount = state.balances.get(state.owner, 0)
            if amount == 0:
                raise NothingToRedeem("Owner holds no option shares")
            self._burn_shares(state.owner, amount)
            self._ledger.transfer(option_info.underlying_token, self.address, receiver, amount)
        return amount

    def handle_withdraw(
        self, sender: str, caller: str, receiver: str, token: str, amount: int
    ) -> None:
        """Owner withdrawal; only before minting (cancels the auction) or after expiry."""
        with self._transaction(sender) as state:
            if not state.initialized:
                raise NotInitialized("Escrow is not initialized")
            self._require_owner(caller)
            if state.option_minted and self._clock() < state.option_info.expiry:
                raise InvalidWithdraw("Cannot withdraw while the option is live")
            if amount <= 0:
                raise InvalidAmount("Withdraw amount must be positive")
            self._ledger.transfer(token, self.address, receiver, amount)
        logger.info("escrow %s: owner withdrew %d of %s", self.address, amount, token)

    def handle_transfer(self, sender: str, holder: str, to: str, amount: int) -> None:
        """Move option shares between holders."""
        with self._transaction(sender) as state:
            option_info = self._require_minted()
            if not option_info.advanced_settings.transferrable:
                raise NonTransferrable("Option shares are not transferrable")
            to = normalize_address(to, "recipient")
            if is_zero_address(to):
                raise InvalidAddress("Cannot transfer to the zero address")
            holder = normalize_address(holder, "holder")
            held = state.balances.get(holder, 0)
            if amount <= 0 or amount > held:
                raise InvalidAmount(f"Transfer amount must be in (0, {held}]")
            state.balances[holder] = held - amount
            state.balances[to] = state.balances.get(to, 0) + amount

    def handle_transfer_ownership(self, sender: str, caller: str, new_owner: str) -> str:
        """Hand the escrow to a new owner. Returns the previous owner."""
        with self._transaction(sender) as state:
            self._require_owner(caller)
            new_owner = normalize_address(new_owner, "new owner")
            if is_zero_address(new_owner) or new_owner == state.owner:
                raise InvalidAddress(f"Invalid new owner: {new_owner}")
            old_owner = state.owner
            state.owner = new_owner
        return old_owner

    def handle_voting_delegation(self, sender: str, caller: str, delegatee: str) -> None:
        """Delegate the voting power of the escrowed underlying."""
        with self._transaction(sender) as state:
            self._require_owner(caller)
            settings = self.advanced_settings()
            if not settings.voting_delegation_allowed:
                raise VotingDelegationNotAllowed("Voting delegation is not allowed")
            delegatee = normalize_address(delegatee, "delegatee")
            state.voting_delegate = delegatee
            underlying = (
                state.option_info.underlying_token
                if state.option_info is not None
                else state.auction_initialization.underlying_token
            )
            self._ledger.delegate(underlying, self.address, delegatee)

    def handle_off_chain_voting_delegation(
        self,
        sender: str,
        caller: str,
        registry: "DelegateRegistry",
        space_id: str,
        delegate: str,
    ) -> None:
        """Delegate off-chain voting through the allowed delegate registry."""
        with self._transaction(sender):
            self._require_owner(caller)
            settings = self.advanced_settings()
            if not settings.voting_delegation_allowed:
                raise VotingDelegationNotAllowed("Voting delegation is not allowed")
            allowed = settings.allowed_delegate_registry
            if is_zero_address(allowed) or normalize_address(registry.address) != normalize_address(
                allowed
            ):
                raise NoAllowedDelegateRegistry("No allowed delegate registry")
            registry.set_delegate(self.address, space_id, delegate)
