"""Escrow Router.

Creates escrows and dispatches every user-facing operation to them. The
router owns the registry (an arena of escrows addressed by integer handle),
the fee handler, the price oracles and the quote verifier; escrows only know
the router, never their slot in the registry.

The router will, for an RFQ:
1. Hash the quote terms and verify the maker's signature
2. Derive the escrow from the quote hash (a quote can be taken only once)
3. Pull the taker's collateral, mint the option to the maker
4. Pay the premium, net of protocol and distribution partner fees, to the taker
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, TypedDict

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from ..errors import (
    InvalidAddress,
    InvalidArrayLength,
    InvalidTakeQuote,
    InvalidWithdraw,
    NoOracle,
    NotAnEscrow,
    OwnableUnauthorizedAccount,
    Unauthorized,
)
from ..escrow.fees import compute_fees, compute_mint_fees
from ..escrow.signing import ContractSigner, QuoteVerifier
from ..escrow.state_machine import Escrow, option_info_problem
from ..escrow.types import (
    AuctionInitialization,
    BidPreview,
    BorrowResult,
    EscrowPhase,
    ExerciseResult,
    FeeSplit,
    OptionInfo,
    QuoteStatus,
    RepayResult,
    ReverseExerciseResult,
    RFQInitialization,
    TakeQuotePreview,
)
from ..escrow.utils import ZERO_ADDRESS, Clock, is_zero_address, normalize_address, system_clock
from ..events import (
    BidOnAuction,
    Borrow,
    CreateAuction,
    EventLog,
    Exercise,
    MintOption,
    NewFeeHandler,
    Redeem,
    Repay,
    ReverseExercise,
    ReverseMint,
    TakeQuote,
    Transfer,
    TransferOwnership,
    VotingDelegation,
    Withdraw,
    WithdrawFromEscrowAndCreateAuction,
)
from ..ledger import DelegateRegistry, TokenLedger
from ..oracle.feeds import PriceOracle

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = 1


class RouterConfig(TypedDict, total=False):
    """Configuration for the escrow router."""

    owner: str
    """Account allowed to manage fee handler and registries. Required."""

    chain_id: int
    """Chain ID quotes are signed for. Default: 1"""

    address: str
    """Router address. Default: derived from owner and chain ID"""


@dataclass
class ResolvedRouterConfig:
    """Resolved router configuration with all defaults applied."""

    owner: str
    chain_id: int
    address: str


class EscrowRouter:
    """Entry point for auctions, RFQ matching and option settlement.

    Example:
        ```python
        ledger = TokenLedger()
        router = EscrowRouter(ledger, {"owner": admin, "chain_id": 1})
        router.register_oracle(admin, oracle)

        handle = router.create_auction(seller, seller, auction_initialization)
        preview = router.bid_on_auction(
            buyer, handle, option_receiver=buyer, rel_bid=ask, ref_spot=spot
        )
        router.exercise(buyer, handle, buyer, underlying_amount=10**18)
        ```
    """

    def __init__(
        self,
        ledger: TokenLedger,
        config: Optional[RouterConfig] = None,
        clock: Clock = system_clock,
        event_log: Optional[EventLog] = None,
    ):
        """Initialize the router.

        Args:
            ledger: Token ledger holding every balance
            config: Router configuration (``owner`` is required)
            clock: Source of the current unix timestamp
            event_log: Where events are emitted (a fresh log by default)
        """
        config = config or {}
        if not config.get("owner"):
            raise InvalidAddress("Router owner is required")
        owner = normalize_address(config["owner"], "owner")
        chain_id = config.get("chain_id", DEFAULT_CHAIN_ID)
        address = config.get("address") or to_checksum_address(
            keccak(encode(["address", "uint256"], [owner, chain_id]))[-20:]
        )
        self._config = ResolvedRouterConfig(
            owner=owner,
            chain_id=chain_id,
            address=normalize_address(address, "router"),
        )

        self.ledger = ledger
        self.events = event_log or EventLog()
        self._clock = clock
        self._lock = threading.RLock()
        self._escrows: List[Escrow] = []
        self._handle_by_address: Dict[str, int] = {}
        self._handle_by_quote_hash: Dict[str, int] = {}
        self._escrow_nonce = 0
        self._fee_handler = None
        self._oracles: Dict[str, PriceOracle] = {}
        self._contract_signers: Dict[str, ContractSigner] = {}
        self._delegate_registries: Dict[str, DelegateRegistry] = {}
        self.quote_verifier = QuoteVerifier(
            chain_id, lambda address: self._contract_signers.get(address)
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._config.address

    @property
    def owner(self) -> str:
        return self._config.owner

    @property
    def chain_id(self) -> int:
        return self._config.chain_id

    def get_config(self) -> ResolvedRouterConfig:
        """Get the router configuration."""
        return self._config

    def _only_owner(self, caller: str) -> None:
        if normalize_address(caller, "caller") != self._config.owner:
            raise OwnableUnauthorizedAccount(caller)

    @property
    def fee_handler(self):
        return self._fee_handler

    def set_fee_handler(self, caller: str, fee_handler) -> None:
        """Replace the fee handler (owner only). ``None`` disables fees."""
        self._only_owner(caller)
        old = self._fee_handler
        old_address = old.address if old is not None else ZERO_ADDRESS
        new_address = fee_handler.address if fee_handler is not None else ZERO_ADDRESS
        if normalize_address(old_address) == normalize_address(new_address):
            raise InvalidAddress("Fee handler unchanged")
        self._fee_handler = fee_handler
        self.events.emit(NewFeeHandler(old_fee_handler=old_address, new_fee_handler=new_address))

    def register_oracle(self, caller: str, oracle: PriceOracle) -> None:
        self._only_owner(caller)
        with self._lock:
            self._oracles[normalize_address(oracle.address, "oracle")] = oracle

    def register_contract_signer(self, caller: str, signer: ContractSigner) -> None:
        self._only_owner(caller)
        with self._lock:
            self._contract_signers[normalize_address(signer.address, "signer")] = signer

    def register_delegate_registry(self, caller: str, registry: DelegateRegistry) -> None:
        self._only_owner(caller)
        with self._lock:
            self._delegate_registries[normalize_address(registry.address, "registry")] = registry

    # Fee info consulted by escrows

    def get_match_fee_info(self, dist_partner: str) -> Tuple[int, int]:
        handler = self._fee_handler
        if handler is None:
            return 0, 0
        match_fee, dist_partner_share = handler.get_match_fee_info(dist_partner)
        if is_zero_address(dist_partner):
            dist_partner_share = 0
        return match_fee, dist_partner_share

    def get_mint_fee_info(self, dist_partner: str) -> Tuple[int, int]:
        handler = self._fee_handler
        if handler is None:
            return 0, 0
        mint_fee, dist_partner_share = handler.get_mint_fee_info(dist_partner)
        if is_zero_address(dist_partner):
            dist_partner_share = 0
        return mint_fee, dist_partner_share

    def get_exercise_fee(self) -> int:
        handler = self._fee_handler
        return handler.exercise_fee if handler is not None else 0

    @property
    def fee_receiver(self) -> Optional[str]:
        handler = self._fee_handler
        return handler.address if handler is not None else None

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def num_escrows(self) -> int:
        return len(self._escrows)

    def get_escrow(self, handle: int) -> Escrow:
        if not isinstance(handle, int) or handle < 0 or handle >= len(self._escrows):
            raise NotAnEscrow(f"No escrow with handle {handle}")
        return self._escrows[handle]

    def get_escrows(self, start: int, count: int) -> List[Escrow]:
        with self._lock:
            if count <= 0 or start < 0 or start + count > len(self._escrows):
                raise InvalidArrayLength(f"Invalid escrow query: start={start} count={count}")
            return self._escrows[start : start + count]

    def handle_of(self, escrow_address: str) -> int:
        handle = self._handle_by_address.get(normalize_address(escrow_address, "escrow"))
        if handle is None:
            raise NotAnEscrow(f"{escrow_address} is not an escrow of this router")
        return handle

    def handle_of_quote(self, msg_hash: str) -> Optional[int]:
        return self._handle_by_quote_hash.get(msg_hash.lower())

    def _derive_escrow_address(self, salt: bytes) -> str:
        return to_checksum_address(
            keccak(encode(["address", "bytes32"], [self.address, salt]))[-20:]
        )

    def _new_escrow(self, salt: Optional[bytes] = None) -> Escrow:
        if salt is None:
            salt = self._escrow_nonce.to_bytes(32, "big")
            self._escrow_nonce += 1
        return Escrow(self._derive_escrow_address(salt), self, self.ledger, self._clock)

    def _register(self, escrow: Escrow, msg_hash: Optional[str] = None) -> int:
        handle = len(self._escrows)
        self._escrows.append(escrow)
        self._handle_by_address[escrow.address] = handle
        if msg_hash is not None:
            self._handle_by_quote_hash[msg_hash.lower()] = handle
        return handle

    def _resolve_oracle(self, address: str) -> Optional[PriceOracle]:
        if is_zero_address(address):
            return None
        oracle = self._oracles.get(normalize_address(address, "oracle"))
        if oracle is None:
            raise NoOracle(address)
        return oracle

    # ------------------------------------------------------------------
    # Auctions
    # ------------------------------------------------------------------

    def create_auction(
        self,
        caller: str,
        escrow_owner: str,
        auction_initialization: AuctionInitialization,
        dist_partner: str = ZERO_ADDRESS,
    ) -> int:
        """Open a Dutch auction funded by ``caller``.

        Returns:
            Handle of the new escrow
        """
        oracle = self._resolve_oracle(auction_initialization.advanced_settings.oracle)
        with self._lock:
            nonce = self._escrow_nonce
            escrow = self._new_escrow()
            try:
                escrow.initialize_auction(
                    self.address, escrow_owner, caller, auction_initialization, dist_partner, oracle
                )
            except Exception:
                self._escrow_nonce = nonce
                raise
            handle = self._register(escrow)
        self.events.emit(
            CreateAuction(
                escrow_owner=normalize_address(escrow_owner),
                escrow=escrow.address,
                handle=handle,
                auction_initialization=auction_initialization,
                dist_partner=escrow.dist_partner,
            )
        )
        return handle

    def preview_bid(
        self,
        handle: int,
        rel_bid: int,
        ref_spot: int,
        aux_data: bytes = b"",
        dist_partner: str = ZERO_ADDRESS,
    ) -> BidPreview:
        return self.get_escrow(handle).preview_bid(rel_bid, ref_spot, aux_data, dist_partner)

    def bid_on_auction(
        self,
        caller: str,
        handle: int,
        option_receiver: str,
        rel_bid: int,
        ref_spot: int,
        aux_data: bytes = b"",
        dist_partner: str = ZERO_ADDRESS,
    ) -> BidPreview:
        """Bid on an auction; ``caller`` pays the premium.

        Raises:
            InvalidBid: If the bid does not pass validation
        """
        escrow = self.get_escrow(handle)
        preview = escrow.handle_auction_bid(
            self.address, caller, rel_bid, option_receiver, ref_spot, aux_data, dist_partner
        )
        self.events.emit(
            BidOnAuction(
                escrow=escrow.address,
                rel_bid=rel_bid,
                bidder=normalize_address(caller),
                option_receiver=normalize_address(option_receiver),
                ref_spot=ref_spot,
                premium=preview.premium,
                match_fee_protocol=preview.match_fee_protocol,
                match_fee_dist_partner=preview.match_fee_dist_partner,
                dist_partner=preview.dist_partner,
            )
        )
        return preview

    def withdraw_from_escrow_and_create_auction(
        self,
        caller: str,
        handle: int,
        escrow_owner: str,
        auction_initialization: AuctionInitialization,
        dist_partner: str = ZERO_ADDRESS,
    ) -> int:
        """Recycle the collateral of an unfilled or expired escrow into a new auction.

        The caller receives the old escrow's underlying and funds the new
        notional, so only the difference changes hands.
        """
        old = self.get_escrow(handle)
        if normalize_address(caller, "caller") != old.owner:
            raise Unauthorized(f"{caller} is not the owner of escrow {old.address}")
        if old.phase not in (EscrowPhase.AUCTION, EscrowPhase.EXPIRED):
            raise InvalidWithdraw("Escrow still holds a live option")
        underlying = (
            old.option_info.underlying_token
            if old.option_info is not None
            else old.auction_initialization.underlying_token
        )
        with self._lock, self.ledger.atomic():
            balance = self.ledger.balance_of(underlying, old.address)
            if balance:
                old.handle_withdraw(self.address, caller, caller, underlying, balance)
            new_handle = self.create_auction(
                caller, escrow_owner, auction_initialization, dist_partner
            )
        if balance:
            self.events.emit(
                Withdraw(escrow=old.address, receiver=old.owner, token=underlying, amount=balance)
            )
        self.events.emit(
            WithdrawFromEscrowAndCreateAuction(
                old_escrow=old.address,
                new_escrow=self._escrows[new_handle].address,
                escrow_owner=normalize_address(escrow_owner),
                handle=new_handle,
                auction_initialization=auction_initialization,
            )
        )
        return new_handle

    # ------------------------------------------------------------------
    # RFQ
    # ------------------------------------------------------------------

    def preview_take_quote(
        self, rfq_initialization: RFQInitialization, dist_partner: str = ZERO_ADDRESS
    ) -> TakeQuotePreview:
        """Evaluate a signed quote without taking it."""
        quote = rfq_initialization.rfq_quote
        option_info = rfq_initialization.option_info
        msg_hash = self.quote_verifier.quote_hash(rfq_initialization)
        now = self._clock()

        if now > quote.valid_until or now >= option_info.expiry:
            return TakeQuotePreview(QuoteStatus.EXPIRED, msg_hash)
        if option_info_problem(option_info, now) is not None:
            return TakeQuotePreview(QuoteStatus.INVALID_OPTION_TERMS, msg_hash)
        if self.handle_of_quote(msg_hash) is not None:
            return TakeQuotePreview(QuoteStatus.QUOTE_ALREADY_USED, msg_hash)

        verification = self.quote_verifier.verify(rfq_initialization, now)
        if verification.status != QuoteStatus.SUCCESS:
            return TakeQuotePreview(verification.status, msg_hash)
        maker = verification.signer

        contract = self._contract_signers.get(maker)
        if contract is not None and contract.quotes_paused:
            return TakeQuotePreview(QuoteStatus.QUOTES_PAUSED, msg_hash, maker)

        premium_token = normalize_address(
            option_info.underlying_token
            if option_info.advanced_settings.premium_token_is_underlying
            else option_info.settlement_token
        )
        if self.ledger.balance_of(premium_token, maker) < quote.premium:
            return TakeQuotePreview(QuoteStatus.INSUFFICIENT_FUNDING, msg_hash, maker)

        match_fee, dist_partner_share = self.get_match_fee_info(dist_partner)
        fees = compute_fees(quote.premium, match_fee, dist_partner_share)
        return TakeQuotePreview(
            status=QuoteStatus.SUCCESS,
            msg_hash=msg_hash,
            maker=maker,
            premium=quote.premium,
            premium_token=premium_token,
            match_fee_protocol=fees.protocol_fee,
            match_fee_dist_partner=fees.dist_partner_fee,
            dist_partner=normalize_address(dist_partner),
        )

    def take_quote(
        self,
        caller: str,
        escrow_owner: str,
        rfq_initialization: RFQInitialization,
        dist_partner: str = ZERO_ADDRESS,
    ) -> int:
        """Take a maker's signed quote: ``caller`` writes the option, the maker buys it.

        Returns:
            Handle of the new escrow

        Raises:
            InvalidTakeQuote: If the quote is expired, used, badly signed,
                paused, underfunded or has invalid terms
        """
        with self._lock:
            preview = self.preview_take_quote(rfq_initialization, dist_partner)
            if preview.status != QuoteStatus.SUCCESS:
                logger.info("take quote rejected: %s", preview.status.name)
                raise InvalidTakeQuote(preview.status)

            oracle = self._resolve_oracle(rfq_initialization.option_info.advanced_settings.oracle)
            escrow = self._new_escrow(bytes.fromhex(preview.msg_hash[2:]))
            escrow.initialize_rfq_match(
                self.address,
                escrow_owner,
                caller,
                preview.maker,
                rfq_initialization,
                preview.maker,
                FeeSplit(preview.match_fee_protocol, preview.match_fee_dist_partner),
                dist_partner,
                oracle,
            )
            handle = self._register(escrow, preview.msg_hash)
        self.events.emit(
            TakeQuote(
                escrow_owner=normalize_address(escrow_owner),
                escrow=escrow.address,
                handle=handle,
                maker=preview.maker,
                option_info=rfq_initialization.option_info,
                premium=preview.premium,
                match_fee_protocol=preview.match_fee_protocol,
                match_fee_dist_partner=preview.match_fee_dist_partner,
                msg_hash=preview.msg_hash,
            )
        )
        return handle

    # ------------------------------------------------------------------
    # Direct minting
    # ------------------------------------------------------------------

    def mint_option(
        self,
        caller: str,
        option_receiver: str,
        escrow_owner: str,
        option_info: OptionInfo,
        dist_partner: str = ZERO_ADDRESS,
    ) -> int:
        """Lock collateral from ``caller`` and mint the option to ``option_receiver``."""
        mint_fee, dist_partner_share = self.get_mint_fee_info(dist_partner)
        mint_fees = compute_mint_fees(option_info.notional, mint_fee, dist_partner_share)
        oracle = self._resolve_oracle(option_info.advanced_settings.oracle)
        with self._lock:
            nonce = self._escrow_nonce
            escrow = self._new_escrow()
            try:
                escrow.initialize_mint_option(
                    self.address,
                    escrow_owner,
                    caller,
                    option_receiver,
                    option_info,
                    mint_fees,
                    dist_partner,
                    oracle,
                )
            except Exception:
                self._escrow_nonce = nonce
                raise
            handle = self._register(escrow)
        self.events.emit(
            MintOption(
                option_receiver=normalize_address(option_receiver),
                escrow_owner=normalize_address(escrow_owner),
                escrow=escrow.address,
                handle=handle,
                option_info=option_info,
                mint_fee_protocol=mint_fees.protocol_fee,
                mint_fee_dist_partner=mint_fees.dist_partner_fee,
            )
        )
        return handle

    # ------------------------------------------------------------------
    # Option holder operations
    # ------------------------------------------------------------------

    def exercise(
        self,
        caller: str,
        handle: int,
        underlying_receiver: str,
        underlying_amount: int,
        pay_in_settlement_token: bool = True,
        aux_data: bytes = b"",
    ) -> ExerciseResult:
        escrow = self.get_escrow(handle)
        result = escrow.handle_exercise(
            self.address,
            caller,
            underlying_receiver,
            underlying_amount,
            pay_in_settlement_token,
            aux_data,
        )
        self.events.emit(
            Exercise(
                escrow=escrow.address,
                exerciser=normalize_address(caller),
                underlying_receiver=normalize_address(underlying_receiver),
                underlying_amount=underlying_amount,
                pay_in_settlement_token=pay_in_settlement_token,
                settlement_amount=result.settlement_amount,
                fee=result.fee,
            )
        )
        return result

    def reverse_exercise(
        self, caller: str, handle: int, settlement_receiver: str, underlying_amount: int
    ) -> ReverseExerciseResult:
        escrow = self.get_escrow(handle)
        result = escrow.handle_reverse_exercise(
            self.address, caller, settlement_receiver, underlying_amount
        )
        self.events.emit(
            ReverseExercise(
                escrow=escrow.address,
                account=normalize_address(caller),
                settlement_receiver=normalize_address(settlement_receiver),
                underlying_amount=underlying_amount,
                settlement_returned=result.settlement_returned,
                fee=result.fee,
            )
        )
        return result

    def borrow(
        self, caller: str, handle: int, underlying_receiver: str, underlying_amount: int
    ) -> BorrowResult:
        escrow = self.get_escrow(handle)
        result = escrow.handle_borrow(self.address, caller, underlying_receiver, underlying_amount)
        self.events.emit(
            Borrow(
                escrow=escrow.address,
                borrower=normalize_address(caller),
                underlying_receiver=normalize_address(underlying_receiver),
                underlying_amount=underlying_amount,
                collateral_amount=result.collateral_amount,
                collateral_fee=result.collateral_fee,
            )
        )
        return result

    def repay(
        self, caller: str, handle: int, collateral_receiver: str, underlying_amount: int
    ) -> RepayResult:
        escrow = self.get_escrow(handle)
        result = escrow.handle_repay(self.address, caller, collateral_receiver, underlying_amount)
        self.events.emit(
            Repay(
                escrow=escrow.address,
                borrower=normalize_address(caller),
                collateral_receiver=normalize_address(collateral_receiver),
                underlying_amount=underlying_amount,
                collateral_returned=result.collateral_returned,
            )
        )
        return result

    def transfer_option_shares(self, caller: str, handle: int, to: str, amount: int) -> None:
        escrow = self.get_escrow(handle)
        escrow.handle_transfer(self.address, caller, to, amount)
        self.events.emit(
            Transfer(
                escrow=escrow.address,
                sender=normalize_address(caller),
                recipient=normalize_address(to),
                amount=amount,
            )
        )

    # ------------------------------------------------------------------
    # Escrow owner operations
    # ------------------------------------------------------------------

    def reverse_mint(self, caller: str, handle: int, underlying_receiver: str, amount: int) -> None:
        escrow = self.get_escrow(handle)
        escrow.handle_reverse_mint(self.address, caller, underlying_receiver, amount)
        self.events.emit(
            ReverseMint(
                escrow=escrow.address,
                account=normalize_address(caller),
                underlying_receiver=normalize_address(underlying_receiver),
                amount=amount,
            )
        )

    def redeem(self, caller: str, handle: int, receiver: str) -> int:
        escrow = self.get_escrow(handle)
        amount = escrow.handle_redeem(self.address, caller, receiver)
        self.events.emit(
            Redeem(
                escrow=escrow.address,
                owner=normalize_address(caller),
                receiver=normalize_address(receiver),
                amount=amount,
            )
        )
        return amount

    def withdraw(self, caller: str, handle: int, receiver: str, token: str, amount: int) -> None:
        escrow = self.get_escrow(handle)
        escrow.handle_withdraw(self.address, caller, receiver, token, amount)
        self.events.emit(
            Withdraw(
                escrow=escrow.address,
                receiver=normalize_address(receiver),
                token=normalize_address(token),
                amount=amount,
            )
        )

    def transfer_escrow_ownership(self, caller: str, handle: int, new_owner: str) -> None:
        escrow = self.get_escrow(handle)
        old_owner = escrow.handle_transfer_ownership(self.address, caller, new_owner)
        self.events.emit(
            TransferOwnership(
                escrow=escrow.address, old_owner=old_owner, new_owner=escrow.owner
            )
        )

    def delegate_voting(self, caller: str, handle: int, delegatee: str) -> None:
        escrow = self.get_escrow(handle)
        escrow.handle_voting_delegation(self.address, caller, delegatee)
        self.events.emit(
            VotingDelegation(
                escrow=escrow.address,
                delegate=normalize_address(delegatee),
                registry=ZERO_ADDRESS,
                space_id="",
            )
        )

    def delegate_off_chain_voting(
        self, caller: str, handle: int, registry: str, space_id: str, delegate: str
    ) -> None:
        escrow = self.get_escrow(handle)
        registry_obj = self._delegate_registries.get(normalize_address(registry, "registry"))
        if registry_obj is None:
            raise InvalidAddress(f"Unknown delegate registry: {registry}")
        escrow.handle_off_chain_voting_delegation(
            self.address, caller, registry_obj, space_id, delegate
        )
        self.events.emit(
            VotingDelegation(
                escrow=escrow.address,
                delegate=normalize_address(delegate),
                registry=registry_obj.address,
                space_id=space_id,
            )
        )
