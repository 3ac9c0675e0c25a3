"""Escrow Types for the options escrow engine.

Option terms, auction parameters, quotes and the result records returned by
previews and settlement operations.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Optional

from .utils import ZERO_ADDRESS


class BidStatus(IntEnum):
    """Outcome of validating an auction bid, in check order."""

    SUCCESS = 0
    OPTION_ALREADY_MINTED = 1
    PREMIUM_TOO_LOW = 2
    SPOT_PRICE_TOO_LOW = 3
    OUT_OF_RANGE_SPOT_PRICE = 4
    INSUFFICIENT_FUNDING = 5


class QuoteStatus(IntEnum):
    """Outcome of validating an RFQ quote."""

    SUCCESS = 0
    EXPIRED = 1
    INVALID_OPTION_TERMS = 2
    QUOTE_ALREADY_USED = 3
    INVALID_SIGNATURE = 4
    SIGNER_MISMATCH = 5
    INVALID_CONTRACT_SIGNATURE = 6
    QUOTES_PAUSED = 7
    INSUFFICIENT_FUNDING = 8


class EscrowPhase(Enum):
    UNINITIALIZED = "uninitialized"
    AUCTION = "auction"
    MINTED = "minted"
    EXPIRED = "expired"


@dataclass(frozen=True)
class AdvancedSettings:
    """Per-option switches fixed at creation."""

    borrow_cap: int = 0
    """Fraction of notional (1e18 = 100%) that may be borrowed. 0 disables borrowing."""

    oracle: str = ZERO_ADDRESS
    """Address of the registered price oracle."""

    premium_token_is_underlying: bool = False
    """Premium is paid in the underlying instead of the settlement token."""

    voting_delegation_allowed: bool = False
    """Owner may delegate the voting power of the escrowed underlying."""

    allowed_delegate_registry: str = ZERO_ADDRESS
    """Off-chain delegate registry the owner may use (zero = none)."""

    reverse_exercisable: bool = False
    """Enables reverse exercise and reverse mint."""

    transferrable: bool = True
    """Option shares may move between holders."""

    @property
    def borrowing_allowed(self) -> bool:
        return self.borrow_cap > 0


@dataclass(frozen=True)
class OptionInfo:
    """Fixed terms of a minted option."""

    underlying_token: str
    """Asset locked as collateral and delivered on exercise."""

    settlement_token: str
    """Asset the exerciser pays in."""

    notional: int
    """Underlying amount covered by the option, in underlying units."""

    strike: int
    """Settlement units per one whole underlying unit."""

    earliest_exercise: int
    """Unix timestamp from which exercise is allowed."""

    expiry: int
    """Unix timestamp at which the option expires (exclusive)."""

    advanced_settings: AdvancedSettings = field(default_factory=AdvancedSettings)


@dataclass(frozen=True)
class AuctionParams:
    """Dutch auction parameters; strike and tenors are relative to the fill time."""

    rel_strike: int
    """Strike relative to the spot at fill time (1e18 = at the money)."""

    tenor: int
    """Seconds from fill to expiry."""

    earliest_exercise_tenor: int
    """Seconds from fill until exercise opens."""

    rel_premium_start: int
    """Ask at the start of the decay, relative to notional value."""

    rel_premium_floor: int
    """Ask once the decay has finished."""

    decay_duration: int
    """Seconds over which the ask decays linearly."""

    min_spot: int
    """Lowest oracle spot at which a bid is accepted (inclusive)."""

    max_spot: int
    """Highest oracle spot at which a bid is accepted (inclusive)."""

    decay_start_time: int
    """Unix timestamp at which the decay starts."""


@dataclass(frozen=True)
class AuctionInitialization:
    """Everything needed to open an auction escrow."""

    underlying_token: str
    settlement_token: str
    notional: int
    auction_params: AuctionParams
    advanced_settings: AdvancedSettings = field(default_factory=AdvancedSettings)


@dataclass(frozen=True)
class RFQQuote:
    """Maker's signed commitment to pay a premium for an option."""

    premium: int
    """Premium the maker pays, in the premium token."""

    valid_until: int
    """Unix timestamp after which the quote can no longer be taken."""

    signature: str = ""
    """EIP-191 signature over the quote hash (0x hex)."""

    eip1271_maker: str = ZERO_ADDRESS
    """Contract signer that vouches for the quote (zero for plain keys)."""


@dataclass(frozen=True)
class RFQInitialization:
    option_info: OptionInfo
    rfq_quote: RFQQuote


@dataclass(frozen=True)
class FeeSplit:
    """Fees carved out of a premium (or of minted shares)."""

    protocol_fee: int = 0
    dist_partner_fee: int = 0

    @property
    def total(self) -> int:
        return self.protocol_fee + self.dist_partner_fee


@dataclass(frozen=True)
class BidPreview:
    """Result of validating a bid; terms are only meaningful on SUCCESS."""

    status: BidStatus
    settlement_token: str = ZERO_ADDRESS
    strike: int = 0
    expiry: int = 0
    earliest_exercise: int = 0
    premium: int = 0
    premium_token: str = ZERO_ADDRESS
    oracle_spot_price: int = 0
    current_ask: int = 0
    match_fee_protocol: int = 0
    match_fee_dist_partner: int = 0
    dist_partner: str = ZERO_ADDRESS


@dataclass(frozen=True)
class QuoteVerification:
    status: QuoteStatus
    msg_hash: str
    signer: str = ZERO_ADDRESS


@dataclass(frozen=True)
class TakeQuotePreview:
    status: QuoteStatus
    msg_hash: str
    maker: str = ZERO_ADDRESS
    premium: int = 0
    premium_token: str = ZERO_ADDRESS
    match_fee_protocol: int = 0
    match_fee_dist_partner: int = 0
    dist_partner: str = ZERO_ADDRESS


@dataclass(frozen=True)
class BorrowResult:
    settlement_token: str
    collateral_amount: int
    collateral_fee: int


@dataclass(frozen=True)
class RepayResult:
    settlement_token: str
    collateral_returned: int


@dataclass(frozen=True)
class ExerciseResult:
    settlement_token: str
    settlement_amount: int
    fee: int
    underlying_delivered: int
    """Underlying actually received by the exerciser."""


@dataclass(frozen=True)
class ReverseExerciseResult:
    settlement_token: str
    settlement_returned: int
    fee: int


@dataclass
class EscrowState:
    """Mutable state of one escrow. Snapshotted for rollback."""

    initialized: bool = False
    owner: str = ZERO_ADDRESS
    option_minted: bool = False
    option_info: Optional[OptionInfo] = None
    auction_params: Optional[AuctionParams] = None
    auction_initialization: Optional[AuctionInitialization] = None
    dist_partner: str = ZERO_ADDRESS
    balances: Dict[str, int] = field(default_factory=dict)
    total_supply: int = 0
    borrowed_underlying: Dict[str, int] = field(default_factory=dict)
    borrowed_collateral: Dict[str, int] = field(default_factory=dict)
    total_borrowed: int = 0
    exercised_underlying: Dict[str, int] = field(default_factory=dict)
    voting_delegate: str = ZERO_ADDRESS
