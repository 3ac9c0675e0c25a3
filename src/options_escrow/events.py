"""Event records emitted by the router, escrows and oracle adapters.

Each event is a frozen dataclass carrying the full economic tuple of the
operation that produced it. ``EventLog`` keeps them in emission order and
logs them.
"""

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Type, TypeVar

from .escrow.types import AuctionInitialization, OptionInfo

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")


@dataclass(frozen=True)
class Event:
    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.name, **asdict(self)}


@dataclass(frozen=True)
class CreateAuction(Event):
    escrow_owner: str
    escrow: str
    handle: int
    auction_initialization: AuctionInitialization
    dist_partner: str


@dataclass(frozen=True)
class BidOnAuction(Event):
    escrow: str
    rel_bid: int
    bidder: str
    option_receiver: str
    ref_spot: int
    premium: int
    match_fee_protocol: int
    match_fee_dist_partner: int
    dist_partner: str


@dataclass(frozen=True)
class TakeQuote(Event):
    escrow_owner: str
    escrow: str
    handle: int
    maker: str
    option_info: OptionInfo
    premium: int
    match_fee_protocol: int
    match_fee_dist_partner: int
    msg_hash: str


@dataclass(frozen=True)
class MintOption(Event):
    option_receiver: str
    escrow_owner: str
    escrow: str
    handle: int
    option_info: OptionInfo
    mint_fee_protocol: int
    mint_fee_dist_partner: int


@dataclass(frozen=True)
class Borrow(Event):
    escrow: str
    borrower: str
    underlying_receiver: str
    underlying_amount: int
    collateral_amount: int
    collateral_fee: int


@dataclass(frozen=True)
class Repay(Event):
    escrow: str
    borrower: str
    collateral_receiver: str
    underlying_amount: int
    collateral_returned: int


@dataclass(frozen=True)
class Exercise(Event):
    escrow: str
    exerciser: str
    underlying_receiver: str
    underlying_amount: int
    pay_in_settlement_token: bool
    settlement_amount: int
    fee: int


@dataclass(frozen=True)
class ReverseExercise(Event):
    escrow: str
    account: str
    settlement_receiver: str
    underlying_amount: int
    settlement_returned: int
    fee: int


@dataclass(frozen=True)
class ReverseMint(Event):
    escrow: str
    account: str
    underlying_receiver: str
    amount: int


@dataclass(frozen=True)
class Redeem(Event):
    escrow: str
    owner: str
    receiver: str
    amount: int


@dataclass(frozen=True)
class Withdraw(Event):
    escrow: str
    receiver: str
    token: str
    amount: int


@dataclass(frozen=True)
class WithdrawFromEscrowAndCreateAuction(Event):
    old_escrow: str
    new_escrow: str
    escrow_owner: str
    handle: int
    auction_initialization: AuctionInitialization


@dataclass(frozen=True)
class Transfer(Event):
    escrow: str
    sender: str
    recipient: str
    amount: int


@dataclass(frozen=True)
class TransferOwnership(Event):
    escrow: str
    old_owner: str
    new_owner: str


@dataclass(frozen=True)
class NewFeeHandler(Event):
    old_fee_handler: str
    new_fee_handler: str


@dataclass(frozen=True)
class VotingDelegation(Event):
    escrow: str
    delegate: str
    registry: str
    space_id: str


@dataclass(frozen=True)
class OracleMappingAdded(Event):
    oracle: str
    asset: str
    feed: str


class EventLog:
    """Append-only, thread-safe list of emitted events."""

    def __init__(self):
        self._events: List[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)
        logger.info("%s %s", event.name, event)

    def all(self) -> List[Event]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: Type[E]) -> List[E]:
        with self._lock:
            return [e for e in self._events if isinstance(e, event_type)]

    def last(self, event_type: Optional[Type[E]] = None) -> Optional[Event]:
        events = self.of_type(event_type) if event_type else self.all()
        return events[-1] if events else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
