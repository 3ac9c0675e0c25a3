"""Fee calculation and the fee handler.

Match fees are carved out of a premium and split between the protocol and
an optional distribution partner. Caps are enforced here by clamping: a
misconfigured handler changes the split, never the validity of a trade.
"""

import logging
import threading
from typing import Dict, Iterable, Optional, Protocol, Tuple, TYPE_CHECKING

from ..errors import InvalidArrayLength, InvalidFee, OwnableUnauthorizedAccount
from .types import FeeSplit
from .utils import (
    BASE,
    MAX_DIST_PARTNER_FEE,
    MAX_EXERCISE_FEE,
    MAX_MATCH_FEE,
    MAX_MINT_FEE,
    apply_rate,
    normalize_address,
)

if TYPE_CHECKING:
    from ..ledger import TokenLedger

logger = logging.getLogger(__name__)


def _split(amount: int, rate: int, dist_partner_share: int, total_cap: int) -> FeeSplit:
    total = min(apply_rate(amount, rate), apply_rate(amount, total_cap))
    dist_partner_fee = min(
        apply_rate(total, dist_partner_share),
        apply_rate(amount, MAX_DIST_PARTNER_FEE),
        total,
    )
    return FeeSplit(protocol_fee=total - dist_partner_fee, dist_partner_fee=dist_partner_fee)


def compute_fees(premium: int, match_fee_rate: int, dist_partner_share_rate: int) -> FeeSplit:
    """Split the match fee out of a premium.

    Args:
        premium: Premium amount in the premium token
        match_fee_rate: Match fee as a fraction of the premium (1e18 = 100%)
        dist_partner_share_rate: Share of the match fee owed to the partner

    Returns:
        FeeSplit with protocol and distribution partner fees. The total never
        exceeds 20% of the premium, and neither does the partner's part.
    """
    return _split(premium, match_fee_rate, dist_partner_share_rate, MAX_MATCH_FEE)


def compute_mint_fees(notional: int, mint_fee_rate: int, dist_partner_share_rate: int) -> FeeSplit:
    """Split the mint fee (paid in option shares) out of a notional."""
    return _split(notional, mint_fee_rate, dist_partner_share_rate, MAX_MINT_FEE)


def compute_exercise_fee(amount: int, exercise_fee_rate: int) -> int:
    """Fee charged on a settlement or collateral amount, capped at 0.5%."""
    return apply_rate(amount, min(exercise_fee_rate, MAX_EXERCISE_FEE))


class FeeInfoProvider(Protocol):
    """Where an escrow looks up fee rates and the protocol fee receiver."""

    def get_match_fee_info(self, dist_partner: str) -> Tuple[int, int]:
        """Return (match fee rate, distribution partner share)."""
        ...

    def get_exercise_fee(self) -> int:
        ...

    @property
    def fee_receiver(self) -> Optional[str]:
        """Address receiving protocol fees, None when fees are disabled."""
        ...


class FeeHandler:
    """Owner-managed fee configuration; its address receives protocol fees.

    Example:
        ```python
        handler = FeeHandler(address=fee_addr, owner=admin)
        handler.set_match_fee(admin, 10**16)  # 1%
        handler.set_dist_partner_fee_shares(admin, [partner], [5 * 10**17])
        router.set_fee_handler(router_owner, handler)
        ```
    """

    def __init__(
        self,
        address: str,
        owner: str,
        match_fee: int = 0,
        exercise_fee: int = 0,
        mint_fee: int = 0,
    ):
        self.address = normalize_address(address, "fee handler")
        self._owner = normalize_address(owner, "owner")
        self._lock = threading.Lock()
        self._dist_partner_fee_shares: Dict[str, int] = {}
        self._match_fee = 0
        self._exercise_fee = 0
        self._mint_fee = 0
        self.set_match_fee(self._owner, match_fee)
        self.set_exercise_fee(self._owner, exercise_fee)
        self.set_mint_fee(self._owner, mint_fee)

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def match_fee(self) -> int:
        return self._match_fee

    @property
    def exercise_fee(self) -> int:
        return self._exercise_fee

    @property
    def mint_fee(self) -> int:
        return self._mint_fee

    def _only_owner(self, caller: str) -> None:
        if normalize_address(caller, "caller") != self._owner:
            raise OwnableUnauthorizedAccount(caller)

    def set_match_fee(self, caller: str, match_fee: int) -> None:
        self._only_owner(caller)
        if match_fee < 0 or match_fee > MAX_MATCH_FEE:
            raise InvalidFee(f"Invalid match fee: {match_fee}")
        with self._lock:
            self._match_fee = match_fee
        logger.info("match fee set to %d", match_fee)

    def set_exercise_fee(self, caller: str, exercise_fee: int) -> None:
        self._only_owner(caller)
        if exercise_fee < 0 or exercise_fee > MAX_EXERCISE_FEE:
            raise InvalidFee(f"Invalid exercise fee: {exercise_fee}")
        with self._lock:
            self._exercise_fee = exercise_fee
        logger.info("exercise fee set to %d", exercise_fee)

    def set_mint_fee(self, caller: str, mint_fee: int) -> None:
        self._only_owner(caller)
        if mint_fee < 0 or mint_fee > MAX_MINT_FEE:
            raise InvalidFee(f"Invalid mint fee: {mint_fee}")
        with self._lock:
            self._mint_fee = mint_fee
        logger.info("mint fee set to %d", mint_fee)

    def set_dist_partner_fee_shares(
        self, caller: str, accounts: Iterable[str], fee_shares: Iterable[int]
    ) -> None:
        """Set the share of the match fee each distribution partner receives.

        A share of 0 removes the partner.
        """
        self._only_owner(caller)
        accounts = [normalize_address(a, "dist partner") for a in accounts]
        fee_shares = list(fee_shares)
        if not accounts or len(accounts) != len(fee_shares):
            raise InvalidArrayLength("accounts and fee shares must have equal, non-zero length")
        for share in fee_shares:
            if share < 0 or share > BASE:
                raise InvalidFee(f"Invalid dist partner fee share: {share}")
        with self._lock:
            for account, share in zip(accounts, fee_shares):
                if share:
                    self._dist_partner_fee_shares[account] = share
                else:
                    self._dist_partner_fee_shares.pop(account, None)
        logger.info("dist partner fee shares set for %d accounts", len(accounts))

    def dist_partner_fee_share(self, dist_partner: str) -> int:
        with self._lock:
            return self._dist_partner_fee_shares.get(
                normalize_address(dist_partner, "dist partner"), 0
            )

    def get_match_fee_info(self, dist_partner: str) -> Tuple[int, int]:
        return self._match_fee, self.dist_partner_fee_share(dist_partner)

    def get_mint_fee_info(self, dist_partner: str) -> Tuple[int, int]:
        return self._mint_fee, self.dist_partner_fee_share(dist_partner)

    def withdraw(self, caller: str, ledger: "TokenLedger", token: str, to: str, amount: int) -> None:
        """Withdraw collected fees."""
        self._only_owner(caller)
        ledger.transfer(token, self.address, to, amount)
        logger.info("fee handler withdrew %d of %s to %s", amount, token, to)
