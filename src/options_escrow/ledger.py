"""In-memory token ledger.

Stands in for the host ledger's fungible assets: balances, decimals,
transfers and voting delegation. ``atomic()`` journals every balance change
made by the current thread so a failed operation can be reverted in full.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Tuple

from .errors import InsufficientBalance, InvalidAddress, InvalidAmount
from .escrow.utils import ZERO_ADDRESS, normalize_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenInfo:
    address: str
    decimals: int
    symbol: str = ""


class TokenLedger:
    """Balances of registered tokens, keyed by checksum address."""

    def __init__(self):
        self._tokens: Dict[str, TokenInfo] = {}
        self._balances: Dict[str, Dict[str, int]] = {}
        self._delegates: Dict[Tuple[str, str], str] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    # -- tokens -------------------------------------------------------------

    def register_token(self, address: str, decimals: int, symbol: str = "") -> str:
        """Register a token and return its checksum address."""
        token = normalize_address(address, "token")
        if int(token, 16) == 0:
            raise InvalidAddress("Token cannot be the zero address")
        if decimals < 0:
            raise InvalidAmount(f"Invalid decimals: {decimals}")
        with self._lock:
            self._tokens[token] = TokenInfo(token, decimals, symbol)
            self._balances.setdefault(token, {})
        return token

    def token_info(self, token: str) -> TokenInfo:
        token = normalize_address(token, "token")
        info = self._tokens.get(token)
        if info is None:
            raise InvalidAddress(f"Unknown token: {token}")
        return info

    def decimals(self, token: str) -> int:
        return self.token_info(token).decimals

    # -- balances -----------------------------------------------------------

    def balance_of(self, token: str, account: str) -> int:
        token = self.token_info(token).address
        account = normalize_address(account, "account")
        with self._lock:
            return self._balances[token].get(account, 0)

    def mint(self, token: str, account: str, amount: int) -> None:
        """Credit ``amount`` out of thin air (faucet for devnets and tests)."""
        if amount < 0:
            raise InvalidAmount(f"Invalid mint amount: {amount}")
        token = self.token_info(token).address
        account = normalize_address(account, "account")
        with self._lock:
            self._adjust(token, account, amount)

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        """Move ``amount`` of ``token`` from ``sender`` to ``recipient``.

        Raises:
            InvalidAmount: If amount is negative
            InvalidAddress: If the recipient is the zero address
            InsufficientBalance: If the sender cannot cover the amount
        """
        if amount < 0:
            raise InvalidAmount(f"Invalid transfer amount: {amount}")
        token = self.token_info(token).address
        sender = normalize_address(sender, "sender")
        recipient = normalize_address(recipient, "recipient")
        if recipient == ZERO_ADDRESS:
            raise InvalidAddress("Cannot transfer to the zero address")
        if amount == 0:
            return
        with self._lock:
            balance = self._balances[token].get(sender, 0)
            if balance < amount:
                raise InsufficientBalance(token, sender, balance, amount)
            self._adjust(token, sender, -amount)
            self._adjust(token, recipient, amount)
        logger.debug("transfer %s %s -> %s: %d", token, sender, recipient, amount)

    # -- voting delegation --------------------------------------------------

    def delegate(self, token: str, holder: str, delegatee: str) -> None:
        token = self.token_info(token).address
        holder = normalize_address(holder, "holder")
        delegatee = normalize_address(delegatee, "delegatee")
        with self._lock:
            self._delegates[(token, holder)] = delegatee

    def delegates(self, token: str, holder: str) -> str:
        token = self.token_info(token).address
        holder = normalize_address(holder, "holder")
        with self._lock:
            return self._delegates.get((token, holder), ZERO_ADDRESS)

    # -- atomicity ----------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Revert every balance change made in the block if it raises.

        Blocks nest; an inner failure reverts only the inner block's changes
        unless the exception propagates further.

        Only the current thread's changes are journaled. Isolation covers the
        accounts its caller serializes (an escrow's own balances under the
        escrow lock); if another thread spent funds credited in the block,
        nothing is reverted and ``InsufficientBalance`` is raised instead.
        """
        journals: List[List[Tuple[str, str, int]]] = self._journals()
        journal: List[Tuple[str, str, int]] = []
        journals.append(journal)
        try:
            yield
        except Exception as exc:
            with self._lock:
                reverted: Dict[Tuple[str, str], int] = {}
                for token, account, delta in journal:
                    key = (token, account)
                    if key not in reverted:
                        reverted[key] = self._balances[token].get(account, 0)
                    reverted[key] -= delta
                for (token, account), balance in reverted.items():
                    if balance < 0:
                        current = self._balances[token].get(account, 0)
                        logger.error(
                            "ledger rollback would leave %s %s at %d", token, account, balance
                        )
                        raise InsufficientBalance(
                            token, account, current, current - balance
                        ) from exc
                for (token, account), balance in reverted.items():
                    self._balances[token][account] = balance
            logger.debug("ledger rollback: %d balance changes reverted", len(journal))
            raise
        finally:
            journals.pop()
        if journals:
            journals[-1].extend(journal)

    def _journals(self) -> List[List[Tuple[str, str, int]]]:
        journals = getattr(self._local, "journals", None)
        if journals is None:
            journals = []
            self._local.journals = journals
        return journals

    def _adjust(self, token: str, account: str, delta: int) -> None:
        balances = self._balances[token]
        balances[account] = balances.get(account, 0) + delta
        journals = self._journals()
        if journals:
            journals[-1].append((token, account, delta))


class DelegateRegistry:
    """Off-chain voting delegate registry (one delegate per account and space)."""

    def __init__(self, address: str):
        self.address = normalize_address(address, "registry")
        self._delegations: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def set_delegate(self, account: str, space_id: str, delegate: str) -> None:
        account = normalize_address(account, "account")
        delegate = normalize_address(delegate, "delegate")
        with self._lock:
            self._delegations[(account, space_id)] = delegate
        logger.info("delegate for %s in %s set to %s", account, space_id, delegate)

    def delegation(self, account: str, space_id: str) -> str:
        account = normalize_address(account, "account")
        with self._lock:
            return self._delegations.get((account, space_id), ZERO_ADDRESS)
