"""Quote Signing and Verification for RFQ matching.

Makers sign the quote hash (see ``quote_hash``) with an EIP-191 personal
signature. Two kinds of makers are supported:
- Plain keys (eth_account.Account, or any async MessageSigner)
- Contract signers that vouch for a hash via ``is_valid_signature``
  (EIP-1271 style), e.g. ``DelegatedQuoteMaker``

``QuoteVerifier`` tries direct key recovery first and falls back to the
contract signer, so callers never need to know which kind of maker signed.
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, Iterable, Optional, Protocol, Set

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import decode_hex, to_hex

from ..errors import OwnableUnauthorizedAccount
from .quote_hash import generate_quote_hash
from .types import QuoteStatus, QuoteVerification, RFQInitialization
from .utils import is_zero_address, normalize_address

logger = logging.getLogger(__name__)

EIP1271_MAGIC_VALUE = bytes.fromhex("1626ba7e")
EIP1271_INVALID_VALUE = bytes.fromhex("ffffffff")


def sign_quote_hash(private_key: str, msg_hash: str) -> str:
    """Sign a 32-byte quote hash with EIP-191 using a private key.

    Returns:
        Signature as 0x-prefixed hex string (65 bytes)
    """
    signed_message = Account.sign_message(encode_defunct(hexstr=msg_hash), private_key)
    return to_hex(signed_message.signature)


def sign_rfq_quote(
    private_key: str,
    rfq_initialization: RFQInitialization,
    chain_id: int,
) -> RFQInitialization:
    """Sign an RFQ quote using a private key.

    Use this when you have direct access to the maker's private key.

    Args:
        private_key: Private key (hex string with or without 0x prefix)
        rfq_initialization: Option terms and quote to sign
        chain_id: Chain ID the quote is valid on

    Returns:
        A copy of ``rfq_initialization`` whose quote carries the signature
    """
    msg_hash = generate_quote_hash(rfq_initialization, chain_id)
    signature = sign_quote_hash(private_key, msg_hash)
    return replace(
        rfq_initialization,
        rfq_quote=replace(rfq_initialization.rfq_quote, signature=signature),
    )


class MessageSigner(Protocol):
    """Protocol for signers that can produce EIP-191 signatures."""

    async def get_address(self) -> str:
        """Get the signer's address."""
        ...

    async def sign_message(self, message_hash: str) -> str:
        """Sign a 32-byte hash with an EIP-191 personal signature.

        Args:
            message_hash: 0x-prefixed hex hash

        Returns:
            Signature as hex string
        """
        ...


async def sign_rfq_quote_with_signer(
    signer: MessageSigner,
    rfq_initialization: RFQInitialization,
    chain_id: int,
) -> RFQInitialization:
    """Sign an RFQ quote using any compatible signer.

    Use this with wallet integrations that never expose the private key.

    Args:
        signer: Signer that implements the MessageSigner protocol
        rfq_initialization: Option terms and quote to sign
        chain_id: Chain ID the quote is valid on

    Returns:
        A copy of ``rfq_initialization`` whose quote carries the signature
    """
    msg_hash = generate_quote_hash(rfq_initialization, chain_id)
    signature = await signer.sign_message(msg_hash)
    return replace(
        rfq_initialization,
        rfq_quote=replace(rfq_initialization.rfq_quote, signature=signature),
    )


def recover_quote_signer(msg_hash: str, signature: str) -> Optional[str]:
    """Recover the key that signed ``msg_hash``.

    Returns:
        Checksum address, or None if the signature is malformed
    """
    if not signature:
        return None
    try:
        return Account.recover_message(
            encode_defunct(hexstr=msg_hash), signature=decode_hex(signature)
        )
    except Exception:
        return None


class ContractSigner(Protocol):
    """A maker whose signatures are validated by code rather than a key."""

    address: str
    quotes_paused: bool

    def is_valid_signature(self, msg_hash: bytes, signature: bytes) -> bytes:
        """Return EIP1271_MAGIC_VALUE if the signature is acceptable."""
        ...


class DelegatedQuoteMaker:
    """Contract-style maker that accepts quotes signed by authorized keys.

    The maker's own address holds the funds and receives the options; any
    key in ``signers`` may quote on its behalf. Quoting can be paused by the
    owner.
    """

    def __init__(self, address: str, owner: str, signers: Iterable[str] = ()):
        self.address = normalize_address(address, "maker")
        self.owner = normalize_address(owner, "owner")
        self._signers: Set[str] = {normalize_address(s, "signer") for s in signers}
        self._quotes_paused = False
        self._lock = threading.Lock()

    @property
    def quotes_paused(self) -> bool:
        return self._quotes_paused

    def _only_owner(self, caller: str) -> None:
        if normalize_address(caller, "caller") != self.owner:
            raise OwnableUnauthorizedAccount(caller)

    def add_signer(self, caller: str, signer: str) -> None:
        self._only_owner(caller)
        with self._lock:
            self._signers.add(normalize_address(signer, "signer"))

    def remove_signer(self, caller: str, signer: str) -> None:
        self._only_owner(caller)
        with self._lock:
            self._signers.discard(normalize_address(signer, "signer"))

    def toggle_pause_quotes(self, caller: str) -> bool:
        """Flip the pause switch and return the new state."""
        self._only_owner(caller)
        with self._lock:
            self._quotes_paused = not self._quotes_paused
            paused = self._quotes_paused
        logger.info("maker %s quotes paused: %s", self.address, paused)
        return paused

    def is_valid_signature(self, msg_hash: bytes, signature: bytes) -> bytes:
        recovered = recover_quote_signer(to_hex(msg_hash), to_hex(signature))
        with self._lock:
            if recovered is not None and recovered in self._signers:
                return EIP1271_MAGIC_VALUE
        return EIP1271_INVALID_VALUE


class KeyRecoveryStrategy:
    """Accept the signer recovered directly from the signature."""

    def attempt(self, msg_hash: str, signature: str, claimed: Optional[str]) -> Optional[str]:
        recovered = recover_quote_signer(msg_hash, signature)
        if recovered is None:
            return None
        if claimed is None or recovered == claimed:
            return recovered
        return None


class ContractSignerStrategy:
    """Accept the claimed signer if it is a contract signer that vouches for the hash."""

    def __init__(self, lookup: Callable[[str], Optional[ContractSigner]]):
        self._lookup = lookup

    def attempt(self, msg_hash: str, signature: str, claimed: Optional[str]) -> Optional[str]:
        if claimed is None:
            return None
        contract = self._lookup(claimed)
        if contract is None:
            return None
        try:
            signature_bytes = decode_hex(signature)
        except (ValueError, TypeError):
            return None
        if contract.is_valid_signature(decode_hex(msg_hash), signature_bytes) == EIP1271_MAGIC_VALUE:
            return normalize_address(contract.address, "maker")
        return None


class QuoteVerifier:
    """Verifies RFQ quotes for one chain.

    Example:
        ```python
        verifier = QuoteVerifier(chain_id=1)
        result = verifier.verify(signed_rfq, now=int(time.time()))
        if result.status == QuoteStatus.SUCCESS:
            maker = result.signer
        ```
    """

    def __init__(
        self,
        chain_id: int,
        contract_signer_lookup: Optional[Callable[[str], Optional[ContractSigner]]] = None,
    ):
        self.chain_id = chain_id
        self._contract_signer_lookup = contract_signer_lookup or (lambda address: None)
        self._strategies = (
            KeyRecoveryStrategy(),
            ContractSignerStrategy(self._contract_signer_lookup),
        )

    def quote_hash(self, rfq_initialization: RFQInitialization) -> str:
        return generate_quote_hash(rfq_initialization, self.chain_id)

    def verify(
        self,
        rfq_initialization: RFQInitialization,
        now: int,
        expected_signer: Optional[str] = None,
    ) -> QuoteVerification:
        """Check a quote's deadline and signature.

        Args:
            rfq_initialization: Signed option terms and quote
            now: Current unix timestamp
            expected_signer: Maker the caller expects; defaults to the quote's
                contract signer, or to whoever signed it

        Returns:
            QuoteVerification with the status and, on success, the maker
        """
        quote = rfq_initialization.rfq_quote
        msg_hash = self.quote_hash(rfq_initialization)

        if now > quote.valid_until or now >= rfq_initialization.option_info.expiry:
            return QuoteVerification(QuoteStatus.EXPIRED, msg_hash)

        claimed: Optional[str] = None
        if expected_signer is not None:
            claimed = normalize_address(expected_signer, "expected signer")
        elif not is_zero_address(quote.eip1271_maker):
            claimed = normalize_address(quote.eip1271_maker, "eip1271 maker")

        for strategy in self._strategies:
            signer = strategy.attempt(msg_hash, quote.signature, claimed)
            if signer is not None:
                return QuoteVerification(QuoteStatus.SUCCESS, msg_hash, signer)

        if claimed is not None and self._contract_signer_lookup(claimed) is not None:
            status = QuoteStatus.INVALID_CONTRACT_SIGNATURE
        elif recover_quote_signer(msg_hash, quote.signature) is None:
            status = QuoteStatus.INVALID_SIGNATURE
        else:
            status = QuoteStatus.SIGNER_MISMATCH
        logger.info("quote %s rejected: %s", msg_hash, status.name)
        return QuoteVerification(status, msg_hash)
