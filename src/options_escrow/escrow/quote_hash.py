"""RFQ Quote Hashing.

The quote hash binds a maker's signature to:
- The chain (cross-chain replay protection via chain_id)
- Every option term, advanced settings included
- The premium and the quote's validity deadline

The same hash also derives the escrow that settles the quote, so a quote can
be consumed at most once.
"""

from eth_abi import encode
from eth_utils import keccak

from ..errors import InvalidAmount
from .types import OptionInfo, RFQInitialization
from .utils import MAX_UINT48, MAX_UINT64, MAX_UINT128, MAX_UINT256, normalize_address

OPTION_INFO_ABI_TYPE = (
    "(address,uint48,address,uint48,uint128,uint128,"
    "(uint64,address,bool,bool,address,bool,bool))"
)


def _check_range(name: str, value: int, maximum: int) -> None:
    if value < 0 or value > maximum:
        raise InvalidAmount(f"{name} out of range: {value}")


def encode_option_info(option_info: OptionInfo) -> tuple:
    """Return the option terms as an ABI tuple value."""
    settings = option_info.advanced_settings
    _check_range("expiry", option_info.expiry, MAX_UINT48)
    _check_range("earliest_exercise", option_info.earliest_exercise, MAX_UINT48)
    _check_range("notional", option_info.notional, MAX_UINT128)
    _check_range("strike", option_info.strike, MAX_UINT128)
    _check_range("borrow_cap", settings.borrow_cap, MAX_UINT64)
    return (
        normalize_address(option_info.underlying_token, "underlying token"),
        option_info.expiry,
        normalize_address(option_info.settlement_token, "settlement token"),
        option_info.earliest_exercise,
        option_info.notional,
        option_info.strike,
        (
            settings.borrow_cap,
            normalize_address(settings.oracle, "oracle"),
            settings.premium_token_is_underlying,
            settings.voting_delegation_allowed,
            normalize_address(settings.allowed_delegate_registry, "delegate registry"),
            settings.reverse_exercisable,
            settings.transferrable,
        ),
    )


def generate_quote_hash(rfq_initialization: RFQInitialization, chain_id: int) -> str:
    """Compute the message a maker signs for an RFQ quote.

    Args:
        rfq_initialization: Option terms and quote (the signature is ignored)
        chain_id: Chain the quote is valid on

    Returns:
        bytes32 hex string

    Raises:
        InvalidAmount: If a term does not fit its ABI width
        InvalidAddress: If an address term is malformed
    """
    quote = rfq_initialization.rfq_quote
    _check_range("premium", quote.premium, MAX_UINT256)
    _check_range("valid_until", quote.valid_until, MAX_UINT256)
    encoded = encode(
        ["uint256", OPTION_INFO_ABI_TYPE, "uint256", "uint256"],
        [
            chain_id,
            encode_option_info(rfq_initialization.option_info),
            quote.premium,
            quote.valid_until,
        ],
    )
    return "0x" + keccak(encoded).hex()


def verify_quote_hash(msg_hash: str, rfq_initialization: RFQInitialization, chain_id: int) -> bool:
    """Check that ``msg_hash`` is the hash of the given quote on ``chain_id``."""
    return generate_quote_hash(rfq_initialization, chain_id).lower() == msg_hash.lower()
