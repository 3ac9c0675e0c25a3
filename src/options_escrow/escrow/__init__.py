"""Options Escrow core.

This module provides the pieces an escrow is built from:

Key components:
- Dutch auction ask curve and parameter validation
- Fee model (match, mint and exercise fees with hard caps) and FeeHandler
- RFQ quote hashing, signing and verification (keys and contract signers)
- The Escrow state machine

Example usage:
    ```python
    from options_escrow.escrow import (
        AdvancedSettings,
        OptionInfo,
        RFQInitialization,
        RFQQuote,
        QuoteVerifier,
        sign_rfq_quote,
    )
    import time

    now = int(time.time())
    rfq = RFQInitialization(
        option_info=OptionInfo(
            underlying_token="0x...",
            settlement_token="0x...",
            notional=10**18,
            strike=2_000_000_000,
            earliest_exercise=now,
            expiry=now + 30 * 86400,
            advanced_settings=AdvancedSettings(),
        ),
        rfq_quote=RFQQuote(premium=50_000_000, valid_until=now + 3600),
    )

    # Maker signs the quote
    signed = sign_rfq_quote("0x...", rfq, chain_id=1)

    # Anyone can verify it
    result = QuoteVerifier(chain_id=1).verify(signed, now=now)
    ```
"""

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
    QuoteStatus,
    QuoteVerification,
    RepayResult,
    ReverseExerciseResult,
    RFQInitialization,
    RFQQuote,
    TakeQuotePreview,
)
from .auction import (
    auction_initialization_problem,
    current_ask,
    validate_auction_initialization,
)
from .fees import (
    FeeHandler,
    FeeInfoProvider,
    compute_exercise_fee,
    compute_fees,
    compute_mint_fees,
)
from .quote_hash import generate_quote_hash, verify_quote_hash
from .signing import (
    EIP1271_MAGIC_VALUE,
    ContractSigner,
    DelegatedQuoteMaker,
    MessageSigner,
    QuoteVerifier,
    recover_quote_signer,
    sign_quote_hash,
    sign_rfq_quote,
    sign_rfq_quote_with_signer,
)
from .state_machine import Escrow, option_info_problem, validate_option_info
from .utils import (
    BASE,
    MAX_DIST_PARTNER_FEE,
    MAX_EXERCISE_FEE,
    MAX_MATCH_FEE,
    MAX_MINT_FEE,
    MIN_TIME_BETWEEN_EARLIEST_EXERCISE_AND_EXPIRY,
    ZERO_ADDRESS,
    apply_rate,
    format_rel,
    format_units,
    normalize_address,
    parse_units,
    system_clock,
)

__all__ = [
    # Types
    "AdvancedSettings",
    "AuctionInitialization",
    "AuctionParams",
    "BidPreview",
    "BidStatus",
    "BorrowResult",
    "EscrowPhase",
    "EscrowState",
    "ExerciseResult",
    "FeeSplit",
    "OptionInfo",
    "QuoteStatus",
    "QuoteVerification",
    "RepayResult",
    "ReverseExerciseResult",
    "RFQInitialization",
    "RFQQuote",
    "TakeQuotePreview",
    # Auction
    "auction_initialization_problem",
    "current_ask",
    "validate_auction_initialization",
    # Fees
    "FeeHandler",
    "FeeInfoProvider",
    "compute_exercise_fee",
    "compute_fees",
    "compute_mint_fees",
    # Quotes
    "generate_quote_hash",
    "verify_quote_hash",
    "EIP1271_MAGIC_VALUE",
    "ContractSigner",
    "DelegatedQuoteMaker",
    "MessageSigner",
    "QuoteVerifier",
    "recover_quote_signer",
    "sign_quote_hash",
    "sign_rfq_quote",
    "sign_rfq_quote_with_signer",
    # State machine
    "Escrow",
    "option_info_problem",
    "validate_option_info",
    # Utils
    "BASE",
    "MAX_DIST_PARTNER_FEE",
    "MAX_EXERCISE_FEE",
    "MAX_MATCH_FEE",
    "MAX_MINT_FEE",
    "MIN_TIME_BETWEEN_EARLIEST_EXERCISE_AND_EXPIRY",
    "ZERO_ADDRESS",
    "apply_rate",
    "format_rel",
    "format_units",
    "normalize_address",
    "parse_units",
    "system_clock",
]
