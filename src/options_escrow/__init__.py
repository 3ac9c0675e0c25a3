"""Options Escrow.

Escrow-based settlement of collateralized call options, created through a
decaying Dutch auction or by taking a maker's signed quote (RFQ).
"""

from . import errors
from .escrow import *  # noqa: F401,F403
from .escrow import __all__ as _escrow_all
from .events import EventLog
from .ledger import DelegateRegistry, TokenInfo, TokenLedger
from .oracle import (
    AppendOnlyOracleAdapter,
    FixedPriceOracle,
    ManualFeed,
    MutableOracleAdapter,
    PriceOracle,
    ReferenceCurrencyOracle,
    RoundData,
)
from .router import EscrowRouter, ResolvedRouterConfig, RouterConfig

__all__ = [
    *_escrow_all,
    "errors",
    "EventLog",
    "DelegateRegistry",
    "TokenInfo",
    "TokenLedger",
    "AppendOnlyOracleAdapter",
    "FixedPriceOracle",
    "ManualFeed",
    "MutableOracleAdapter",
    "PriceOracle",
    "ReferenceCurrencyOracle",
    "RoundData",
    "EscrowRouter",
    "ResolvedRouterConfig",
    "RouterConfig",
]
