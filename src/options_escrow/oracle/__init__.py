"""Price oracles for the options escrow engine."""

from .adapter import (
    AppendOnlyOracleAdapter,
    MutableOracleAdapter,
    ReferenceCurrencyOracle,
)
from .feeds import (
    AggregatorFeed,
    FixedPriceOracle,
    ManualFeed,
    PriceOracle,
    RoundData,
)

__all__ = [
    "AggregatorFeed",
    "AppendOnlyOracleAdapter",
    "FixedPriceOracle",
    "ManualFeed",
    "MutableOracleAdapter",
    "PriceOracle",
    "ReferenceCurrencyOracle",
    "RoundData",
]
