"""Router modules for the options escrow engine."""

from .escrow_router import (
    DEFAULT_CHAIN_ID,
    EscrowRouter,
    ResolvedRouterConfig,
    RouterConfig,
)

__all__ = [
    "DEFAULT_CHAIN_ID",
    "EscrowRouter",
    "ResolvedRouterConfig",
    "RouterConfig",
]
