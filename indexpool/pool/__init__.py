"""Self-rebalancing weighted index pool."""

from indexpool.pool.guard import ReentrancyGuard
from indexpool.pool.pool import IndexPool
from indexpool.pool.records import FlashLoanRecipient, TokenRecord, UnbindHandler

__all__ = [
    "IndexPool",
    "TokenRecord",
    "UnbindHandler",
    "FlashLoanRecipient",
    "ReentrancyGuard",
]
