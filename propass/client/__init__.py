"""Client-side pieces of the redemption protocol."""

from .api import EntitlementClient, RedeemResult, SessionSnapshot
from .pending import JsonPendingStore, MemoryPendingStore, PendingRedemption
from .reconciler import ClientReconciler, ReconcilerState

__all__ = [
    "ClientReconciler",
    "EntitlementClient",
    "JsonPendingStore",
    "MemoryPendingStore",
    "PendingRedemption",
    "ReconcilerState",
    "RedeemResult",
    "SessionSnapshot",
]
