"""
Core ingestion-and-reconciliation engine for textbridge.

Exports:
- IngestionPipeline: single chokepoint both intake paths feed into
- Deduplicator, AccessGuard, RateLimiter: the pipeline's and receiver's guards
- Poller, DeliveryStatusReconciler: periodic producers/consumers
- ProviderClient, ReplyBackend: protocols for the external collaborators
- Store: persistent store for dedup claims and outbound status
"""

from .access import AccessGuard, AccessMode, AccessPolicy
from .capabilities import ProviderClient, ReplyBackend
from .dedup import Deduplicator
from .pipeline import IngestionPipeline
from .poller import Poller
from .rate_limit import RateLimiter
from .reconciler import DeliveryStatusReconciler
from .store import Store

__all__ = [
    "AccessGuard",
    "AccessMode",
    "AccessPolicy",
    "ProviderClient",
    "ReplyBackend",
    "Deduplicator",
    "IngestionPipeline",
    "Poller",
    "RateLimiter",
    "DeliveryStatusReconciler",
    "Store",
]
