"""
textbridge: SMS/iMessage bridge between Sendblue and a conversational backend.

Ingests inbound messages by polling and by webhook, processes each exactly
once, enforces a sender access policy, relays backend replies and reconciles
the delivery status of everything it sends.
"""

__version__ = "0.1.0"

from .core import IngestionPipeline, ProviderClient, ReplyBackend

__all__ = [
    "IngestionPipeline",
    "ProviderClient",
    "ReplyBackend",
]
