"""
DocVault: integrity core for citizen documents that are sealed on the
holder's device, anchored by hash on an append-only ledger, and shared as
scannable verification payloads.

The HTTP service lives in ``docvault.app``; ``DocumentVault`` is the
holder-side entry point.
"""

__all__ = [
    "DocumentRecord",
    "DocumentVault",
    "SharedDocument",
]

from .app.domain.documents import DocumentRecord
from .vault import DocumentVault, SharedDocument

__version__ = "0.1.0"
