"""
API Route modules.

This package contains modular route files:
- cards: Registration, extraction, commit, listing
- storage: Signed uploads and storage stats
"""

from cardscan_backend.api.cards import router as cards_router
from cardscan_backend.api.storage import router as storage_router

__all__ = [
    'cards_router',
    'storage_router',
]
