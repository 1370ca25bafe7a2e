"""Local cache of object content.

Key components:
- CacheStore: Filesystem store with per-object locking and staged writes
- is_purgeable: Purge-window check used by the evictor
"""

from siabridge.cache.eviction import get_purge_remaining, is_purgeable
from siabridge.cache.store import CacheStore

__all__ = [
    "CacheStore",
    "is_purgeable",
    "get_purge_remaining",
]
