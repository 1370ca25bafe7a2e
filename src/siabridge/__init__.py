"""siabridge: immediate-feeling buckets and objects on the Sia storage network."""

__version__ = "0.1.0"

from siabridge.bridge import SiaBridge
from siabridge.catalog.models import BucketInfo, ObjectInfo
from siabridge.config import BridgeConfig
from siabridge.errors import (
    AlreadyCachedError,
    BridgeError,
    BucketNotFoundError,
    CacheError,
    ConflictError,
    IncompleteUploadError,
    NotFoundError,
    ObjectNotFoundError,
    PersistenceError,
    RemoteStorageError,
)

__all__ = [
    "SiaBridge",
    "BridgeConfig",
    "BucketInfo",
    "ObjectInfo",
    "BridgeError",
    "NotFoundError",
    "BucketNotFoundError",
    "ObjectNotFoundError",
    "ConflictError",
    "IncompleteUploadError",
    "RemoteStorageError",
    "PersistenceError",
    "CacheError",
    "AlreadyCachedError",
    "__version__",
]
