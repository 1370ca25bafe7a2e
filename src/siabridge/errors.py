"""Exception types raised by siabridge.

Every public operation either returns a value or raises one of these.
Errors from sqlite, the filesystem and the remote network are wrapped
and chained, so the original exception is always available as
``__cause__``.
"""

from typing import Optional


class BridgeError(Exception):
    """Base exception for all siabridge errors."""

    pass


class InvalidNameError(BridgeError, ValueError):
    """Raised when a bucket or object name cannot be stored safely."""

    pass


class NotFoundError(BridgeError):
    """Raised when a bucket or object does not exist."""

    pass


class BucketNotFoundError(NotFoundError):
    """Raised when a bucket does not exist."""

    pass


class ObjectNotFoundError(NotFoundError):
    """Raised when an object does not exist in its bucket."""

    pass


class ConflictError(BridgeError):
    """Raised when an object with the same bucket and name already exists."""

    pass


class IncompleteUploadError(BridgeError):
    """Raised when fetching an object that is not cached and not yet durable."""

    pass


class RemoteStorageError(BridgeError):
    """Raised when the remote storage network rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(BridgeError):
    """Raised when the metadata catalog cannot be read or written."""

    pass


class CacheError(BridgeError):
    """Base exception for local cache filesystem errors."""

    pass


class AlreadyCachedError(CacheError):
    """Raised when writing an object that already has cached content."""

    pass


class CacheLockError(CacheError):
    """Raised when unable to acquire a per-object cache lock."""

    pass


class CacheDiskFullError(CacheError):
    """Raised when the disk is full and content cannot be cached."""

    pass
