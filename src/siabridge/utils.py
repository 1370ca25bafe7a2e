"""Utility functions for siabridge."""

import time
from datetime import datetime, timezone
from typing import Optional

from siabridge.errors import InvalidNameError

# Directories inside the cache root that never hold object content
LOCKS_DIR = ".locks"
STAGING_DIR = ".staging"
RESERVED_DIRS = (LOCKS_DIR, STAGING_DIR)


def validate_bucket_name(bucket: str) -> str:
    """Check that a bucket name maps onto a single cache directory.

    Args:
        bucket: Bucket name

    Returns:
        The unchanged bucket name

    Raises:
        InvalidNameError: If the name is empty, contains a path separator,
            or starts with a dot

    Examples:
        >>> validate_bucket_name('photos')
        'photos'
    """
    if not isinstance(bucket, str) or not bucket:
        raise InvalidNameError("Bucket name must be a non-empty string")
    if "/" in bucket or "\\" in bucket or "\x00" in bucket:
        raise InvalidNameError(f"Bucket name may not contain path separators: {bucket!r}")
    if bucket.startswith("."):
        raise InvalidNameError(f"Bucket name may not start with '.': {bucket!r}")
    return bucket


def validate_object_name(name: str) -> str:
    """Check that an object name stays inside its bucket directory.

    Object names may contain ``/`` to form nested paths, but no segment may
    be empty, ``.`` or ``..``.

    Args:
        name: Object name

    Returns:
        The unchanged object name

    Raises:
        InvalidNameError: If the name would escape or collapse its bucket path

    Examples:
        >>> validate_object_name('2024/report.pdf')
        '2024/report.pdf'
    """
    if not isinstance(name, str) or not name:
        raise InvalidNameError("Object name must be a non-empty string")
    if "\\" in name or "\x00" in name:
        raise InvalidNameError(f"Object name contains illegal characters: {name!r}")
    for segment in name.split("/"):
        if segment in ("", ".", ".."):
            raise InvalidNameError(f"Object name has an invalid path segment: {name!r}")
    return name


def object_key(bucket: str, name: str) -> str:
    """Build the key an object is stored under on the remote network.

    Examples:
        >>> object_key('photos', 'cat.jpg')
        'photos/cat.jpg'
    """
    return f"{bucket}/{name}"


def now_ts() -> int:
    """Current time as whole Unix seconds."""
    return int(time.time())


def ts_to_datetime(ts: Optional[int]) -> Optional[datetime]:
    """Convert Unix seconds to a UTC-aware datetime (``None`` passes through)."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)
