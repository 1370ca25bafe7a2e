"""Purge-window arithmetic for cached objects."""

import time
from datetime import datetime
from typing import Optional

from siabridge.catalog.models import ObjectInfo


def seconds_since(moment: datetime, now: Optional[float] = None) -> float:
    """Seconds elapsed between a timestamp and now.

    Args:
        moment: Timezone-aware timestamp
        now: Current time in Unix seconds (defaults to now)
    """
    now = time.time() if now is None else now
    return now - moment.timestamp()


def is_purgeable(obj: ObjectInfo, now: Optional[float] = None) -> bool:
    """Check whether an object's cached copy may be evicted.

    Only durable objects with a non-zero purge window qualify, and only once
    both the upload and the most recent fetch are older than the window.
    An object that was never fetched is judged by its upload time alone.

    Args:
        obj: Object record
        now: Current time in Unix seconds (defaults to now)

    Returns:
        True if the cached copy may be removed
    """
    if obj.purge_after <= 0 or obj.uploaded is None:
        return False

    since_uploaded = seconds_since(obj.uploaded, now)
    if obj.last_fetch is None:
        since_fetched = since_uploaded
    else:
        since_fetched = seconds_since(obj.last_fetch, now)

    return since_uploaded > obj.purge_after and since_fetched > obj.purge_after


def get_purge_remaining(obj: ObjectInfo, now: Optional[float] = None) -> Optional[int]:
    """Get seconds remaining until an object's cached copy becomes purgeable.

    Returns:
        Seconds remaining (0 if already purgeable), or None if the object is
        never purged or not yet durable
    """
    if obj.purge_after <= 0 or obj.uploaded is None:
        return None

    since_uploaded = seconds_since(obj.uploaded, now)
    if obj.last_fetch is None:
        since_fetched = since_uploaded
    else:
        since_fetched = seconds_since(obj.last_fetch, now)

    remaining = obj.purge_after - min(since_uploaded, since_fetched)
    return max(0, int(remaining))
