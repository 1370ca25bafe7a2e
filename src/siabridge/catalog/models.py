"""Data models for buckets and objects in the metadata catalog."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from siabridge.catalog.schema import NEVER_FETCHED, NOT_UPLOADED
from siabridge.utils import ts_to_datetime


@dataclass(frozen=True)
class BucketInfo:
    """A bucket record.

    Attributes:
        name: Unique bucket name
        created: When the bucket was created
    """

    name: str
    created: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BucketInfo":
        """Create a BucketInfo from a database row."""
        return cls(name=row["name"], created=ts_to_datetime(row["created"]))


@dataclass(frozen=True)
class ObjectInfo:
    """An object record and its lifecycle counters.

    Attributes:
        bucket: Bucket the object is stored in
        name: Object name, unique within the bucket
        size: Size in bytes
        queued: When the object was accepted and queued for upload
        uploaded: When the remote network confirmed the object durable,
            or None while it is still queued
        purge_after: Seconds of upload/fetch inactivity after which the
            cached copy may be evicted (0 = keep in cache forever)
        cached_fetches: Fetches served from the local cache
        sia_fetches: Fetches served from the remote network
        last_fetch: Time of the most recent fetch, or None if never fetched
    """

    bucket: str
    name: str
    size: int
    queued: datetime
    uploaded: Optional[datetime]
    purge_after: int
    cached_fetches: int
    sia_fetches: int
    last_fetch: Optional[datetime]

    @property
    def is_durable(self) -> bool:
        """True once the remote network has confirmed the object available."""
        return self.uploaded is not None

    @property
    def key(self) -> str:
        """Remote object key (``bucket/name``)."""
        return f"{self.bucket}/{self.name}"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ObjectInfo":
        """Create an ObjectInfo from a database row."""
        uploaded = row["uploaded"]
        last_fetch = row["last_fetch"]
        return cls(
            bucket=row["bucket"],
            name=row["name"],
            size=row["size"],
            queued=ts_to_datetime(row["queued"]),
            uploaded=None if uploaded == NOT_UPLOADED else ts_to_datetime(uploaded),
            purge_after=row["purge_after"],
            cached_fetches=row["cached_fetches"],
            sia_fetches=row["sia_fetches"],
            last_fetch=None if last_fetch == NEVER_FETCHED else ts_to_datetime(last_fetch),
        )
