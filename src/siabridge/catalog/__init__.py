"""Persistent catalog of bucket and object metadata.

Key components:
- MetadataCatalog: SQLite-backed catalog operations
- BucketInfo, ObjectInfo: Records returned by the catalog
"""

from siabridge.catalog.client import MetadataCatalog
from siabridge.catalog.models import BucketInfo, ObjectInfo

__all__ = [
    "MetadataCatalog",
    "BucketInfo",
    "ObjectInfo",
]
