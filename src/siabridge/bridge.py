"""SiaBridge: buckets and objects on a slow remote network that feel local.

Examples:
    >>> from siabridge import SiaBridge, BridgeConfig
    >>> with SiaBridge(BridgeConfig(cache_dir='.sia_cache')) as bridge:
    ...     bridge.create_bucket('photos')
    ...     bridge.put_object_from_file('cat.jpg', 'photos', 'cat.jpg', purge_after=86400)
    ...     with open('cat-copy.jpg', 'wb') as f:
    ...         bridge.get_object('photos', 'cat.jpg', f)
"""

import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from siabridge.cache.store import CacheStore
from siabridge.catalog.client import MetadataCatalog
from siabridge.catalog.models import BucketInfo, ObjectInfo
from siabridge.config import BridgeConfig
from siabridge.errors import BridgeError
from siabridge.manager import CacheManagerScheduler, Evictor, ManagerReport, Reconciler
from siabridge.remote.base import RemoteStorage
from siabridge.service import BytesLike, ObjectAccessService

logger = logging.getLogger(__name__)

# Seconds stop() waits for a running management pass before giving up on it
STOP_TIMEOUT_SEC = 10


def create_remote(config: BridgeConfig) -> RemoteStorage:
    """Build the remote storage client a configuration asks for."""
    if config.remote_url:
        from siabridge.remote.cloud import CloudFilesRemote

        return CloudFilesRemote(config.remote_url)

    from siabridge.remote.sia import SiaClient

    return SiaClient(config.siad_address, timeout=config.request_timeout)


class SiaBridge:
    """Bucket/object store with a local write-through cache.

    Each instance owns its catalog connection, cache store and background
    scheduler, so several bridges can run side by side.

    Attributes:
        config: Bridge configuration
        remote: Remote storage client
        catalog: Metadata catalog
        cache: Local cache store
        service: Object access service
        scheduler: Background reconciliation/eviction scheduler
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        remote: Optional[RemoteStorage] = None,
    ):
        """Initialize the bridge. Nothing touches disk until ``start``.

        Args:
            config: Bridge configuration (defaults if None)
            remote: Remote storage client (built from config if None)
        """
        self.config = config or BridgeConfig()
        self.remote = remote if remote is not None else create_remote(self.config)
        self.catalog = MetadataCatalog(self.config.db_file)
        self.cache = CacheStore(self.config.cache_dir, lock_timeout=self.config.lock_timeout)
        self.service = ObjectAccessService(self.catalog, self.cache, self.remote)
        self.scheduler = CacheManagerScheduler(
            Reconciler(self.catalog, self.remote),
            Evictor(self.catalog, self.cache),
            interval=self.config.manager_interval,
        )
        self._started = False

    @property
    def is_started(self) -> bool:
        """True between ``start`` and ``stop``."""
        return self._started

    def start(self) -> None:
        """Prepare the cache directory and catalog schema and start the scheduler.

        Safe to call more than once.
        """
        if self._started:
            return
        self.cache.ensure_dirs()
        self.catalog.initialize_schema()
        self.scheduler.start()
        self._started = True
        logger.info(
            f"Started SiaBridge (cache={self.config.cache_dir}, db={self.config.db_file})"
        )

    def stop(self) -> None:
        """Stop the scheduler and close the catalog.

        Waits up to STOP_TIMEOUT_SEC for a running management pass; a pass
        still blocked on the remote after that is left to finish on its own.
        """
        self.scheduler.stop(timeout=STOP_TIMEOUT_SEC)
        self.catalog.close()
        if self._started:
            logger.info("Stopped SiaBridge")
        self._started = False

    def __enter__(self) -> "SiaBridge":
        """Context manager entry; starts the bridge."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit; stops the bridge."""
        self.stop()

    def _require_started(self) -> None:
        if not self._started:
            raise BridgeError("SiaBridge is not started; call start() first")

    # =========================================================================
    # Buckets
    # =========================================================================

    def create_bucket(self, bucket: str) -> None:
        """Create a bucket. Creating an existing bucket succeeds."""
        self._require_started()
        self.service.create_bucket(bucket)

    def get_bucket_info(self, bucket: str) -> BucketInfo:
        """Get a bucket's record."""
        self._require_started()
        return self.service.get_bucket_info(bucket)

    def list_buckets(self) -> List[BucketInfo]:
        """List all buckets."""
        self._require_started()
        return self.service.list_buckets()

    def delete_bucket(self, bucket: str) -> None:
        """Delete a bucket and everything in it."""
        self._require_started()
        self.service.delete_bucket(bucket)

    # =========================================================================
    # Objects
    # =========================================================================

    def put_object(
        self,
        bucket: str,
        name: str,
        data: Union[BinaryIO, BytesLike],
        size: Optional[int] = None,
        purge_after: int = 0,
    ) -> ObjectInfo:
        """Store bytes or a stream as an object. See ObjectAccessService.put_object."""
        self._require_started()
        return self.service.put_object(bucket, name, data, size=size, purge_after=purge_after)

    def put_object_from_file(
        self,
        file_path: Union[str, Path],
        bucket: str,
        name: str,
        purge_after: int = 0,
    ) -> ObjectInfo:
        """Store a local file as an object."""
        self._require_started()
        return self.service.put_object_from_file(file_path, bucket, name, purge_after=purge_after)

    def get_object(self, bucket: str, name: str, writer: BinaryIO) -> int:
        """Write an object's content to ``writer``; returns the byte count."""
        self._require_started()
        return self.service.get_object(bucket, name, writer)

    def get_object_bytes(self, bucket: str, name: str) -> bytes:
        """Get an object's content as bytes."""
        self._require_started()
        return self.service.get_object_bytes(bucket, name)

    def delete_object(self, bucket: str, name: str) -> None:
        """Delete an object."""
        self._require_started()
        self.service.delete_object(bucket, name)

    def list_objects(self, bucket: str) -> List[ObjectInfo]:
        """List the objects in a bucket."""
        self._require_started()
        return self.service.list_objects(bucket)

    def get_object_info(self, bucket: str, name: str) -> ObjectInfo:
        """Get an object's record."""
        self._require_started()
        return self.service.get_object_info(bucket, name)

    # =========================================================================
    # Management
    # =========================================================================

    def run_manager(self) -> Optional[ManagerReport]:
        """Run one reconciliation and eviction pass now.

        Returns:
            The pass report, or None if a pass was already running
        """
        self._require_started()
        return self.scheduler.run_once()
