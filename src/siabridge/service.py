"""Object access service: bucket and object operations.

Coordinates the metadata catalog, the local cache and the remote network.
Each object moves Absent -> Queued -> Durable -> Deleted:

- Queued: bytes cached, record inserted, upload accepted by the remote
- Durable: the reconciler saw the remote report the object available

Reads prefer the local cache and only go to the remote for durable objects.
"""

import io
import logging
import os
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from siabridge.cache.store import COPY_CHUNK_SIZE, CacheStore
from siabridge.catalog.client import MetadataCatalog
from siabridge.catalog.models import BucketInfo, ObjectInfo
from siabridge.errors import (
    AlreadyCachedError,
    BridgeError,
    BucketNotFoundError,
    CacheError,
    ConflictError,
    IncompleteUploadError,
    ObjectNotFoundError,
    RemoteStorageError,
)
from siabridge.remote.base import RemoteStorage
from siabridge.utils import object_key, validate_bucket_name, validate_object_name

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]

# filelock timeout that blocks until the lock is free
WAIT_FOREVER = -1


def _copy_stream(src: BinaryIO, dst: BinaryIO) -> int:
    """Copy a binary stream and return the number of bytes copied."""
    copied = 0
    while True:
        chunk = src.read(COPY_CHUNK_SIZE)
        if not chunk:
            return copied
        dst.write(chunk)
        copied += len(chunk)


class ObjectAccessService:
    """Put/Get/Delete/List over catalog, cache and remote storage.

    Attributes:
        catalog: Metadata catalog (owns bucket/object records)
        cache: Local cache store (owns object bytes)
        remote: Remote storage client
    """

    def __init__(self, catalog: MetadataCatalog, cache: CacheStore, remote: RemoteStorage):
        self.catalog = catalog
        self.cache = cache
        self.remote = remote

    # =========================================================================
    # Buckets
    # =========================================================================

    def create_bucket(self, bucket: str) -> bool:
        """Create a bucket; creating an existing bucket succeeds and does nothing.

        Returns:
            True if the bucket was created
        """
        validate_bucket_name(bucket)
        created = self.catalog.create_bucket(bucket)
        if created:
            logger.info(f"Created bucket {bucket}")
        return created

    def get_bucket_info(self, bucket: str) -> BucketInfo:
        """Get a bucket record.

        Raises:
            BucketNotFoundError: If the bucket does not exist
        """
        return self.catalog.get_bucket(bucket)

    def list_buckets(self) -> List[BucketInfo]:
        """List all buckets."""
        return self.catalog.list_buckets()

    def delete_bucket(self, bucket: str) -> List[ObjectInfo]:
        """Delete a bucket, its object records, its cache directory and its remote objects.

        The catalog records are removed first. Cache and remote cleanup
        continue past individual failures; the first failure is raised
        once every object has been attempted.

        Returns:
            Object records that were in the bucket

        Raises:
            BucketNotFoundError: If the bucket does not exist
            CacheError: If the cache directory could not be removed
            RemoteStorageError: If a remote delete failed
        """
        objects = self.catalog.delete_bucket(bucket)
        logger.info(f"Deleted bucket {bucket} with {len(objects)} objects")

        errors: List[BridgeError] = []
        try:
            self.cache.remove_bucket(bucket)
        except CacheError as e:
            logger.error(f"Cannot remove cache directory of bucket {bucket}: {e}")
            errors.append(e)

        for obj in objects:
            try:
                self.remote.delete(obj.key)
            except RemoteStorageError as e:
                logger.error(f"Remote delete of {obj.key} failed: {e}")
                errors.append(e)

        if errors:
            if len(errors) > 1:
                logger.error(f"{len(errors)} cleanup steps failed deleting bucket {bucket}")
            raise errors[0]
        return objects

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
        """Store an object and queue it for upload.

        The bytes are cached and synced first, then the record is inserted
        and the upload submitted, so the object can be read back from the
        cache immediately. If the remote rejects the upload request, the
        record and cached bytes are removed again and the Put may be retried.

        Args:
            bucket: Bucket name (must exist)
            name: Object name
            data: Bytes or a binary stream
            size: Expected size in bytes (defaults to the length of ``data``)
            purge_after: Seconds without uploads or fetches after which the
                cached copy may be evicted (0 = keep cached forever)

        Returns:
            The queued object record

        Raises:
            ConflictError: If the object already exists
            BucketNotFoundError: If the bucket does not exist
            CacheError: If the bytes could not be cached or the stream did
                not contain ``size`` bytes
            RemoteStorageError: If the upload request was rejected
        """
        validate_bucket_name(bucket)
        validate_object_name(name)
        if purge_after < 0:
            raise ValueError(f"purge_after must be >= 0, got {purge_after}")
        if size is not None and size < 0:
            raise ValueError(f"size must be >= 0, got {size}")

        if isinstance(data, (bytes, bytearray, memoryview)):
            if size is None:
                size = len(data)
            data = io.BytesIO(data)

        with self.cache.lock(bucket, name):
            if self.catalog.object_exists(bucket, name):
                raise ConflictError(
                    f"Object with same name already exists in bucket: {bucket}/{name}"
                )
            if not self.catalog.bucket_exists(bucket):
                raise BucketNotFoundError(f"Bucket does not exist: {bucket}")

            # "a" and "a/b" would need the same cache path as a file and a directory
            other = self.catalog.find_path_conflict(bucket, name)
            if other is not None:
                raise ConflictError(
                    f"Object name {name} collides with existing object {other} "
                    f"in bucket {bucket}"
                )
            if self._cache_path_blocked(bucket, name):
                raise ConflictError(
                    f"Cache still holds content of deleted objects at the path of "
                    f"{bucket}/{name}; retry after the cache manager reclaims it"
                )

            # Content without a record was left behind by a delete
            if self.cache.remove(bucket, name):
                logger.info(f"Reclaimed orphaned cache file for {bucket}/{name}")

            written = self.cache.write(bucket, name, data, expected_size=size)
            if size is not None and written != size:
                self._discard_cached(bucket, name)
                raise CacheError(
                    f"Expected {size} bytes for {bucket}/{name}, received {written}"
                )

            try:
                info = self.catalog.insert_object(bucket, name, written, purge_after=purge_after)
            except BridgeError:
                self._discard_cached(bucket, name)
                raise

            key = object_key(bucket, name)
            try:
                self.remote.upload(key, self.cache.path_for(bucket, name))
            except RemoteStorageError as e:
                logger.error(f"Upload request for {key} failed, rolling back: {e}")
                self._rollback_put(bucket, name)
                raise

        logger.info(f"Queued {key} ({written} bytes) for upload")
        return info

    def put_object_from_file(
        self,
        file_path: Union[str, Path],
        bucket: str,
        name: str,
        purge_after: int = 0,
    ) -> ObjectInfo:
        """Store a local file as an object; the size is taken from the file.

        Raises:
            CacheError: If the file cannot be read
        """
        file_path = Path(file_path)
        try:
            size = os.stat(file_path).st_size
            f = open(file_path, "rb")
        except OSError as e:
            raise CacheError(f"Cannot read {file_path}: {e}") from e

        with f:
            return self.put_object(bucket, name, f, size=size, purge_after=purge_after)

    def get_object(self, bucket: str, name: str, writer: BinaryIO) -> int:
        """Write an object's content to ``writer``.

        Served from the cache when possible. Otherwise a durable object is
        downloaded back into the cache first. A Get that finds another Get
        already restoring the object blocks until that download finishes,
        then serves the restored copy.

        Args:
            bucket: Bucket name
            name: Object name
            writer: Binary stream to write to

        Returns:
            Number of bytes written

        Raises:
            ObjectNotFoundError: If the object does not exist
            IncompleteUploadError: If the object is neither cached nor durable
            RemoteStorageError: If the download failed
        """
        info = self.catalog.get_object(bucket, name)

        cached = self.cache.open(bucket, name)
        if cached is not None:
            return self._serve_cached(info, cached, writer)

        if not info.is_durable:
            raise IncompleteUploadError(
                f"Attempting to download incomplete file from remote: {info.key}"
            )

        # Wait for as long as a concurrent restore of the same object takes
        with self.cache.lock(bucket, name, timeout=WAIT_FOREVER):
            # Another reader may have restored it while we waited
            cached = self.cache.open(bucket, name)
            if cached is None:
                restored = self._restore_from_remote(info)

        if cached is not None:
            return self._serve_cached(info, cached, writer)

        with restored:
            copied = _copy_stream(restored, writer)
        if not self.catalog.increment_remote_fetch(bucket, name):
            logger.debug(f"{info.key} was deleted while being fetched")
        return copied

    def get_object_bytes(self, bucket: str, name: str) -> bytes:
        """Get an object's content as bytes."""
        buffer = io.BytesIO()
        self.get_object(bucket, name, buffer)
        return buffer.getvalue()

    def delete_object(self, bucket: str, name: str) -> None:
        """Delete an object's record and ask the remote to delete it.

        The cached copy is left for the evictor to reclaim.

        Raises:
            ObjectNotFoundError: If the object does not exist
            RemoteStorageError: If the remote delete failed
        """
        self.catalog.delete_object(bucket, name)
        key = object_key(bucket, name)
        logger.info(f"Deleted {key}")
        self.remote.delete(key)

    def list_objects(self, bucket: str) -> List[ObjectInfo]:
        """List the objects in a bucket."""
        return self.catalog.list_objects(bucket)

    def get_object_info(self, bucket: str, name: str) -> ObjectInfo:
        """Get an object record.

        Raises:
            ObjectNotFoundError: If the object does not exist
        """
        return self.catalog.get_object(bucket, name)

    # =========================================================================
    # Internals
    # =========================================================================

    def _serve_cached(self, info: ObjectInfo, cached: BinaryIO, writer: BinaryIO) -> int:
        with cached:
            copied = _copy_stream(cached, writer)
        if not self.catalog.increment_cached_fetch(info.bucket, info.name):
            logger.debug(f"{info.key} was deleted while being fetched")
        return copied

    def _restore_from_remote(self, info: ObjectInfo) -> BinaryIO:
        """Download a durable object into the cache and return an open handle to it.

        Callers must hold the object's cache lock.
        """
        temp_path = self.cache.new_staging_path()
        try:
            self.remote.download(info.key, temp_path)
            try:
                restored = open(temp_path, "rb")
            except OSError as e:
                raise CacheError(f"Cannot read downloaded {info.key}: {e}") from e
            try:
                self.cache.publish(temp_path, info.bucket, info.name)
            except AlreadyCachedError:
                pass
            except CacheError:
                restored.close()
                raise
        finally:
            self.cache.discard(temp_path)

        logger.info(f"Restored {info.key} to cache from remote")
        return restored

    def _cache_path_blocked(self, bucket: str, name: str) -> bool:
        # A directory at the object's path, or a file at one of its parents
        path = self.cache.path_for(bucket, name)
        if path.is_dir():
            return True
        bucket_dir = self.cache.bucket_path(bucket)
        return any(parent.is_file() for parent in path.parents if bucket_dir in parent.parents)

    def _discard_cached(self, bucket: str, name: str) -> None:
        try:
            self.cache.remove(bucket, name)
        except CacheError as e:
            logger.warning(f"Failed to remove cached {bucket}/{name}: {e}")

    def _rollback_put(self, bucket: str, name: str) -> None:
        try:
            self.catalog.delete_object(bucket, name)
        except ObjectNotFoundError:
            pass
        except BridgeError as e:
            logger.error(f"Failed to remove record for {bucket}/{name} during rollback: {e}")
        self._discard_cached(bucket, name)
