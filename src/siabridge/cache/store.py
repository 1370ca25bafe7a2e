"""Local cache store mirroring ``<cache_dir>/<bucket>/<name>``.

The cache store owns object bytes on disk. A cached file is also the
staging buffer the remote network uploads from, so content is fsynced
before it becomes visible at its final path.
"""

import errno
import hashlib
import logging
import os
import shutil
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Generator, Iterator, List, Optional, Tuple

from filelock import FileLock, Timeout

from siabridge.errors import (
    AlreadyCachedError,
    CacheDiskFullError,
    CacheError,
    CacheLockError,
)
from siabridge.utils import LOCKS_DIR, RESERVED_DIRS, STAGING_DIR

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


class CacheStore:
    """Filesystem cache of object content.

    Writers for the same (bucket, name) are serialized with a file lock
    under ``<cache_dir>/.locks``, which also works across processes.
    Content is staged under ``<cache_dir>/.staging`` and renamed into place.

    Examples:
        >>> store = CacheStore(Path('.sia_cache'))
        >>> with store.lock('photos', 'cat.jpg'):
        ...     store.write('photos', 'cat.jpg', open('cat.jpg', 'rb'))
    """

    def __init__(self, cache_dir: Path, lock_timeout: float = 30):
        """Initialize the cache store.

        Args:
            cache_dir: Root directory for cached content
            lock_timeout: Seconds to wait for a per-object lock
        """
        self.cache_dir = Path(cache_dir)
        self.lock_dir = self.cache_dir / LOCKS_DIR
        self.staging_dir = self.cache_dir / STAGING_DIR
        self.lock_timeout = lock_timeout

    def ensure_dirs(self) -> None:
        """Create the cache root, lock and staging directories.

        Raises:
            CacheError: If the directories cannot be created
        """
        try:
            for directory in (self.cache_dir, self.lock_dir, self.staging_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Cannot create cache directory at {self.cache_dir}: {e}") from e

    def path_for(self, bucket: str, name: str) -> Path:
        """Get the cache path for an object."""
        return self.cache_dir / bucket / name

    def bucket_path(self, bucket: str) -> Path:
        """Get the cache directory of a bucket."""
        return self.cache_dir / bucket

    def _get_lock_path(self, bucket: str, name: str) -> Path:
        key_hash = hashlib.md5(f"{bucket}/{name}".encode()).hexdigest()
        return self.lock_dir / f"{key_hash}.lock"

    @contextmanager
    def lock(
        self, bucket: str, name: str, timeout: Optional[float] = None
    ) -> Generator[None, None, None]:
        """Hold the per-object lock.

        Args:
            bucket: Bucket name
            name: Object name
            timeout: Seconds to wait (defaults to lock_timeout; 0 = don't wait;
                negative = wait until the lock is free)

        Raises:
            CacheLockError: If the lock is not acquired in time
        """
        timeout = self.lock_timeout if timeout is None else timeout
        lock_path = self._get_lock_path(bucket, name)
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Cannot create cache lock directory at {self.lock_dir}: {e}") from e

        try:
            with FileLock(lock_path, timeout=timeout):
                yield
        except Timeout as e:
            raise CacheLockError(
                f"Timeout acquiring lock for {bucket}/{name} after {timeout} seconds"
            ) from e

    def exists(self, bucket: str, name: str) -> bool:
        """Check whether an object has cached content."""
        return self.path_for(bucket, name).is_file()

    def _check_disk_space(self, required_bytes: int) -> None:
        """Raise CacheDiskFullError if the cache filesystem lacks room."""
        try:
            available = shutil.disk_usage(self.cache_dir).free
        except OSError as e:
            logger.warning(f"Could not check disk space: {e}")
            return

        if available < required_bytes:
            raise CacheDiskFullError(
                f"Insufficient disk space: {available} bytes available, "
                f"{required_bytes} bytes required"
            )

    def new_staging_path(self) -> Path:
        """Get a fresh, unused path in the staging directory."""
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Cannot create staging directory {self.staging_dir}: {e}") from e
        return self.staging_dir / f"{uuid.uuid4().hex}.tmp"

    def stage(self, reader: BinaryIO, expected_size: Optional[int] = None) -> Tuple[Path, int]:
        """Copy a stream into a new staging file and sync it to disk.

        Args:
            reader: Binary stream to copy
            expected_size: Size hint used for the disk-space check

        Returns:
            Tuple of (staging path, bytes written)

        Raises:
            CacheDiskFullError: If the disk fills up
            CacheError: On any other filesystem error
        """
        if expected_size:
            self._check_disk_space(expected_size)

        temp_path = self.new_staging_path()
        try:
            with open(temp_path, "wb") as f:
                shutil.copyfileobj(reader, f, COPY_CHUNK_SIZE)
                f.flush()
                os.fsync(f.fileno())
                written = f.tell()
        except OSError as e:
            self.discard(temp_path)
            if e.errno == errno.ENOSPC:
                raise CacheDiskFullError(f"Disk full while staging {temp_path.name}") from e
            raise CacheError(f"Cannot write staging file {temp_path}: {e}") from e
        except BaseException:
            self.discard(temp_path)
            raise

        return temp_path, written

    def publish(self, temp_path: Path, bucket: str, name: str) -> Path:
        """Move a staged file to an object's cache path.

        Callers must hold ``lock(bucket, name)``.

        Args:
            temp_path: Staged file produced by ``stage`` or a download
            bucket: Bucket name
            name: Object name

        Returns:
            Final cache path

        Raises:
            AlreadyCachedError: If the object already has cached content
            CacheError: On filesystem errors
        """
        cache_path = self.path_for(bucket, name)
        if cache_path.exists():
            raise AlreadyCachedError(f"Object already cached: {bucket}/{name}")

        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(temp_path, cache_path)
        except OSError as e:
            raise CacheError(f"Cannot finalize cache file {cache_path}: {e}") from e

        return cache_path

    def write(
        self,
        bucket: str,
        name: str,
        reader: BinaryIO,
        expected_size: Optional[int] = None,
    ) -> int:
        """Write an object's content to the cache.

        The bucket directory is created if needed. Existing content is never
        overwritten, since it may belong to a write already in progress.
        Callers must hold ``lock(bucket, name)``.

        Args:
            bucket: Bucket name
            name: Object name
            reader: Binary stream with the content
            expected_size: Size hint used for the disk-space check

        Returns:
            Number of bytes written

        Raises:
            AlreadyCachedError: If the object already has cached content
            CacheError: On filesystem errors
        """
        if self.exists(bucket, name):
            raise AlreadyCachedError(f"Object already cached: {bucket}/{name}")

        temp_path, written = self.stage(reader, expected_size)
        try:
            self.publish(temp_path, bucket, name)
        except CacheError:
            self.discard(temp_path)
            raise

        logger.debug(f"Cached {written} bytes for {bucket}/{name}")
        return written

    def open(self, bucket: str, name: str) -> Optional[BinaryIO]:
        """Open an object's cached content for reading.

        Returns:
            Open binary file, or None if the object is not cached

        Raises:
            CacheError: If the file exists but cannot be read
        """
        try:
            return open(self.path_for(bucket, name), "rb")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheError(f"Cannot read cached object {bucket}/{name}: {e}") from e

    def remove(self, bucket: str, name: str) -> bool:
        """Remove an object's cached content. A missing file is not an error.

        Returns:
            True if a file was removed

        Raises:
            CacheError: If the file exists but cannot be removed
        """
        cache_path = self.path_for(bucket, name)
        try:
            cache_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheError(f"Cannot remove cached object {bucket}/{name}: {e}") from e

        self._prune_empty_dirs(cache_path.parent, self.bucket_path(bucket))
        return True

    def remove_bucket(self, bucket: str) -> bool:
        """Remove a bucket's whole cache directory.

        Returns:
            True if a directory was removed

        Raises:
            CacheError: If the directory exists but cannot be removed
        """
        bucket_dir = self.bucket_path(bucket)
        if not bucket_dir.exists():
            return False
        try:
            shutil.rmtree(bucket_dir)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheError(f"Cannot remove cache directory {bucket_dir}: {e}") from e
        return True

    def list_bucket_dirs(self) -> List[str]:
        """Names of the bucket directories present in the cache."""
        if not self.cache_dir.exists():
            return []
        return sorted(
            entry.name
            for entry in self.cache_dir.iterdir()
            if entry.is_dir() and entry.name not in RESERVED_DIRS
        )

    def iter_cached(self, bucket: str) -> Iterator[str]:
        """Yield the names of all objects cached for a bucket."""
        bucket_dir = self.bucket_path(bucket)
        if not bucket_dir.is_dir():
            return
        for path in sorted(bucket_dir.rglob("*")):
            if path.is_file():
                yield path.relative_to(bucket_dir).as_posix()

    def remove_stale_staging(self, max_age: float, now: Optional[float] = None) -> int:
        """Delete staging files left behind by interrupted writes.

        Args:
            max_age: Minimum age in seconds of a staging file to delete
            now: Current time in Unix seconds (defaults to now)

        Returns:
            Number of files removed
        """
        if not self.staging_dir.is_dir():
            return 0

        now = time.time() if now is None else now
        removed = 0
        for path in self.staging_dir.iterdir():
            try:
                if now - path.stat().st_mtime > max_age:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        return removed

    def _prune_empty_dirs(self, directory: Path, stop: Path) -> None:
        # Remove now-empty intermediate directories of nested object names
        while directory != stop and stop in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    @staticmethod
    def discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clean up temp file {path}: {e}")
