"""Background management of the catalog and cache.

Every ``interval`` seconds the scheduler runs two passes in order:

1. Reconciler: promote queued objects the remote reports available
2. Evictor: drop cached copies whose purge window has lapsed, and
   reclaim cache files that no longer have a catalog record

Both passes log and skip a failing object instead of stopping.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from siabridge.cache.eviction import is_purgeable
from siabridge.cache.store import CacheStore
from siabridge.catalog.client import MetadataCatalog
from siabridge.errors import CacheLockError
from siabridge.remote.base import RemoteStorage
from siabridge.utils import now_ts

logger = logging.getLogger(__name__)

# How many seconds to wait between management passes
MANAGER_DELAY_SEC = 30

# Staging files older than this were abandoned by an interrupted write
STALE_STAGING_SEC = 24 * 60 * 60


@dataclass
class ManagerReport:
    """Outcome of one management pass.

    Attributes:
        promoted: Objects marked durable
        evicted: Cached copies removed because their purge window lapsed
        orphans_removed: Cache files removed because they had no record
        failures: Objects (or whole passes) that failed and were skipped
    """

    promoted: int = 0
    evicted: int = 0
    orphans_removed: int = 0
    failures: int = 0


class Reconciler:
    """Promotes queued objects to durable once the remote confirms them."""

    def __init__(self, catalog: MetadataCatalog, remote: RemoteStorage):
        self.catalog = catalog
        self.remote = remote

    def run(self, report: Optional[ManagerReport] = None, now: Optional[int] = None) -> ManagerReport:
        """Check every pending upload against the remote availability listing.

        Args:
            report: Report to add counts to (a new one if None)
            now: Upload confirmation time in Unix seconds (defaults to now)

        Returns:
            The updated report
        """
        report = report if report is not None else ManagerReport()
        pending = self.catalog.list_pending_uploads()
        if not pending:
            return report

        available = self.remote.availability_map()
        at = now if now is not None else now_ts()

        for obj in pending:
            if not available.get(obj.key):
                continue
            try:
                if self.catalog.mark_uploaded(obj.bucket, obj.name, at=at):
                    report.promoted += 1
                    logger.info(f"{obj.key} is durable on the remote network")
            except Exception as e:
                report.failures += 1
                logger.error(f"Cannot mark {obj.key} uploaded: {e}")

        return report


class Evictor:
    """Removes cached copies that are no longer needed.

    Catalog records are never touched; only files in the cache are removed.
    """

    def __init__(
        self,
        catalog: MetadataCatalog,
        cache: CacheStore,
        stale_staging_age: float = STALE_STAGING_SEC,
    ):
        self.catalog = catalog
        self.cache = cache
        self.stale_staging_age = stale_staging_age

    def run(self, report: Optional[ManagerReport] = None, now: Optional[float] = None) -> ManagerReport:
        """Evict expired cached copies, then reclaim orphaned cache files.

        Args:
            report: Report to add counts to (a new one if None)
            now: Current time in Unix seconds (defaults to now)

        Returns:
            The updated report
        """
        report = report if report is not None else ManagerReport()
        try:
            self.evict_expired(report, now)
        except Exception as e:
            report.failures += 1
            logger.error(f"Error evicting expired cache entries: {e}")

        try:
            self.remove_orphans(report)
        except Exception as e:
            report.failures += 1
            logger.error(f"Error reclaiming orphaned cache files: {e}")

        try:
            removed = self.cache.remove_stale_staging(self.stale_staging_age, now)
            if removed:
                logger.info(f"Removed {removed} abandoned staging files")
        except OSError as e:
            report.failures += 1
            logger.warning(f"Cannot clean staging directory: {e}")

        return report

    def evict_expired(self, report: ManagerReport, now: Optional[float] = None) -> None:
        """Remove cached copies of durable objects past their purge window."""
        for bucket in self.catalog.list_buckets():
            try:
                objects = self.catalog.list_objects(bucket.name)
            except Exception as e:
                report.failures += 1
                logger.error(f"Cannot list objects of bucket {bucket.name}: {e}")
                continue

            for obj in objects:
                if not is_purgeable(obj, now):
                    continue
                try:
                    if self.cache.remove(obj.bucket, obj.name):
                        report.evicted += 1
                        logger.info(f"Evicted {obj.key} from cache")
                except Exception as e:
                    report.failures += 1
                    logger.error(f"Cannot evict {obj.key}: {e}")

    def remove_orphans(self, report: ManagerReport) -> None:
        """Remove cache files with no catalog record and directories of deleted buckets.

        Each file is checked under its object lock, so content being written
        by a Put (which holds the lock until its record exists) is skipped.
        """
        for bucket in self.cache.list_bucket_dirs():
            for name in list(self.cache.iter_cached(bucket)):
                try:
                    with self.cache.lock(bucket, name, timeout=0):
                        if self.catalog.object_exists(bucket, name):
                            continue
                        if self.cache.remove(bucket, name):
                            report.orphans_removed += 1
                            logger.info(f"Removed orphaned cache file {bucket}/{name}")
                except CacheLockError:
                    logger.debug(f"Skipping busy cache file {bucket}/{name}")
                except Exception as e:
                    report.failures += 1
                    logger.error(f"Cannot reclaim cache file {bucket}/{name}: {e}")

            try:
                bucket_dir = self.cache.bucket_path(bucket)
                if not self.catalog.bucket_exists(bucket) and not any(bucket_dir.iterdir()):
                    bucket_dir.rmdir()
                    logger.info(f"Removed cache directory of deleted bucket {bucket}")
            except FileNotFoundError:
                pass
            except Exception as e:
                report.failures += 1
                logger.error(f"Cannot remove cache directory of bucket {bucket}: {e}")


class CacheManagerScheduler:
    """Runs the reconciler and evictor periodically in a background thread.

    Passes never overlap: a pass requested while another is still running
    is skipped.

    Attributes:
        interval: Seconds between passes
    """

    def __init__(self, reconciler: Reconciler, evictor: Evictor, interval: float = MANAGER_DELAY_SEC):
        self.reconciler = reconciler
        self.evictor = evictor
        self.interval = interval
        self._stop_event = threading.Event()
        self._pass_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        """True while the background thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[ManagerReport]:
        """Run one reconciliation and eviction pass.

        Returns:
            The pass report, or None if another pass was already running
        """
        if not self._pass_lock.acquire(blocking=False):
            logger.warning("Previous management pass still running; skipping")
            return None

        try:
            report = ManagerReport()
            try:
                self.reconciler.run(report)
            except Exception as e:
                report.failures += 1
                logger.error(f"Error in upload reconciliation: {e}")

            try:
                self.evictor.run(report)
            except Exception as e:
                report.failures += 1
                logger.error(f"Error in cache eviction: {e}")

            logger.debug(f"Management pass finished: {report}")
            return report
        finally:
            self._pass_lock.release()

    def start(self) -> None:
        """Start the background thread (no-op if already running)."""
        if self.is_running:
            return
        # Each thread gets its own event, so a thread left behind by a timed-out
        # stop() still exits after its pass.
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._stop_event,),
            name="siabridge-manager",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Started cache manager (every {self.interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background thread.

        Args:
            timeout: Seconds to wait for a running pass to finish
                (None = wait as long as it takes)
        """
        self._stop_event.set()
        if self._thread is None:
            return
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(
                f"Management pass still running after {timeout}s; "
                "it will stop once the pass finishes"
            )
        self._thread = None

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            self.run_once()
