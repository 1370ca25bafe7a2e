"""Tests for upload reconciliation, cache eviction and the scheduler."""

import io
import threading
import time
from unittest.mock import Mock, patch

import pytest

from siabridge.errors import CacheError, PersistenceError, RemoteStorageError
from siabridge.manager import (
    CacheManagerScheduler,
    Evictor,
    ManagerReport,
    Reconciler,
)


@pytest.fixture
def reconciler(catalog, fake_remote):
    return Reconciler(catalog, fake_remote)


@pytest.fixture
def evictor(catalog, cache):
    return Evictor(catalog, cache)


@pytest.fixture
def photos(service):
    """Service with an empty 'photos' bucket."""
    service.create_bucket("photos")
    return service


class TestReconciler:
    """Test promoting queued objects to durable."""

    def test_nothing_pending_skips_remote(self, reconciler, fake_remote):
        """With no pending uploads the remote is not queried."""
        report = reconciler.run()

        assert report.promoted == 0
        assert fake_remote.calls == []

    def test_promotes_available_objects(self, photos, reconciler, fake_remote):
        """Only objects the remote reports available are promoted."""
        photos.put_object("photos", "a.jpg", b"a")
        photos.put_object("photos", "b.jpg", b"b")
        fake_remote.make_available("photos/a.jpg")

        report = reconciler.run(now=5000)

        assert report.promoted == 1
        assert photos.get_object_info("photos", "a.jpg").uploaded.timestamp() == 5000
        assert photos.get_object_info("photos", "b.jpg").is_durable is False

    def test_second_pass_is_noop(self, photos, reconciler, fake_remote):
        """Durable objects are not looked at again."""
        photos.put_object("photos", "a.jpg", b"a")
        fake_remote.make_available()
        reconciler.run(now=5000)
        fake_remote.calls.clear()

        report = reconciler.run(now=6000)

        assert report.promoted == 0
        assert fake_remote.calls == []
        assert photos.get_object_info("photos", "a.jpg").uploaded.timestamp() == 5000

    def test_listing_failure_propagates(self, photos, reconciler, fake_remote):
        """A failed listing aborts the pass without changing records."""
        photos.put_object("photos", "a.jpg", b"a")
        fake_remote.make_available()
        fake_remote.fail_list = True

        with pytest.raises(RemoteStorageError):
            reconciler.run()

        assert photos.get_object_info("photos", "a.jpg").is_durable is False


    def test_failing_object_does_not_stop_others(self, photos, reconciler, fake_remote):
        """An object that cannot be promoted is counted and the rest still are."""
        photos.put_object("photos", "a.jpg", b"a")
        photos.put_object("photos", "b.jpg", b"b")
        fake_remote.make_available()
        mark_uploaded = photos.catalog.mark_uploaded

        def flaky_mark(bucket, name, at=None):
            if name == "a.jpg":
                raise PersistenceError("disk I/O error")
            return mark_uploaded(bucket, name, at=at)

        with patch.object(photos.catalog, "mark_uploaded", side_effect=flaky_mark):
            report = reconciler.run(now=5000)

        assert report.promoted == 1
        assert report.failures == 1
        assert photos.get_object_info("photos", "a.jpg").is_durable is False
        assert photos.get_object_info("photos", "b.jpg").is_durable


class TestEvictor:
    """Test eviction of cached copies and orphan reclamation."""

    def test_evicts_expired_durable_object(self, photos, evictor):
        """A durable object past its purge window loses its cached copy only."""
        photos.put_object("photos", "cat.jpg", b"meow", purge_after=60)
        photos.catalog.mark_uploaded("photos", "cat.jpg", at=1000)

        assert evictor.run(now=1030).evicted == 0
        assert photos.cache.exists("photos", "cat.jpg")

        report = evictor.run(now=1061)

        assert report.evicted == 1
        assert not photos.cache.exists("photos", "cat.jpg")
        assert photos.catalog.object_exists("photos", "cat.jpg")

    def test_keeps_pending_and_unpurged_objects(self, photos, evictor):
        """Objects not yet durable or with no purge window stay cached."""
        photos.put_object("photos", "pending.jpg", b"p", purge_after=60)
        photos.put_object("photos", "forever.jpg", b"f", purge_after=0)
        photos.catalog.mark_uploaded("photos", "forever.jpg", at=1000)

        report = evictor.run(now=10_000_000)

        assert report.evicted == 0
        assert photos.cache.exists("photos", "pending.jpg")
        assert photos.cache.exists("photos", "forever.jpg")

    def test_recent_fetch_delays_eviction(self, photos, evictor):
        """A fetch inside the window keeps the cached copy."""
        photos.put_object("photos", "cat.jpg", b"meow", purge_after=60)
        photos.catalog.mark_uploaded("photos", "cat.jpg", at=1000)
        photos.catalog.increment_cached_fetch("photos", "cat.jpg", at=1050)

        assert evictor.run(now=1070).evicted == 0
        assert evictor.run(now=1111).evicted == 1

    def test_removes_orphaned_files(self, photos, evictor):
        """Cached files without a record are reclaimed."""
        photos.cache.write("photos", "orphan.jpg", io.BytesIO(b"o"))
        photos.put_object("photos", "kept.jpg", b"k")

        report = evictor.run()

        assert report.orphans_removed == 1
        assert not photos.cache.exists("photos", "orphan.jpg")
        assert photos.cache.exists("photos", "kept.jpg")

    def test_removes_directory_of_deleted_bucket(self, service, evictor):
        """Cache directories of buckets that no longer exist are removed."""
        service.cache.write("gone", "nested/file.bin", io.BytesIO(b"x"))

        report = evictor.run()

        assert report.orphans_removed == 1
        assert not service.cache.bucket_path("gone").exists()

    def test_skips_locked_files(self, photos, evictor):
        """A file whose object lock is held is left alone."""
        photos.cache.write("photos", "busy.jpg", io.BytesIO(b"b"))

        with photos.cache.lock("photos", "busy.jpg"):
            report = evictor.run()

        assert report.orphans_removed == 0
        assert report.failures == 0
        assert photos.cache.exists("photos", "busy.jpg")

    def test_removes_stale_staging_files(self, catalog, cache):
        """Abandoned staging files are removed after their age limit."""
        leftover = cache.new_staging_path()
        leftover.write_bytes(b"partial")

        Evictor(catalog, cache, stale_staging_age=10).run(now=time.time() + 100)

        assert not leftover.exists()


    def test_failing_eviction_does_not_stop_others(self, photos, evictor):
        """A cached copy that cannot be removed is counted and the rest are evicted."""
        for name in ["a.jpg", "b.jpg"]:
            photos.put_object("photos", name, b"x", purge_after=60)
            photos.catalog.mark_uploaded("photos", name, at=1000)
        remove = photos.cache.remove

        def flaky_remove(bucket, name):
            if name == "a.jpg":
                raise CacheError("permission denied")
            return remove(bucket, name)

        with patch.object(photos.cache, "remove", side_effect=flaky_remove):
            report = evictor.run(now=2000)

        assert report.evicted == 1
        assert report.failures == 1
        assert photos.cache.exists("photos", "a.jpg")
        assert not photos.cache.exists("photos", "b.jpg")

    def test_unlistable_bucket_does_not_stop_pass(self, photos, evictor):
        """A bucket whose objects cannot be listed is skipped; other work continues."""
        photos.create_bucket("zzz")
        photos.put_object("zzz", "o", b"o", purge_after=60)
        photos.catalog.mark_uploaded("zzz", "o", at=1000)
        photos.cache.write("photos", "orphan", io.BytesIO(b"x"))
        list_objects = photos.catalog.list_objects

        def flaky_list(bucket):
            if bucket == "photos":
                raise PersistenceError("database disk image is malformed")
            return list_objects(bucket)

        with patch.object(photos.catalog, "list_objects", side_effect=flaky_list):
            report = evictor.run(now=2000)

        assert report.failures == 1
        assert report.evicted == 1
        assert report.orphans_removed == 1
        assert not photos.cache.exists("zzz", "o")
        assert not photos.cache.exists("photos", "orphan")

    def test_orphan_sweep_runs_when_expiry_fails(self, photos, evictor):
        """Orphans are reclaimed even if the expiry phase fails outright."""
        photos.cache.write("photos", "orphan", io.BytesIO(b"x"))

        with patch.object(photos.catalog, "list_buckets", side_effect=PersistenceError("locked")):
            report = evictor.run()

        assert report.failures == 1
        assert report.orphans_removed == 1

class TestScheduler:
    """Test the background scheduler."""

    def test_run_once(self, photos, reconciler, evictor, fake_remote):
        """One pass promotes and evicts."""
        photos.put_object("photos", "cat.jpg", b"meow")
        fake_remote.make_available()
        scheduler = CacheManagerScheduler(reconciler, evictor, interval=3600)

        report = scheduler.run_once()

        assert isinstance(report, ManagerReport)
        assert report.promoted == 1
        assert report.failures == 0

    def test_reconcile_failure_does_not_stop_eviction(self):
        """Each phase runs even if the other one fails."""
        reconciler = Mock()
        reconciler.run.side_effect = RemoteStorageError("daemon down")
        evictor = Mock()

        report = CacheManagerScheduler(reconciler, evictor).run_once()

        assert report.failures == 1
        evictor.run.assert_called_once_with(report)

    def test_overlapping_pass_is_skipped(self):
        """A pass requested while another runs returns None."""
        started = threading.Event()
        release = threading.Event()

        def slow_run(report):
            started.set()
            release.wait(5)
            return report

        reconciler = Mock()
        reconciler.run.side_effect = slow_run
        scheduler = CacheManagerScheduler(reconciler, Mock(), interval=3600)

        worker = threading.Thread(target=scheduler.run_once)
        worker.start()
        try:
            assert started.wait(5)
            assert scheduler.run_once() is None
        finally:
            release.set()
            worker.join(5)

        assert reconciler.run.call_count == 1
        assert scheduler.run_once() is not None

    def test_start_and_stop(self):
        """The background thread runs passes until stopped."""
        reconciler = Mock()
        scheduler = CacheManagerScheduler(reconciler, Mock(), interval=0.01)

        scheduler.start()
        try:
            assert scheduler.is_running
            deadline = time.time() + 5
            while reconciler.run.call_count < 2 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            scheduler.stop(timeout=5)

        assert reconciler.run.call_count >= 2
        assert not scheduler.is_running

    def test_stop_timeout_with_stuck_pass(self):
        """stop() gives up on a pass that does not finish, and start() works again."""
        started = threading.Event()
        release = threading.Event()

        def stuck_run(report):
            started.set()
            release.wait(10)
            return report

        reconciler = Mock()
        reconciler.run.side_effect = stuck_run
        scheduler = CacheManagerScheduler(reconciler, Mock(), interval=0.01)

        scheduler.start()
        try:
            assert started.wait(5)
            begin = time.time()
            scheduler.stop(timeout=0.1)

            assert time.time() - begin < 5
            assert not scheduler.is_running

            scheduler.start()
            assert scheduler.is_running
        finally:
            release.set()
            scheduler.stop(timeout=5)

        assert not scheduler.is_running
