"""Tests for the SiaBridge facade."""

import time
from unittest.mock import patch

import pytest

from siabridge import BridgeConfig, SiaBridge
from siabridge.bridge import STOP_TIMEOUT_SEC, create_remote
from siabridge.errors import BridgeError
from siabridge.remote.cloud import CloudFilesRemote
from siabridge.remote.sia import SiaClient


class TestLifecycle:
    """Test starting and stopping a bridge."""

    def test_operations_require_start(self, bridge_config, fake_remote):
        """Operations before start() are rejected."""
        bridge = SiaBridge(bridge_config, remote=fake_remote)

        with pytest.raises(BridgeError, match="not started"):
            bridge.create_bucket("photos")

    def test_start_prepares_storage(self, bridge_config, fake_remote):
        """Start creates the cache directory and database and runs the scheduler."""
        bridge = SiaBridge(bridge_config, remote=fake_remote)
        bridge.start()
        try:
            assert bridge.is_started
            assert bridge.scheduler.is_running
            assert bridge_config.cache_dir.is_dir()
            assert bridge_config.db_file.exists()
        finally:
            bridge.stop()

        assert not bridge.is_started
        assert not bridge.scheduler.is_running

    def test_start_and_stop_twice(self, bridge_config, fake_remote):
        """Start and stop are safe to repeat."""
        bridge = SiaBridge(bridge_config, remote=fake_remote)
        bridge.start()
        bridge.start()
        bridge.stop()
        bridge.stop()

        assert not bridge.is_started

    def test_stop_bounds_wait_for_manager(self, bridge_config, fake_remote):
        """Stop waits a bounded time for a running management pass."""
        bridge = SiaBridge(bridge_config, remote=fake_remote)
        bridge.start()

        with patch.object(bridge.scheduler, "stop") as mock_stop:
            bridge.stop()

        mock_stop.assert_called_once_with(timeout=STOP_TIMEOUT_SEC)
        bridge.scheduler.stop()

    def test_state_survives_restart(self, bridge_config, fake_remote):
        """Records and cached content persist across bridge instances."""
        with SiaBridge(bridge_config, remote=fake_remote) as bridge:
            bridge.create_bucket("photos")
            bridge.put_object("photos", "cat.jpg", b"meow")

        with SiaBridge(bridge_config, remote=fake_remote) as bridge:
            assert [b.name for b in bridge.list_buckets()] == ["photos"]
            assert bridge.get_object_bytes("photos", "cat.jpg") == b"meow"

    def test_independent_bridges(self, tmp_path, fake_remote):
        """Two bridges with different paths do not share state."""
        first_config = BridgeConfig(cache_dir=tmp_path / "a", db_file=tmp_path / "a.db")
        second_config = BridgeConfig(cache_dir=tmp_path / "b", db_file=tmp_path / "b.db")

        with SiaBridge(first_config, remote=fake_remote) as first:
            with SiaBridge(second_config, remote=fake_remote) as second:
                first.create_bucket("photos")

                assert second.list_buckets() == []


class TestEndToEnd:
    """Test the full object lifecycle through the bridge."""

    def test_put_reconcile_evict_get(self, bridge_config, fake_remote):
        """An object goes from queued to durable, is evicted and restored intact."""
        payload = b"sia" * 10_000

        with SiaBridge(bridge_config, remote=fake_remote) as bridge:
            bridge.create_bucket("photos")
            bridge.put_object("photos", "blob.bin", payload)
            assert bridge.get_object_info("photos", "blob.bin").is_durable is False

            fake_remote.make_available()
            report = bridge.run_manager()
            assert report.promoted == 1
            assert bridge.get_object_info("photos", "blob.bin").is_durable

            bridge.cache.remove("photos", "blob.bin")
            assert bridge.get_object_bytes("photos", "blob.bin") == payload
            assert bridge.get_object_info("photos", "blob.bin").sia_fetches == 1

    def test_file_round_trip_through_eviction(self, bridge_config, fake_remote, tmp_path):
        """A file put, confirmed, evicted by the manager and fetched again is unchanged."""
        source = tmp_path / "source.bin"
        source.write_bytes(bytes(range(256)) * 512)
        dest = tmp_path / "restored.bin"

        with SiaBridge(bridge_config, remote=fake_remote) as bridge:
            bridge.create_bucket("photos")
            bridge.put_object_from_file(source, "photos", "source.bin", purge_after=10)
            fake_remote.make_available()
            assert bridge.run_manager().promoted == 1

            report = bridge.scheduler.evictor.run(now=time.time() + 3600)
            assert report.evicted == 1
            assert not bridge.cache.exists("photos", "source.bin")
            assert bridge.get_object_info("photos", "source.bin").is_durable

            with open(dest, "wb") as f:
                bridge.get_object("photos", "source.bin", f)

        assert dest.read_bytes() == source.read_bytes()

    def test_put_from_file_and_get_to_file(self, bridge_config, fake_remote, tmp_path):
        """Test file-based Put and stream-based Get."""
        source = tmp_path / "cat.jpg"
        source.write_bytes(b"meow")
        dest = tmp_path / "copy.jpg"

        with SiaBridge(bridge_config, remote=fake_remote) as bridge:
            bridge.create_bucket("photos")
            bridge.put_object_from_file(source, "photos", "cat.jpg")
            with open(dest, "wb") as f:
                assert bridge.get_object("photos", "cat.jpg", f) == 4

        assert dest.read_bytes() == b"meow"

    def test_delete_object_and_bucket(self, bridge_config, fake_remote):
        """Test deleting through the bridge."""
        with SiaBridge(bridge_config, remote=fake_remote) as bridge:
            bridge.create_bucket("photos")
            bridge.put_object("photos", "a.jpg", b"a")
            bridge.put_object("photos", "b.jpg", b"b")

            bridge.delete_object("photos", "a.jpg")
            assert [obj.name for obj in bridge.list_objects("photos")] == ["b.jpg"]

            bridge.delete_bucket("photos")
            assert bridge.list_buckets() == []
            assert fake_remote.objects == {}


class TestCreateRemote:
    """Test choosing the remote client from configuration."""

    def test_default_is_sia_daemon(self):
        """Without a remote URL the Sia daemon client is used."""
        remote = create_remote(BridgeConfig(siad_address="10.0.0.5:9980", request_timeout=12))

        assert isinstance(remote, SiaClient)
        assert remote.base_url == "http://10.0.0.5:9980"
        assert remote.timeout == 12

    def test_remote_url_uses_cloudfiles(self):
        """A remote URL selects the cloudfiles remote."""
        with patch("siabridge.remote.cloud.CloudFiles"):
            remote = create_remote(BridgeConfig(remote_url="gs://bucket/sia"))

        assert isinstance(remote, CloudFilesRemote)
        assert remote.cloudpath == "gs://bucket/sia"
