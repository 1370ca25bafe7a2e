"""Shared fixtures for siabridge tests."""

from pathlib import Path
from typing import Dict, List, Set, Tuple

import pytest

from siabridge.cache.store import CacheStore
from siabridge.catalog.client import MetadataCatalog
from siabridge.config import BridgeConfig
from siabridge.errors import RemoteStorageError
from siabridge.remote.base import RemoteFile, RemoteStorage
from siabridge.service import ObjectAccessService


class FakeRemote(RemoteStorage):
    """In-memory remote network.

    Uploads are copied immediately but only become available once
    ``make_available`` is called (or at once with ``auto_available``).
    """

    def __init__(self, auto_available: bool = False):
        self.objects: Dict[str, bytes] = {}
        self.available: Set[str] = set()
        self.auto_available = auto_available
        self.fail_upload = False
        self.fail_download = False
        self.fail_delete = False
        self.fail_list = False
        self.calls: List[Tuple[str, ...]] = []

    def upload(self, key: str, local_path: Path) -> None:
        self.calls.append(("upload", key))
        if self.fail_upload:
            raise RemoteStorageError(f"upload of {key} rejected", status_code=500)
        self.objects[key] = Path(local_path).read_bytes()
        if self.auto_available:
            self.available.add(key)

    def download(self, key: str, dest_path: Path) -> None:
        self.calls.append(("download", key))
        if self.fail_download or key not in self.objects:
            raise RemoteStorageError(f"download of {key} failed", status_code=500)
        Path(dest_path).write_bytes(self.objects[key])

    def delete(self, key: str) -> None:
        self.calls.append(("delete", key))
        if self.fail_delete:
            raise RemoteStorageError(f"delete of {key} failed", status_code=500)
        self.objects.pop(key, None)
        self.available.discard(key)

    def list_availability(self) -> List[RemoteFile]:
        self.calls.append(("list",))
        if self.fail_list:
            raise RemoteStorageError("listing failed", status_code=500)
        return [RemoteFile(key=key, available=key in self.available) for key in self.objects]

    def make_available(self, *keys: str) -> None:
        """Mark uploaded keys durable (all of them if none given)."""
        self.available.update(keys or self.objects.keys())

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_remote():
    """A fresh in-memory remote."""
    return FakeRemote()


@pytest.fixture
def catalog(tmp_path):
    """An initialized catalog in a temporary database."""
    catalog = MetadataCatalog(tmp_path / "meta.db")
    catalog.initialize_schema()
    yield catalog
    catalog.close()


@pytest.fixture
def cache(tmp_path):
    """A cache store in a temporary directory."""
    store = CacheStore(tmp_path / "cache", lock_timeout=5)
    store.ensure_dirs()
    return store


@pytest.fixture
def service(catalog, cache, fake_remote):
    """Object access service over the temporary catalog, cache and fake remote."""
    return ObjectAccessService(catalog, cache, fake_remote)


@pytest.fixture
def bridge_config(tmp_path):
    """Configuration pointing at temporary paths, with a slow manager."""
    return BridgeConfig(
        cache_dir=tmp_path / "cache",
        db_file=tmp_path / "meta.db",
        manager_interval=3600,
        lock_timeout=5,
    )
