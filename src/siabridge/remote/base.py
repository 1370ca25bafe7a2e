"""Remote storage interface.

A remote storage network accepts uploads asynchronously: ``upload`` returns
once the request is accepted, and completion is only observed by polling
``list_availability``. No method retries on its own.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List


@dataclass(frozen=True)
class RemoteFile:
    """Availability of one object previously submitted for upload.

    Attributes:
        key: Remote object key (``bucket/name``)
        available: True once the object is durable and retrievable
    """

    key: str
    available: bool


class RemoteStorage(ABC):
    """Abstract base class for remote storage clients.

    Implementations raise RemoteStorageError for every failure.
    """

    @abstractmethod
    def upload(self, key: str, local_path: Path) -> None:
        """Submit a local file for durable storage under ``key``.

        Returns once the request is accepted, not once it is durable.
        The file must stay in place until the upload completes.
        """
        pass

    @abstractmethod
    def download(self, key: str, dest_path: Path) -> None:
        """Retrieve ``key`` into ``dest_path``, blocking until done."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete ``key`` from the remote network."""
        pass

    @abstractmethod
    def list_availability(self) -> List[RemoteFile]:
        """Snapshot of every submitted object and whether it is durable."""
        pass

    def availability_map(self) -> Dict[str, bool]:
        """``list_availability`` keyed by object key."""
        return {f.key: f.available for f in self.list_availability()}
