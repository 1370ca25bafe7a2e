"""Remote storage backed by any cloudfiles URL (gs://, s3://, file://, ...).

Writes through cloudfiles complete synchronously, so every object that was
uploaded is reported available on the next poll.
"""

import logging
from pathlib import Path
from typing import List

from cloudfiles import CloudFiles

from siabridge.errors import RemoteStorageError
from siabridge.remote.base import RemoteFile, RemoteStorage

logger = logging.getLogger(__name__)


class CloudFilesRemote(RemoteStorage):
    """Remote storage at a cloudfiles path.

    Attributes:
        cloudpath: Root URL objects are stored under (e.g. 'gs://bucket/sia')

    Examples:
        >>> remote = CloudFilesRemote('file:///tmp/remote')
        >>> remote.upload('photos/cat.jpg', Path('cat.jpg'))
    """

    def __init__(self, cloudpath: str):
        """Initialize the remote.

        Args:
            cloudpath: Root URL objects are stored under
        """
        self.cloudpath = cloudpath.rstrip("/")
        self._cf = CloudFiles(self.cloudpath)

    def upload(self, key: str, local_path: Path) -> None:
        """Copy a local file to ``key``."""
        try:
            with open(local_path, "rb") as f:
                content = f.read()
            self._cf.put(key, content)
        except Exception as e:
            raise RemoteStorageError(f"Upload of {key} to {self.cloudpath} failed: {e}") from e
        logger.debug(f"Uploaded {key} to {self.cloudpath}")

    def download(self, key: str, dest_path: Path) -> None:
        """Copy ``key`` into a local file."""
        try:
            content = self._cf.get(key)
        except Exception as e:
            raise RemoteStorageError(f"Download of {key} from {self.cloudpath} failed: {e}") from e

        if content is None:
            raise RemoteStorageError(f"Object not found at {self.cloudpath}: {key}")

        try:
            with open(dest_path, "wb") as f:
                f.write(content)
        except OSError as e:
            raise RemoteStorageError(f"Cannot write downloaded {key} to {dest_path}: {e}") from e

    def delete(self, key: str) -> None:
        """Delete ``key``."""
        try:
            self._cf.delete(key)
        except Exception as e:
            raise RemoteStorageError(f"Delete of {key} from {self.cloudpath} failed: {e}") from e

    def list_availability(self) -> List[RemoteFile]:
        """Every stored object, all available."""
        try:
            keys = list(self._cf.list())
        except Exception as e:
            raise RemoteStorageError(f"Cannot list {self.cloudpath}: {e}") from e
        return [RemoteFile(key=key, available=True) for key in keys]
