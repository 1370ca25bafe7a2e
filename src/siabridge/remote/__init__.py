"""Clients for the remote storage network.

Key components:
- RemoteStorage: Abstract upload/download/delete/availability interface
- SiaClient: Sia daemon renter API over HTTP
- CloudFilesRemote: Synchronous storage at any cloudfiles URL
  (import from siabridge.remote.cloud; cloudfiles is only loaded when used)
"""

from siabridge.remote.base import RemoteFile, RemoteStorage
from siabridge.remote.sia import SiaClient

__all__ = [
    "RemoteStorage",
    "RemoteFile",
    "SiaClient",
]
