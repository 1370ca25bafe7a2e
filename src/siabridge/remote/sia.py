"""HTTP client for the Sia daemon renter API.

The daemon uploads from, and downloads to, paths on the local filesystem,
so every path sent to it is absolute.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from typing_extensions import TypedDict

from siabridge.errors import RemoteStorageError
from siabridge.remote.base import RemoteFile, RemoteStorage

logger = logging.getLogger(__name__)

# siad rejects API requests without this user agent
SIA_USER_AGENT = "Sia-Agent"


class RenterFile(TypedDict, total=False):
    """One entry of the daemon's ``/renter/files`` listing."""

    siapath: str
    localpath: str
    filesize: int
    available: bool
    renewing: bool
    redundancy: float
    uploadprogress: float


class SiaClient(RemoteStorage):
    """Client for a Sia daemon (siad).

    Attributes:
        address: Daemon API address (e.g. "127.0.0.1:9980")
        base_url: Base URL built from the address
        timeout: Request timeout in seconds (None = no timeout)
    """

    def __init__(self, address: str = "127.0.0.1:9980", timeout: Optional[float] = None):
        """Initialize the client.

        Args:
            address: Daemon API address, with or without an http:// scheme
            timeout: Request timeout in seconds (None = no timeout)
        """
        self.address = address
        if address.startswith(("http://", "https://")):
            self.base_url = address.rstrip("/")
        else:
            self.base_url = f"http://{address}".rstrip("/")
        self.timeout = timeout
        self.headers = {"User-Agent": SIA_USER_AGENT}

    def _url(self, route: str, key: str = "") -> str:
        if key:
            return f"{self.base_url}{route}/{quote(key, safe='/')}"
        return f"{self.base_url}{route}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send a request and translate failures into RemoteStorageError."""
        try:
            if method == "GET":
                response = requests.get(url, headers=self.headers, timeout=self.timeout, **kwargs)
            else:
                response = requests.post(url, headers=self.headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise RemoteStorageError(f"Cannot connect to Sia daemon at {self.base_url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteStorageError(f"Sia daemon request failed: {e}") from e

        if not response.ok:
            raise RemoteStorageError(
                f"Sia daemon returned {response.status_code}: {self._error_message(response)}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason or "unknown error"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return str(body)

    def upload(self, key: str, local_path: Path) -> None:
        """Ask the daemon to upload a local file under ``key``."""
        source = str(Path(local_path).resolve())
        logger.debug(f"Submitting {key} for upload from {source}")
        self._request("POST", self._url("/renter/upload", key), data={"source": source})

    def download(self, key: str, dest_path: Path) -> None:
        """Have the daemon download ``key`` into ``dest_path``."""
        destination = str(Path(dest_path).resolve())
        logger.debug(f"Downloading {key} to {destination}")
        self._request(
            "GET",
            self._url("/renter/download", key),
            params={"destination": destination},
        )

    def delete(self, key: str) -> None:
        """Ask the daemon to delete ``key``."""
        logger.debug(f"Deleting {key}")
        self._request("POST", self._url("/renter/delete", key))

    def list_files(self) -> List[RenterFile]:
        """Raw ``/renter/files`` listing."""
        response = self._request("GET", self._url("/renter/files"))
        try:
            body: Dict[str, Any] = response.json()
        except ValueError as e:
            raise RemoteStorageError(f"Invalid file listing from Sia daemon: {e}") from e
        return body.get("files") or []

    def list_availability(self) -> List[RemoteFile]:
        """Availability of every file the renter knows about."""
        return [
            RemoteFile(key=f["siapath"], available=bool(f.get("available", False)))
            for f in self.list_files()
            if "siapath" in f
        ]
