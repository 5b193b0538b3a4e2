"""
Network fetch client with retry logic, checksum verification and catalog caching.

This module provides robust downloading capabilities with:
- HTTP/HTTPS fetches with TLS verification and a bounded timeout
- Retry with bounded exponential backoff for transient failures
- Checksum verification while streaming
- Downloads written to a temporary *.part file and renamed into place only
  after a complete, verified transfer
- Release catalogs cached on disk and served (marked stale) when the
  network is unreachable
"""

import hashlib
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TypeVar

import requests
from requests.exceptions import (
    ChunkedEncodingError,
    ConnectionError,
    ContentDecodingError,
    HTTPError,
    RequestException,
    Timeout,
)

from runtimekit.core.config import NetworkConfig
from runtimekit.core.exceptions import FetchError, NetworkUnavailable
from runtimekit.core.filesystem import atomic_write

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Server-side statuses worth retrying
TRANSIENT_STATUS = frozenset({429, 500, 502, 503, 504})

# Failures of the connection itself, before or while reading a body
NETWORK_ERRORS = (ConnectionError, Timeout, ChunkedEncodingError, ContentDecodingError)

USER_AGENT = "runtimekit (+https://github.com/runtimekit/runtimekit)"


@dataclass
class DownloadProgress:
    """Progress information for a download."""

    bytes_downloaded: int
    total_bytes: int
    percentage: float
    speed_bps: float  # bytes per second

    def __str__(self) -> str:
        mb_downloaded = self.bytes_downloaded / 1024 / 1024
        speed_mbps = self.speed_bps / 1024 / 1024
        if self.total_bytes > 0:
            mb_total = self.total_bytes / 1024 / 1024
            return (
                f"{mb_downloaded:.1f}/{mb_total:.1f} MB "
                f"({self.percentage:.1f}%) at {speed_mbps:.1f} MB/s"
            )
        return f"{mb_downloaded:.1f} MB at {speed_mbps:.1f} MB/s"


@dataclass
class CatalogPayload:
    """Raw catalog bytes plus where they came from."""

    data: bytes
    stale: bool
    fetched_at: datetime
    from_cache: bool


class DownloadError(Exception):
    """Exception raised when download fails."""

    pass


class ChecksumError(DownloadError):
    """Exception raised when checksum verification fails."""

    pass


class StreamingHasher:
    """Compute hash incrementally for streaming downloads."""

    def __init__(self, algorithm: str = "sha256"):
        """
        Initialize streaming hasher.

        Args:
            algorithm: Hash algorithm ('sha256', 'sha512')

        Raises:
            ValueError: If algorithm is not supported
        """
        self.algorithm = algorithm.lower()

        if self.algorithm == "sha256":
            self.hasher = hashlib.sha256()
        elif self.algorithm == "sha512":
            self.hasher = hashlib.sha512()
        else:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    def update(self, data: bytes):
        """Add data to hash computation."""
        self.hasher.update(data)

    def finalize(self) -> str:
        """Get final hash value as hex string."""
        return self.hasher.hexdigest()

    def verify(self, expected_hash: str) -> bool:
        """Check if computed hash matches expected value (case-insensitive)."""
        return self.finalize().lower() == expected_hash.strip().lower()


def verify_checksum(file_path: Path, expected_sha256: str) -> bool:
    """
    Verify file SHA256 checksum.

    Args:
        file_path: Path to file to verify
        expected_sha256: Expected SHA256 hash (hex string)

    Returns:
        True if checksum matches, False otherwise

    Raises:
        FileNotFoundError: If file doesn't exist
    """
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    hasher = StreamingHasher("sha256")
    with open(file_path, "rb") as f:
        while chunk := f.read(65536):
            hasher.update(chunk)

    return hasher.verify(expected_sha256)


class _Transient(Exception):
    """Internal marker for a failure that may succeed on retry."""

    def __init__(self, cause: Exception, network: bool, status: Optional[int] = None):
        super().__init__(str(cause))
        self.cause = cause
        self.network = network
        self.status = status


class FetchClient:
    """
    Retrieves release catalogs and archives over HTTP(S).

    Example:
        >>> client = FetchClient(layout.catalogs_dir, config.network)
        >>> payload = client.fetch_catalog("node", "https://nodejs.org/dist/index.json")
        >>> if payload.stale:
        ...     print("offline, using cached catalog")
    """

    def __init__(
        self,
        catalog_cache_dir: Path,
        network: Optional[NetworkConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize fetch client.

        Args:
            catalog_cache_dir: Directory holding cached catalogs
            network: Timeout and retry policy (defaults if None)
            session: Optional requests session (created if None)
        """
        self.catalog_cache_dir = Path(catalog_cache_dir)
        self.network = network or NetworkConfig()
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    # ------------------------------------------------------------------
    # Retry machinery
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        return min(self.network.backoff_base * (2**attempt), self.network.backoff_max)

    def _request(self, url: str, stream: bool = False) -> requests.Response:
        try:
            response = self.session.get(
                url, stream=stream, timeout=self.network.timeout, allow_redirects=True
            )
        except NETWORK_ERRORS as e:
            raise _Transient(e, network=True) from e
        except RequestException as e:
            raise FetchError(url, str(e)) from e

        try:
            response.raise_for_status()
        except HTTPError as e:
            response.close()
            status = response.status_code
            if status in TRANSIENT_STATUS:
                raise _Transient(e, network=False, status=status) from e
            raise FetchError(url, f"HTTP {status}", status=status) from e

        return response

    def _with_retry(self, url: str, action: Callable[[], T]) -> T:
        """
        Run action, retrying transient failures with exponential backoff.

        Raises:
            NetworkUnavailable: If every attempt failed to reach the server
            FetchError: If the server kept failing or refused the request
        """
        attempts = self.network.max_attempts
        last: Optional[_Transient] = None

        for attempt in range(attempts):
            try:
                return action()
            except _Transient as e:
                last = e
                if attempt == attempts - 1:
                    break
                delay = self._backoff(attempt)
                logger.debug(
                    f"Attempt {attempt + 1}/{attempts} for {url} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                time.sleep(delay)

        if last is None:
            raise FetchError(url, f"no attempts made (max_attempts={attempts})")
        if last.network:
            raise NetworkUnavailable(
                f"Cannot reach {url} after {attempts} attempts: {last}"
            ) from last.cause
        raise FetchError(
            url, f"server error after {attempts} attempts", status=last.status
        ) from last.cause

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch(self, url: str) -> bytes:
        """
        Fetch a URL into memory.

        Args:
            url: URL to fetch

        Returns:
            Response body

        Raises:
            NetworkUnavailable: If the host is unreachable
            FetchError: On non-retryable HTTP errors
        """
        if not url:
            raise ValueError("URL cannot be empty")

        def action() -> bytes:
            response = self._request(url)
            try:
                return response.content
            except RequestException as e:
                raise _Transient(e, network=True) from e

        logger.debug(f"Fetching {url}")
        return self._with_retry(url, action)

    def _catalog_cache_file(self, runtime: str, url: str) -> Path:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:12]
        return self.catalog_cache_dir / f"{runtime}-{digest}.cache"

    def fetch_catalog(
        self, runtime: str, url: str, max_age_seconds: float = 0
    ) -> CatalogPayload:
        """
        Fetch a release catalog, falling back to the cached copy when offline.

        Args:
            runtime: Runtime name (cache key)
            url: Catalog URL
            max_age_seconds: Serve the cache without network access if it is
                younger than this (0 always goes to the network)

        Returns:
            CatalogPayload (stale=True when served from cache after a
            network failure)

        Raises:
            NetworkUnavailable: If offline and no cached copy exists
            FetchError: On non-retryable HTTP errors
        """
        cache_file = self._catalog_cache_file(runtime, url)

        if max_age_seconds > 0 and cache_file.exists():
            age = time.time() - cache_file.stat().st_mtime
            if age < max_age_seconds:
                logger.debug(f"Using cached {runtime} catalog ({age:.0f}s old)")
                return CatalogPayload(
                    data=cache_file.read_bytes(),
                    stale=False,
                    fetched_at=datetime.fromtimestamp(cache_file.stat().st_mtime),
                    from_cache=True,
                )

        try:
            data = self.fetch(url)
        except NetworkUnavailable:
            if not cache_file.exists():
                logger.error(f"Network unavailable and no cached {runtime} catalog")
                raise
            fetched_at = datetime.fromtimestamp(cache_file.stat().st_mtime)
            logger.warning(
                f"Network unavailable; using cached {runtime} catalog from "
                f"{fetched_at.isoformat(timespec='seconds')} (may be stale)"
            )
            return CatalogPayload(
                data=cache_file.read_bytes(),
                stale=True,
                fetched_at=fetched_at,
                from_cache=True,
            )

        atomic_write(cache_file, data)
        return CatalogPayload(
            data=data, stale=False, fetched_at=datetime.now(), from_cache=False
        )

    def download(
        self,
        url: str,
        destination: Path,
        expected_sha256: Optional[str] = None,
        progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
    ) -> Path:
        """
        Download a file, publishing it only after full verification.

        Args:
            url: URL to download from
            destination: Final location of the file
            expected_sha256: Expected SHA256 hash (verified while streaming)
            progress_callback: Optional callback for progress updates

        Returns:
            Path to downloaded file

        Raises:
            ChecksumError: If checksum doesn't match (not retried)
            NetworkUnavailable: If the host is unreachable
            FetchError: On non-retryable HTTP errors
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        if destination.exists():
            if expected_sha256 is None or verify_checksum(destination, expected_sha256):
                logger.info(f"Using cached download: {destination}")
                return destination
            logger.warning(f"Cached {destination.name} has wrong checksum, re-downloading")
            destination.unlink()

        logger.info(f"Downloading {url}")
        return self._with_retry(
            url,
            lambda: self._stream_to(url, destination, expected_sha256, progress_callback),
        )

    def _stream_to(
        self,
        url: str,
        destination: Path,
        expected_sha256: Optional[str],
        progress_callback: Optional[Callable[[DownloadProgress], None]],
    ) -> Path:
        """Stream one attempt into a fresh *.part file and rename on success."""
        response = self._request(url, stream=True)

        content_length = response.headers.get("content-length")
        total_size = int(content_length) if content_length else 0
        hasher = StreamingHasher("sha256") if expected_sha256 else None

        fd, part_name = tempfile.mkstemp(
            dir=destination.parent, prefix=f".{destination.name}.", suffix=".part"
        )
        part_path = Path(part_name)

        downloaded = 0
        start_time = time.time()
        last_progress_time = start_time

        try:
            with os.fdopen(fd, "wb") as f:
                try:
                    for chunk in response.iter_content(chunk_size=65536):
                        if not chunk:
                            continue
                        f.write(chunk)
                        downloaded += len(chunk)
                        if hasher:
                            hasher.update(chunk)

                        now = time.time()
                        if progress_callback and (
                            now - last_progress_time >= 0.5 or downloaded == total_size
                        ):
                            elapsed = now - start_time
                            progress_callback(
                                DownloadProgress(
                                    bytes_downloaded=downloaded,
                                    total_bytes=total_size,
                                    percentage=(downloaded / total_size * 100)
                                    if total_size > 0
                                    else 0.0,
                                    speed_bps=downloaded / elapsed if elapsed > 0 else 0.0,
                                )
                            )
                            last_progress_time = now
                except RequestException as e:
                    raise _Transient(e, network=True) from e
                f.flush()
                os.fsync(f.fileno())

            if total_size and downloaded != total_size:
                raise _Transient(
                    DownloadError(
                        f"Truncated download: got {downloaded} of {total_size} bytes"
                    ),
                    network=True,
                )

            if hasher and not hasher.verify(expected_sha256):
                raise ChecksumError(
                    f"Checksum mismatch for {destination.name}: "
                    f"expected {expected_sha256}, got {hasher.finalize()}"
                )

            os.replace(part_path, destination)
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise
        finally:
            response.close()

        if hasher:
            logger.info("Checksum verified successfully")
        logger.info(f"Download complete: {destination}")
        return destination


__all__ = [
    "DownloadProgress",
    "CatalogPayload",
    "DownloadError",
    "ChecksumError",
    "StreamingHasher",
    "FetchClient",
    "verify_checksum",
    "TRANSIENT_STATUS",
]
