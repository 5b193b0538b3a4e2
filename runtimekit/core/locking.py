"""
Concurrent access control for runtimekit.

This module provides file-based locking so that several shells invoking
runtimekit at the same time cannot corrupt shared on-disk state.

Locks:
- One registry lock per runtime, held across every read-modify-write of
  that runtime's registry document (and the activation link swap)
- One install lock per (runtime, version) pair, so two processes never
  publish the same version while different versions install in parallel

Usage:
    from runtimekit.core.locking import LockManager

    lock_manager = LockManager(layout.lock_dir)
    with lock_manager.registry_lock("node", timeout=30):
        # Safely modify registry/node.json
        pass

    with lock_manager.install_lock("node", "20.10.0"):
        # Extract, validate and publish node 20.10.0
        pass
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from filelock import FileLock, Timeout as LockTimeout

logger = logging.getLogger(__name__)


def _safe_name(value: str) -> str:
    """Sanitize an identifier so it can be used as a lock file name."""
    return value.replace("/", "-").replace("\\", "-").replace(":", "-")


class LockManager:
    """
    Manages advisory locks for runtimekit resources.

    Uses file-based locking with the `filelock` library for cross-platform,
    cross-process exclusion. The OS releases the lock if the holder dies.

    Attributes:
        lock_dir: Directory where lock files are stored
    """

    def __init__(self, lock_dir: Path):
        """
        Initialize lock manager.

        Args:
            lock_dir: Directory for lock files (created if missing)
        """
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def registry_lock_path(self, runtime: str) -> Path:
        return self.lock_dir / f"registry-{_safe_name(runtime)}.lock"

    def install_lock_path(self, runtime: str, version: str) -> Path:
        return self.lock_dir / f"install-{_safe_name(runtime)}-{_safe_name(version)}.lock"

    @contextmanager
    def registry_lock(self, runtime: str, timeout: float = 30) -> Iterator[None]:
        """
        Acquire the registry lock of one runtime.

        Args:
            runtime: Runtime name (e.g. 'node')
            timeout: Maximum wait time in seconds (default: 30)

        Raises:
            LockTimeout: If lock can't be acquired within timeout
        """
        lock_path = self.registry_lock_path(runtime)
        lock = FileLock(lock_path, timeout=timeout)

        try:
            with lock:
                logger.debug(f"Acquired registry lock: {lock_path}")
                yield
            logger.debug(f"Released registry lock: {lock_path}")
        except LockTimeout as e:
            logger.error(
                f"Could not acquire {runtime} registry lock after {timeout}s. "
                "Another runtimekit process may be running."
            )
            raise LockTimeout(str(lock_path)) from e

    @contextmanager
    def install_lock(
        self, runtime: str, version: str, timeout: float = 600
    ) -> Iterator[None]:
        """
        Acquire the install lock for one (runtime, version) pair.

        The default timeout is long because the holder may be downloading.

        Args:
            runtime: Runtime name
            version: Normalized version string
            timeout: Maximum wait time in seconds (default: 600)

        Raises:
            LockTimeout: If lock can't be acquired within timeout
        """
        lock_path = self.install_lock_path(runtime, version)
        lock = FileLock(lock_path, timeout=timeout)

        try:
            with lock:
                logger.debug(f"Acquired install lock: {lock_path}")
                yield
            logger.debug(f"Released install lock: {lock_path}")
        except LockTimeout as e:
            logger.error(
                f"Could not acquire install lock for {runtime} {version} after "
                f"{timeout}s. Another process may be installing this version."
            )
            raise LockTimeout(str(lock_path)) from e

    @contextmanager
    def try_install_lock(self, runtime: str, version: str) -> Iterator[bool]:
        """
        Try to take the install lock without blocking.

        Yields:
            bool: True if lock acquired, False if another process holds it
        """
        lock = FileLock(self.install_lock_path(runtime, version))
        acquired = False
        try:
            lock.acquire(timeout=0)
            acquired = True
            yield True
        except LockTimeout:
            logger.debug(f"Install lock busy for {runtime} {version}")
            yield False
        finally:
            if acquired:
                lock.release()

    def cleanup_stale_locks(self, max_age_hours: float = 24) -> int:
        """
        Remove unheld lock files older than max_age_hours.

        Lock files are left behind by filelock on POSIX; they are harmless
        but accumulate (one per installed version).

        Args:
            max_age_hours: Maximum age in hours before a lock file is removed

        Returns:
            Number of lock files removed
        """
        if not self.lock_dir.exists():
            return 0

        current_time = time.time()
        removed_count = 0

        for lock_file in self.lock_dir.glob("*.lock"):
            try:
                age_hours = (current_time - lock_file.stat().st_mtime) / 3600
                if age_hours <= max_age_hours:
                    continue

                # Only delete locks nobody holds right now
                probe = FileLock(lock_file)
                probe.acquire(timeout=0)
                try:
                    lock_file.unlink()
                finally:
                    probe.release()
                logger.info(f"Removed stale lock file: {lock_file}")
                removed_count += 1
            except (OSError, LockTimeout) as e:
                logger.debug(f"Could not remove lock {lock_file}: {e}")

        return removed_count


__all__ = ["LockManager", "LockTimeout"]
