"""
Cross-platform file system utilities for runtimekit.

This module provides the primitives the install store and registry rely on:
- Archive extraction (tar.gz, tar.xz, zip) with path-traversal protection
- Atomic file writes (temp file + rename)
- Guarded recursive deletion and copying

All operations handle platform differences transparently.
"""

import lzma
import os
import shutil
import stat
import sys
import tarfile
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import Callable, Optional, Union

IS_WINDOWS = os.name == "nt"

# tarfile extraction filters (3.12, backported to 3.9.17, 3.10.12 and 3.11.4)
HAS_DATA_FILTER = hasattr(tarfile, "data_filter")


# ============================================================================
# Error Handling
# ============================================================================


class FilesystemError(Exception):
    """Base exception for filesystem operations."""

    pass


class ArchiveExtractionError(FilesystemError):
    """Failed to extract an archive."""

    pass


class UnsupportedArchiveFormat(ArchiveExtractionError):
    """Archive format is not supported."""

    pass


class InsecureArchiveError(ArchiveExtractionError):
    """Archive contains insecure paths (directory traversal attempt)."""

    pass


# ============================================================================
# Path Utilities
# ============================================================================


def is_relative_to(path: Path, parent: Path) -> bool:
    """
    Check if path is relative to (under) parent directory.

    Args:
        path: Path to check
        parent: Parent directory

    Returns:
        True if path is under parent directory
    """
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


# ============================================================================
# Archive Extraction
# ============================================================================

ARCHIVE_SUFFIXES = {
    ".zip": "zip",
    ".tar.gz": "r:gz",
    ".tgz": "r:gz",
    ".tar.xz": "r:xz",
}


def _check_inside(name: str, target: Path, root: Path) -> None:
    if not is_relative_to(target.resolve(), root):
        raise InsecureArchiveError(
            f"Archive member '{name}' points outside {root}; refusing to extract"
        )


def _check_tar_member(member: tarfile.TarInfo, root: Path) -> None:
    """Reject members, and link targets, that would land outside root."""
    _check_inside(member.name, root / member.name, root)

    if member.issym():
        _check_inside(member.name, (root / member.name).parent / member.linkname, root)
    elif member.islnk():
        _check_inside(member.name, root / member.linkname, root)
    elif member.isdev():
        raise InsecureArchiveError(f"Archive member '{member.name}' is a device file")


def extract_archive(
    archive_path: Union[str, Path],
    destination: Union[str, Path],
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> None:
    """
    Extract a release archive into destination.

    The format is picked from the file name (.zip, .tar.gz, .tgz, .tar.xz).
    Every member is checked before anything is written; symlinks shipped
    inside runtime tarballs (npm, npx, corepack) are allowed as long as they
    stay within destination.

    Args:
        archive_path: Path to the archive file
        destination: Directory to extract to (created if missing)
        progress_callback: Optional callback(members_done, members_total)

    Raises:
        UnsupportedArchiveFormat: If the file name has no known suffix
        InsecureArchiveError: If a member or link escapes destination
        ArchiveExtractionError: If the archive is missing or unreadable
    """
    archive_path = Path(archive_path)
    destination = Path(destination)

    if not archive_path.exists():
        raise ArchiveExtractionError(f"Archive not found: {archive_path}")

    lowered = archive_path.name.lower()
    mode = next((m for suffix, m in ARCHIVE_SUFFIXES.items() if lowered.endswith(suffix)), None)
    if mode is None:
        raise UnsupportedArchiveFormat(
            f"Unsupported archive format: {archive_path.name} "
            f"(expected one of {', '.join(ARCHIVE_SUFFIXES)})"
        )

    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()

    try:
        if mode == "zip":
            _extract_zip(archive_path, root, progress_callback)
        else:
            _extract_tar(archive_path, root, mode, progress_callback)
    except InsecureArchiveError:
        raise
    except (
        OSError,
        EOFError,
        tarfile.TarError,
        zipfile.BadZipFile,
        zlib.error,
        lzma.LZMAError,
    ) as e:
        raise ArchiveExtractionError(f"Failed to extract {archive_path}: {e}") from e


def _extract_zip(
    archive_path: Path,
    root: Path,
    progress_callback: Optional[Callable[[int, int], None]],
) -> None:
    """Extract a ZIP archive, restoring unix mode bits when the archive has them."""
    with zipfile.ZipFile(archive_path) as zf:
        members = zf.infolist()
        for member in members:
            _check_inside(member.filename, root / member.filename, root)

        for done, member in enumerate(members, start=1):
            extracted = Path(zf.extract(member, root))
            unix_mode = (member.external_attr >> 16) & 0o777
            if unix_mode and not IS_WINDOWS and extracted.is_file():
                extracted.chmod(unix_mode)
            if progress_callback:
                progress_callback(done, len(members))


def _extract_tar(
    archive_path: Path,
    root: Path,
    mode: str,
    progress_callback: Optional[Callable[[int, int], None]],
) -> None:
    with tarfile.open(archive_path, mode) as tar:
        members = tar.getmembers()
        for member in members:
            _check_tar_member(member, root)

        def reporting():
            for done, member in enumerate(members, start=1):
                yield member
                if progress_callback:
                    progress_callback(done, len(members))

        if HAS_DATA_FILTER:
            try:
                tar.extractall(root, members=reporting(), filter="data")
            except tarfile.FilterError as e:
                raise InsecureArchiveError(f"Refusing to extract {archive_path}: {e}") from e
            return

        # Without extraction filters, re-check each member against the links
        # already written so that chained symlinks cannot leave root
        for member in reporting():
            _check_tar_member(member, root)
            tar.extract(member, root)


# ============================================================================
# Safe File Operations
# ============================================================================


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Write file atomically using temp file + rename.

    Readers see either the previous content or the new content, never a
    partially written file. If the write fails, the original file (if any)
    remains unchanged.

    Args:
        file_path: Path to write to
        content: Content to write (string or bytes)
        encoding: Text encoding (used only for string content)

    Example:
        >>> atomic_write('registry/node.json', '{"version": 1}')
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory keeps the rename on one filesystem
    temp_fd, temp_path_str = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_path_str)

    try:
        if isinstance(content, str):
            with open(temp_fd, "w", encoding=encoding) as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
        else:
            with open(temp_fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

        temp_path.replace(file_path)

    except Exception:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


def safe_rmtree(
    path: Union[str, Path], require_prefix: Optional[Union[str, Path]] = None
) -> None:
    """
    Safely remove a directory tree with safeguards.

    Args:
        path: Directory to remove
        require_prefix: If specified, path must be under this directory

    Raises:
        ValueError: If path is not under require_prefix
        FilesystemError: If deletion fails

    Example:
        >>> safe_rmtree('~/.runtimekit/tmp/stage-node-1', require_prefix='~/.runtimekit/tmp')
    """
    path = Path(path)

    if require_prefix is not None:
        prefix = Path(require_prefix).resolve()
        if not is_relative_to(path.parent.resolve() / path.name, prefix):
            raise ValueError(
                f"Refusing to delete '{path}': not under required prefix '{prefix}'"
            )

    if path.is_symlink():
        path.unlink()
        return

    if not path.exists():
        return

    if not path.is_dir():
        raise FilesystemError(f"Path is not a directory: {path}")

    def handle_remove_readonly(func, failed_path, exc):
        """Retry after clearing the read-only bit (Windows, extracted archives)."""
        if not os.access(failed_path, os.W_OK):
            os.chmod(failed_path, stat.S_IWRITE | stat.S_IREAD | stat.S_IEXEC)
            func(failed_path)
        elif isinstance(exc, BaseException):
            raise exc
        else:
            # onerror passes an exc_info tuple
            raise exc[1]

    try:
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=handle_remove_readonly)
        else:
            shutil.rmtree(path, onerror=handle_remove_readonly)
    except Exception as e:
        raise FilesystemError(f"Failed to remove directory '{path}': {e}") from e


def recursive_copy(
    source: Union[str, Path],
    destination: Union[str, Path],
    symlinks: bool = True,
) -> None:
    """
    Recursively copy a directory tree.

    Args:
        source: Source directory
        destination: Destination directory (must not exist yet)
        symlinks: If True, copy symlinks as symlinks

    Raises:
        FilesystemError: If source is missing or the copy fails
    """
    source = Path(source)
    destination = Path(destination)

    if not source.is_dir():
        raise FilesystemError(f"Source is not a directory: {source}")

    try:
        shutil.copytree(source, destination, symlinks=symlinks)
    except (OSError, shutil.Error) as e:
        raise FilesystemError(f"Failed to copy {source} to {destination}: {e}") from e


def directory_size(path: Union[str, Path]) -> int:
    """
    Calculate total size of a directory in bytes.

    Args:
        path: Directory path

    Returns:
        Total size in bytes
    """
    path = Path(path)
    total_size = 0

    for item in path.rglob("*"):
        if item.is_file() and not item.is_symlink():
            total_size += item.stat().st_size

    return total_size


__all__ = [
    "FilesystemError",
    "ArchiveExtractionError",
    "UnsupportedArchiveFormat",
    "InsecureArchiveError",
    "is_relative_to",
    "extract_archive",
    "atomic_write",
    "safe_rmtree",
    "recursive_copy",
    "directory_size",
]
