#!/usr/bin/env python3
"""Local mirror file access for odsync."""

import hashlib
import logging
import os
import shutil
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from send2trash import send2trash

from .models import LocalFileInfo
from .path_utils import cleanup_empty_parent_dirs, normalize_relative_path, validate_sync_path

logger = logging.getLogger(__name__)

TEMP_SUFFIX = '.odsync.tmp'
_HASH_BLOCK_SIZE = 1024 * 1024
_COPY_BUFFER_SIZE = 64 * 1024
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class LocalFileAccess(ABC):
    """File operations on the local mirror, addressed by relative path."""

    @abstractmethod
    def enumerate_files(self) -> Iterator[LocalFileInfo]:
        pass

    @abstractmethod
    def get_file_info(self, relative_path: str) -> Optional[LocalFileInfo]:
        pass

    @abstractmethod
    def write_file(self, relative_path: str, stream: BinaryIO,
                   last_modified: Optional[datetime] = None) -> int:
        """Write a stream to a file, replacing it atomically.

        Returns:
            Number of bytes written
        """
        pass

    @abstractmethod
    def open_read(self, relative_path: str) -> Optional[BinaryIO]:
        pass

    @abstractmethod
    def delete_file(self, relative_path: str) -> bool:
        """Remove a file. Returns False if it was already gone."""
        pass


def _is_skipped(rel_parts) -> bool:
    # Hidden entries and in-flight downloads never take part in sync
    return any(part.startswith('.') for part in rel_parts) or rel_parts[-1].endswith(TEMP_SUFFIX)


def _to_mtime_ns(value: datetime) -> int:
    # Integer arithmetic keeps the timestamp exact to the microsecond
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(microseconds=1) * 1000


def hash_file(path: Path) -> str:
    """Compute the SHA-256 hex digest of a file."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for block in iter(lambda: f.read(_HASH_BLOCK_SIZE), b''):
            digest.update(block)
    return digest.hexdigest()


class LocalFileSystem(LocalFileAccess):
    """Local mirror rooted at the sync directory."""

    def __init__(self, root: Path, compute_hashes: bool = False, use_trash: bool = True):
        """Initialize local file access.

        Args:
            root: Sync directory
            compute_hashes: Hash file content during enumeration
            use_trash: Move deleted files to the recycle bin instead of unlinking
        """
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)
        self.compute_hashes = compute_hashes
        self.use_trash = use_trash

    def _resolve(self, relative_path: str) -> Path:
        return validate_sync_path(normalize_relative_path(relative_path), self.root)

    def _info(self, relative_path: str, path: Path, stat_info: os.stat_result) -> LocalFileInfo:
        file_hash = None
        if self.compute_hashes:
            try:
                file_hash = hash_file(path)
            except OSError as e:
                logger.warning(f"Cannot hash {relative_path}: {e}")

        return LocalFileInfo(
            relative_path=relative_path,
            size=stat_info.st_size,
            last_write=_EPOCH + timedelta(microseconds=stat_info.st_mtime_ns // 1000),
            hash=file_hash,
        )

    def enumerate_files(self) -> Iterator[LocalFileInfo]:
        """Yield every regular file in the mirror.

        Hidden files and directories, symlinks and temporary download files
        are skipped. Files that vanish or become unreadable mid-scan are
        logged and skipped.
        """
        for path in self.root.rglob('*'):
            rel_parts = path.relative_to(self.root).parts
            if _is_skipped(rel_parts):
                continue

            try:
                # Cache stat result to avoid TOCTOU race conditions
                stat_info = path.lstat()
                if path.is_symlink() or not path.is_file():
                    continue
                yield self._info('/'.join(rel_parts), path, stat_info)
            except OSError as e:
                logger.warning(f"Cannot access {path}: {e}")

    def get_file_info(self, relative_path: str) -> Optional[LocalFileInfo]:
        path = self._resolve(relative_path)
        try:
            stat_info = path.stat()
        except FileNotFoundError:
            return None
        if not path.is_file():
            return None
        return self._info(normalize_relative_path(relative_path), path, stat_info)

    def write_file(self, relative_path: str, stream: BinaryIO,
                   last_modified: Optional[datetime] = None) -> int:
        path = self._resolve(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        temp_path = path.parent / f".{path.name}.{uuid.uuid4().hex[:8]}{TEMP_SUFFIX}"
        try:
            # Use os.open with O_CREAT|O_EXCL to prevent TOCTOU symlink attacks
            fd = os.open(temp_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            with os.fdopen(fd, 'wb') as f:
                shutil.copyfileobj(stream, f, _COPY_BUFFER_SIZE)
            os.chmod(temp_path, 0o644)

            if last_modified is not None:
                mtime_ns = _to_mtime_ns(last_modified)
                os.utime(temp_path, ns=(mtime_ns, mtime_ns))

            # Move to final location only if download succeeded
            temp_path.replace(path)
        except BaseException:
            # Clean up temp file on error
            temp_path.unlink(missing_ok=True)
            raise

        size = path.stat().st_size
        logger.debug(f"Wrote {relative_path} ({size} bytes)")
        return size

    def open_read(self, relative_path: str) -> Optional[BinaryIO]:
        path = self._resolve(relative_path)
        try:
            return open(path, 'rb')
        except FileNotFoundError:
            return None

    def delete_file(self, relative_path: str) -> bool:
        path = self._resolve(relative_path)
        if not path.exists():
            logger.debug(f"Already deleted locally: {relative_path}")
            return False

        if self.use_trash:
            try:
                send2trash(str(path))
                logger.info(f"Moved file to recycle bin: {relative_path}")
            except OSError as e:
                # Fallback to permanent deletion if trash fails
                logger.warning(f"Recycle bin unavailable for {relative_path} ({e}), deleting permanently")
                path.unlink(missing_ok=True)
        else:
            path.unlink(missing_ok=True)
            logger.info(f"Deleted file: {relative_path}")

        cleanup_empty_parent_dirs(path, self.root)
        return True
