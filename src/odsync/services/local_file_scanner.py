"""Local mirror reconciliation scanner."""

import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from ..backends.base import SyncRepository
from ..cancellation import CancellationToken
from ..local_files import LocalFileAccess
from ..models import LocalFile, LocalFileInfo, RemoteItem, SyncState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanResult:
    processed: int
    new: int
    modified: int


class _Outcome(Enum):
    NONE = 0
    NEW = 1
    MODIFIED = 2


def is_modified(info: LocalFileInfo, remote: RemoteItem, existing: Optional[LocalFile]) -> bool:
    """Check whether a local file differs from its last-known remote item.

    Hash comparison only happens when the scan produced a hash, a stored hash
    exists and the remote item is non-empty; otherwise size and timestamp
    decide alone.
    """
    if info.last_write > remote.last_modified:
        return True
    if info.size != remote.size:
        return True
    return (
        info.hash is not None
        and remote.size > 0
        and existing is not None
        and existing.hash is not None
        and info.hash != existing.hash
    )


def needs_update(existing: LocalFile, info: LocalFileInfo) -> bool:
    """Check whether a stored record is stale compared to the scanned file."""
    return (
        existing.sync_state != SyncState.PENDING_UPLOAD
        or existing.last_write != info.last_write
        or existing.size != info.size
        or (info.hash is not None and info.hash != existing.hash)
    )


class LocalFileScanner:
    """Marks new and locally modified files as pending upload.

    Never uploads anything itself and never touches remote items.
    """

    def __init__(self, repository: SyncRepository, files: LocalFileAccess):
        self.repository = repository
        self.files = files

    def scan_and_sync_local_files(self, cancel: Optional[CancellationToken] = None) -> ScanResult:
        """Walk the local mirror and update local file records.

        Args:
            cancel: Cancellation token, checked before each file

        Returns:
            ScanResult with processed, new and modified counts

        Raises:
            SyncCancelledError: If cancelled mid-scan
        """
        cancel = cancel or CancellationToken.none()

        local_files = list(self.files.enumerate_files())
        logger.info(f"Found {len(local_files)} local files to process")

        processed = new = modified = 0
        for info in local_files:
            cancel.raise_if_cancelled()
            processed += 1

            outcome = self._process_file(info)
            if outcome is _Outcome.NEW:
                new += 1
            elif outcome is _Outcome.MODIFIED:
                modified += 1

        logger.info(f"Local scan complete: {processed} processed, {new} new, {modified} modified")
        return ScanResult(processed=processed, new=new, modified=modified)

    def _process_file(self, info: LocalFileInfo) -> _Outcome:
        existing = self.repository.get_local_file_by_path(info.relative_path)
        remote = self.repository.get_remote_item_by_path(info.relative_path)

        if remote is None:
            if existing is None:
                self.repository.add_or_update_local_file(LocalFile(
                    id=uuid.uuid4().hex,
                    relative_path=info.relative_path,
                    hash=info.hash,
                    size=info.size,
                    last_write=info.last_write,
                    sync_state=SyncState.PENDING_UPLOAD,
                ))
                logger.debug(f"Marked new file for upload: {info.relative_path}")
                return _Outcome.NEW

            if existing.sync_state != SyncState.PENDING_UPLOAD:
                self.repository.add_or_update_local_file(existing.with_state(SyncState.PENDING_UPLOAD))
                logger.debug(f"Marked local-only file for upload: {info.relative_path}")
                return _Outcome.NEW

            return _Outcome.NONE

        if not is_modified(info, remote, existing):
            return _Outcome.NONE

        if existing is None:
            self.repository.add_or_update_local_file(LocalFile(
                id=remote.id,
                relative_path=info.relative_path,
                hash=info.hash,
                size=info.size,
                last_write=info.last_write,
                sync_state=SyncState.PENDING_UPLOAD,
            ))
            logger.debug(f"Marked modified file for upload: {info.relative_path}")
            return _Outcome.MODIFIED

        if needs_update(existing, info):
            self.repository.add_or_update_local_file(replace(
                existing,
                hash=info.hash,
                size=info.size,
                last_write=info.last_write,
                sync_state=SyncState.PENDING_UPLOAD,
            ))
            logger.debug(f"Marked modified file for upload: {info.relative_path}")
            return _Outcome.MODIFIED

        return _Outcome.NONE
