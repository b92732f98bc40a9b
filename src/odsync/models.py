#!/usr/bin/env python3
"""Data model for odsync.

Entities are immutable values. A change produces a new value (see
``dataclasses.replace``) which is written back through the repository, so a
record held by one worker is never edited underneath another.

RemoteItem
    Snapshot of a OneDrive item as last reported by the delta feed. Deleted
    items are kept as tombstones (``is_deleted=True``).

LocalFile
    Reconciliation state of a file in the local mirror. Shares its id with the
    matching RemoteItem when one is known.

DeltaToken
    The single resumption slot for the account.

TransferLog
    One row per transfer attempt, created InProgress and updated in place.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class SyncState(Enum):
    """Local reconciliation status of a file."""

    UNKNOWN = 'Unknown'
    PENDING_DOWNLOAD = 'PendingDownload'
    DOWNLOADED = 'Downloaded'
    PENDING_UPLOAD = 'PendingUpload'
    UPLOADED = 'Uploaded'
    DELETED = 'Deleted'
    ERROR = 'Error'


class TransferType(Enum):
    DOWNLOAD = 'Download'
    UPLOAD = 'Upload'
    DELETE = 'Delete'


class TransferStatus(Enum):
    PENDING = 'Pending'
    IN_PROGRESS = 'InProgress'
    SUCCESS = 'Success'
    FAILED = 'Failed'


@dataclass(frozen=True)
class RemoteItem:
    """A file or folder entry on OneDrive."""

    id: str
    relative_path: str
    etag: Optional[str] = None
    ctag: Optional[str] = None
    size: int = 0
    last_modified: datetime = field(default_factory=utc_now)
    is_folder: bool = False
    is_deleted: bool = False


@dataclass(frozen=True)
class LocalFile:
    """A file in the local mirror and its sync state."""

    id: str
    relative_path: str
    hash: Optional[str] = None
    size: int = 0
    last_write: datetime = field(default_factory=utc_now)
    sync_state: SyncState = SyncState.UNKNOWN

    def with_state(self, state: SyncState) -> 'LocalFile':
        return replace(self, sync_state=state)


@dataclass(frozen=True)
class DeltaToken:
    """Resumption token for the delta feed."""

    id: str
    token: str
    last_synced: datetime = field(default_factory=utc_now)

    @classmethod
    def create(cls, token: str) -> 'DeltaToken':
        return cls(id=uuid.uuid4().hex, token=token, last_synced=utc_now())

    def advance(self, token: str) -> 'DeltaToken':
        """Return the same slot holding a newer token."""
        return replace(self, token=token, last_synced=utc_now())


@dataclass(frozen=True)
class TransferLog:
    """Record of one transfer attempt."""

    id: str
    transfer_type: TransferType
    item_id: str
    started: datetime
    completed: Optional[datetime] = None
    status: TransferStatus = TransferStatus.PENDING
    bytes_transferred: int = 0
    error: Optional[str] = None

    @classmethod
    def start(cls, transfer_type: TransferType, item_id: str) -> 'TransferLog':
        """Create the InProgress row written before a transfer begins."""
        return cls(
            id=uuid.uuid4().hex,
            transfer_type=transfer_type,
            item_id=item_id,
            started=utc_now(),
            status=TransferStatus.IN_PROGRESS,
        )

    def succeeded(self, bytes_transferred: int) -> 'TransferLog':
        return replace(
            self,
            completed=utc_now(),
            status=TransferStatus.SUCCESS,
            bytes_transferred=bytes_transferred,
            error=None,
        )

    def failed(self, error: str) -> 'TransferLog':
        return replace(
            self,
            completed=utc_now(),
            status=TransferStatus.FAILED,
            bytes_transferred=0,
            error=error,
        )

    def requeued(self) -> 'TransferLog':
        """Mark an attempt interrupted by cancellation as not yet done."""
        return replace(self, completed=None, status=TransferStatus.PENDING, bytes_transferred=0)


@dataclass(frozen=True)
class DeltaPage:
    """One page of the remote delta feed."""

    items: List[RemoteItem]
    next_link: Optional[str] = None
    delta_link: Optional[str] = None


@dataclass(frozen=True)
class LocalFileInfo:
    """Stat result for a file in the local mirror."""

    relative_path: str
    size: int
    last_write: datetime
    hash: Optional[str] = None


@dataclass(frozen=True)
class UploadSession:
    """Server-side handle for a resumable chunked upload."""

    upload_url: str
    session_id: str
    expires_at: datetime
