"""Abstract base class for the sync state repository."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import (
    DeltaToken, LocalFile, RemoteItem, SyncState, TransferLog, TransferStatus,
)


class SyncRepository(ABC):
    """Transactional store of sync state for one account.

    Holds:
    - Remote item snapshots written from delta pages
    - Local file records and their sync state
    - The delta resumption token
    - Transfer logs

    Implementations must be safe to call from several transfer workers at
    once. Every mutation is its own transaction; ``apply_remote_items`` commits
    a whole page or nothing.
    """

    @abstractmethod
    def get_delta_token(self) -> Optional[DeltaToken]:
        """Get the stored resumption token, or None before the first sync."""
        pass

    @abstractmethod
    def save_or_update_token(self, token: DeltaToken) -> None:
        """Insert the token, or update the row with the same id."""
        pass

    @abstractmethod
    def apply_remote_items(self, items: List[RemoteItem]) -> None:
        """Upsert remote items by id in a single transaction.

        Items not present in ``items`` are left untouched.

        Raises:
            RepositoryError: If the page could not be committed
        """
        pass

    @abstractmethod
    def get_remote_item(self, item_id: str) -> Optional[RemoteItem]:
        pass

    @abstractmethod
    def get_remote_item_by_path(self, relative_path: str) -> Optional[RemoteItem]:
        """Get the live (non-deleted) remote item at a path."""
        pass

    @abstractmethod
    def get_pending_downloads(self, page_size: int, offset: int) -> List[RemoteItem]:
        """Get one page of download-eligible items.

        Eligible items are non-deleted files whose local record is not
        Downloaded or Uploaded, ordered oldest ``last_modified`` first.

        Args:
            page_size: Items per page
            offset: Zero-based page index
        """
        pass

    @abstractmethod
    def get_pending_download_count(self) -> int:
        pass

    @abstractmethod
    def mark_local_file_state(self, remote_id: str, state: SyncState) -> None:
        """Upsert the local record of a remote item with a new state.

        Path, size and timestamp are taken from the remote item. Does nothing
        if the remote item is unknown.
        """
        pass

    @abstractmethod
    def add_or_update_local_file(self, record: LocalFile) -> None:
        """Upsert a local file record by id."""
        pass

    @abstractmethod
    def get_local_file(self, file_id: str) -> Optional[LocalFile]:
        pass

    @abstractmethod
    def get_local_file_by_path(self, relative_path: str) -> Optional[LocalFile]:
        pass

    @abstractmethod
    def get_pending_uploads(self, limit: int, offset: int = 0) -> List[LocalFile]:
        """Get one page of local files waiting for upload.

        Args:
            limit: Items per page
            offset: Zero-based page index
        """
        pass

    @abstractmethod
    def get_pending_upload_count(self) -> int:
        pass

    @abstractmethod
    def get_pending_local_deletes(self, limit: int, offset: int = 0) -> List[LocalFile]:
        """Get synced local files whose remote item has been deleted."""
        pass

    @abstractmethod
    def get_pending_local_delete_count(self) -> int:
        pass

    @abstractmethod
    def log_transfer(self, log: TransferLog) -> None:
        """Insert the transfer log, or update the row with the same id."""
        pass

    @abstractmethod
    def get_transfer_log(self, log_id: str) -> Optional[TransferLog]:
        pass

    @abstractmethod
    def get_transfer_logs(self, item_id: str) -> List[TransferLog]:
        """Get every transfer log for an item, oldest first."""
        pass

    @abstractmethod
    def count_transfer_logs(self, status: Optional[TransferStatus] = None) -> int:
        pass

    @abstractmethod
    def close(self) -> None:
        """Close repository and release resources."""
        pass
