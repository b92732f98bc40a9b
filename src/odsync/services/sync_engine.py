"""Sync engine orchestrating enumeration, scanning and transfers.

State machine:

    Idle -> DeltaEnumeration -> TransferProcessing -> Completed
                 \\                     \\
                  +-> Cancelled / Failed <-+

Every transition is published on the engine's ProgressBroadcaster together
with the repository's pending counts.
"""

import logging
import threading
from typing import Callable, Optional

from ..backends.base import SyncRepository
from ..cancellation import CancellationToken
from ..exceptions import DeltaProcessingError, MissingDeltaTokenError, SyncCancelledError, SyncError
from ..models import DeltaToken, TransferStatus
from ..onedrive_client import RemoteClient
from ..progress import ProgressBroadcaster, SyncProgress, SyncStats, SyncStatus
from .delta_page_processor import DeltaPageProcessor
from .local_file_scanner import LocalFileScanner, ScanResult
from .transfer_service import TransferService

logger = logging.getLogger(__name__)


class SyncEngine:
    """Runs full, incremental and local-scan sync operations.

    One engine serves one account. Running two operations at the same time
    against the same repository is not supported.
    """

    def __init__(self, repository: SyncRepository, remote: RemoteClient,
                 transfer: TransferService, scanner: LocalFileScanner,
                 processor: Optional[DeltaPageProcessor] = None,
                 progress: Optional[ProgressBroadcaster] = None):
        """Initialize sync engine.

        Args:
            repository: Sync state repository
            remote: OneDrive client
            transfer: Transfer service running the transfer phases
            scanner: Local file scanner
            processor: Delta page processor; built from repository and remote when omitted
            progress: Broadcaster for progress events; the transfer service
                      publishes to it too unless it already has its own
        """
        self.repository = repository
        self.remote = remote
        self.transfer = transfer
        self.scanner = scanner
        self.progress = progress or transfer.progress or ProgressBroadcaster()
        self.processor = processor or DeltaPageProcessor(repository, remote, self.progress)

        if self.transfer.progress is None:
            self.transfer.progress = self.progress

        self._status = SyncStatus.IDLE
        self._status_lock = threading.Lock()

    @property
    def status(self) -> SyncStatus:
        with self._status_lock:
            return self._status

    def _set_status(self, status: SyncStatus, operation: str, message: str = '') -> None:
        with self._status_lock:
            self._status = status
        logger.debug(f"Sync status: {status.value} ({operation})")
        self.progress.publish(SyncProgress(
            status=status,
            operation=operation,
            pending_downloads=self.repository.get_pending_download_count(),
            pending_uploads=self.repository.get_pending_upload_count(),
            message=message,
        ))

    def _run(self, operation: str, steps: Callable[[CancellationToken], None],
             cancel: Optional[CancellationToken]) -> None:
        cancel = cancel or CancellationToken.none()
        logger.info(f"Starting {operation.lower()}")
        try:
            steps(cancel)
        except SyncCancelledError:
            logger.info(f"{operation} cancelled")
            self._set_status(SyncStatus.CANCELLED, operation, "Sync cancelled")
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            with self._status_lock:
                self._status = SyncStatus.FAILED
            self.progress.publish(SyncProgress(
                status=SyncStatus.FAILED,
                operation=operation,
                message=f"{operation} failed: {e}",
            ))
            raise

        self._set_status(SyncStatus.COMPLETED, operation, f"{operation} complete")
        logger.info(f"{operation} complete")

    def initial_full_sync(self, cancel: Optional[CancellationToken] = None) -> None:
        """Enumerate the whole drive, store the delta token, then transfer.

        The token is stored only when enumeration ran to the end, so a
        cancelled or failed enumeration is repeated in full next time.

        Raises:
            SyncCancelledError: If cancelled
            DeltaProcessingError: If enumeration failed
            RepositoryError: If sync state could not be persisted
        """
        def steps(token: CancellationToken) -> None:
            self._set_status(SyncStatus.DELTA_ENUMERATION, "Initial full sync", "Enumerating remote changes")
            result = self.processor.process_all_delta_pages(token)
            token.raise_if_cancelled()

            if result.final_token:
                self._store_token(result.final_token)
            else:
                logger.warning("Delta enumeration finished without a delta link; incremental sync unavailable")

            self._process_transfers("Initial full sync", token)

        self._run("Initial full sync", steps, cancel)

    def incremental_sync(self, cancel: Optional[CancellationToken] = None) -> None:
        """Apply one delta page from the stored token, then transfer.

        Raises:
            MissingDeltaTokenError: If no initial sync has stored a token
            SyncCancelledError: If cancelled
            DeltaProcessingError: If the delta page could not be fetched
            RepositoryError: If sync state could not be persisted
        """
        def steps(token: CancellationToken) -> None:
            stored = self.repository.get_delta_token()
            if stored is None:
                raise MissingDeltaTokenError()

            self._set_status(SyncStatus.DELTA_ENUMERATION, "Incremental sync", "Fetching remote changes")
            token.raise_if_cancelled()
            try:
                page = self.remote.get_delta_page(stored.token)
            except SyncError:
                raise
            except Exception as e:
                raise DeltaProcessingError(f"Error fetching delta page: {e}") from e

            self.repository.apply_remote_items(page.items)
            logger.info(f"Applied {len(page.items)} remote changes")

            # A next link resumes mid-feed, so the following run continues from there
            new_token = page.delta_link or page.next_link
            if new_token:
                self.repository.save_or_update_token(stored.advance(new_token))
                logger.info("Updated delta token")
            if page.next_link:
                logger.info("More remote changes pending; the next incremental sync continues them")

            self._process_transfers("Incremental sync", token)

        self._run("Incremental sync", steps, cancel)

    def scan_local_files(self, cancel: Optional[CancellationToken] = None) -> ScanResult:
        """Mark new and modified local files for upload. Transfers nothing."""
        result = self.scanner.scan_and_sync_local_files(cancel)
        self.progress.publish(SyncProgress(
            status=self.status,
            operation="Local scan",
            processed=result.processed,
            total=result.processed,
            pending_uploads=self.repository.get_pending_upload_count(),
            message=f"{result.new} new, {result.modified} modified",
        ))
        return result

    def get_stats(self) -> SyncStats:
        return SyncStats(
            pending_downloads=self.repository.get_pending_download_count(),
            pending_uploads=self.repository.get_pending_upload_count(),
            active_downloads=self.transfer.active_downloads,
            active_uploads=self.transfer.active_uploads,
            failed_transfers=self.repository.count_transfer_logs(TransferStatus.FAILED),
        )

    def _store_token(self, value: str) -> None:
        # One slot per account: reuse the stored row when there is one
        existing = self.repository.get_delta_token()
        token = existing.advance(value) if existing else DeltaToken.create(value)
        self.repository.save_or_update_token(token)
        logger.info("Saved delta token")

    def _process_transfers(self, operation: str, cancel: CancellationToken) -> None:
        self._set_status(SyncStatus.TRANSFER_PROCESSING, operation, "Processing transfers")

        deletes = self.transfer.process_pending_deletes(cancel)
        downloads = self.transfer.process_pending_downloads(cancel)
        uploads = self.transfer.process_pending_uploads(cancel)

        logger.info(
            f"Transfers done: {downloads.succeeded} downloaded, {uploads.succeeded} uploaded, "
            f"{deletes.succeeded} deleted locally, "
            f"{downloads.failed + uploads.failed + deletes.failed} failed"
        )
