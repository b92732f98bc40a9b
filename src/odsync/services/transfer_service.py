"""Transfer service: moves file content between OneDrive and the local mirror.

Work is read from the repository a batch at a time and pushed through a
BoundedTransferQueue. Each transfer also holds a slot of a shared counting
semaphore, so downloads, uploads and deletes started from different threads
never exceed ``max_parallel_transfers`` together.

Per item the TransferLog row is written InProgress once, then updated in
place to Success, Failed, or back to Pending when cancellation interrupted
the attempt. A failed item keeps its state and is picked up by a later run.

Local edits win: a download whose target file waits for upload, and a local
delete of a file changed since its last sync, are skipped and counted as such.

Persistence errors are not per-item failures: a RepositoryError stops the
queue and propagates to the caller.
"""

import io
import logging
import threading
from contextlib import closing, contextmanager
from dataclasses import dataclass, replace
from typing import Callable, Iterator, List, Optional, Set, Tuple, TypeVar

from ..backends.base import SyncRepository
from ..cancellation import CancellationToken
from ..config import SyncSettings
from ..exceptions import RepositoryError, SyncCancelledError
from ..local_files import LocalFileAccess
from ..models import (
    LocalFile, RemoteItem, SyncState, TransferLog, TransferType, UploadSession,
)
from ..onedrive_client import RemoteClient
from ..path_utils import split_remote_path
from ..progress import ProgressBroadcaster, SyncProgress, SyncStatus
from ..retry import RetryPolicy
from ..transfer_queue import BoundedTransferQueue

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


@dataclass(frozen=True)
class TransferResult:
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class _PhaseCounter:
    """Thread-safe tally of one transfer phase."""

    def __init__(self, total: int):
        self.total = total
        self.processed = 0
        self.succeeded = 0
        self.failed = 0
        self.skipped = 0
        self._lock = threading.Lock()

    def record(self, success: bool) -> int:
        with self._lock:
            self.processed += 1
            if success:
                self.succeeded += 1
            else:
                self.failed += 1
            return self.processed

    def skip(self) -> int:
        with self._lock:
            self.processed += 1
            self.skipped += 1
            return self.processed

    def result(self) -> TransferResult:
        with self._lock:
            return TransferResult(succeeded=self.succeeded, failed=self.failed, skipped=self.skipped)


class TransferService:
    """Runs pending downloads, uploads and local deletes."""

    def __init__(self, repository: SyncRepository, remote: RemoteClient, files: LocalFileAccess,
                 settings: Optional[SyncSettings] = None,
                 progress: Optional[ProgressBroadcaster] = None,
                 retry: Optional[RetryPolicy] = None):
        """Initialize transfer service.

        Args:
            repository: Sync state repository
            remote: OneDrive client
            files: Local mirror access
            settings: Batch sizes, concurrency and retry settings
            progress: Broadcaster receiving one event per finished item
            retry: Retry policy; built from ``settings`` when omitted
        """
        self.repository = repository
        self.remote = remote
        self.files = files
        self.settings = settings or SyncSettings()
        self.progress = progress
        self.retry = retry or RetryPolicy.from_settings(self.settings)

        self._limiter = threading.BoundedSemaphore(self.settings.max_parallel_transfers)
        self._lock = threading.Lock()
        self._active = {TransferType.DOWNLOAD: 0, TransferType.UPLOAD: 0, TransferType.DELETE: 0}

    @property
    def active_downloads(self) -> int:
        with self._lock:
            return self._active[TransferType.DOWNLOAD]

    @property
    def active_uploads(self) -> int:
        with self._lock:
            return self._active[TransferType.UPLOAD]

    @contextmanager
    def _transfer_slot(self, transfer_type: TransferType) -> Iterator[None]:
        with self._limiter:
            with self._lock:
                self._active[transfer_type] += 1
            try:
                yield
            finally:
                with self._lock:
                    self._active[transfer_type] -= 1

    # Phases

    def process_pending_downloads(self, cancel: Optional[CancellationToken] = None) -> TransferResult:
        """Download every download-eligible remote item.

        Items whose local file is PendingUpload are skipped so the upload
        phase can send the local edit.

        Raises:
            SyncCancelledError: If cancelled; in-flight downloads finish first
            RepositoryError: If sync state could not be persisted
        """
        cancel = cancel or CancellationToken.none()
        batch_size = self.settings.download_batch_size
        counter = _PhaseCounter(self.repository.get_pending_download_count())
        logger.info(f"Processing {counter.total} pending downloads")

        self._drain(
            name="download",
            fetch_page=lambda page: self.repository.get_pending_downloads(batch_size, page),
            key=lambda item: item.id,
            handler=lambda item: self._download_one(item, cancel, counter),
            cancel=cancel,
        )
        return self._finish("Downloads", counter, cancel)

    def process_pending_uploads(self, cancel: Optional[CancellationToken] = None) -> TransferResult:
        """Upload every local file marked PendingUpload.

        Raises:
            SyncCancelledError: If cancelled; in-flight uploads finish first
            RepositoryError: If sync state could not be persisted
        """
        cancel = cancel or CancellationToken.none()
        batch_size = self.settings.upload_batch_size
        counter = _PhaseCounter(self.repository.get_pending_upload_count())
        logger.info(f"Processing {counter.total} pending uploads")

        self._drain(
            name="upload",
            fetch_page=lambda page: self.repository.get_pending_uploads(batch_size, page),
            key=lambda record: record.id,
            handler=lambda record: self._upload_one(record, cancel, counter),
            cancel=cancel,
        )
        return self._finish("Uploads", counter, cancel)

    def process_pending_deletes(self, cancel: Optional[CancellationToken] = None) -> TransferResult:
        """Remove local copies of files deleted on OneDrive.

        A local file changed since it was last synced is kept and marked
        PendingUpload instead.

        Raises:
            SyncCancelledError: If cancelled
            RepositoryError: If sync state could not be persisted
        """
        cancel = cancel or CancellationToken.none()
        batch_size = self.settings.download_batch_size
        counter = _PhaseCounter(self.repository.get_pending_local_delete_count())
        if counter.total:
            logger.info(f"Processing {counter.total} local deletes")

        self._drain(
            name="delete",
            fetch_page=lambda page: self.repository.get_pending_local_deletes(batch_size, page),
            key=lambda record: record.id,
            handler=lambda record: self._delete_one(record, cancel, counter),
            cancel=cancel,
        )
        return self._finish("Deletes", counter, cancel)

    def _drain(self, name: str, fetch_page: Callable[[int], List[T]], key: Callable[[T], str],
               handler: Callable[[T], None], cancel: CancellationToken) -> None:
        """Feed repository pages through a transfer queue until none are left.

        Each batch is drained before the next page is read, so finished items
        have already left the pending query. Items attempted in this run are
        not submitted again; the page index only moves on when a page holds
        nothing but such items.
        """
        attempted: Set[str] = set()
        page = 0

        with BoundedTransferQueue(handler, workers=self.settings.max_parallel_transfers,
                                  capacity=self.settings.queue_capacity,
                                  cancel=cancel, name=name) as transfer_queue:
            while not cancel.cancelled:
                batch = fetch_page(page)
                if not batch:
                    break

                fresh = [item for item in batch if key(item) not in attempted]
                if not fresh:
                    page += 1
                    continue

                logger.debug(f"Queueing {len(fresh)} {name} items from page {page}")
                for item in fresh:
                    attempted.add(key(item))
                    if not transfer_queue.submit(item):
                        break
                transfer_queue.join()

    def _finish(self, label: str, counter: _PhaseCounter, cancel: CancellationToken) -> TransferResult:
        result = counter.result()
        logger.info(
            f"{label} finished: {result.succeeded} succeeded, {result.failed} failed, {result.skipped} skipped"
        )
        if cancel.cancelled:
            raise SyncCancelledError(f"{label} cancelled after {counter.processed} items")
        return result

    # Per-item transfers

    def _run_logged(self, transfer_type: TransferType, item_id: str, description: str,
                    body: Callable[[], R], complete: Callable[[R], int],
                    cancel: CancellationToken) -> Optional[bool]:
        """Run one transfer under the retry policy and keep its log row current.

        Args:
            transfer_type: Kind of transfer being logged
            item_id: Id of the remote item or local file
            description: Name used in log messages
            body: The retried transfer itself
            complete: Persists the outcome of ``body``; returns bytes to log

        Returns:
            True on success, False on failure, None when cancelled
        """
        log = TransferLog.start(transfer_type, item_id)
        self.repository.log_transfer(log)

        try:
            outcome = self.retry.execute(body, cancel, description)
        except SyncCancelledError:
            self.repository.log_transfer(log.requeued())
            logger.info(f"{description} interrupted by cancellation")
            return None
        except RepositoryError:
            raise
        except Exception as e:
            self.repository.log_transfer(log.failed(str(e) or type(e).__name__))
            logger.error(f"{description} failed: {e}")
            return False

        transferred = complete(outcome)
        self.repository.log_transfer(log.succeeded(transferred))
        logger.info(f"{description} complete ({transferred} bytes)")
        return True

    def _download_one(self, item: RemoteItem, cancel: CancellationToken, counter: _PhaseCounter) -> None:
        if self._has_local_changes(item.relative_path):
            # Local edits win; the upload phase sends them over the remote copy
            logger.warning(f"{item.relative_path} changed locally and is waiting for upload, not downloading")
            self._item_skipped("Downloading", item.relative_path, counter)
            return

        def fetch() -> None:
            with closing(self.remote.download_content(item.id)) as stream:
                # Remote mtime keeps the scanner from seeing this as a local edit
                self.files.write_file(item.relative_path, stream, last_modified=item.last_modified)

        def complete(_: None) -> int:
            self.repository.mark_local_file_state(item.id, SyncState.DOWNLOADED)
            # Log what actually landed on disk, not the size OneDrive reported
            info = self.files.get_file_info(item.relative_path)
            return info.size if info else 0

        with self._transfer_slot(TransferType.DOWNLOAD):
            outcome = self._run_logged(
                TransferType.DOWNLOAD, item.id, f"Download {item.relative_path}", fetch, complete, cancel,
            )
        self._item_done("Downloading", item.relative_path, outcome, counter)

    def _upload_one(self, record: LocalFile, cancel: CancellationToken, counter: _PhaseCounter) -> None:
        def complete(result: Tuple[int, Optional[RemoteItem]]) -> int:
            sent, uploaded = result
            if uploaded is not None and uploaded.relative_path == record.relative_path:
                # Adopt the OneDrive id so the next delta does not look like a new remote file
                self.repository.apply_remote_items([uploaded])
                self.repository.mark_local_file_state(uploaded.id, SyncState.UPLOADED)
            else:
                self.repository.add_or_update_local_file(
                    replace(record, size=sent, sync_state=SyncState.UPLOADED)
                )
            return sent

        with self._transfer_slot(TransferType.UPLOAD):
            outcome = self._run_logged(
                TransferType.UPLOAD, record.id, f"Upload {record.relative_path}",
                lambda: self._send_file(record, cancel), complete, cancel,
            )
        self._item_done("Uploading", record.relative_path, outcome, counter)

    def _send_file(self, record: LocalFile, cancel: CancellationToken) -> Tuple[int, Optional[RemoteItem]]:
        """Stream a local file through a new upload session.

        Chunks are sent in order as contiguous, non-overlapping byte ranges.

        Returns:
            Tuple of (bytes sent, item reported by the final chunk or None)
        """
        parent, name = split_remote_path(record.relative_path)
        session: UploadSession = self.remote.create_upload_session(parent, name)

        stream = self.files.open_read(record.relative_path)
        if stream is None:
            raise FileNotFoundError(f"Local file no longer exists: {record.relative_path}")

        chunk_size = self.settings.upload_chunk_size
        uploaded: Optional[RemoteItem] = None
        with stream:
            total = stream.seek(0, io.SEEK_END)
            stream.seek(0)

            sent = 0
            while sent < total:
                cancel.raise_if_cancelled()
                range_end = min(sent + chunk_size, total) - 1
                uploaded = self.remote.upload_chunk(session, stream, sent, range_end, total_size=total)
                sent = range_end + 1
                logger.debug(f"Uploaded {sent}/{total} bytes of {record.relative_path}")

        return sent, uploaded

    def _delete_one(self, record: LocalFile, cancel: CancellationToken, counter: _PhaseCounter) -> None:
        info = self.files.get_file_info(record.relative_path)
        if info is not None and (info.size != record.size or info.last_write > record.last_write):
            # Local edits win over a remote delete
            logger.warning(f"{record.relative_path} was deleted on OneDrive but changed locally, keeping it")
            self.repository.add_or_update_local_file(replace(
                record,
                size=info.size,
                last_write=info.last_write,
                hash=info.hash or record.hash,
                sync_state=SyncState.PENDING_UPLOAD,
            ))
            self._item_skipped("Deleting", record.relative_path, counter)
            return

        def complete(_: bool) -> int:
            self.repository.add_or_update_local_file(record.with_state(SyncState.DELETED))
            return 0

        with self._transfer_slot(TransferType.DELETE):
            outcome = self._run_logged(
                TransferType.DELETE, record.id, f"Delete {record.relative_path}",
                lambda: self.files.delete_file(record.relative_path), complete, cancel,
            )
        self._item_done("Deleting", record.relative_path, outcome, counter)

    def _has_local_changes(self, relative_path: str) -> bool:
        record = self.repository.get_local_file_by_path(relative_path)
        if record is None or record.sync_state != SyncState.PENDING_UPLOAD:
            return False
        return self.files.get_file_info(relative_path) is not None

    def _item_done(self, operation: str, relative_path: str, outcome: Optional[bool],
                   counter: _PhaseCounter) -> None:
        if outcome is None:
            return

        processed = counter.record(outcome)
        message = f"{operation} {relative_path}" + ("" if outcome else " failed")
        self._publish_item(operation, processed, counter.total, message)

    def _item_skipped(self, operation: str, relative_path: str, counter: _PhaseCounter) -> None:
        processed = counter.skip()
        self._publish_item(operation, processed, counter.total, f"{operation} {relative_path} skipped")

    def _publish_item(self, operation: str, processed: int, total: int, message: str) -> None:
        if self.progress is None:
            return

        self.progress.publish(SyncProgress(
            status=SyncStatus.TRANSFER_PROCESSING,
            operation=operation,
            processed=processed,
            total=total,
            pending_downloads=self.repository.get_pending_download_count(),
            pending_uploads=self.repository.get_pending_upload_count(),
            message=message,
        ))
