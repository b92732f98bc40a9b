"""Delta feed enumeration into the state repository.

Pages are requested strictly in order because every continuation link comes
from the previous response. Each page is applied as one repository
transaction before the next one is requested.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..backends.base import SyncRepository
from ..cancellation import CancellationToken
from ..exceptions import DeltaProcessingError, SyncCancelledError
from ..onedrive_client import RemoteClient
from ..progress import ProgressBroadcaster, SyncProgress, SyncStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 10000


@dataclass(frozen=True)
class DeltaResult:
    """Outcome of draining the delta feed.

    Attributes:
        final_token: Last non-empty delta link seen, None if no page had one
        page_count: Pages applied
        total_items: Items applied across all pages
    """

    final_token: Optional[str]
    page_count: int
    total_items: int


class DeltaPageProcessor:
    """Drains the remote delta feed into the repository."""

    def __init__(self, repository: SyncRepository, remote: RemoteClient,
                 progress: Optional[ProgressBroadcaster] = None,
                 max_pages: int = DEFAULT_MAX_PAGES):
        self.repository = repository
        self.remote = remote
        self.progress = progress
        self.max_pages = max_pages

    def process_all_delta_pages(self, cancel: Optional[CancellationToken] = None,
                                start_token: Optional[str] = None) -> DeltaResult:
        """Request and apply delta pages until the feed is exhausted.

        Enumeration stops when a page has no next link, when ``cancel`` fires
        (checked between pages), or after ``max_pages`` pages. Nothing is
        written for the delta token here; the caller persists
        ``final_token`` once it decides the run is complete.

        Args:
            cancel: Cancellation token
            start_token: Link to resume from; None enumerates the whole drive

        Returns:
            DeltaResult

        Raises:
            DeltaProcessingError: If fetching or applying any page fails
        """
        cancel = cancel or CancellationToken.none()
        logger.info("Starting delta page processing")

        link = start_token
        final_token: Optional[str] = None
        page_count = 0
        total_items = 0

        try:
            while True:
                logger.debug(f"Requesting delta page {page_count + 1}")
                page = self.remote.get_delta_page(link)

                self.repository.apply_remote_items(page.items)
                page_count += 1
                total_items += len(page.items)

                # Pages without a delta link keep the previous candidate
                if page.delta_link:
                    final_token = page.delta_link

                logger.info(
                    f"Applied delta page {page_count}: {len(page.items)} items "
                    f"({total_items} total), more={'yes' if page.next_link else 'no'}"
                )
                self._publish(SyncProgress(
                    status=SyncStatus.DELTA_ENUMERATION,
                    operation="Enumerating remote changes",
                    processed=total_items,
                    message=f"Delta page {page_count} applied ({len(page.items)} items)",
                ))

                link = page.next_link
                if not link:
                    break
                if cancel.cancelled:
                    logger.info(f"Delta processing cancelled after {page_count} pages")
                    break
                if page_count >= self.max_pages:
                    logger.warning(f"Reached max page count ({self.max_pages}), stopping delta enumeration")
                    break
        except SyncCancelledError:
            raise
        except Exception as e:
            logger.error(f"Error processing delta pages: {e}", exc_info=True)
            self._publish(SyncProgress(
                status=SyncStatus.FAILED,
                operation="Enumerating remote changes",
                processed=total_items,
                message=f"Delta sync failed: {e}",
            ))
            raise DeltaProcessingError(f"Error processing delta pages: {e}") from e

        logger.info(f"Delta processing complete: {page_count} pages, {total_items} items")
        return DeltaResult(final_token=final_token, page_count=page_count, total_items=total_items)

    def _publish(self, event: SyncProgress) -> None:
        if self.progress is not None:
            self.progress.publish(event)
