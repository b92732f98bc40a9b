#!/usr/bin/env python3
"""OneDrive API client for odsync."""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Callable, Dict, Optional
from urllib.parse import quote, urlparse

import certifi
import requests
from dateutil import parser as date_parser

from .models import DeltaPage, RemoteItem, UploadSession, utc_now
from .path_utils import SecurityError, build_item_path, normalize_relative_path

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://graph.microsoft.com/v1.0"

# Graph keeps an idle upload session for about this long
_DEFAULT_SESSION_LIFETIME = timedelta(hours=24)


class RemoteClient(ABC):
    """Remote storage operations used by the sync services."""

    @abstractmethod
    def get_delta_page(self, link: Optional[str] = None) -> DeltaPage:
        """Fetch one delta page.

        Args:
            link: Continuation or delta link; None starts a full enumeration
        """
        pass

    @abstractmethod
    def download_content(self, item_id: str) -> BinaryIO:
        """Open a readable binary stream of a file's content."""
        pass

    @abstractmethod
    def create_upload_session(self, parent_path: str, file_name: str) -> UploadSession:
        pass

    @abstractmethod
    def upload_chunk(self, session: UploadSession, stream: BinaryIO,
                     range_start: int, range_end: int,
                     total_size: Optional[int] = None) -> Optional[RemoteItem]:
        """Send bytes ``range_start..range_end`` (inclusive) of ``stream``.

        Returns:
            The uploaded item once the final chunk is accepted, else None
        """
        pass


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse a Graph ISO-8601 timestamp into an aware UTC datetime."""
    if not value:
        return utc_now()
    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_root_item(item: Dict[str, Any]) -> bool:
    """Check whether a Graph item is the drive root folder."""
    return 'root' in item


def parse_remote_item(item: Dict[str, Any]) -> RemoteItem:
    """Convert a Graph driveItem into a RemoteItem.

    Args:
        item: driveItem JSON from the delta feed

    Returns:
        RemoteItem; a ``deleted`` facet makes it a tombstone
    """
    file_system_info = item.get('fileSystemInfo') or {}
    modified = item.get('lastModifiedDateTime') or file_system_info.get('lastModifiedDateTime')

    return RemoteItem(
        id=item['id'],
        relative_path=build_item_path(item),
        etag=item.get('eTag'),
        ctag=item.get('cTag'),
        size=int(item.get('size') or 0),
        last_modified=parse_timestamp(modified),
        is_folder='folder' in item,
        is_deleted='deleted' in item,
    )


class OneDriveClient(RemoteClient):
    """Client for the Microsoft Graph drive API.

    Access tokens are not managed here: ``token_provider`` is called before
    every Graph request and must return a valid bearer token.
    """

    def __init__(self, token_provider: Callable[[], str], api_base: str = DEFAULT_API_BASE,
                 session: Optional[requests.Session] = None, timeout: float = 60):
        """Initialize OneDrive client.

        Args:
            token_provider: Callable returning the current access token
            api_base: Graph API base URL
            session: Optional preconfigured requests session
            timeout: Per-request timeout in seconds
        """
        self.token_provider = token_provider
        self.api_base = api_base.rstrip('/')
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.verify = certifi.where()  # Explicit certificate validation

        parsed = urlparse(self.api_base)
        self._api_host = parsed.hostname
        self._api_path = parsed.path.rstrip('/') + '/'

    def _auth_headers(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = dict(headers or {})
        headers['Authorization'] = f"Bearer {self.token_provider()}"
        return headers

    def _api_request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """Make authenticated API request.

        Args:
            method: HTTP method
            endpoint: API endpoint (without base URL)
            **kwargs: Additional request arguments

        Returns:
            Response object
        """
        headers = self._auth_headers(kwargs.pop('headers', None))
        url = f"{self.api_base}{endpoint}"
        response = self._session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    def _api_request_url(self, url: str, **kwargs) -> requests.Response:
        """Make authenticated GET request to a full URL (delta links).

        Raises:
            SecurityError: If URL is not on the configured Graph host
        """
        # SSRF protection: links handed back by the API must stay on the API host
        parsed = urlparse(url)
        if not (parsed.scheme == 'https' and
                parsed.hostname == self._api_host and
                parsed.path.startswith(self._api_path)):
            raise SecurityError(
                f"Untrusted delta link: {url} "
                f"(scheme={parsed.scheme}, host={parsed.hostname}, path={parsed.path})"
            )

        headers = self._auth_headers(kwargs.pop('headers', None))
        response = self._session.request('GET', url, headers=headers, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    def get_delta_page(self, link: Optional[str] = None) -> DeltaPage:
        if link:
            response = self._api_request_url(link)
        else:
            logger.info("Starting delta enumeration from drive root")
            response = self._api_request('GET', '/me/drive/root/delta')

        data = response.json()
        items = [parse_remote_item(raw) for raw in data.get('value', []) if not is_root_item(raw)]

        page = DeltaPage(
            items=items,
            next_link=data.get('@odata.nextLink'),
            delta_link=data.get('@odata.deltaLink'),
        )
        logger.debug(
            f"Delta page: {len(items)} items, "
            f"next={'yes' if page.next_link else 'no'}, delta={'yes' if page.delta_link else 'no'}"
        )
        return page

    def download_content(self, item_id: str) -> BinaryIO:
        endpoint = f"/me/drive/items/{quote(item_id, safe='')}/content"
        response = self._api_request('GET', endpoint, stream=True)
        # Undo any transfer encoding so callers read the file bytes
        response.raw.decode_content = True
        return response.raw

    def create_upload_session(self, parent_path: str, file_name: str) -> UploadSession:
        """Create a resumable upload session for a file.

        Args:
            parent_path: Relative folder path, "" for the drive root
            file_name: Name of the file to create or replace

        Returns:
            UploadSession holding the pre-authorized upload URL
        """
        parent = normalize_relative_path(parent_path) if parent_path else ''
        remote_path = f"{parent}/{file_name}" if parent else file_name

        endpoint = f"/me/drive/root:/{quote(remote_path)}:/createUploadSession"
        body = {'item': {'@microsoft.graph.conflictBehavior': 'replace'}}
        data = self._api_request('POST', endpoint, json=body).json()

        upload_url = data['uploadUrl']
        if urlparse(upload_url).scheme != 'https':
            raise SecurityError(f"Upload URL is not https: {upload_url}")

        expires = data.get('expirationDateTime')
        expires_at = parse_timestamp(expires) if expires else utc_now() + _DEFAULT_SESSION_LIFETIME

        logger.debug(f"Created upload session for {remote_path}")
        return UploadSession(upload_url=upload_url, session_id=uuid.uuid4().hex, expires_at=expires_at)

    def upload_chunk(self, session: UploadSession, stream: BinaryIO,
                     range_start: int, range_end: int,
                     total_size: Optional[int] = None) -> Optional[RemoteItem]:
        length = range_end - range_start + 1
        if stream.seekable():
            stream.seek(range_start)
        data = stream.read(length)
        if len(data) != length:
            raise IOError(f"Short read for bytes {range_start}-{range_end}: got {len(data)} bytes")

        total = str(total_size) if total_size is not None else '*'
        headers = {
            'Content-Length': str(length),
            'Content-Range': f"bytes {range_start}-{range_end}/{total}",
        }

        # The upload URL is pre-authorized; sending a bearer token is rejected
        response = self._session.put(session.upload_url, data=data, headers=headers, timeout=self.timeout)
        response.raise_for_status()

        if response.status_code in (200, 201):
            return parse_remote_item(response.json())
        return None
