#!/usr/bin/env python3
"""Shared fixtures and fakes for odsync tests."""

import io
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from odsync.backends.sqlite_backend import SqliteSyncRepository
from odsync.config import SyncSettings
from odsync.local_files import LocalFileSystem
from odsync.models import DeltaPage, RemoteItem, UploadSession
from odsync.onedrive_client import RemoteClient

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_remote_item(item_id: str, path: Optional[str] = None, minutes: int = 0, size: int = 10,
                     is_folder: bool = False, is_deleted: bool = False) -> RemoteItem:
    """Build a RemoteItem modified ``minutes`` after BASE_TIME."""
    return RemoteItem(
        id=item_id,
        relative_path=path or f"{item_id}.txt",
        etag=f"etag-{item_id}",
        ctag=f"ctag-{item_id}",
        size=size,
        last_modified=BASE_TIME + timedelta(minutes=minutes),
        is_folder=is_folder,
        is_deleted=is_deleted,
    )


class FakeRemoteClient(RemoteClient):
    """In-memory RemoteClient recording every call."""

    def __init__(self, pages: Optional[Dict[Optional[str], DeltaPage]] = None,
                 contents: Optional[Dict[str, bytes]] = None):
        self.pages = pages or {}
        self.contents = contents or {}
        self.download_failures: Dict[str, int] = {}
        self.download_delay = 0.0

        self.delta_calls: List[Optional[str]] = []
        self.download_calls: List[str] = []
        self.sessions: List[tuple] = []
        self.chunks: List[tuple] = []
        self.upload_result: Optional[RemoteItem] = None

        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        return len(self.delta_calls) + len(self.download_calls) + len(self.sessions) + len(self.chunks)

    def get_delta_page(self, link=None):
        self.delta_calls.append(link)
        return self.pages[link]

    def download_content(self, item_id):
        with self._lock:
            self.download_calls.append(item_id)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.download_delay:
                time.sleep(self.download_delay)
            with self._lock:
                remaining = self.download_failures.get(item_id, 0)
                if remaining:
                    self.download_failures[item_id] = remaining - 1
                    raise ConnectionError(f"transient failure for {item_id}")
            return io.BytesIO(self.contents.get(item_id, b''))
        finally:
            with self._lock:
                self.in_flight -= 1

    def create_upload_session(self, parent_path, file_name):
        self.sessions.append((parent_path, file_name))
        return UploadSession(
            upload_url=f"https://upload.example.com/{len(self.sessions)}",
            session_id=str(len(self.sessions)),
            expires_at=BASE_TIME + timedelta(days=1),
        )

    def upload_chunk(self, session, stream, range_start, range_end, total_size=None):
        stream.seek(range_start)
        data = stream.read(range_end - range_start + 1)
        self.chunks.append((range_start, range_end, len(data), total_size))
        return self.upload_result


@pytest.fixture
def repository(tmp_path):
    repo = SqliteSyncRepository(tmp_path / "state" / "sync_state.db")
    yield repo
    repo.close()


@pytest.fixture
def sync_dir(tmp_path) -> Path:
    path = tmp_path / "OneDrive"
    path.mkdir()
    return path


@pytest.fixture
def files(sync_dir):
    return LocalFileSystem(sync_dir, use_trash=False)


@pytest.fixture
def remote():
    return FakeRemoteClient()


@pytest.fixture
def settings():
    """Settings with zero backoff so retries do not slow the suite down."""
    return SyncSettings(
        max_parallel_transfers=4,
        download_batch_size=3,
        upload_batch_size=3,
        queue_capacity=4,
        max_retries=2,
        retry_base_delay_ms=0,
    )
