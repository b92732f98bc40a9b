#!/usr/bin/env python3
"""Tests for the SQLite sync state repository."""

from dataclasses import replace

import pytest

from odsync.backends.sqlite_backend import SqliteSyncRepository
from odsync.exceptions import RepositoryError
from odsync.models import DeltaToken, LocalFile, SyncState, TransferLog, TransferStatus, TransferType

from conftest import BASE_TIME, make_remote_item


def test_apply_remote_items_upserts_by_id(repository):
    """Same id twice yields one row with the latest values."""
    repository.apply_remote_items([make_remote_item('a', 'docs/a.txt', size=10)])
    repository.apply_remote_items([make_remote_item('a', 'docs/renamed.txt', size=20, minutes=5)])

    stored = repository.get_remote_item('a')
    assert stored.relative_path == 'docs/renamed.txt'
    assert stored.size == 20
    assert stored.last_modified == make_remote_item('a', minutes=5).last_modified
    assert repository.get_pending_download_count() == 1


def test_omitted_items_are_not_deleted(repository):
    repository.apply_remote_items([make_remote_item('a'), make_remote_item('b')])
    repository.apply_remote_items([make_remote_item('a', size=99)])

    assert repository.get_remote_item('b') is not None
    assert repository.get_remote_item('a').size == 99


def test_remote_item_round_trip_keeps_every_field(repository):
    item = make_remote_item('x', 'folder/x.bin', minutes=3, size=4096, is_deleted=True)
    repository.apply_remote_items([item])
    assert repository.get_remote_item('x') == item


def test_apply_remote_items_is_all_or_nothing(repository):
    """A failing page commits none of its items."""
    repository.apply_remote_items([make_remote_item('a', size=1)])
    broken = replace(make_remote_item('b'), relative_path=None)

    with pytest.raises(RepositoryError):
        repository.apply_remote_items([make_remote_item('a', size=2), broken])

    assert repository.get_remote_item('a').size == 1
    assert repository.get_remote_item('b') is None


def test_download_eligibility(repository):
    """Only non-deleted files without a synced local row are eligible."""
    repository.apply_remote_items([
        make_remote_item('A'),
        make_remote_item('B', 'B', is_folder=True),
        make_remote_item('C', is_deleted=True),
    ])

    assert [item.id for item in repository.get_pending_downloads(10, 0)] == ['A']

    repository.mark_local_file_state('A', SyncState.DOWNLOADED)
    assert repository.get_pending_downloads(10, 0) == []
    assert repository.get_pending_download_count() == 0


def test_pending_local_state_keeps_item_eligible(repository):
    repository.apply_remote_items([make_remote_item('A')])
    repository.mark_local_file_state('A', SyncState.PENDING_DOWNLOAD)
    assert repository.get_pending_download_count() == 1


def test_pending_downloads_paging(repository):
    """Pages come back oldest first; offset is a page index."""
    items = [make_remote_item(f"item{i}", minutes=10 - i) for i in range(10)]
    repository.apply_remote_items(items)

    oldest_first = sorted(items, key=lambda item: item.last_modified)
    first = repository.get_pending_downloads(3, 0)
    second = repository.get_pending_downloads(3, 1)
    last = repository.get_pending_downloads(3, 3)

    assert [item.id for item in first] == [item.id for item in oldest_first[:3]]
    assert [item.id for item in second] == [item.id for item in oldest_first[3:6]]
    assert len(last) == 1
    assert repository.get_pending_downloads(3, 4) == []


def test_mark_local_file_state_uses_remote_item(repository):
    repository.apply_remote_items([make_remote_item('A', 'docs/a.txt', size=42, minutes=7)])
    repository.mark_local_file_state('A', SyncState.DOWNLOADED)

    local = repository.get_local_file('A')
    assert local.relative_path == 'docs/a.txt'
    assert local.size == 42
    assert local.last_write == BASE_TIME.replace(minute=7)
    assert local.sync_state == SyncState.DOWNLOADED


def test_mark_local_file_state_unknown_remote_is_noop(repository):
    repository.mark_local_file_state('missing', SyncState.DOWNLOADED)
    assert repository.get_local_file('missing') is None


def test_mark_local_file_state_takes_over_path(repository):
    """A path maps to one local record after marking."""
    repository.add_or_update_local_file(LocalFile(
        id='local-1', relative_path='a.txt', size=10, last_write=BASE_TIME,
        sync_state=SyncState.UPLOADED,
    ))
    repository.apply_remote_items([make_remote_item('remote-1', 'a.txt')])

    repository.mark_local_file_state('remote-1', SyncState.UPLOADED)

    assert repository.get_local_file('local-1') is None
    assert repository.get_local_file_by_path('a.txt').id == 'remote-1'


def test_pending_uploads(repository):
    for i in range(5):
        repository.add_or_update_local_file(LocalFile(
            id=f"f{i}", relative_path=f"f{i}.txt", size=i,
            last_write=BASE_TIME.replace(minute=i), sync_state=SyncState.PENDING_UPLOAD,
        ))
    repository.add_or_update_local_file(LocalFile(
        id='done', relative_path='done.txt', last_write=BASE_TIME, sync_state=SyncState.UPLOADED,
    ))

    assert repository.get_pending_upload_count() == 5
    assert [f.id for f in repository.get_pending_uploads(2)] == ['f0', 'f1']
    assert [f.id for f in repository.get_pending_uploads(2, 2)] == ['f4']


def test_remote_item_by_path_ignores_tombstones(repository):
    repository.apply_remote_items([make_remote_item('old', 'a.txt', is_deleted=True)])
    assert repository.get_remote_item_by_path('a.txt') is None

    repository.apply_remote_items([make_remote_item('new', 'a.txt')])
    assert repository.get_remote_item_by_path('a.txt').id == 'new'


def test_pending_local_deletes(repository):
    repository.apply_remote_items([make_remote_item('gone'), make_remote_item('kept')])
    repository.mark_local_file_state('gone', SyncState.DOWNLOADED)
    repository.mark_local_file_state('kept', SyncState.DOWNLOADED)
    repository.apply_remote_items([make_remote_item('gone', is_deleted=True)])

    assert [f.id for f in repository.get_pending_local_deletes(10)] == ['gone']
    assert repository.get_pending_local_delete_count() == 1

    repository.mark_local_file_state('gone', SyncState.DELETED)
    assert repository.get_pending_local_delete_count() == 0


def test_delta_token_upserts_by_id(repository):
    assert repository.get_delta_token() is None

    token = DeltaToken.create('link-1')
    repository.save_or_update_token(token)
    repository.save_or_update_token(token.advance('link-2'))

    stored = repository.get_delta_token()
    assert stored.id == token.id
    assert stored.token == 'link-2'


def test_delta_token_latest_wins(repository):
    older = DeltaToken(id='a', token='old', last_synced=BASE_TIME)
    newer = DeltaToken(id='b', token='new', last_synced=BASE_TIME.replace(hour=13))
    repository.save_or_update_token(newer)
    repository.save_or_update_token(older)
    assert repository.get_delta_token().token == 'new'


def test_transfer_log_updated_in_place(repository):
    log = TransferLog.start(TransferType.DOWNLOAD, 'A')
    repository.log_transfer(log)
    assert repository.get_transfer_log(log.id).status == TransferStatus.IN_PROGRESS

    repository.log_transfer(log.succeeded(123))

    stored = repository.get_transfer_log(log.id)
    assert stored.status == TransferStatus.SUCCESS
    assert stored.bytes_transferred == 123
    assert stored.completed is not None
    assert repository.count_transfer_logs() == 1
    assert repository.count_transfer_logs(TransferStatus.SUCCESS) == 1
    assert repository.get_transfer_logs('A') == [stored]


def test_state_survives_reopen(tmp_path):
    db_path = tmp_path / 'sync_state.db'
    repo = SqliteSyncRepository(db_path)
    repo.apply_remote_items([make_remote_item('A')])
    repo.save_or_update_token(DeltaToken.create('link'))
    repo.close()

    reopened = SqliteSyncRepository(db_path)
    try:
        assert reopened.get_remote_item('A') is not None
        assert reopened.get_delta_token().token == 'link'
        version = reopened.conn.execute(
            "SELECT value FROM metadata WHERE key = 'schema_version'"
        ).fetchone()[0]
        assert int(version) == SqliteSyncRepository.SCHEMA_VERSION
    finally:
        reopened.close()


def test_closed_repository_raises(tmp_path):
    repo = SqliteSyncRepository(tmp_path / 'db.sqlite')
    repo.close()
    with pytest.raises(RepositoryError):
        repo.get_delta_token()
    with pytest.raises(RepositoryError):
        repo.apply_remote_items([make_remote_item('A')])
