#!/usr/bin/env python3
"""Tests for delta page enumeration."""

import pytest

from odsync.cancellation import CancellationToken
from odsync.exceptions import DeltaProcessingError, RepositoryError
from odsync.models import DeltaPage
from odsync.progress import ProgressBroadcaster, SyncStatus
from odsync.services.delta_page_processor import DeltaPageProcessor

from conftest import FakeRemoteClient, make_remote_item


def three_page_feed():
    return {
        None: DeltaPage([make_remote_item('a'), make_remote_item('b')], next_link='next1'),
        'next1': DeltaPage([make_remote_item('c')], next_link='next2'),
        'next2': DeltaPage([make_remote_item('d')], delta_link='tokenX'),
    }


def test_last_non_empty_delta_link_wins(repository):
    remote = FakeRemoteClient(pages=three_page_feed())

    result = DeltaPageProcessor(repository, remote).process_all_delta_pages()

    assert result.final_token == 'tokenX'
    assert result.page_count == 3
    assert result.total_items == 4
    assert remote.delta_calls == [None, 'next1', 'next2']
    assert repository.get_pending_download_count() == 4


def test_earlier_delta_link_is_not_overwritten_by_empty_ones(repository):
    remote = FakeRemoteClient(pages={
        None: DeltaPage([], next_link='n1', delta_link='early'),
        'n1': DeltaPage([make_remote_item('a')]),
    })
    result = DeltaPageProcessor(repository, remote).process_all_delta_pages()
    assert result.final_token == 'early'


def test_starts_from_given_token(repository):
    remote = FakeRemoteClient(pages={'stored': DeltaPage([make_remote_item('a')], delta_link='new')})
    result = DeltaPageProcessor(repository, remote).process_all_delta_pages(start_token='stored')
    assert remote.delta_calls == ['stored']
    assert result.final_token == 'new'


def test_cancellation_stops_between_pages(repository):
    cancel = CancellationToken()
    progress = ProgressBroadcaster()
    progress.subscribe(lambda event: cancel.cancel())
    remote = FakeRemoteClient(pages=three_page_feed())

    result = DeltaPageProcessor(repository, remote, progress).process_all_delta_pages(cancel)

    assert result.page_count == 1
    assert result.final_token is None
    assert remote.delta_calls == [None]


def test_page_ceiling(repository):
    pages = {None: DeltaPage([], next_link='p1')}
    for i in range(1, 10):
        pages[f"p{i}"] = DeltaPage([], next_link=f"p{i + 1}")
    remote = FakeRemoteClient(pages=pages)

    result = DeltaPageProcessor(repository, remote, max_pages=5).process_all_delta_pages()

    assert result.page_count == 5
    assert len(remote.delta_calls) == 5


def test_remote_failure_is_wrapped(repository):
    remote = FakeRemoteClient(pages={None: DeltaPage([make_remote_item('a')], next_link='missing')})
    events = []
    progress = ProgressBroadcaster()
    progress.subscribe(events.append)

    with pytest.raises(DeltaProcessingError) as excinfo:
        DeltaPageProcessor(repository, remote, progress).process_all_delta_pages()

    assert isinstance(excinfo.value.__cause__, KeyError)
    # Pages applied before the failure stay applied
    assert repository.get_remote_item('a') is not None
    assert events[-1].status == SyncStatus.FAILED


def test_repository_failure_is_wrapped(repository):
    remote = FakeRemoteClient(pages=three_page_feed())
    repository.close()

    with pytest.raises(DeltaProcessingError) as excinfo:
        DeltaPageProcessor(repository, remote).process_all_delta_pages()
    assert isinstance(excinfo.value.__cause__, RepositoryError)


def test_progress_event_per_page(repository):
    events = []
    progress = ProgressBroadcaster()
    progress.subscribe(events.append)

    DeltaPageProcessor(repository, FakeRemoteClient(pages=three_page_feed()), progress).process_all_delta_pages()

    assert [e.processed for e in events] == [2, 3, 4]
    assert all(e.status == SyncStatus.DELTA_ENUMERATION for e in events)
