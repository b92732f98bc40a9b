#!/usr/bin/env python3
"""Tests for progress events and the broadcaster."""

from odsync.progress import ProgressBroadcaster, SyncProgress, SyncStatus


def event(message='tick'):
    return SyncProgress(status=SyncStatus.TRANSFER_PROCESSING, operation='Downloading', message=message)


def test_every_subscriber_receives_every_event():
    broadcaster = ProgressBroadcaster()
    first, second = [], []
    broadcaster.subscribe(first.append)
    broadcaster.subscribe(second.append)

    broadcaster.publish(event('a'))
    broadcaster.publish(event('b'))

    assert [e.message for e in first] == ['a', 'b']
    assert [e.message for e in second] == ['a', 'b']


def test_late_subscriber_gets_no_replay():
    broadcaster = ProgressBroadcaster()
    broadcaster.publish(event('early'))

    received = []
    broadcaster.subscribe(received.append)
    broadcaster.publish(event('late'))

    assert [e.message for e in received] == ['late']


def test_unsubscribe():
    broadcaster = ProgressBroadcaster()
    received = []
    unsubscribe = broadcaster.subscribe(received.append)
    assert broadcaster.subscriber_count == 1

    unsubscribe()
    unsubscribe()
    broadcaster.publish(event())

    assert received == []
    assert broadcaster.subscriber_count == 0


def test_failing_subscriber_does_not_block_others():
    broadcaster = ProgressBroadcaster()
    received = []

    def broken(_):
        raise RuntimeError('subscriber bug')

    broadcaster.subscribe(broken)
    broadcaster.subscribe(received.append)
    broadcaster.publish(event())

    assert len(received) == 1


def test_percent_complete():
    assert SyncProgress(SyncStatus.TRANSFER_PROCESSING, 'Uploading', processed=1, total=4).percent_complete == 25.0
    assert SyncProgress(SyncStatus.DELTA_ENUMERATION, 'Enumerating', processed=7).percent_complete == 0.0
