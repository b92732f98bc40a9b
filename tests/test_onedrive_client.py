#!/usr/bin/env python3
"""Tests for the OneDrive Graph client using a stub HTTP session."""

import io
from datetime import datetime, timezone

import pytest
import requests

from odsync.models import UploadSession
from odsync.onedrive_client import OneDriveClient, parse_remote_item
from odsync.path_utils import SecurityError

API = 'https://graph.microsoft.com/v1.0'


class StubResponse:
    def __init__(self, status_code=200, payload=None, raw=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.raw = raw

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class StubSession:
    """Records requests and replays queued responses."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []
        self.verify = None

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.requests.append({'method': method, 'url': url, 'headers': headers or {}, **kwargs})
        return self.responses.pop(0)

    def put(self, url, data=None, headers=None, timeout=None):
        self.requests.append({'method': 'PUT', 'url': url, 'headers': headers or {}, 'data': data})
        return self.responses.pop(0)


def make_client(responses):
    session = StubSession(responses)
    return OneDriveClient(lambda: 'token-123', api_base=API, session=session), session


def test_parse_remote_item():
    item = parse_remote_item({
        'id': 'ID1',
        'name': 'report.pdf',
        'eTag': 'e1',
        'cTag': 'c1',
        'size': 2048,
        'lastModifiedDateTime': '2024-03-01T10:30:00Z',
        'parentReference': {'path': '/drive/root:/Work'},
        'file': {},
    })

    assert item.relative_path == 'Work/report.pdf'
    assert item.size == 2048
    assert item.last_modified == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
    assert not item.is_folder
    assert not item.is_deleted


def test_parse_tombstone_and_folder():
    assert parse_remote_item({'id': 'gone', 'name': 'x', 'deleted': {}}).is_deleted
    assert parse_remote_item({'id': 'dir', 'name': 'Photos', 'folder': {'childCount': 3}}).is_folder


def test_get_delta_page_initial_request():
    client, session = make_client([StubResponse(payload={
        'value': [
            {'id': 'root', 'name': 'root', 'root': {}, 'folder': {}},
            {'id': 'A', 'name': 'a.txt', 'parentReference': {'path': '/drive/root:'}, 'size': 3},
        ],
        '@odata.nextLink': f"{API}/me/drive/root/delta?token=page2",
    })])

    page = client.get_delta_page(None)

    assert [item.id for item in page.items] == ['A']
    assert page.next_link.endswith('token=page2')
    assert page.delta_link is None
    assert session.requests[0]['url'] == f"{API}/me/drive/root/delta"
    assert session.requests[0]['headers']['Authorization'] == 'Bearer token-123'
    assert session.verify is not None


def test_get_delta_page_follows_link():
    link = f"{API}/me/drive/root/delta?token=abc"
    client, session = make_client([StubResponse(payload={'value': [], '@odata.deltaLink': 'final'})])

    page = client.get_delta_page(link)

    assert page.delta_link == 'final'
    assert session.requests[0]['url'] == link


@pytest.mark.parametrize('link', [
    'https://evil.example.com/v1.0/me/drive/root/delta',
    'http://graph.microsoft.com/v1.0/me/drive/root/delta',
    'https://graph.microsoft.com/beta/me/drive/root/delta',
])
def test_untrusted_delta_links_are_rejected(link):
    client, session = make_client([])
    with pytest.raises(SecurityError):
        client.get_delta_page(link)
    assert session.requests == []


def test_http_errors_propagate():
    client, _ = make_client([StubResponse(status_code=503)])
    with pytest.raises(requests.HTTPError):
        client.get_delta_page(None)


def test_download_content_returns_raw_stream():
    raw = io.BytesIO(b'data')
    client, session = make_client([StubResponse(raw=raw)])

    stream = client.download_content('ID!1')

    assert stream.read() == b'data'
    assert session.requests[0]['url'] == f"{API}/me/drive/items/ID%211/content"
    assert session.requests[0]['stream'] is True


def test_create_upload_session():
    client, session = make_client([StubResponse(payload={
        'uploadUrl': 'https://upload.onedrive.example/session/xyz',
        'expirationDateTime': '2024-03-02T10:00:00Z',
    })])

    upload = client.create_upload_session('Work/2024', 'my report.pdf')

    assert upload.upload_url == 'https://upload.onedrive.example/session/xyz'
    assert upload.expires_at == datetime(2024, 3, 2, 10, 0, tzinfo=timezone.utc)
    request = session.requests[0]
    assert request['method'] == 'POST'
    assert request['url'] == f"{API}/me/drive/root:/Work/2024/my%20report.pdf:/createUploadSession"


def test_upload_chunk_sends_range_without_auth():
    upload = UploadSession('https://upload.example/s', 's', datetime(2030, 1, 1, tzinfo=timezone.utc))
    client, session = make_client([
        StubResponse(status_code=202, payload={'nextExpectedRanges': ['4-']}),
        StubResponse(status_code=201, payload={'id': 'NEW', 'name': 'f.bin', 'size': 6}),
    ])
    stream = io.BytesIO(b'abcdef')

    assert client.upload_chunk(upload, stream, 0, 3, total_size=6) is None
    finished = client.upload_chunk(upload, stream, 4, 5)

    first, second = session.requests
    assert first['headers']['Content-Range'] == 'bytes 0-3/6'
    assert first['data'] == b'abcd'
    assert 'Authorization' not in first['headers']
    assert second['headers']['Content-Range'] == 'bytes 4-5/*'
    assert second['data'] == b'ef'
    assert finished.id == 'NEW'
