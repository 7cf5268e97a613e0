"""WebDAV session tests with the server mocked by requests-mock.

Requires: requests, requests-mock (test dependencies).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

pytest.importorskip("requests", reason="requests not installed")
pytest.importorskip("requests_mock", reason="requests-mock not installed")

from remote_ops._callbacks import Credentials  # noqa: E402
from remote_ops._capabilities import Capability  # noqa: E402
from remote_ops._errors import AlreadyExists, NotFound, PermissionDenied, ProtocolError  # noqa: E402
from remote_ops._models import Entry  # noqa: E402
from remote_ops.backends._dav import DAVSession, parse_multistatus  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import Iterator

BASE = "https://dav.example.com/remote.php/dav"

LISTING = b"""<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/remote.php/dav/docs/</d:href>
    <d:propstat>
      <d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/docs/a%20b.txt</d:href>
    <d:propstat>
      <d:prop>
        <d:resourcetype/>
        <d:getcontentlength>42</d:getcontentlength>
        <d:getlastmodified>Tue, 02 Jan 2024 03:04:05 GMT</d:getlastmodified>
        <d:creationdate>2024-01-01T00:00:00Z</d:creationdate>
        <d:getetag>"e1"</d:getetag>
      </d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
    <d:propstat>
      <d:prop><d:quota-used-bytes/></d:prop>
      <d:status>HTTP/1.1 404 Not Found</d:status>
    </d:propstat>
  </d:response>
  <d:response>
    <d:href>https://dav.example.com/remote.php/dav/docs/sub/</d:href>
    <d:propstat>
      <d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
</d:multistatus>
"""


@pytest.fixture()
def session() -> Iterator[DAVSession]:
    s = DAVSession(BASE + "/", username="alice", password="secret")
    yield s
    s.close()


class TestParseMultistatus:
    def test_entries(self) -> None:
        root, a, sub = parse_multistatus(LISTING, "/remote.php/dav")
        assert root.absolute == "/docs"
        assert root.is_directory
        assert a.absolute == "/docs/a b.txt"
        assert a.is_file
        assert a.attributes.size == 42
        assert a.attributes.modified == 1704164645000
        assert a.attributes.created == 1704067200000
        assert a.attributes.checksum == "e1"
        assert sub.absolute == "/docs/sub"
        assert sub.is_directory

    def test_invalid_xml(self) -> None:
        with pytest.raises(ProtocolError, match="multistatus"):
            parse_multistatus(b"<not-closed>", "/")

    def test_response_without_properties_is_skipped(self) -> None:
        body = b"""<d:multistatus xmlns:d="DAV:"><d:response><d:href>/x</d:href>
        <d:propstat><d:prop/><d:status>HTTP/1.1 403 Forbidden</d:status></d:propstat>
        </d:response></d:multistatus>"""
        assert parse_multistatus(body, "/") == []


class TestSession:
    def test_empty_base_url(self) -> None:
        with pytest.raises(ValueError, match="base_url"):
            DAVSession(" ")

    def test_capabilities(self, session: DAVSession) -> None:
        assert session.name == "dav"
        for cap in (Capability.DELETE, Capability.COPY, Capability.MOVE, Capability.LIST, Capability.ATTRIBUTES):
            assert session.supports(cap)
        assert not session.supports(Capability.TIMESTAMP)
        assert not session.supports(Capability.URL_SIGN)

    def test_urls(self, session: DAVSession) -> None:
        assert session.url(Entry.file("/docs/a b.txt")) == f"{BASE}/docs/a%20b.txt"
        assert session.url(Entry.directory("/docs")) == f"{BASE}/docs/"

    def test_list(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("PROPFIND", f"{BASE}/docs/", status_code=207, content=LISTING)

        children = session.list(Entry.directory("/docs"))

        assert [c.absolute for c in children] == ["/docs/a b.txt", "/docs/sub"]
        request = http_mock.last_request
        assert request.headers["Depth"] == "1"
        assert request.headers["Authorization"].startswith("Basic ")
        assert b"getlastmodified" in request.body

    def test_attributes(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("PROPFIND", f"{BASE}/docs/a%20b.txt", status_code=207, content=LISTING)
        attributes = session.attributes(Entry.file("/docs/a b.txt"))
        assert attributes.size == 42
        assert http_mock.last_request.headers["Depth"] == "0"

    def test_attributes_of_unlisted_entry(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("PROPFIND", f"{BASE}/docs/other", status_code=207, content=LISTING)
        with pytest.raises(NotFound):
            session.attributes(Entry.file("/docs/other"))

    def test_find_missing(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("PROPFIND", f"{BASE}/docs/missing", status_code=404)
        assert not session.find(Entry.file("/docs/missing"))

    def test_denied(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("PROPFIND", f"{BASE}/private/", status_code=403)
        with pytest.raises(PermissionDenied):
            session.list(Entry.directory("/private"))

    def test_delete_collection(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.delete(f"{BASE}/docs/sub/", status_code=204)
        outcome = session.delete([Entry.directory("/docs/sub")])
        assert not outcome.degraded
        assert http_mock.call_count == 1

    def test_delete_missing(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.delete(f"{BASE}/docs/gone", status_code=404)
        with pytest.raises(NotFound):
            session.delete([Entry.file("/docs/gone")])

    def test_copy(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("COPY", f"{BASE}/docs/a", status_code=201)
        session.copy(Entry.file("/docs/a"), Entry.file("/docs/b"))
        headers = http_mock.last_request.headers
        assert headers["Destination"] == f"{BASE}/docs/b"
        assert headers["Overwrite"] == "T"

    def test_move(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("MOVE", f"{BASE}/docs/a", status_code=201)
        session.move(Entry.file("/docs/a"), Entry.file("/docs/b"))
        assert http_mock.last_request.headers["Overwrite"] == "F"

    def test_move_overwrite(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("MOVE", f"{BASE}/docs/a", status_code=204)
        session.move(Entry.file("/docs/a"), Entry.file("/docs/b"), overwrite=True)
        assert http_mock.last_request.headers["Overwrite"] == "T"

    def test_move_refused_by_precondition(self, session: DAVSession, http_mock: Any) -> None:
        http_mock.register_uri("MOVE", f"{BASE}/docs/a", status_code=412)
        with pytest.raises(AlreadyExists):
            session.move(Entry.file("/docs/a"), Entry.file("/docs/b"))

    def test_password_prompted(self, http_mock: Any) -> None:
        class Prompt:
            def prompt(self, host: str, username: str | None, title: str, reason: str) -> Credentials:
                assert host == "dav.example.com"
                return Credentials("alice", "prompted")

        http_mock.delete(f"{BASE}/a", status_code=204)
        s = DAVSession(BASE, username="alice", login_callback=Prompt())
        s.delete([Entry.file("/a")])
        assert http_mock.last_request.headers["Authorization"].startswith("Basic ")

    def test_anonymous(self, http_mock: Any) -> None:
        http_mock.delete(f"{BASE}/a", status_code=204)
        DAVSession(BASE).delete([Entry.file("/a")])
        assert "Authorization" not in http_mock.last_request.headers
