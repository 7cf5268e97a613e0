"""WebDAV session using requests.

Attributes and listings come from ``PROPFIND`` multistatus replies; copy and
move are server side with a ``Destination`` header.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, unquote, urlsplit

from remote_ops._callbacks import DisabledLoginCallback
from remote_ops._capabilities import (
    Attributes,
    AttributesFind,
    CapabilityTable,
    Copy,
    Delete,
    Lister,
    Move,
)
from remote_ops._errors import InvalidPath, NotFound, ProtocolError
from remote_ops._models import Entry, EntryAttributes, EntryType
from remote_ops._path import DELIMITER
from remote_ops._session import Session
from remote_ops.backends._http import HTTPExceptionMapper, http_date

if TYPE_CHECKING:
    import requests

    from remote_ops._callbacks import LoginCallback, ProgressListener
    from remote_ops._errors import RemoteOpsError

log = logging.getLogger(__name__)

_DAV = "{DAV:}"

_PROPFIND = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<D:propfind xmlns:D="DAV:"><D:prop>'
    "<D:resourcetype/><D:getcontentlength/><D:getlastmodified/><D:creationdate/><D:getetag/>"
    "</D:prop></D:propfind>"
)


def _created(value: str | None) -> int | None:
    """Parse an RFC 3339 ``creationdate``."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        log.error("Failed to parse creation date %s", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _text(prop: ET.Element, name: str) -> str | None:
    node = prop.find(f"{_DAV}{name}")
    if node is None or node.text is None:
        return None
    return node.text.strip()


def parse_multistatus(content: bytes, root: str) -> list[Entry]:
    """Entries of a ``207 Multi-Status`` body, in reply order.

    :param content: The XML body.
    :param root: Path of the WebDAV root on the server; stripped from every href.
    :raises ProtocolError: If the body is not well-formed XML.
    """
    try:
        document = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ProtocolError(f"Invalid multistatus reply: {exc}", backend="dav") from exc
    prefix = root.rstrip(DELIMITER)
    entries: list[Entry] = []
    for response in document.findall(f"{_DAV}response"):
        href = response.findtext(f"{_DAV}href")
        if not href:
            continue
        path = unquote(urlsplit(href.strip()).path)
        if prefix and path.startswith(prefix):
            path = path[len(prefix) :]
        prop = None
        for propstat in response.findall(f"{_DAV}propstat"):
            status = propstat.findtext(f"{_DAV}status") or ""
            if " 200 " in f"{status} ":
                prop = propstat.find(f"{_DAV}prop")
                break
        if prop is None:
            log.warning("No properties for %s", href)
            continue
        collection = prop.find(f"{_DAV}resourcetype/{_DAV}collection") is not None
        try:
            entry = Entry(path or DELIMITER, EntryType.DIRECTORY if collection else EntryType.FILE)
        except InvalidPath:
            log.warning("Skip invalid href %s", href)
            continue
        length = _text(prop, "getcontentlength")
        entry.attributes = EntryAttributes(
            size=int(length) if length and length.isdigit() else None,
            modified=http_date(_text(prop, "getlastmodified")),
            created=_created(_text(prop, "creationdate")),
            checksum=(_text(prop, "getetag") or "").strip('"') or None,
        )
        entries.append(entry)
    return entries


# region: capabilities


class DAVDelete(Delete):
    def __init__(self, session: DAVSession) -> None:
        self._session = session

    def delete_entry(self, entry: Entry, prompt: LoginCallback, listener: ProgressListener) -> list[RemoteOpsError]:
        with self._session.mapper.errors("Cannot delete {name}", entry):
            self._session.request("DELETE", entry)
        return []


class DAVCopy(Copy):
    def __init__(self, session: DAVSession) -> None:
        self._session = session

    def copy(self, source: Entry, target: Entry) -> None:
        headers = {"Destination": self._session.url(target), "Overwrite": "T"}
        with self._session.mapper.errors("Cannot copy {name}", source):
            self._session.request("COPY", source, headers=headers)


class DAVMove(Move):
    """``MOVE``; the server answers ``412`` when the target exists and overwrite is off."""

    def __init__(self, session: DAVSession) -> None:
        self._session = session

    def move(
        self,
        source: Entry,
        target: Entry,
        overwrite: bool = False,
        listener: ProgressListener | None = None,
    ) -> None:
        headers = {"Destination": self._session.url(target), "Overwrite": "T" if overwrite else "F"}
        with self._session.mapper.errors("Cannot rename {name}", source):
            self._session.request("MOVE", source, headers=headers)


class DAVAttributes(Attributes):
    def __init__(self, session: DAVSession) -> None:
        self._session = session

    def find(self, entry: Entry) -> EntryAttributes:
        with self._session.mapper.errors("Failure to read attributes of {name}", entry):
            entries = self._session.propfind(entry, depth=0)
        for found in entries:
            if found.path == entry.path:
                return found.attributes
        raise NotFound(f"Failure to read attributes of {entry.name}", path=entry.absolute, backend="dav")


class DAVLister(Lister):
    def __init__(self, session: DAVSession) -> None:
        self._session = session

    def list(self, directory: Entry, listener: ProgressListener | None = None) -> list[Entry]:
        with self._session.mapper.errors("Listing directory {name} failed", directory):
            entries = self._session.propfind(directory, depth=1)
        return [e for e in entries if e.path != directory.path and e.path.parent == directory.path]


# endregion


class DAVSession(Session):
    """WebDAV session.

    :param base_url: URL of the WebDAV root, e.g. ``https://example.com/dav/``.
    :param username: Login name for basic authentication; ``None`` for anonymous access.
    :param password: Password. If ``None`` while ``username`` is set, ``login_callback`` is asked.
    :param verify: TLS certificate verification, as for ``requests``.
    :param timeout: Request timeout in seconds.
    :param encoding: Text encoding of entry names.
    :param login_callback: Prompt used when no password is configured.
    """

    def __init__(
        self,
        base_url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        verify: bool | str = True,
        timeout: float = 30,
        encoding: str = "utf-8",
        login_callback: LoginCallback | None = None,
    ) -> None:
        if not base_url or not base_url.strip():
            raise ValueError("base_url must be a non-empty string")
        self._base_url = base_url.rstrip(DELIMITER)
        self._root = urlsplit(self._base_url).path
        self._username = username
        self._password = password
        self._verify = verify
        self._timeout = timeout
        self._login_callback = login_callback or DisabledLoginCallback()
        self._http: requests.Session | None = None
        self.mapper = HTTPExceptionMapper(self.name)
        super().__init__(encoding=encoding)

    @property
    def name(self) -> str:
        return "dav"

    def _build_features(self) -> CapabilityTable:
        attributes = DAVAttributes(self)
        return CapabilityTable(
            delete=DAVDelete(self),
            copy=DAVCopy(self),
            move=DAVMove(self),
            find=AttributesFind(attributes),
            attributes=attributes,
            list=DAVLister(self),
        )

    def _client(self) -> requests.Session:
        if self._http is None:
            import requests

            log.info("Opening WebDAV session for %s", self._base_url)
            http = requests.Session()
            http.verify = self._verify
            if self._username is not None:
                http.auth = self._credentials()
            self._http = http
        return self._http

    def _credentials(self) -> tuple[str, str]:
        assert self._username is not None
        if self._password is not None:
            return self._username, self._password
        host = urlsplit(self._base_url).hostname or self._base_url
        credentials = self._login_callback.prompt(
            host, self._username, "Login", f"Login {self._username}@{host} with password"
        )
        return credentials.username, credentials.password

    def url(self, entry: Entry) -> str:
        """Absolute URL of ``entry``; collections end with the delimiter."""
        url = self._base_url + quote(entry.absolute)
        if entry.is_directory and not url.endswith(DELIMITER):
            url += DELIMITER
        return url

    def request(self, method: str, entry: Entry, **kwargs: Any) -> requests.Response:
        """Issue one request for ``entry``; error statuses raise ``HTTPError``."""
        url = self.url(entry)
        with self.exclusive() as http:
            log.debug("%s %s", method, url)
            response = http.request(method, url, timeout=self._timeout, **kwargs)
        response.raise_for_status()
        return response

    def propfind(self, entry: Entry, depth: int) -> list[Entry]:
        response = self.request(
            "PROPFIND",
            entry,
            data=_PROPFIND.encode("utf-8"),
            headers={"Depth": str(depth), "Content-Type": "application/xml; charset=utf-8"},
        )
        return parse_multistatus(response.content, self._root)

    def close(self) -> None:
        with self._lock:
            if self._http is not None:
                self._http.close()
                self._http = None
