"""OpenStack Swift session over the Swift REST API using requests.

Authentication against the identity service is not done here: the session
is given a token and the storage URL of every region the account can use.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, unquote, urlsplit

from remote_ops._capabilities import (
    Attributes,
    AttributesFind,
    CapabilityTable,
    Copy,
    Lister,
    SegmentList,
    Timestamp,
    UrlSign,
)
from remote_ops._errors import NotFound
from remote_ops._models import Entry, EntryAttributes, container_of, is_container, key_of
from remote_ops._path import DELIMITER
from remote_ops._region import Region, RegionResolver
from remote_ops._session import Session
from remote_ops.backends._http import HTTPExceptionMapper, http_date
from remote_ops.backends._objects import CopyDeleteMove, ObjectStoreDelete, merge_listing

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    import requests

    from remote_ops._callbacks import ProgressListener
    from remote_ops._region import RegionCache

log = logging.getLogger(__name__)

_PAGE_SIZE = 10000

_DIRECTORY_TYPE = "application/directory"
# Attribute holding the key a placeholder object was listed under.
_MARKER = "marker"

_SIGN_METHODS = frozenset({"GET", "HEAD", "PUT", "POST", "DELETE"})


def _modified(headers: Mapping[str, str]) -> int | None:
    """Client supplied ``X-Object-Meta-Mtime`` (seconds) wins over ``Last-Modified``."""
    value = headers.get("X-Object-Meta-Mtime")
    if value:
        try:
            return int(float(value) * 1000)
        except ValueError:
            log.error("Failed to parse mtime metadata %s", value)
    return http_date(headers.get("Last-Modified"))


def _listed(value: str | None) -> int | None:
    """Parse the ``last_modified`` field of a JSON listing, ISO 8601 in UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        log.error("Failed to parse timestamp %s", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _etag(value: str | None) -> str | None:
    return value.strip('"') if value else None


def _segment_index(segment: Entry) -> tuple[int, int, str]:
    # Numeric suffixes in ascending order, anything else after them by name.
    if segment.name.isdigit():
        return 0, int(segment.name), segment.name
    return 1, 0, segment.name


# region: capabilities


class SwiftSegments(SegmentList):
    """Segments of a dynamic (``X-Object-Manifest``) or static large object.

    A dynamic manifest names ``<container>/<prefix>``; its segments are the
    objects under that prefix, ordered by their numeric suffix. A static
    manifest lists its segments explicitly, in order. A plain object has
    no segments.
    """

    def __init__(self, session: SwiftSession) -> None:
        self._session = session

    def list(self, manifest: Entry) -> list[Entry]:
        if not manifest.is_file:
            return []
        try:
            with self._session.mapper.errors("Failure to read attributes of {name}", manifest):
                headers = self._session.request("HEAD", manifest).headers
        except NotFound:
            return []
        with self._session.mapper.errors("Cannot list segments of {name}", manifest):
            if headers.get("X-Static-Large-Object", "").lower() == "true":
                return self._static(manifest)
            prefix = headers.get("X-Object-Manifest")
            if prefix:
                return self._dynamic(manifest, unquote(prefix))
        return []

    def _static(self, manifest: Entry) -> list[Entry]:
        response = self._session.request("GET", manifest, params={"multipart-manifest": "get"})
        return [
            Entry.file(item["name"], size=item.get("bytes"), checksum=item.get("hash"))
            for item in response.json()
        ]

    def _dynamic(self, manifest: Entry, prefix: str) -> list[Entry]:
        container, _, key_prefix = prefix.partition(DELIMITER)
        region = self._session.regions.lookup(container)
        base = f"{DELIMITER}{container}{DELIMITER}"
        segments = [
            Entry.file(base + item["name"], size=item.get("bytes"), checksum=item.get("hash"))
            for item in self._session.objects(region, container, prefix=key_prefix)
        ]
        segments = [s for s in segments if s.path != manifest.path]
        log.debug("Found %d segments of %s", len(segments), manifest.absolute)
        return sorted(segments, key=_segment_index)


class SwiftDelete(ObjectStoreDelete):
    def __init__(self, session: SwiftSession, segments: SwiftSegments) -> None:
        super().__init__(session.mapper, session.regions, segments)
        self._session = session

    def delete_container(self, container: Entry) -> None:
        self._session.request("DELETE", container)

    def delete_object(self, entry: Entry) -> None:
        if not entry.is_directory:
            self._session.request("DELETE", entry)
            return
        *candidates, last = self._session.marker_keys(entry)
        for key in candidates:
            try:
                with self._session.mapper.errors("Cannot delete {name}", entry):
                    self._session.request("DELETE", entry, key=key)
                return
            except NotFound:
                log.debug("No placeholder object %s for %s", key, entry.absolute)
        self._session.request("DELETE", entry, key=last)


class SwiftCopy(Copy):
    """Server-side copy with ``X-Copy-From``."""

    def __init__(self, session: SwiftSession) -> None:
        self._session = session

    def copy(self, source: Entry, target: Entry) -> None:
        container = container_of(source)
        if container is None:
            raise NotFound("The root cannot be copied", path=source.absolute, backend="swift")
        origin = f"{DELIMITER}{quote(container.name, safe='')}{DELIMITER}{quote(key_of(source))}"
        with self._session.mapper.errors("Cannot copy {name}", source):
            self._session.request("PUT", target, headers={"X-Copy-From": origin, "Content-Length": "0"})


class SwiftAttributes(Attributes):
    def __init__(self, session: SwiftSession) -> None:
        self._session = session

    def find(self, entry: Entry) -> EntryAttributes:
        if entry.path.is_root:
            raise NotFound("The root has no attributes", path=entry.absolute, backend="swift")
        region = self._session.regions.lookup(entry)
        with self._session.mapper.errors("Failure to read attributes of {name}", entry):
            if is_container(entry):
                self._session.request("HEAD", entry)
                return EntryAttributes(region=region.name)
            if entry.is_directory:
                return self._directory(entry, region)
            headers = self._session.request("HEAD", entry).headers
        attributes = EntryAttributes(
            size=int(headers["Content-Length"]) if "Content-Length" in headers else None,
            modified=_modified(headers),
            checksum=_etag(headers.get("ETag")),
            region=region.name,
        )
        if "X-Object-Manifest" in headers:
            attributes.extra["manifest"] = unquote(headers["X-Object-Manifest"])
        elif headers.get("X-Static-Large-Object", "").lower() == "true":
            attributes.extra["manifest"] = "static"
        return attributes

    def _directory(self, entry: Entry, region: Region) -> EntryAttributes:
        """A directory exists if any object lies below it or its bare placeholder object does."""
        container = container_of(entry)
        assert container is not None
        prefix = key_of(entry).rstrip(DELIMITER) + DELIMITER
        if self._session.page(region, container.name, prefix=prefix, limit=1):
            return EntryAttributes(region=region.name)
        marker = self._session.marker_keys(entry)[0]
        if marker.endswith(DELIMITER):
            raise NotFound(f"Failure to read attributes of {entry.name}", path=entry.absolute, backend="swift")
        headers = self._session.request("HEAD", entry, key=marker).headers
        if headers.get("Content-Type", "").partition(";")[0].strip() != _DIRECTORY_TYPE:
            raise NotFound(f"Failure to read attributes of {entry.name}", path=entry.absolute, backend="swift")
        return EntryAttributes(modified=_modified(headers), region=region.name, extra={_MARKER: marker})


class SwiftLister(Lister):
    def __init__(self, session: SwiftSession) -> None:
        self._session = session

    def list(self, directory: Entry, listener: ProgressListener | None = None) -> list[Entry]:
        with self._session.mapper.errors("Listing directory {name} failed", directory):
            if directory.path.is_root:
                return self._containers()
            container = container_of(directory)
            assert container is not None
            region = self._session.regions.lookup(directory)
            objects: list[Entry] = []
            prefixes: list[Entry] = []
            for item in self._session.objects(region, container.name, prefix=key_of(directory), delimiter=DELIMITER):
                if "subdir" in item:
                    prefixes.append(Entry.directory(f"{container.absolute}{DELIMITER}{item['subdir']}"))
                else:
                    objects.append(self._object(container, item, region))
        return merge_listing(directory, objects, prefixes)

    def _containers(self) -> list[Entry]:
        volumes: dict[str, Entry] = {}
        for name in self._session.region_names:
            region = self._session.region(name)
            for item in self._session.objects(region, None):
                volumes.setdefault(item["name"], Entry.volume(item["name"], region=name))
        return list(volumes.values())

    @staticmethod
    def _object(container: Entry, item: dict[str, Any], region: Region) -> Entry:
        path = f"{container.absolute}{DELIMITER}{item['name']}"
        modified = _listed(item.get("last_modified"))
        if item["name"].endswith(DELIMITER) or item.get("content_type") == _DIRECTORY_TYPE:
            return Entry.placeholder(path, modified=modified, region=region.name, extra={_MARKER: item["name"]})
        return Entry.file(
            path,
            size=item.get("bytes"),
            modified=modified,
            checksum=item.get("hash"),
            region=region.name,
        )


class SwiftTimestamp(Timestamp):
    """Modification time kept in the ``X-Object-Meta-Mtime`` metadata header."""

    def __init__(self, session: SwiftSession) -> None:
        self._session = session

    def set_timestamp(
        self,
        entry: Entry,
        modified: int,
        created: int | None = None,
        accessed: int | None = None,
    ) -> None:
        with self._session.mapper.errors("Cannot change timestamp of {name}", entry):
            self._session.request("POST", entry, headers={"X-Object-Meta-Mtime": f"{modified / 1000:.3f}"})


class SwiftUrlSign(UrlSign):
    """Temporary URLs signed with the temp-URL key of the serving region.

    No request is made when ``region`` is given. Without a key for the
    region the result is ``None``.
    """

    def __init__(self, session: SwiftSession) -> None:
        self._session = session

    def sign(
        self,
        entry: Entry,
        expiry_seconds: int,
        region: Region | None = None,
        method: str = "GET",
    ) -> str | None:
        method = method.upper()
        if method not in _SIGN_METHODS:
            raise ValueError(f"Unsupported method for a signed URL: {method!r}")
        container = container_of(entry)
        if container is None or is_container(entry):
            raise ValueError(f"Only objects can be signed: {entry.absolute}")
        region = region or self._session.regions.lookup(entry)
        secret = self._session.regions.secret(region)
        if secret is None:
            log.debug("No temp URL key for region %s", region.name)
            return None
        storage = urlsplit(region.endpoint or self._session.region(region.name).endpoint)
        expires = int(time.time()) + expiry_seconds
        resource = f"{quote(container.name, safe='')}{DELIMITER}{quote(key_of(entry))}"
        path = f"{storage.path.rstrip(DELIMITER)}{DELIMITER}{resource}"
        # The middleware verifies the signature against the decoded path.
        body = f"{method}\n{expires}\n{unquote(path)}"
        signature = hmac.new(secret.encode(), body.encode(), hashlib.sha1).hexdigest()
        return f"{storage.scheme}://{storage.netloc}{path}?temp_url_sig={signature}&temp_url_expires={expires}"


# endregion


class SwiftSession(Session):
    """OpenStack Swift session.

    The first path segment is the container. Each container lives in one
    region; the region is found by probing the storage URLs, default first,
    and cached.

    :param storage_urls: Storage URL per region name, e.g.
        ``{"DFW": "https://storage101.dfw1.example.com/v1/AUTH_account"}``.
    :param token: Auth token sent as ``X-Auth-Token``.
    :param default_region: Region tried first and used for new containers.
        Defaults to the first of ``storage_urls``.
    :param temp_url_keys: Temp URL key per region name.
    :param region_cache: Region cache; defaults to the process-wide one.
    :param timeout: Request timeout in seconds.
    :param encoding: Text encoding of object names.
    """

    def __init__(
        self,
        *,
        storage_urls: Mapping[str, str],
        token: str,
        default_region: str | None = None,
        temp_url_keys: Mapping[str, str] | None = None,
        region_cache: RegionCache | None = None,
        timeout: float = 30,
        encoding: str = "utf-8",
    ) -> None:
        if not storage_urls:
            raise ValueError("storage_urls must name at least one region")
        if default_region is not None and default_region not in storage_urls:
            raise ValueError(f"Unknown default region {default_region!r}")
        self._storage_urls = dict(storage_urls)
        self._default_region = default_region or next(iter(self._storage_urls))
        self._token = token
        self._timeout = timeout
        self._http: requests.Session | None = None
        self.mapper = HTTPExceptionMapper(self.name)
        self.regions = RegionResolver(
            f"swift:{self._storage_urls[self._default_region]}",
            self._locate,
            secrets=dict(temp_url_keys or {}),
            cache=region_cache,
            fallback=self.region(self._default_region),
        )
        super().__init__(encoding=encoding)

    @property
    def name(self) -> str:
        return "swift"

    def _build_features(self) -> CapabilityTable:
        attributes = SwiftAttributes(self)
        find = AttributesFind(attributes)
        segments = SwiftSegments(self)
        copy = SwiftCopy(self)
        delete = SwiftDelete(self, segments)
        return CapabilityTable(
            delete=delete,
            copy=copy,
            move=CopyDeleteMove(copy, delete, find),
            find=find,
            attributes=attributes,
            list=SwiftLister(self),
            segments=segments,
            url_sign=SwiftUrlSign(self),
            timestamp=SwiftTimestamp(self),
        )

    # region: regions

    @property
    def region_names(self) -> list[str]:
        """Configured regions, default first."""
        return [self._default_region, *(n for n in self._storage_urls if n != self._default_region)]

    def region(self, name: str) -> Region:
        if name not in self._storage_urls:
            raise ValueError(f"Unknown region {name!r}")
        return Region(name, self._storage_urls[name])

    def _locate(self, container: str) -> Region | None:
        if len(self._storage_urls) == 1:
            return self.region(self._default_region)
        for name in self.region_names:
            region = self.region(name)
            try:
                with self.mapper.errors(f"Cannot locate container {container}"):
                    self.send("HEAD", self.url(region, container))
            except NotFound:
                continue
            return region
        return None

    # endregion

    # region: requests

    def _client(self) -> requests.Session:
        if self._http is None:
            import requests

            log.info("Opening Swift session for %s", self._storage_urls[self._default_region])
            self._http = requests.Session()
            self._http.headers.update({"X-Auth-Token": self._token, "Accept": "application/json"})
        return self._http

    @staticmethod
    def url(region: Region, container: str | None = None, key: str = "") -> str:
        assert region.endpoint is not None
        url = region.endpoint.rstrip(DELIMITER)
        if container is not None:
            url = f"{url}{DELIMITER}{quote(container, safe='')}"
            if key:
                url = f"{url}{DELIMITER}{quote(key)}"
        return url

    def send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Issue one request on the session's connection; error statuses raise ``HTTPError``."""
        with self.exclusive() as http:
            log.debug("%s %s", method, url)
            response = http.request(method, url, timeout=self._timeout, **kwargs)
        response.raise_for_status()
        return response

    def request(self, method: str, entry: Entry, *, key: str | None = None, **kwargs: Any) -> requests.Response:
        """Request the container or object of ``entry`` in the region serving it.

        :param key: Object key to use instead of the one derived from the path.
        """
        container = container_of(entry)
        if container is None:
            raise NotFound("The root is not in a container", path=entry.absolute, backend="swift")
        region = self.regions.lookup(container)
        return self.send(method, self.url(region, container.name, key_of(entry) if key is None else key), **kwargs)

    @staticmethod
    def marker_keys(directory: Entry) -> list[str]:
        """Keys the placeholder object of ``directory`` may have, most likely first.

        A listed placeholder keeps the key it was listed under. Otherwise the
        bare key of an ``application/directory`` marker is tried before the
        key ending with the delimiter.
        """
        listed = directory.attributes.extra.get(_MARKER)
        if isinstance(listed, str):
            return [listed]
        key = key_of(directory).rstrip(DELIMITER)
        return [key, key + DELIMITER]

    def page(
        self,
        region: Region,
        container: str | None,
        *,
        prefix: str = "",
        delimiter: str | None = None,
        marker: str | None = None,
        limit: int = _PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        """One page of a JSON listing; the account's containers when ``container`` is ``None``."""
        params: dict[str, Any] = {"format": "json", "limit": limit}
        if prefix:
            params["prefix"] = prefix
        if delimiter:
            params["delimiter"] = delimiter
        if marker:
            params["marker"] = marker
        response = self.send("GET", self.url(region, container), params=params)
        if response.status_code == 204:
            return []
        return list(response.json())

    def objects(
        self,
        region: Region,
        container: str | None,
        *,
        prefix: str = "",
        delimiter: str | None = None,
    ) -> Iterator[dict[str, Any]]:
        """All listing items, following the marker until a short page."""
        marker = None
        while True:
            items = self.page(region, container, prefix=prefix, delimiter=delimiter, marker=marker, limit=_PAGE_SIZE)
            yield from items
            if len(items) < _PAGE_SIZE:
                return
            marker = items[-1].get("name") or items[-1].get("subdir")

    # endregion

    def close(self) -> None:
        with self._lock:
            if self._http is not None:
                self._http.close()
                self._http = None
