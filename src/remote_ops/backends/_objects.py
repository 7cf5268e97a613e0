"""Shared logic of the object-storage protocols (S3, Swift).

Object stores have a flat namespace. Directories are either implied by
keys sharing a prefix or marked by a zero-byte placeholder object whose key
ends with the delimiter.
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING

from remote_ops._capabilities import Delete, Move
from remote_ops._errors import AlreadyExists, NotFound, RemoteOpsError
from remote_ops._models import is_container

if TYPE_CHECKING:
    from collections.abc import Iterable

    from remote_ops._callbacks import LoginCallback, ProgressListener
    from remote_ops._capabilities import Copy, Find, SegmentList
    from remote_ops._errors import ExceptionMapper
    from remote_ops._models import Entry
    from remote_ops._region import RegionResolver

log = logging.getLogger(__name__)


def merge_listing(directory: Entry, objects: Iterable[Entry], prefixes: Iterable[Entry]) -> list[Entry]:
    """Combine the objects and common prefixes of one delimited listing.

    The placeholder of ``directory`` itself is dropped. A placeholder is
    hidden when the same directory is also implied by real descendants.
    Duplicates keep their first position.

    :param directory: The listed directory.
    :param objects: Entries built from object keys.
    :param prefixes: Directory entries built from common prefixes.
    """
    prefixes = list(prefixes)
    implied = {p.path for p in prefixes}
    seen: set[Entry] = set()
    children: list[Entry] = []
    for entry in [*objects, *prefixes]:
        if entry.path == directory.path:
            continue
        if entry.is_placeholder and entry.path in implied:
            continue
        if entry in seen:
            continue
        seen.add(entry)
        children.append(entry)
    return children


class ObjectStoreDelete(Delete):
    """Delete containers, placeholders and (segmented) objects.

    For a file, its segments are enumerated first, then the manifest is
    deleted, then the segments. A failing manifest delete aborts the batch;
    segment cleanup is best-effort and only degrades the outcome.

    :param mapper: Exception mapper of the backend.
    :param regions: Resolver whose cache entry is dropped when a container is deleted.
    :param segments: Segment enumeration, for protocols with segmented uploads.
    """

    def __init__(
        self,
        mapper: ExceptionMapper,
        regions: RegionResolver,
        segments: SegmentList | None = None,
    ) -> None:
        self._mapper = mapper
        self._regions = regions
        self._segments = segments

    @abc.abstractmethod
    def delete_container(self, container: Entry) -> None:
        """Native container delete. Errors are mapped by the caller."""

    @abc.abstractmethod
    def delete_object(self, entry: Entry) -> None:
        """Native delete of the object at ``key_of(entry)``. Errors are mapped by the caller."""

    def delete_entry(self, entry: Entry, prompt: LoginCallback, listener: ProgressListener) -> list[RemoteOpsError]:
        if is_container(entry):
            with self._mapper.errors("Cannot delete {name}", entry):
                self.delete_container(entry)
            self._regions.invalidate(entry)
            return []
        if entry.is_directory:
            try:
                with self._mapper.errors("Cannot delete {name}", entry):
                    self.delete_object(entry)
            except NotFound:
                log.warning("Ignore missing placeholder object %s", entry.absolute)
            return []
        segments = self._segments.list(entry) if self._segments is not None else []
        with self._mapper.errors("Cannot delete {name}", entry):
            self.delete_object(entry)
        return self.delete_segments(segments)

    def delete_segments(self, segments: list[Entry]) -> list[RemoteOpsError]:
        """Best-effort removal of segments; missing ones count as removed."""
        failures: list[RemoteOpsError] = []
        for segment in segments:
            try:
                with self._mapper.errors("Cannot delete {name}", segment):
                    self.delete_object(segment)
            except NotFound:
                log.debug("Segment %s already removed", segment.absolute)
            except RemoteOpsError as exc:
                log.warning("Failure deleting segment %s: %s", segment.absolute, exc)
                failures.append(exc)
        return failures


class CopyDeleteMove(Move):
    """Rename by server-side copy followed by delete of the source.

    :param copy: Copy capability of the same session.
    :param delete: Delete capability of the same session.
    :param find: Existence check used when ``overwrite`` is ``False``.
    """

    def __init__(self, copy: Copy, delete: Delete, find: Find) -> None:
        self._copy = copy
        self._delete = delete
        self._find = find

    def move(
        self,
        source: Entry,
        target: Entry,
        overwrite: bool = False,
        listener: ProgressListener | None = None,
    ) -> None:
        if not overwrite and self._find.find(target):
            raise AlreadyExists(f"Cannot rename {source.name}", path=target.absolute)
        self._copy.copy(source, target)
        self._delete.delete([source], listener=listener)
