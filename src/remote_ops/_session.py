"""Session: one backend connection and the capabilities bound to it."""

from __future__ import annotations

import abc
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from remote_ops._capabilities import Capability

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from types import TracebackType

    from remote_ops._callbacks import LoginCallback, ProgressListener
    from remote_ops._capabilities import CapabilitySet, CapabilityTable
    from remote_ops._models import Acl, Entry, EntryAttributes, Permission
    from remote_ops._outcome import Outcome
    from remote_ops._region import Region


class Session(abc.ABC):
    """Abstract base class for all protocol sessions.

    A session owns exactly one client connection. The connection is not safe
    for concurrent requests, so every capability bound to the session issues
    its calls inside :meth:`exclusive`. Independent sessions share nothing
    except the process-wide region cache.

    Subclasses set their own fields first and call ``super().__init__()``
    last; the capability table is built there, once.

    :param encoding: Text encoding configured for the connection.
    """

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._lock = threading.RLock()
        self._features = self._build_features()

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Protocol identifier (e.g. ``'ftp'``, ``'swift'``)."""

    @abc.abstractmethod
    def _build_features(self) -> CapabilityTable:
        """Create the capability implementations for this protocol."""

    @abc.abstractmethod
    def _client(self) -> Any:
        """Return the native client, connecting lazily."""

    @contextmanager
    def exclusive(self) -> Iterator[Any]:
        """Hold the connection for the duration of the block."""
        with self._lock:
            yield self._client()

    @property
    def features(self) -> CapabilityTable:
        return self._features

    @property
    def capabilities(self) -> CapabilitySet:
        return self._features.capabilities

    def supports(self, capability: Capability) -> bool:
        return self._features.supports(capability)

    def close(self) -> None:  # noqa: B027
        """Release the connection. Default is a no-op."""

    def __enter__(self) -> Session:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.capabilities!r})"

    # region: capability dispatch

    def _require(self, capability: Capability) -> Any:
        return self._features.require(capability, backend=self.name)

    def delete(
        self,
        entries: Sequence[Entry],
        prompt: LoginCallback | None = None,
        listener: ProgressListener | None = None,
        cancel: threading.Event | None = None,
    ) -> Outcome:
        """Delete ``entries`` in order, failing fast.

        :raises CapabilityNotSupported: If the protocol cannot delete.
        """
        return self._require(Capability.DELETE).delete(entries, prompt, listener, cancel)  # type: ignore[no-any-return]

    def copy(self, source: Entry, target: Entry) -> None:
        """Copy a file.

        :raises NotFound: If ``source`` does not exist.
        """
        self._require(Capability.COPY).copy(source, target)

    def move(
        self,
        source: Entry,
        target: Entry,
        overwrite: bool = False,
        listener: ProgressListener | None = None,
    ) -> None:
        """Rename a file or directory.

        :raises NotFound: If ``source`` does not exist.
        :raises AlreadyExists: If ``target`` exists and ``overwrite`` is ``False``.
        """
        self._require(Capability.MOVE).move(source, target, overwrite, listener)

    def find(self, entry: Entry) -> bool:
        """Check whether ``entry`` exists."""
        return bool(self._require(Capability.FIND).find(entry))

    def attributes(self, entry: Entry) -> EntryAttributes:
        """Read attributes of ``entry``.

        :raises NotFound: If ``entry`` does not exist.
        """
        return self._require(Capability.ATTRIBUTES).find(entry)  # type: ignore[no-any-return]

    def list(self, directory: Entry, listener: ProgressListener | None = None) -> list[Entry]:
        """List immediate children of ``directory``."""
        return self._require(Capability.LIST).list(directory, listener)  # type: ignore[no-any-return]

    def segments(self, manifest: Entry) -> list[Entry]:
        """Segments of a large object, in index order."""
        return self._require(Capability.SEGMENTS).list(manifest)  # type: ignore[no-any-return]

    def signed_url(
        self,
        entry: Entry,
        expiry_seconds: int,
        region: Region | None = None,
        method: str = "GET",
    ) -> str | None:
        """Time-boxed signed URL, or ``None`` when no signing secret is configured."""
        return self._require(Capability.URL_SIGN).sign(entry, expiry_seconds, region, method)  # type: ignore[no-any-return]

    def set_unix_permission(self, entry: Entry, permission: Permission) -> None:
        self._require(Capability.UNIX_PERMISSION).set_unix_permission(entry, permission)

    def set_acl(self, entry: Entry, acl: Acl) -> None:
        self._require(Capability.ACL_PERMISSION).set_acl(entry, acl)

    def set_timestamp(
        self,
        entry: Entry,
        modified: int,
        created: int | None = None,
        accessed: int | None = None,
    ) -> None:
        self._require(Capability.TIMESTAMP).set_timestamp(entry, modified, created, accessed)

    # endregion
