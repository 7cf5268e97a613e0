"""Capability contracts, CapabilitySet and the per-session CapabilityTable."""

from __future__ import annotations

import abc
import dataclasses
import enum
from typing import TYPE_CHECKING, Any

from remote_ops._callbacks import DisabledLoginCallback, DisabledProgressListener, notify
from remote_ops._errors import Canceled, CapabilityNotSupported, NotFound
from remote_ops._outcome import Outcome

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterator, Sequence

    from remote_ops._callbacks import LoginCallback, ProgressListener
    from remote_ops._errors import RemoteOpsError
    from remote_ops._models import Acl, Entry, EntryAttributes, Permission
    from remote_ops._region import Region


class Capability(enum.Enum):
    """Operations a protocol may support."""

    DELETE = "delete"
    COPY = "copy"
    MOVE = "move"
    FIND = "find"
    ATTRIBUTES = "attributes"
    LIST = "list"
    SEGMENTS = "segments"
    URL_SIGN = "url_sign"
    UNIX_PERMISSION = "unix_permission"
    ACL_PERMISSION = "acl_permission"
    TIMESTAMP = "timestamp"


class CapabilitySet:
    """Immutable set of capabilities declared by a session.

    :param capabilities: The set of supported capabilities.
    """

    __slots__ = ("_caps",)
    _caps: frozenset[Capability]

    def __init__(self, capabilities: set[Capability]) -> None:
        object.__setattr__(self, "_caps", frozenset(capabilities))

    def supports(self, cap: Capability) -> bool:
        """Check whether a capability is supported."""
        return cap in self._caps

    def __contains__(self, cap: object) -> bool:
        return cap in self._caps

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._caps)

    def __len__(self) -> int:
        return len(self._caps)

    def __repr__(self) -> str:
        names = sorted(c.name for c in self._caps)
        return f"CapabilitySet({{{', '.join(names)}}})"

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("CapabilitySet is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("CapabilitySet is immutable")


# region: operation contracts


class Delete(abc.ABC):
    """Delete a batch of entries, one after the other, failing fast."""

    def delete(
        self,
        entries: Sequence[Entry],
        prompt: LoginCallback | None = None,
        listener: ProgressListener | None = None,
        cancel: threading.Event | None = None,
    ) -> Outcome:
        """Delete ``entries`` in order.

        The first unexpected error aborts the batch; entries already deleted
        stay deleted.

        :param prompt: Used only by auxiliary operations that need to log in.
        :param listener: Receives a ``Deleting {name}`` message per entry.
        :param cancel: Checked before each entry.
        :returns: ``DEGRADED`` if best-effort cleanup failed for some entry.
        :raises Canceled: If ``cancel`` is set before the batch is done.
        """
        prompt = prompt or DisabledLoginCallback()
        listener = listener or DisabledProgressListener()
        failures: list[RemoteOpsError] = []
        for entry in entries:
            if cancel is not None and cancel.is_set():
                raise Canceled(f"Delete canceled before {entry.name}", path=entry.absolute)
            notify(listener, f"Deleting {entry.name}")
            failures.extend(self.delete_entry(entry, prompt, listener))
        return Outcome.from_failures(failures)

    @abc.abstractmethod
    def delete_entry(self, entry: Entry, prompt: LoginCallback, listener: ProgressListener) -> list[RemoteOpsError]:
        """Delete one entry.

        :returns: Errors swallowed by best-effort steps.
        """


class Copy(abc.ABC):
    @abc.abstractmethod
    def copy(self, source: Entry, target: Entry) -> None:
        """Copy ``source`` to ``target``.

        :raises NotFound: If ``source`` does not exist.
        """


class Move(abc.ABC):
    @abc.abstractmethod
    def move(
        self,
        source: Entry,
        target: Entry,
        overwrite: bool = False,
        listener: ProgressListener | None = None,
    ) -> None:
        """Rename ``source`` to ``target``.

        :raises NotFound: If ``source`` does not exist.
        :raises AlreadyExists: If ``target`` exists and ``overwrite`` is ``False``.
        """


class Find(abc.ABC):
    @abc.abstractmethod
    def find(self, entry: Entry) -> bool:
        """Return ``True`` if ``entry`` exists. Never raises ``NotFound``."""


class Attributes(abc.ABC):
    @abc.abstractmethod
    def find(self, entry: Entry) -> EntryAttributes:
        """Read authoritative attributes from the backend.

        :raises NotFound: If ``entry`` does not exist.
        """


class Lister(abc.ABC):
    @abc.abstractmethod
    def list(self, directory: Entry, listener: ProgressListener | None = None) -> list[Entry]:
        """List the immediate children of ``directory``."""


class SegmentList(abc.ABC):
    @abc.abstractmethod
    def list(self, manifest: Entry) -> list[Entry]:
        """Segments belonging to ``manifest``, ordered by segment index."""


class UrlSign(abc.ABC):
    @abc.abstractmethod
    def sign(
        self,
        entry: Entry,
        expiry_seconds: int,
        region: Region | None = None,
        method: str = "GET",
    ) -> str | None:
        """Return a time-boxed signed URL, or ``None`` when no secret is configured."""


class UnixPermission(abc.ABC):
    @abc.abstractmethod
    def set_unix_permission(self, entry: Entry, permission: Permission) -> None: ...


class AclPermission(abc.ABC):
    @abc.abstractmethod
    def set_acl(self, entry: Entry, acl: Acl) -> None: ...


class Timestamp(abc.ABC):
    @abc.abstractmethod
    def set_timestamp(
        self,
        entry: Entry,
        modified: int,
        created: int | None = None,
        accessed: int | None = None,
    ) -> None:
        """Set timestamps, given in UTC milliseconds."""


class AttributesFind(Find):
    """Existence check built on an :class:`Attributes` capability."""

    def __init__(self, attributes: Attributes) -> None:
        self._attributes = attributes

    def find(self, entry: Entry) -> bool:
        if entry.path.is_root:
            return True
        try:
            self._attributes.find(entry)
            return True
        except NotFound:
            return False


# endregion


@dataclasses.dataclass(frozen=True)
class CapabilityTable:
    """Capability implementations of one session, fixed at construction.

    A field left as ``None`` means the protocol lacks that capability.
    """

    delete: Delete | None = None
    copy: Copy | None = None
    move: Move | None = None
    find: Find | None = None
    attributes: Attributes | None = None
    list: Lister | None = None
    segments: SegmentList | None = None
    url_sign: UrlSign | None = None
    unix_permission: UnixPermission | None = None
    acl_permission: AclPermission | None = None
    timestamp: Timestamp | None = None

    @property
    def capabilities(self) -> CapabilitySet:
        return CapabilitySet({c for c in Capability if getattr(self, c.value) is not None})

    def supports(self, cap: Capability) -> bool:
        return getattr(self, cap.value) is not None

    def require(self, cap: Capability, *, backend: str = "") -> Any:
        """Return the implementation of ``cap``.

        :raises CapabilityNotSupported: If the capability is missing.
        """
        impl = getattr(self, cap.value)
        if impl is None:
            raise CapabilityNotSupported(
                f"Capability '{cap.value}' is not supported",
                capability=cap.value,
                backend=backend or None,
            )
        return impl
