"""Remote entry model: identity, type tags and the mutable attribute bag."""

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING, NamedTuple

from remote_ops._path import DELIMITER, RemotePath

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class EntryType(enum.Enum):
    """Type tags of a remote entry. An entry is either a file or a directory."""

    FILE = "file"
    DIRECTORY = "directory"
    VOLUME = "volume"
    PLACEHOLDER = "placeholder"
    SYMLINK = "symlink"


# region: permissions


class Action(enum.IntFlag):
    """POSIX permission bits for one class of user."""

    NONE = 0
    EXECUTE = 1
    WRITE = 2
    READ = 4


@dataclasses.dataclass(frozen=True)
class Permission:
    """POSIX-style ``rwx`` triad for owner, group and other.

    :param user: Owner actions.
    :param group: Group actions.
    :param other: World actions.
    """

    user: Action = Action.NONE
    group: Action = Action.NONE
    other: Action = Action.NONE

    @classmethod
    def from_mode(cls, mode: int) -> Permission:
        """Build from the permission bits of an ``st_mode`` style integer."""
        return cls(Action((mode >> 6) & 0o7), Action((mode >> 3) & 0o7), Action(mode & 0o7))

    @classmethod
    def from_octal(cls, value: str) -> Permission:
        """Parse an octal string such as ``"644"`` or ``"0755"``.

        :raises ValueError: If ``value`` is not an octal number.
        """
        return cls.from_mode(int(value, 8))

    @property
    def mode(self) -> int:
        return (int(self.user) << 6) | (int(self.group) << 3) | int(self.other)

    @property
    def is_empty(self) -> bool:
        return self.mode == 0

    def __str__(self) -> str:
        return f"{self.mode:03o}"


# endregion

# region: access control lists


class Grant(NamedTuple):
    """A single ``(principal, role)`` pair."""

    principal: str
    role: str


class Acl:
    """Ordered set of grants.

    :param grants: Initial grants; duplicates are dropped, order is kept.
    """

    EVERYONE = "http://acs.amazonaws.com/groups/global/AllUsers"
    AUTHENTICATED = "http://acs.amazonaws.com/groups/global/AuthenticatedUsers"
    READ = "READ"
    WRITE = "WRITE"

    __slots__ = ("_grants",)

    def __init__(self, grants: Iterable[Grant] = ()) -> None:
        self._grants: dict[Grant, None] = {}
        for grant in grants:
            self._grants[Grant(*grant)] = None

    @classmethod
    def from_permission(cls, permission: Permission) -> Acl:
        """Map POSIX triads to fixed role grants.

        World read grants everyone read access; group read and group write
        grant authenticated users read and write access.
        """
        acl = cls()
        if Action.READ in permission.other:
            acl.add(cls.EVERYONE, cls.READ)
        if Action.READ in permission.group:
            acl.add(cls.AUTHENTICATED, cls.READ)
        if Action.WRITE in permission.group:
            acl.add(cls.AUTHENTICATED, cls.WRITE)
        return acl

    def add(self, principal: str, role: str) -> None:
        self._grants[Grant(principal, role)] = None

    def __iter__(self) -> Iterator[Grant]:
        return iter(self._grants)

    def __len__(self) -> int:
        return len(self._grants)

    def __contains__(self, item: object) -> bool:
        return item in self._grants

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Acl):
            return list(self._grants) == list(other._grants)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._grants))

    def __repr__(self) -> str:
        return f"Acl({list(self._grants)!r})"


# endregion


@dataclasses.dataclass
class EntryAttributes:
    """Mutable attribute bag of a remote entry.

    Timestamps are UTC milliseconds since the epoch; ``None`` stands for an
    unknown value.

    :param size: Size in bytes, ``None`` if unknown or not applicable.
    :param owner: Owner name or id.
    :param group: Group name or id.
    :param permission: POSIX permission.
    :param created: Creation time in milliseconds.
    :param modified: Modification time in milliseconds.
    :param accessed: Access time in milliseconds.
    :param region: Backend-specific locality tag.
    :param acl: Access control list.
    :param checksum: Optional checksum (e.g. ETag, MD5).
    :param extra: Backend-specific metadata.
    """

    size: int | None = None
    owner: str | None = None
    group: str | None = None
    permission: Permission | None = None
    created: int | None = None
    modified: int | None = None
    accessed: int | None = None
    region: str | None = None
    acl: Acl | None = None
    checksum: str | None = None
    extra: dict[str, object] = dataclasses.field(default_factory=dict)


class Entry:
    """A remote file, directory or container.

    Identity is the absolute path plus whether the entry is a directory.
    A directory never carries a size.

    :param path: Absolute remote path.
    :param types: One or more type tags; must contain exactly one of
        ``FILE`` or ``DIRECTORY``. ``VOLUME`` and ``PLACEHOLDER`` imply
        ``DIRECTORY``.
    :param attributes: Initial attributes.
    """

    __slots__ = ("_attributes", "path", "types")

    def __init__(
        self,
        path: RemotePath | str,
        types: EntryType | Iterable[EntryType] = EntryType.FILE,
        attributes: EntryAttributes | None = None,
    ) -> None:
        tags = {types} if isinstance(types, EntryType) else set(types)
        if tags & {EntryType.VOLUME, EntryType.PLACEHOLDER}:
            tags.add(EntryType.DIRECTORY)
        if (EntryType.FILE in tags) == (EntryType.DIRECTORY in tags):
            raise ValueError(f"Entry must be either a file or a directory, got {sorted(t.value for t in tags)}")
        self.path = path if isinstance(path, RemotePath) else RemotePath(path)
        self.types = frozenset(tags)
        self.attributes = attributes or EntryAttributes()

    @classmethod
    def file(cls, path: RemotePath | str, **attributes: object) -> Entry:
        return cls(path, EntryType.FILE, EntryAttributes(**attributes))  # type: ignore[arg-type]

    @classmethod
    def directory(cls, path: RemotePath | str, **attributes: object) -> Entry:
        return cls(path, EntryType.DIRECTORY, EntryAttributes(**attributes))  # type: ignore[arg-type]

    @classmethod
    def volume(cls, name: str, **attributes: object) -> Entry:
        return cls(RemotePath(DELIMITER + name), EntryType.VOLUME, EntryAttributes(**attributes))  # type: ignore[arg-type]

    @classmethod
    def placeholder(cls, path: RemotePath | str, **attributes: object) -> Entry:
        return cls(path, EntryType.PLACEHOLDER, EntryAttributes(**attributes))  # type: ignore[arg-type]

    @property
    def attributes(self) -> EntryAttributes:
        return self._attributes

    @attributes.setter
    def attributes(self, value: EntryAttributes) -> None:
        if self.is_directory and value.size is not None:
            value = dataclasses.replace(value, size=None)
        self._attributes = value

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def absolute(self) -> str:
        return str(self.path)

    @property
    def parent(self) -> Entry | None:
        """The containing directory, or ``None`` for the root."""
        parent = self.path.parent
        if parent is None:
            return None
        return Entry(parent, EntryType.DIRECTORY)

    @property
    def is_file(self) -> bool:
        return EntryType.FILE in self.types

    @property
    def is_directory(self) -> bool:
        return EntryType.DIRECTORY in self.types

    @property
    def is_volume(self) -> bool:
        return EntryType.VOLUME in self.types

    @property
    def is_placeholder(self) -> bool:
        return EntryType.PLACEHOLDER in self.types

    @property
    def is_symlink(self) -> bool:
        return EntryType.SYMLINK in self.types

    def child(self, name: str, types: EntryType | Iterable[EntryType] = EntryType.FILE) -> Entry:
        return Entry(self.path / name, types)

    def with_path(self, path: RemotePath) -> Entry:
        """Copy of this entry at another path, sharing nothing mutable."""
        return Entry(path, self.types, dataclasses.replace(self._attributes))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Entry):
            return self.path == other.path and self.is_directory == other.is_directory
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.path, self.is_directory))

    def __repr__(self) -> str:
        tags = ",".join(sorted(t.value for t in self.types))
        return f"Entry({self.absolute!r}, {tags})"


# region: container helpers


def is_container(entry: Entry) -> bool:
    """``True`` if ``entry`` is a top-level volume (bucket, container)."""
    return len(entry.path.parts) == 1 and entry.is_directory


def container_of(entry: Entry) -> Entry | None:
    """The top-level volume holding ``entry``, or ``None`` for the root."""
    if entry.path.is_root:
        return None
    if is_container(entry):
        return entry
    return Entry.volume(entry.path.parts[0])


def key_of(entry: Entry) -> str:
    """Object key of ``entry`` inside its container; placeholders end with the delimiter."""
    key = DELIMITER.join(entry.path.parts[1:])
    if key and entry.is_directory:
        return key + DELIMITER
    return key


# endregion
