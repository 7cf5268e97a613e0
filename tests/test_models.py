"""Tests for the entry model, permissions and ACLs."""

from __future__ import annotations

import pytest

from remote_ops._models import (
    Acl,
    Action,
    Entry,
    EntryAttributes,
    EntryType,
    Grant,
    Permission,
    container_of,
    is_container,
    key_of,
)
from remote_ops._path import RemotePath


class TestEntryIdentity:
    def test_file_and_directory_differ(self) -> None:
        assert Entry.file("/a/b") != Entry.directory("/a/b")

    def test_equal_ignores_attributes(self) -> None:
        assert Entry.file("/a/b", size=1) == Entry.file("/a/b", size=2)

    def test_hashable(self) -> None:
        assert len({Entry.file("/a"), Entry.file("a"), Entry.directory("/a")}) == 2

    def test_placeholder_is_directory(self) -> None:
        entry = Entry.placeholder("/c/dir")
        assert entry.is_directory
        assert entry.is_placeholder
        assert entry == Entry.directory("/c/dir")

    def test_volume_is_directory(self) -> None:
        volume = Entry.volume("bucket")
        assert volume.is_volume
        assert volume.is_directory
        assert volume.absolute == "/bucket"

    def test_symlink_file(self) -> None:
        entry = Entry("/a/link", {EntryType.FILE, EntryType.SYMLINK})
        assert entry.is_symlink
        assert entry.is_file

    def test_requires_exactly_one_kind(self) -> None:
        with pytest.raises(ValueError, match="either a file or a directory"):
            Entry("/a", {EntryType.FILE, EntryType.DIRECTORY})
        with pytest.raises(ValueError, match="either a file or a directory"):
            Entry("/a", EntryType.SYMLINK)

    def test_repr(self) -> None:
        assert repr(Entry.file("/a")) == "Entry('/a', file)"


class TestEntryAttributes:
    def test_directory_never_carries_size(self) -> None:
        directory = Entry.directory("/a", size=10)
        assert directory.attributes.size is None
        directory.attributes = EntryAttributes(size=5, owner="me")
        assert directory.attributes.size is None
        assert directory.attributes.owner == "me"

    def test_file_keeps_size(self) -> None:
        assert Entry.file("/a", size=10).attributes.size == 10

    def test_unknown_timestamps_are_none(self) -> None:
        attributes = EntryAttributes()
        assert attributes.modified is None
        assert attributes.created is None

    def test_with_path_copies_attributes(self) -> None:
        original = Entry.file("/a/b", size=3)
        moved = original.with_path(RemotePath("/a/c"))
        moved.attributes.size = 4
        assert original.attributes.size == 3
        assert moved.is_file
        assert moved.absolute == "/a/c"


class TestEntryNavigation:
    def test_parent(self) -> None:
        parent = Entry.file("/a/b/c").parent
        assert parent == Entry.directory("/a/b")

    def test_root_has_no_parent(self) -> None:
        assert Entry.directory("/").parent is None

    def test_child(self) -> None:
        assert Entry.directory("/a").child("b") == Entry.file("/a/b")


class TestContainers:
    def test_is_container(self) -> None:
        assert is_container(Entry.directory("/bucket"))
        assert not is_container(Entry.file("/bucket"))
        assert not is_container(Entry.directory("/bucket/dir"))

    def test_container_of(self) -> None:
        assert container_of(Entry.file("/bucket/a/b")) == Entry.volume("bucket")
        assert container_of(Entry.directory("/")) is None

    def test_key_of_file(self) -> None:
        assert key_of(Entry.file("/bucket/a/b.txt")) == "a/b.txt"

    def test_key_of_placeholder_ends_with_delimiter(self) -> None:
        assert key_of(Entry.directory("/bucket/a/b")) == "a/b/"

    def test_key_of_container_is_empty(self) -> None:
        assert key_of(Entry.volume("bucket")) == ""


class TestPermission:
    def test_from_mode(self) -> None:
        p = Permission.from_mode(0o754)
        assert p.user == Action.READ | Action.WRITE | Action.EXECUTE
        assert p.group == Action.READ | Action.EXECUTE
        assert p.other == Action.READ

    def test_from_octal(self) -> None:
        assert Permission.from_octal("0644").mode == 0o644

    def test_from_octal_invalid(self) -> None:
        with pytest.raises(ValueError):
            Permission.from_octal("rw-")

    def test_str_is_octal(self) -> None:
        assert str(Permission.from_mode(0o640)) == "640"

    def test_empty(self) -> None:
        assert Permission().is_empty
        assert not Permission.from_mode(0o400).is_empty

    def test_ignores_type_bits(self) -> None:
        assert Permission.from_mode(0o100644).mode == 0o644


class TestAcl:
    def test_deduplicates_keeping_order(self) -> None:
        acl = Acl([("a", "READ"), ("b", "WRITE"), ("a", "READ")])
        assert list(acl) == [Grant("a", "READ"), Grant("b", "WRITE")]
        assert len(acl) == 2

    def test_from_world_readable(self) -> None:
        acl = Acl.from_permission(Permission.from_mode(0o644))
        assert list(acl) == [Grant(Acl.EVERYONE, Acl.READ), Grant(Acl.AUTHENTICATED, Acl.READ)]

    def test_from_group_writable(self) -> None:
        acl = Acl.from_permission(Permission.from_mode(0o660))
        assert Grant(Acl.AUTHENTICATED, Acl.WRITE) in acl
        assert Grant(Acl.EVERYONE, Acl.READ) not in acl

    def test_private_permission_gives_empty_acl(self) -> None:
        assert len(Acl.from_permission(Permission.from_mode(0o600))) == 0

    def test_equality(self) -> None:
        assert Acl([("a", "READ")]) == Acl([Grant("a", "READ")])
        assert hash(Acl([("a", "READ")])) == hash(Acl([("a", "READ")]))
