"""Tests for RemotePath."""

from __future__ import annotations

import pytest

from remote_ops._errors import InvalidPath
from remote_ops._path import RemotePath


class TestRemotePathImmutability:
    def test_immutable_setattr(self) -> None:
        """RemotePath rejects attribute assignment."""
        p = RemotePath("/a/b")
        with pytest.raises(AttributeError, match="immutable"):
            p.x = 1  # type: ignore[attr-defined]

    def test_immutable_delattr(self) -> None:
        p = RemotePath("/a")
        with pytest.raises(AttributeError, match="immutable"):
            del p._parts  # type: ignore[misc]


class TestRemotePathNormalization:
    def test_always_absolute(self) -> None:
        assert str(RemotePath("a/b")) == "/a/b"

    def test_strip_trailing_slash(self) -> None:
        assert str(RemotePath("/a/b/")) == "/a/b"

    def test_collapse_consecutive_slashes(self) -> None:
        assert str(RemotePath("/a///b")) == "/a/b"

    def test_dot_segment_removal(self) -> None:
        assert str(RemotePath("./a/./b/.")) == "/a/b"

    def test_root(self) -> None:
        assert str(RemotePath("/")) == "/"
        assert RemotePath("/").is_root
        assert RemotePath().is_root

    def test_name_may_contain_spaces(self) -> None:
        assert RemotePath("/c/my file.txt").name == "my file.txt"


class TestRemotePathValidation:
    def test_null_byte_rejected(self) -> None:
        with pytest.raises(InvalidPath):
            RemotePath("/a/b\0c")

    @pytest.mark.parametrize("raw", ["/foo/../bar", "../bar", ".."])
    def test_double_dot_rejected(self, raw: str) -> None:
        with pytest.raises(InvalidPath):
            RemotePath(raw)

    def test_join_rejects_double_dot(self) -> None:
        with pytest.raises(InvalidPath):
            RemotePath("/a") / "../b"


class TestRemotePathProperties:
    def test_name(self) -> None:
        assert RemotePath("/a/b/file.txt").name == "file.txt"

    def test_root_name_is_empty(self) -> None:
        assert RemotePath("/").name == ""

    def test_parent(self) -> None:
        assert RemotePath("/a/b").parent == RemotePath("/a")

    def test_parent_of_top_level_is_root(self) -> None:
        parent = RemotePath("/a").parent
        assert parent is not None
        assert parent.is_root

    def test_root_has_no_parent(self) -> None:
        assert RemotePath("/").parent is None

    def test_parts(self) -> None:
        assert RemotePath("/a/b/c").parts == ("a", "b", "c")


class TestRemotePathOperations:
    def test_truediv(self) -> None:
        assert RemotePath("/a") / "b/c" == RemotePath("/a/b/c")

    def test_with_name(self) -> None:
        assert RemotePath("/a/b.txt").with_name("c.txt") == RemotePath("/a/c.txt")

    def test_with_name_on_root_rejected(self) -> None:
        with pytest.raises(InvalidPath):
            RemotePath("/").with_name("x")

    def test_is_relative_to(self) -> None:
        assert RemotePath("/a/b/c").is_relative_to(RemotePath("/a"))
        assert not RemotePath("/ab").is_relative_to(RemotePath("/a/b"))

    def test_equality_and_hash(self) -> None:
        assert RemotePath("a/b") == RemotePath("/a//b/")
        assert len({RemotePath("/a/b"), RemotePath("a/b")}) == 1

    def test_not_equal_to_string(self) -> None:
        assert RemotePath("/a") != "/a"

    def test_repr(self) -> None:
        assert repr(RemotePath("/a/b")) == "RemotePath('/a/b')"
