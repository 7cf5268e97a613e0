"""LocalFile: attributes of the local source of an upload."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING

from remote_ops._errors import NotFound
from remote_ops._models import Permission

if TYPE_CHECKING:
    from remote_ops._types import PathLike


# Same limit as Linux MAXSYMLINKS.
_MAX_SYMLINK_HOPS = 40


def _millis(seconds: float) -> int:
    return int(round(seconds * 1000))


class LocalFile:
    """A file or directory on the local filesystem.

    Attributes are read on demand, never cached, so that the upload filter
    sees the state at the time of each phase.

    :param path: Local path; symbolic links are not resolved.
    """

    def __init__(self, path: PathLike) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def name(self) -> str:
        return self._path.name

    def _lstat(self) -> os.stat_result:
        try:
            return self._path.lstat()
        except FileNotFoundError:
            raise NotFound(f"Local file not found: {self._path}", path=str(self._path), backend="local") from None

    def exists(self) -> bool:
        """``True`` if the path exists; a dangling symlink counts as existing."""
        return os.path.lexists(self._path)

    def is_symlink(self) -> bool:
        return self._path.is_symlink()

    def is_directory(self) -> bool:
        return stat.S_ISDIR(self._lstat().st_mode)

    @property
    def size(self) -> int:
        """Size of the path itself, not of a symlink target."""
        return self._lstat().st_size

    @property
    def symlink_target(self) -> LocalFile:
        """The file a symbolic link finally points to, following chained links.

        :raises NotFound: If this is not a symbolic link, or the chain loops.
        """
        if not self.is_symlink():
            raise NotFound(f"Not a symbolic link: {self._path}", path=str(self._path), backend="local")
        target = self._path
        for _ in range(_MAX_SYMLINK_HOPS):
            link = Path(os.readlink(target))
            target = link if link.is_absolute() else target.parent / link
            if not target.is_symlink():
                return LocalFile(target)
        raise NotFound(f"Too many levels of symbolic links: {self._path}", path=str(self._path), backend="local")

    @property
    def permission(self) -> Permission:
        return Permission.from_mode(stat.S_IMODE(self._lstat().st_mode))

    @property
    def modified(self) -> int:
        """Modification time in UTC milliseconds."""
        return _millis(self._lstat().st_mtime)

    @property
    def accessed(self) -> int:
        return _millis(self._lstat().st_atime)

    @property
    def created(self) -> int | None:
        """Birth time where the platform records one, else ``None``."""
        birth = getattr(self._lstat(), "st_birthtime", None)
        return None if birth is None else _millis(birth)

    def __repr__(self) -> str:
        return f"LocalFile({str(self._path)!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LocalFile):
            return self._path == other._path
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._path)
