"""Normalized error hierarchy and backend exception mapping."""

from __future__ import annotations

import abc
from contextlib import contextmanager
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from collections.abc import Iterator

    from remote_ops._models import Entry


class RemoteOpsError(Exception):
    """Base class for all remote_ops errors.

    :param message: Human-readable error description.
    :param path: The path involved in the error, if any.
    :param backend: The backend name involved, if any.
    """

    def __init__(self, message: str = "", *, path: Optional[str] = None, backend: Optional[str] = None) -> None:
        self.path = path
        self.backend = backend
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.path is not None:
            parts.append(f"path={self.path!r}")
        if self.backend is not None:
            parts.append(f"backend={self.backend!r}")
        return " | ".join(parts) if len(parts) > 1 else parts[0]

    def __repr__(self) -> str:
        cls = type(self).__name__
        args = [repr(super().__str__())]
        if self.path is not None:
            args.append(f"path={self.path!r}")
        if self.backend is not None:
            args.append(f"backend={self.backend!r}")
        return f"{cls}({', '.join(args)})"


class NotFound(RemoteOpsError):
    """Raised when a remote entry or local source does not exist."""


class AlreadyExists(RemoteOpsError):
    """Raised when a target already exists and overwrite is not allowed."""


class PermissionDenied(RemoteOpsError):
    """Raised when access is denied by the storage backend."""


class InvalidPath(RemoteOpsError):
    """Raised for malformed or unsafe paths."""


class CapabilityNotSupported(RemoteOpsError):
    """Raised when an operation requires a capability the protocol lacks.

    :param capability: The name of the unsupported capability.
    """

    def __init__(
        self,
        message: str = "",
        *,
        path: Optional[str] = None,
        backend: Optional[str] = None,
        capability: str = "",
    ) -> None:
        self.capability = capability
        super().__init__(message, path=path, backend=backend)

    def __str__(self) -> str:
        base = super().__str__()
        if self.capability:
            if base:
                return f"{base} | capability={self.capability!r}"
            return f"capability={self.capability!r}"
        return base


class BackendUnavailable(RemoteOpsError):
    """Raised when the backend cannot be reached."""


class LoginCanceled(RemoteOpsError):
    """Raised when an interactive credential prompt is aborted."""


class ProtocolError(RemoteOpsError):
    """Raised for a wire-level fault not otherwise classified."""


class ParseError(RemoteOpsError):
    """A single listing line could not be parsed.

    :param line: The raw reply line.
    """

    def __init__(
        self,
        message: str = "",
        *,
        path: Optional[str] = None,
        backend: Optional[str] = None,
        line: str = "",
    ) -> None:
        self.line = line
        super().__init__(message, path=path, backend=backend)


class Canceled(RemoteOpsError):
    """Raised when cooperative cancellation is observed mid-batch."""


class ExceptionMapper(abc.ABC):
    """Translate backend-native exceptions into remote_ops errors.

    Each backend provides one subclass. Errors that already belong to the
    remote_ops hierarchy pass through untouched.

    :param backend: Backend name attached to every mapped error.
    """

    def __init__(self, backend: str) -> None:
        self.backend = backend

    @abc.abstractmethod
    def map(self, exc: Exception, message: str, path: Optional[str]) -> RemoteOpsError:
        """Classify ``exc``. ``message`` is already formatted with the entry name."""

    def map_os_error(self, exc: OSError, message: str, path: Optional[str]) -> RemoteOpsError:
        """Shared classification for ``OSError`` raised by sockets and stdlib clients."""
        if isinstance(exc, FileNotFoundError):
            return NotFound(message, path=path, backend=self.backend)
        if isinstance(exc, PermissionError):
            return PermissionDenied(message, path=path, backend=self.backend)
        if isinstance(exc, (ConnectionError, TimeoutError)):
            return BackendUnavailable(f"{message}: {exc}", path=path, backend=self.backend)
        return ProtocolError(f"{message}: {exc}", path=path, backend=self.backend)

    @contextmanager
    def errors(self, message: str, entry: Entry | None = None) -> Iterator[None]:
        """Map exceptions raised inside the block.

        :param message: Template with a ``{name}`` placeholder for the entry name.
        :param entry: The entry the operation concerns.
        """
        try:
            yield
        except RemoteOpsError:
            raise
        except Exception as exc:
            name = entry.name if entry is not None else ""
            path = str(entry.path) if entry is not None else None
            raise self.map(exc, message.format(name=name), path) from exc
