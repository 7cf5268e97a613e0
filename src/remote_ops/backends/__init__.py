"""Protocol sessions."""

from __future__ import annotations

import importlib.util
from typing import TYPE_CHECKING

from remote_ops.backends._dav import DAVSession
from remote_ops.backends._ftp import FTPSession
from remote_ops.backends._s3 import S3Session
from remote_ops.backends._sftp import SFTPSession
from remote_ops.backends._swift import SwiftSession

if TYPE_CHECKING:
    from remote_ops._session import Session

__all__ = ["DAVSession", "FTPSession", "S3Session", "SFTPSession", "SwiftSession", "available_protocols"]

# Client library each protocol imports on first use; ``None`` for the standard library.
_PROTOCOLS: dict[str, tuple[type[Session], str | None]] = {
    "ftp": (FTPSession, None),
    "sftp": (SFTPSession, "paramiko"),
    "s3": (S3Session, "boto3"),
    "swift": (SwiftSession, "requests"),
    "dav": (DAVSession, "requests"),
}


def available_protocols() -> dict[str, type[Session]]:
    """Protocols whose client library is installed, by protocol identifier."""
    return {
        protocol: cls
        for protocol, (cls, module) in _PROTOCOLS.items()
        if module is None or importlib.util.find_spec(module) is not None
    }
