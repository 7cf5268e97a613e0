"""FTP session using the standard library ``ftplib``.

Listings use the machine-readable ``MLSD``/``MLST`` commands only.
"""

from __future__ import annotations

import contextlib
import ftplib
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from remote_ops._callbacks import DisabledLoginCallback
from remote_ops._capabilities import (
    Attributes,
    AttributesFind,
    CapabilityTable,
    Delete,
    Lister,
    Move,
    Timestamp,
    UnixPermission,
)
from remote_ops._errors import (
    AlreadyExists,
    BackendUnavailable,
    ExceptionMapper,
    NotFound,
    PermissionDenied,
    ProtocolError,
    RemoteOpsError,
)
from remote_ops._session import Session
from remote_ops.backends._mlsd import read_listing

if TYPE_CHECKING:
    from remote_ops._callbacks import LoginCallback, ProgressListener
    from remote_ops._models import Entry, EntryAttributes, Permission

log = logging.getLogger(__name__)


class FTPExceptionMapper(ExceptionMapper):
    """Classify ``ftplib`` errors by their reply code."""

    def map(self, exc: Exception, message: str, path: Optional[str]) -> RemoteOpsError:
        if isinstance(exc, ftplib.error_perm):
            code = str(exc)[:3]
            if code == "550":
                return NotFound(message, path=path, backend=self.backend)
            if code in ("530", "532"):
                return PermissionDenied(f"{message}: {exc}", path=path, backend=self.backend)
            return ProtocolError(f"{message}: {exc}", path=path, backend=self.backend)
        if isinstance(exc, ftplib.error_temp):
            return BackendUnavailable(f"{message}: {exc}", path=path, backend=self.backend)
        if isinstance(exc, EOFError):
            return BackendUnavailable(f"{message}: connection closed", path=path, backend=self.backend)
        if isinstance(exc, OSError):
            return self.map_os_error(exc, message, path)
        return ProtocolError(f"{message}: {exc}", path=path, backend=self.backend)


# region: capabilities


class FTPDelete(Delete):
    def __init__(self, session: FTPSession) -> None:
        self._session = session

    def delete_entry(self, entry: Entry, prompt: LoginCallback, listener: ProgressListener) -> list[RemoteOpsError]:
        with self._session.mapper.errors("Cannot delete {name}", entry), self._session.exclusive() as ftp:
            if entry.is_directory:
                ftp.rmd(entry.absolute)
            else:
                ftp.delete(entry.absolute)
        return []


class FTPMove(Move):
    def __init__(self, session: FTPSession, find: AttributesFind, delete: FTPDelete) -> None:
        self._session = session
        self._find = find
        self._delete = delete

    def move(
        self,
        source: Entry,
        target: Entry,
        overwrite: bool = False,
        listener: ProgressListener | None = None,
    ) -> None:
        if self._find.find(target):
            if not overwrite:
                raise AlreadyExists(f"Cannot rename {source.name}", path=target.absolute, backend="ftp")
            self._delete.delete([target], listener=listener)
        with self._session.mapper.errors("Cannot rename {name}", source), self._session.exclusive() as ftp:
            ftp.rename(source.absolute, target.absolute)


class FTPAttributes(Attributes):
    """Attributes from a single-entry ``MLST`` reply."""

    def __init__(self, session: FTPSession) -> None:
        self._session = session

    def find(self, entry: Entry) -> EntryAttributes:
        parent = entry.parent
        if parent is None:
            raise NotFound("The root has no attributes", path=entry.absolute, backend="ftp")
        with self._session.mapper.errors("Failure to read attributes of {name}", entry):
            with self._session.exclusive() as ftp:
                reply = ftp.sendcmd(f"MLST {entry.absolute}")
        # The facts are on the continuation lines between the 250- and 250 lines.
        lines = [line for line in reply.splitlines()[1:] if line.startswith(" ")]
        listing = read_listing(parent, lines, self._session.encoding)
        for child in listing.children:
            if child.path == entry.path:
                return child.attributes
        raise NotFound(f"Failure to read attributes of {entry.name}", path=entry.absolute, backend="ftp")


class FTPLister(Lister):
    def __init__(self, session: FTPSession) -> None:
        self._session = session

    def list(self, directory: Entry, listener: ProgressListener | None = None) -> list[Entry]:
        lines: list[str] = []
        with self._session.mapper.errors("Listing directory {name} failed", directory):
            with self._session.exclusive() as ftp:
                ftp.retrlines(f"MLSD {directory.absolute}", lines.append)
        listing = read_listing(directory, lines, self._session.encoding)
        if not listing.success and listing.errors:
            log.warning("Listing of %s yielded %d unreadable lines", directory.absolute, len(listing.errors))
        return listing.children


class FTPUnixPermission(UnixPermission):
    def __init__(self, session: FTPSession) -> None:
        self._session = session

    def set_unix_permission(self, entry: Entry, permission: Permission) -> None:
        with self._session.mapper.errors("Cannot change permissions of {name}", entry):
            with self._session.exclusive() as ftp:
                ftp.sendcmd(f"SITE CHMOD {permission} {entry.absolute}")


class FTPTimestamp(Timestamp):
    """Modification time via ``MFMT``; creation and access times are not settable."""

    def __init__(self, session: FTPSession) -> None:
        self._session = session

    def set_timestamp(
        self,
        entry: Entry,
        modified: int,
        created: int | None = None,
        accessed: int | None = None,
    ) -> None:
        stamp = datetime.fromtimestamp(modified / 1000, tz=timezone.utc).strftime("%Y%m%d%H%M%S")
        with self._session.mapper.errors("Cannot change timestamp of {name}", entry):
            with self._session.exclusive() as ftp:
                ftp.sendcmd(f"MFMT {stamp} {entry.absolute}")


# endregion


class FTPSession(Session):
    """FTP session with a lazily opened ``ftplib`` connection.

    :param host: Server hostname (required, non-empty).
    :param port: Control port (default: 21).
    :param username: Login name; ``anonymous`` logs in without a password.
    :param password: Password. If ``None``, ``login_callback`` is asked.
    :param tls: Use explicit FTPS and protect the data channel.
    :param timeout: Socket timeout in seconds.
    :param encoding: Control channel encoding.
    :param login_callback: Prompt used when no password is configured.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int = 21,
        username: str = "anonymous",
        password: str | None = None,
        tls: bool = False,
        timeout: int = 10,
        encoding: str = "utf-8",
        login_callback: LoginCallback | None = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._tls = tls
        self._timeout = timeout
        self._login_callback = login_callback or DisabledLoginCallback()
        self._ftp_client: ftplib.FTP | None = None
        self.mapper = FTPExceptionMapper(self.name)
        super().__init__(encoding=encoding)

    @property
    def name(self) -> str:
        return "ftp"

    def _build_features(self) -> CapabilityTable:
        attributes = FTPAttributes(self)
        find = AttributesFind(attributes)
        delete = FTPDelete(self)
        return CapabilityTable(
            delete=delete,
            move=FTPMove(self, find, delete),
            find=find,
            attributes=attributes,
            list=FTPLister(self),
            unix_permission=FTPUnixPermission(self),
            timestamp=FTPTimestamp(self),
        )

    # region: lazy connection

    def _client(self) -> ftplib.FTP:
        if not self._is_connected():
            with self.mapper.errors(f"Cannot connect to {self._host}"):
                self._connect()
        assert self._ftp_client is not None
        return self._ftp_client

    def _connect(self) -> None:
        """Open the control connection and log in, retrying the connect only."""
        from tenacity import (
            before_sleep_log,
            retry,
            retry_if_exception_type,
            stop_after_attempt,
            wait_exponential,
        )

        self._close_client()
        ftp: ftplib.FTP = (
            ftplib.FTP_TLS(encoding=self.encoding) if self._tls else ftplib.FTP(encoding=self.encoding)
        )

        @retry(
            retry=retry_if_exception_type((OSError, EOFError, ftplib.error_temp)),
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
            reraise=True,
        )
        def _do_connect() -> None:
            log.info("Connecting to %s:%d", self._host, self._port)
            ftp.connect(self._host, self._port, timeout=self._timeout)

        _do_connect()
        username, password = self._credentials()
        ftp.login(username, password)
        if isinstance(ftp, ftplib.FTP_TLS):
            ftp.prot_p()
        self._ftp_client = ftp
        log.info("FTP connection established.")

    def _credentials(self) -> tuple[str, str]:
        if self._password is not None or self._username == "anonymous":
            return self._username, self._password or ""
        credentials = self._login_callback.prompt(
            self._host, self._username, "Login", f"Login {self._username}@{self._host} with password"
        )
        return credentials.username, credentials.password

    def _is_connected(self) -> bool:
        if self._ftp_client is None:
            return False
        try:
            self._ftp_client.voidcmd("NOOP")
            return True
        except (OSError, EOFError, ftplib.Error):
            return False

    def _close_client(self) -> None:
        if self._ftp_client is not None:
            with contextlib.suppress(OSError, EOFError, ftplib.Error):
                self._ftp_client.quit()
            self._ftp_client.close()
            self._ftp_client = None

    # endregion

    def close(self) -> None:
        with self._lock:
            self._close_client()
