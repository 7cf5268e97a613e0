"""SFTP session using pure paramiko."""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import shutil
import stat
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from remote_ops._callbacks import DisabledLoginCallback
from remote_ops._capabilities import (
    Attributes,
    AttributesFind,
    CapabilityTable,
    Copy,
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
from remote_ops._models import Entry, EntryAttributes, EntryType, Permission
from remote_ops._session import Session

if TYPE_CHECKING:
    from remote_ops._callbacks import LoginCallback, ProgressListener

log = logging.getLogger(__name__)

# RFC 4253 compliant chunk size for SFTP data transfer
_CHUNK_SIZE = 32768


# region: host key policy


class HostKeyPolicy(Enum):
    """Controls how unknown remote host keys are handled.

    :cvar STRICT: Reject unknown hosts (production default).
    :cvar TRUST_ON_FIRST_USE: Save on first connect, verify after.
    :cvar AUTO_ADD: Accept any key (dev/testing ONLY).
    """

    STRICT = "strict"
    TRUST_ON_FIRST_USE = "tofu"
    AUTO_ADD = "auto"


# endregion

_HOST_KEYS_ENV = "SFTP_KNOWN_HOST_KEYS"


def _load_host_keys_from_string(ssh: Any, keys_content: str) -> None:  # pragma: no cover
    """Parse a known_hosts-formatted string into an SSHClient's host keys."""
    import tempfile

    with tempfile.NamedTemporaryFile(mode="w", suffix=".known_hosts", delete=True) as tmp:
        tmp.write(keys_content)
        tmp.flush()
        ssh.load_host_keys(tmp.name)


class SFTPExceptionMapper(ExceptionMapper):
    """Classify paramiko and ``OSError`` failures by errno."""

    def map(self, exc: Exception, message: str, path: Optional[str]) -> RemoteOpsError:
        import paramiko

        if isinstance(exc, OSError):
            code = getattr(exc, "errno", None)
            if code == errno.ENOENT:
                return NotFound(message, path=path, backend=self.backend)
            if code == errno.EACCES:
                return PermissionDenied(message, path=path, backend=self.backend)
            if code == errno.EEXIST:
                return AlreadyExists(message, path=path, backend=self.backend)
            return self.map_os_error(exc, message, path)
        if isinstance(exc, (paramiko.SSHException, EOFError)):
            return BackendUnavailable(f"{message}: {exc}", path=path, backend=self.backend)
        return ProtocolError(f"{message}: {exc}", path=path, backend=self.backend)


def _attributes(attrs: Any) -> EntryAttributes:
    """Convert paramiko ``SFTPAttributes``; unset fields stay ``None``."""
    mode = attrs.st_mode
    return EntryAttributes(
        size=attrs.st_size,
        owner=None if attrs.st_uid is None else str(attrs.st_uid),
        group=None if attrs.st_gid is None else str(attrs.st_gid),
        permission=None if mode is None else Permission.from_mode(stat.S_IMODE(mode)),
        modified=None if attrs.st_mtime is None else int(attrs.st_mtime) * 1000,
        accessed=None if attrs.st_atime is None else int(attrs.st_atime) * 1000,
    )


def _types(mode: int | None) -> set[EntryType]:
    if mode is not None and stat.S_ISDIR(mode):
        return {EntryType.DIRECTORY}
    if mode is not None and stat.S_ISLNK(mode):
        return {EntryType.FILE, EntryType.SYMLINK}
    return {EntryType.FILE}


# region: capabilities


class SFTPDelete(Delete):
    def __init__(self, session: SFTPSession) -> None:
        self._session = session

    def delete_entry(self, entry: Entry, prompt: LoginCallback, listener: ProgressListener) -> list[RemoteOpsError]:
        with self._session.mapper.errors("Cannot delete {name}", entry), self._session.exclusive() as sftp:
            if entry.is_directory and not entry.is_symlink:
                sftp.rmdir(entry.absolute)
            else:
                sftp.remove(entry.absolute)
        return []


class SFTPCopy(Copy):
    """Streamed copy; SFTP has no server-side copy."""

    def __init__(self, session: SFTPSession) -> None:
        self._session = session

    def copy(self, source: Entry, target: Entry) -> None:
        with self._session.mapper.errors("Cannot copy {name}", source), self._session.exclusive() as sftp:
            with sftp.file(source.absolute, "r") as src_f:
                src_f.prefetch()
                with sftp.file(target.absolute, "w") as dst_f:
                    shutil.copyfileobj(src_f, dst_f, _CHUNK_SIZE)


class SFTPMove(Move):
    def __init__(self, session: SFTPSession) -> None:
        self._session = session

    def move(
        self,
        source: Entry,
        target: Entry,
        overwrite: bool = False,
        listener: ProgressListener | None = None,
    ) -> None:
        with self._session.mapper.errors("Cannot rename {name}", source), self._session.exclusive() as sftp:
            sftp.lstat(source.absolute)
            if not overwrite:
                try:
                    sftp.lstat(target.absolute)
                    raise AlreadyExists(f"Cannot rename {source.name}", path=target.absolute, backend="sftp")
                except FileNotFoundError:
                    pass
                sftp.rename(source.absolute, target.absolute)
                return
            try:
                sftp.posix_rename(source.absolute, target.absolute)
            except OSError as exc:
                # Only a status without errno (unsupported extension) may fall back;
                # anything else would lose the target.
                if exc.errno is not None:
                    raise
                log.debug("posix_rename unavailable (%s), falling back to remove and rename", exc)
                with contextlib.suppress(FileNotFoundError):
                    sftp.remove(target.absolute)
                sftp.rename(source.absolute, target.absolute)


class SFTPAttributes(Attributes):
    def __init__(self, session: SFTPSession) -> None:
        self._session = session

    def find(self, entry: Entry) -> EntryAttributes:
        with self._session.mapper.errors("Failure to read attributes of {name}", entry):
            with self._session.exclusive() as sftp:
                return _attributes(sftp.lstat(entry.absolute))


class SFTPLister(Lister):
    def __init__(self, session: SFTPSession) -> None:
        self._session = session

    def list(self, directory: Entry, listener: ProgressListener | None = None) -> list[Entry]:
        with self._session.mapper.errors("Listing directory {name} failed", directory):
            with self._session.exclusive() as sftp:
                found = sftp.listdir_attr(directory.absolute)
        children = []
        for attrs in found:
            if attrs.filename in (".", ".."):
                continue
            children.append(Entry(directory.path / attrs.filename, _types(attrs.st_mode), _attributes(attrs)))
        return children


class SFTPUnixPermission(UnixPermission):
    def __init__(self, session: SFTPSession) -> None:
        self._session = session

    def set_unix_permission(self, entry: Entry, permission: Permission) -> None:
        with self._session.mapper.errors("Cannot change permissions of {name}", entry):
            with self._session.exclusive() as sftp:
                sftp.chmod(entry.absolute, permission.mode)


class SFTPTimestamp(Timestamp):
    """Access and modification time via ``utime``; SFTP has no creation time."""

    def __init__(self, session: SFTPSession) -> None:
        self._session = session

    def set_timestamp(
        self,
        entry: Entry,
        modified: int,
        created: int | None = None,
        accessed: int | None = None,
    ) -> None:
        atime = (accessed if accessed is not None else modified) // 1000
        with self._session.mapper.errors("Cannot change timestamp of {name}", entry):
            with self._session.exclusive() as sftp:
                sftp.utime(entry.absolute, (atime, modified // 1000))


# endregion


class SFTPSession(Session):
    """SFTP session using pure paramiko.

    :param host: SFTP server hostname (required, non-empty).
    :param port: SSH port (default: 22).
    :param username: SSH username.
    :param password: SSH password. If neither a password nor a key is
        given, ``login_callback`` is asked.
    :param pkey: paramiko.PKey instance for key-based auth.
    :param host_key_policy: Host key verification policy.
    :param known_host_keys: Known hosts string (code-level override).
    :param host_keys_path: Path to known_hosts file (default: ``~/.ssh/known_hosts``).
    :param timeout: SSH connection timeout in seconds.
    :param encoding: Encoding of remote file names.
    :param login_callback: Prompt used when no secret is configured.
    :param connect_kwargs: Extra kwargs passed to ``SSHClient.connect()``.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int = 22,
        username: str | None = None,
        password: str | None = None,
        pkey: Any = None,
        host_key_policy: HostKeyPolicy | str = HostKeyPolicy.STRICT,
        known_host_keys: str | None = None,
        host_keys_path: str | None = None,
        timeout: int = 10,
        encoding: str = "utf-8",
        login_callback: LoginCallback | None = None,
        connect_kwargs: dict[str, Any] | None = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._pkey = pkey
        self._host_key_policy = HostKeyPolicy(host_key_policy)
        self._host_keys_path = host_keys_path
        self._timeout = timeout
        self._login_callback = login_callback or DisabledLoginCallback()
        self._connect_kwargs = connect_kwargs or {}
        self._resolved_host_keys = known_host_keys or os.environ.get(_HOST_KEYS_ENV)

        self._ssh_client: Any = None
        self._sftp_client: Any = None
        self.mapper = SFTPExceptionMapper(self.name)
        super().__init__(encoding=encoding)

    @property
    def name(self) -> str:
        return "sftp"

    def _build_features(self) -> CapabilityTable:
        attributes = SFTPAttributes(self)
        return CapabilityTable(
            delete=SFTPDelete(self),
            copy=SFTPCopy(self),
            move=SFTPMove(self),
            find=AttributesFind(attributes),
            attributes=attributes,
            list=SFTPLister(self),
            unix_permission=SFTPUnixPermission(self),
            timestamp=SFTPTimestamp(self),
        )

    # region: lazy connection

    def _client(self) -> Any:
        """Lazy SFTP client with automatic reconnection on staleness."""
        if not self._is_connected():
            with self.mapper.errors(f"Cannot connect to {self._host}"):
                self._connect()
        return self._sftp_client

    def _connect(self) -> None:
        """Establish SSH + SFTP connection with tenacity retry."""
        import paramiko
        from tenacity import (
            before_sleep_log,
            retry,
            retry_if_exception_type,
            stop_after_attempt,
            wait_exponential,
        )

        self._close_clients()
        ssh = self._create_ssh_client()
        password = self._password
        if password is None and self._pkey is None:
            credentials = self._login_callback.prompt(
                self._host, self._username, "Login", f"Login {self._username}@{self._host} with password"
            )
            self._username, password = credentials.username, credentials.password

        @retry(
            retry=retry_if_exception_type((paramiko.SSHException, OSError, EOFError)),
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
            reraise=True,
        )
        def _do_connect() -> None:
            log.info("Connecting to %s:%d as %s", self._host, self._port, self._username)
            ssh.connect(
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=password,
                pkey=self._pkey,
                timeout=self._timeout,
                banner_timeout=self._timeout,
                auth_timeout=self._timeout,
                channel_timeout=self._timeout,
                **self._connect_kwargs,
            )

        _do_connect()
        self._ssh_client = ssh
        self._sftp_client = ssh.open_sftp()
        log.info("SFTP connection established.")

    def _create_ssh_client(self) -> Any:
        """Create and configure an SSHClient with host key policy."""
        import paramiko

        ssh = paramiko.SSHClient()

        if self._resolved_host_keys:  # pragma: no cover
            _load_host_keys_from_string(ssh, self._resolved_host_keys)
        elif self._host_key_policy in (  # pragma: no cover -- tests use AUTO_ADD
            HostKeyPolicy.STRICT,
            HostKeyPolicy.TRUST_ON_FIRST_USE,
        ):
            keys_path = self._host_keys_path or os.path.expanduser("~/.ssh/known_hosts")
            if os.path.isfile(keys_path):
                ssh.load_host_keys(keys_path)

        if self._host_key_policy == HostKeyPolicy.TRUST_ON_FIRST_USE:  # pragma: no cover
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        elif self._host_key_policy == HostKeyPolicy.AUTO_ADD:
            log.warning("AUTO_ADD host key policy -- NOT safe for production.")
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        return ssh

    def _is_connected(self) -> bool:
        if self._sftp_client is None or self._ssh_client is None:
            return False
        try:
            self._sftp_client.stat(".")
            return True
        except Exception:  # pragma: no cover -- requires transport failure
            return False

    def _close_clients(self) -> None:
        if self._sftp_client is not None:
            with contextlib.suppress(Exception):
                self._sftp_client.close()
            self._sftp_client = None
        if self._ssh_client is not None:
            with contextlib.suppress(Exception):
                self._ssh_client.close()
            self._ssh_client = None

    # endregion

    def close(self) -> None:
        with self._lock:
            self._close_clients()
