"""In-process SFTP server for the SFTP session tests.

A paramiko ``SFTPServerInterface`` over a local directory, run in a
background thread. Every login is accepted. Attribute changes (``chmod``,
``utime``) and symlinks are applied to the local files so the tests can
check them with ``os.stat``.
"""

from __future__ import annotations

import contextlib
import os
import socket
import threading
from pathlib import Path, PurePosixPath

import paramiko
from paramiko import (
    AUTH_SUCCESSFUL,
    OPEN_SUCCEEDED,
    RSAKey,
    ServerInterface,
    SFTPAttributes,
    SFTPHandle,
    SFTPServer,
    SFTPServerInterface,
    Transport,
)


def _errno(exc: OSError) -> int:
    return SFTPServer.convert_errno(exc.errno)  # type: ignore[no-any-return]


# region: SSH layer


class StubServer(ServerInterface):
    """Accepts any password or key."""

    def check_auth_password(self, username: str, password: str) -> int:
        return AUTH_SUCCESSFUL

    def check_auth_publickey(self, username: str, key: paramiko.PKey) -> int:
        return AUTH_SUCCESSFUL

    def check_channel_request(self, kind: str, chanid: int) -> int:
        return OPEN_SUCCEEDED


# endregion

# region: SFTP layer


class StubSFTPHandle(SFTPHandle):
    def stat(self) -> SFTPAttributes | int:
        try:
            return SFTPAttributes.from_stat(os.fstat(self.readfile.fileno()))
        except OSError as exc:
            return _errno(exc)

    def chattr(self, attr: SFTPAttributes) -> int:
        try:
            SFTPServer.set_file_attr(self.filename, attr)
        except OSError as exc:
            return _errno(exc)
        return paramiko.SFTP_OK


class StubSFTPServer(SFTPServerInterface):
    """Maps SFTP requests onto the directory tree below :attr:`ROOT`."""

    ROOT: str = ""

    def _local(self, path: str) -> str:
        relative = str(PurePosixPath(path)).lstrip("/")
        return str(Path(self.ROOT) / relative)

    def list_folder(self, path: str) -> list[SFTPAttributes] | int:
        folder = self._local(path)
        try:
            found = []
            for name in os.listdir(folder):
                attr = SFTPAttributes.from_stat(os.lstat(os.path.join(folder, name)))
                attr.filename = name
                found.append(attr)
        except OSError as exc:
            return _errno(exc)
        return found

    def stat(self, path: str) -> SFTPAttributes | int:
        try:
            return SFTPAttributes.from_stat(os.stat(self._local(path)))
        except OSError as exc:
            return _errno(exc)

    def lstat(self, path: str) -> SFTPAttributes | int:
        try:
            return SFTPAttributes.from_stat(os.lstat(self._local(path)))
        except OSError as exc:
            return _errno(exc)

    def open(self, path: str, flags: int, attr: SFTPAttributes) -> SFTPHandle | int:
        local = self._local(path)
        try:
            fd = os.open(local, flags, 0o644)
        except OSError as exc:
            return _errno(exc)
        if flags & os.O_WRONLY:
            mode = "wb"
        elif flags & os.O_RDWR:
            mode = "rb+"
        else:
            mode = "rb"
        fobj = os.fdopen(fd, mode)
        handle = StubSFTPHandle(flags)
        handle.filename = local
        handle.readfile = fobj  # type: ignore[assignment]
        handle.writefile = fobj  # type: ignore[assignment]
        return handle

    def remove(self, path: str) -> int:
        return self._apply(os.remove, self._local(path))

    def rename(self, oldpath: str, newpath: str) -> int:
        new = self._local(newpath)
        # Plain SFTP rename never replaces an existing target.
        if os.path.lexists(new):
            return paramiko.SFTP_FAILURE
        return self._apply(os.rename, self._local(oldpath), new)

    def posix_rename(self, oldpath: str, newpath: str) -> int:
        return self._apply(os.replace, self._local(oldpath), self._local(newpath))

    def mkdir(self, path: str, attr: SFTPAttributes) -> int:
        return self._apply(os.mkdir, self._local(path))

    def rmdir(self, path: str) -> int:
        return self._apply(os.rmdir, self._local(path))

    def chattr(self, path: str, attr: SFTPAttributes) -> int:
        return self._apply(SFTPServer.set_file_attr, self._local(path), attr)

    def readlink(self, path: str) -> str | int:
        try:
            return os.readlink(self._local(path))
        except OSError as exc:
            return _errno(exc)

    def symlink(self, target_path: str, path: str) -> int:
        return self._apply(os.symlink, target_path, self._local(path))

    @staticmethod
    def _apply(func: object, *args: object) -> int:
        try:
            func(*args)  # type: ignore[operator]
        except OSError as exc:
            return _errno(exc)
        return paramiko.SFTP_OK


# endregion

# region: lifecycle


def _accept_connections(
    server_socket: socket.socket,
    host_key: RSAKey,
    root: str,
    stop_event: threading.Event,
) -> None:
    server_socket.settimeout(0.5)
    StubSFTPServer.ROOT = root

    while not stop_event.is_set():
        try:
            conn, _addr = server_socket.accept()
        except TimeoutError:
            continue
        except OSError:
            break

        transport = Transport(conn)
        transport.add_server_key(host_key)
        transport.set_subsystem_handler("sftp", SFTPServer, StubSFTPServer)
        try:
            transport.start_server(server=StubServer())
        except Exception:
            transport.close()
        # Each transport serves its SFTP subsystem in its own daemon thread.


def start_sftp_server(
    root: str,
    host: str = "127.0.0.1",
    port: int = 0,
) -> tuple[threading.Thread, int, RSAKey, threading.Event, socket.socket]:
    """Serve ``root`` over SFTP from a background thread.

    :param root: Local directory served as ``/``.
    :param host: Bind address.
    :param port: Bind port; ``0`` picks a free one.
    :returns: ``(thread, port, host_key, stop_event, server_socket)``
    """
    host_key = RSAKey.generate(2048)

    server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server_socket.bind((host, port))
    server_socket.listen(5)

    stop_event = threading.Event()
    thread = threading.Thread(
        target=_accept_connections,
        args=(server_socket, host_key, root, stop_event),
        daemon=True,
    )
    thread.start()
    return thread, server_socket.getsockname()[1], host_key, stop_event, server_socket


def stop_sftp_server(
    thread: threading.Thread,
    stop_event: threading.Event,
    server_socket: socket.socket,
) -> None:
    stop_event.set()
    with contextlib.suppress(OSError):
        server_socket.close()
    thread.join(timeout=5)


# endregion
