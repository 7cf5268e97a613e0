"""Backend test fixtures -- in-process servers for FTP, SFTP and S3."""

from __future__ import annotations

import shutil
import socket
import tempfile
import threading
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from collections.abc import Iterator


def _available(*modules: str) -> bool:
    import importlib.util

    return all(importlib.util.find_spec(m) is not None for m in modules)


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("", 0))
        return s.getsockname()[1]


@pytest.fixture(scope="session")
def moto_server() -> Iterator[str | None]:
    """Start a moto HTTP server for the test session."""
    if not _available("moto", "boto3"):
        yield None
        return
    from moto.moto_server.threaded_moto_server import ThreadedMotoServer

    port = _free_port()
    server = ThreadedMotoServer(port=port, verbose=False)
    server.start()
    yield f"http://127.0.0.1:{port}"
    server.stop()


@pytest.fixture(scope="session")
def sftp_server() -> Iterator[tuple[int, str, str] | None]:
    """Start an in-process SFTP server; yields ``(port, known_hosts entry, root directory)``."""
    if not _available("paramiko"):
        yield None
        return

    from tests.backends.sftp_server import start_sftp_server, stop_sftp_server

    tmpdir = tempfile.mkdtemp(prefix="sftp_test_")
    thread, port, host_key, stop_event, server_socket = start_sftp_server(root=tmpdir, host="127.0.0.1")
    host_key_entry = f"[127.0.0.1]:{port} {host_key.get_name()} {host_key.get_base64()}"

    yield port, host_key_entry, tmpdir

    stop_sftp_server(thread, stop_event, server_socket)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture(scope="session")
def ftp_server() -> Iterator[tuple[int, str] | None]:
    """Start a pyftpdlib server with user ``testuser``; yields ``(port, root directory)``."""
    if not _available("pyftpdlib"):
        yield None
        return
    from pyftpdlib.authorizers import DummyAuthorizer
    from pyftpdlib.handlers import FTPHandler
    from pyftpdlib.servers import ThreadedFTPServer

    tmpdir = tempfile.mkdtemp(prefix="ftp_test_")
    authorizer = DummyAuthorizer()
    authorizer.add_user("testuser", "testpass", tmpdir, perm="elradfmwMT")
    handler = type("Handler", (FTPHandler,), {"authorizer": authorizer, "banner": "remote_ops test server"})
    server = ThreadedFTPServer(("127.0.0.1", 0), handler)
    port = server.socket.getsockname()[1]
    stop_event = threading.Event()

    def _serve() -> None:
        while not stop_event.is_set():
            server.serve_forever(timeout=0.1, blocking=False)

    thread = threading.Thread(target=_serve, daemon=True)
    thread.start()

    yield port, tmpdir

    stop_event.set()
    thread.join(timeout=5)
    server.close_all()
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture()
def http_mock() -> Iterator[Any]:
    """A ``requests_mock.Mocker`` intercepting every ``requests`` call of the test."""
    requests_mock = pytest.importorskip("requests_mock", reason="requests-mock not installed")
    with requests_mock.Mocker() as mocker:
        yield mocker
