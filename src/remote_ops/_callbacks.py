"""Callback contracts for progress messages and interactive login."""

from __future__ import annotations

import dataclasses
import logging
from typing import Protocol, runtime_checkable

from remote_ops._errors import LoginCanceled

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Credentials:
    """Username and secret returned by a login prompt."""

    username: str
    password: str = dataclasses.field(default="", repr=False)


@runtime_checkable
class ProgressListener(Protocol):
    """Fire-and-forget sink for status messages."""

    def message(self, text: str) -> None: ...


@runtime_checkable
class LoginCallback(Protocol):
    """Asks the user for credentials.

    Implementations raise :class:`~remote_ops.LoginCanceled` when the user
    aborts the prompt.
    """

    def prompt(self, host: str, username: str | None, title: str, reason: str) -> Credentials: ...


class DisabledProgressListener:
    """Discards every message."""

    def message(self, text: str) -> None:
        pass


class LoggingProgressListener:
    """Forwards messages to a logger at INFO level."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or log

    def message(self, text: str) -> None:
        self._log.info("%s", text)


class DisabledLoginCallback:
    """Never prompts; any login request is treated as canceled."""

    def prompt(self, host: str, username: str | None, title: str, reason: str) -> Credentials:
        raise LoginCanceled(f"{title}: {reason}", path=None, backend=host)


def notify(listener: ProgressListener, text: str) -> None:
    """Deliver ``text`` without letting a faulty sink break the caller."""
    try:
        listener.message(text)
    except Exception:
        log.warning("Progress listener %r failed for message %r", listener, text, exc_info=True)
