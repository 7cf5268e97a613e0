"""Registry: protocol factories and session lifecycle."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from remote_ops._config import RegistryConfig

if TYPE_CHECKING:
    from types import TracebackType

    from remote_ops._config import UploadFilterOptions
    from remote_ops._session import Session

# Global protocol factory registry: maps protocol names to session classes.
_PROTOCOL_FACTORIES: dict[str, type[Session]] = {}


def register_protocol(protocol: str, cls: type[Session]) -> None:
    """Register a session class for a protocol identifier.

    :param protocol: The protocol identifier (e.g. ``"ftp"``).
    :param cls: The session class to instantiate.
    """
    _PROTOCOL_FACTORIES[protocol] = cls


def _register_builtin_protocols() -> None:
    """Register the built-in protocols whose client libraries are importable."""
    from remote_ops import backends

    for protocol, cls in backends.available_protocols().items():
        _PROTOCOL_FACTORIES.setdefault(protocol, cls)


class Registry:
    """Creates sessions from configuration and closes them together.

    Sessions are created lazily and cached by name; each stays single-owner,
    the registry only hands out the instance.

    :param config: Optional configuration. Validates immediately.
    :raises ValueError: If config is invalid.
    """

    def __init__(self, config: RegistryConfig | None = None) -> None:
        _register_builtin_protocols()
        self._config = config or RegistryConfig()
        self._config.validate(set(_PROTOCOL_FACTORIES))
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Registry(sessions={sorted(self._config.sessions)!r})"

    @property
    def upload_options(self) -> UploadFilterOptions:
        return self._config.upload

    def get_session(self, name: str) -> Session:
        """Get a session by its configured name.

        :raises KeyError: If no session with this name is configured.
        :raises ValueError: If the configured options do not fit the protocol.
        """
        if name not in self._config.sessions:
            available = sorted(self._config.sessions)
            raise KeyError(f"Unknown session '{name}'. Available sessions: {available}")
        with self._lock:
            if name not in self._sessions:
                cfg = self._config.sessions[name]
                factory = _PROTOCOL_FACTORIES[cfg.protocol]
                try:
                    self._sessions[name] = factory(**cfg.options)
                except TypeError as exc:
                    raise ValueError(
                        f"Invalid options for session '{name}' (protocol={cfg.protocol!r}): {exc}. "
                        f"Provided options: {sorted(cfg.options)}"
                    ) from exc
            return self._sessions[name]

    def close(self) -> None:
        """Close all instantiated sessions."""
        with self._lock:
            for session in self._sessions.values():
                session.close()
            self._sessions.clear()

    def __enter__(self) -> Registry:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
