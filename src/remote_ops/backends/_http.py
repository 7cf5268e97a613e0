"""Shared pieces of the HTTP based protocols (Swift, WebDAV) using requests."""

from __future__ import annotations

import logging
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from remote_ops._errors import (
    AlreadyExists,
    BackendUnavailable,
    ExceptionMapper,
    NotFound,
    PermissionDenied,
    ProtocolError,
    RemoteOpsError,
)

log = logging.getLogger(__name__)

_UNAVAILABLE_STATUS = frozenset({502, 503, 504})


class HTTPExceptionMapper(ExceptionMapper):
    """Classify ``requests`` errors by HTTP status.

    ``412 Precondition Failed`` is the answer to ``Overwrite: F`` and maps to
    :class:`~remote_ops.AlreadyExists`.
    """

    def map(self, exc: Exception, message: str, path: Optional[str]) -> RemoteOpsError:
        import requests

        # requests exceptions derive from OSError; classify them first.
        if isinstance(exc, requests.HTTPError) and exc.response is not None:
            status = exc.response.status_code
            if status in (404, 410):
                return NotFound(message, path=path, backend=self.backend)
            if status in (401, 403):
                return PermissionDenied(f"{message}: {status}", path=path, backend=self.backend)
            if status == 412:
                return AlreadyExists(message, path=path, backend=self.backend)
            if status in _UNAVAILABLE_STATUS:
                return BackendUnavailable(f"{message}: {status}", path=path, backend=self.backend)
            return ProtocolError(f"{message}: {status} {exc.response.reason}", path=path, backend=self.backend)
        if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
            return BackendUnavailable(f"{message}: {exc}", path=path, backend=self.backend)
        if isinstance(exc, requests.RequestException):
            return ProtocolError(f"{message}: {exc}", path=path, backend=self.backend)
        if isinstance(exc, OSError):
            return self.map_os_error(exc, message, path)
        return ProtocolError(f"{message}: {exc}", path=path, backend=self.backend)


def http_date(value: str | None) -> int | None:
    """Parse an RFC 1123 date header into UTC milliseconds, ``None`` if absent or invalid."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        log.error("Failed to parse date %s", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)
