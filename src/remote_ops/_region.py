"""Region resolution: which endpoint serves a container, and its signing secret."""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Mapping
from typing import Callable, Union

from remote_ops._errors import NotFound
from remote_ops._models import Entry, container_of
from remote_ops._path import DELIMITER

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Region:
    """A backend locality.

    :param name: Region identifier (e.g. ``"eu-west-1"``, ``"DFW"``).
    :param endpoint: Storage endpoint serving the region, if distinct per region.
    """

    name: str
    endpoint: str | None = None


class RegionCache:
    """Container to region mapping shared by all sessions of the process.

    Reads and inserts are safe from any thread. Entries are only removed by
    :meth:`invalidate`, when a container is deleted or recreated.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._regions: dict[tuple[str, str], Region] = {}

    def get(self, scope: str, container: str) -> Region | None:
        with self._lock:
            return self._regions.get((scope, container))

    def get_or_insert(self, scope: str, container: str, factory: Callable[[], Region]) -> Region:
        """Return the cached region, calling ``factory`` outside the lock on a miss.

        If two threads miss concurrently, the first insert wins.
        """
        cached = self.get(scope, container)
        if cached is not None:
            return cached
        return self.insert(scope, container, factory())

    def insert(self, scope: str, container: str, region: Region) -> Region:
        """Store ``region`` unless another thread stored one first; return the stored one."""
        with self._lock:
            return self._regions.setdefault((scope, container), region)

    def invalidate(self, scope: str, container: str) -> None:
        with self._lock:
            self._regions.pop((scope, container), None)

    def clear(self) -> None:
        with self._lock:
            self._regions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._regions)


_SHARED_CACHE = RegionCache()


def shared_region_cache() -> RegionCache:
    """The process-wide cache used when a resolver is given none."""
    return _SHARED_CACHE


SecretSource = Union[Mapping[str, str], Callable[[Region], Union[str, None]]]


class RegionResolver:
    """Resolve and cache the region of each container for one backend account.

    :param scope: Identifies the account/endpoint so that equally named
        containers of different accounts do not collide in a shared cache.
    :param locate: Backend lookup for a container name, called on cache miss.
        Returns ``None`` when no region serves the container.
    :param secrets: Signing secret per region name, or a callable.
    :param cache: Cache to use; defaults to the process-wide one.
    :param fallback: Region used, but never cached, for a container that
        ``locate`` cannot place, so that a later creation elsewhere is seen.
    """

    def __init__(
        self,
        scope: str,
        locate: Callable[[str], Region | None],
        *,
        secrets: SecretSource | None = None,
        cache: RegionCache | None = None,
        fallback: Region | None = None,
    ) -> None:
        self._scope = scope
        self._locate = locate
        self._secrets = secrets
        self._cache = cache if cache is not None else shared_region_cache()
        self._fallback = fallback

    def lookup(self, container: Entry | str) -> Region:
        """Region serving ``container`` (a container entry, any entry inside one, or a name).

        :raises NotFound: If no region serves the container and there is no fallback.
        """
        name = self._container_name(container)
        cached = self._cache.get(self._scope, name)
        if cached is not None:
            return cached
        region = self._locate(name)
        if region is None:
            if self._fallback is None:
                raise NotFound(f"No region serves container {name}", path=DELIMITER + name)
            log.debug("Container %s not found in any region, using %s", name, self._fallback.name)
            return self._fallback
        log.debug("Resolved container %s to region %s", name, region.name)
        return self._cache.insert(self._scope, name, region)

    def invalidate(self, container: Entry | str) -> None:
        self._cache.invalidate(self._scope, self._container_name(container))

    def secret(self, region: Region) -> str | None:
        """Signing secret for ``region``, or ``None`` when none is configured."""
        if self._secrets is None:
            return None
        if isinstance(self._secrets, Mapping):
            return self._secrets.get(region.name)
        return self._secrets(region)

    @staticmethod
    def _container_name(container: Entry | str) -> str:
        if isinstance(container, str):
            return container
        volume = container_of(container)
        if volume is None:
            raise ValueError("The root has no container")
        return volume.name
