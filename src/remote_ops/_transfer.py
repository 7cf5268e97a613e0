"""Upload transfer filter pipeline: accept, prepare, transfer, complete."""

from __future__ import annotations

import dataclasses
import datetime
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from remote_ops._callbacks import DisabledProgressListener, notify
from remote_ops._capabilities import Capability
from remote_ops._config import UploadFilterOptions
from remote_ops._errors import Canceled, NotFound, RemoteOpsError
from remote_ops._models import Acl, Permission
from remote_ops._outcome import Outcome

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from remote_ops._callbacks import ProgressListener
    from remote_ops._local import LocalFile
    from remote_ops._models import Entry
    from remote_ops._path import RemotePath
    from remote_ops._session import Session
    from remote_ops._types import TransferData

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class TransferItem:
    """A local source and the remote entry it is uploaded to."""

    remote: Entry
    local: LocalFile


@dataclasses.dataclass
class TransferUnit:
    """Per-item state carried from ``prepare`` to ``complete``.

    Each unit is owned by exactly one pipeline run, including its
    provisional name.

    :param target: Final remote entry, with attributes refreshed from the
        backend when it already existed.
    :param length: Number of bytes the transfer phase will send.
    :param exists: A remote entry with the target's name already existed.
    :param provisional: Temporary remote entry the data is written to, if
        staging is enabled. Cleared once renamed to ``target``.
    :param complete: Set by the transfer phase when all bytes were sent.
    :param finalized: Set once ``complete`` has run its side effects.
    """

    target: Entry | None = None
    length: int = 0
    exists: bool = False
    provisional: Entry | None = None
    complete: bool = False
    finalized: bool = False

    @property
    def destination(self) -> Entry | None:
        """Where the transfer phase writes: the provisional entry if any, else the target."""
        return self.provisional if self.provisional is not None else self.target


@dataclasses.dataclass(frozen=True)
class SymlinkPolicy:
    """How local symbolic links are uploaded.

    :param dereference: Upload the bytes of the link target.
    :param include: When not dereferencing, still transfer the link itself.
    """

    dereference: bool = True
    include: bool = False

    def resolve(self, local: LocalFile) -> bool:
        """``True`` if ``local`` is read through to its target."""
        return self.dereference

    def includes(self, local: LocalFile) -> bool:
        return self.include


class UploadFilter:
    """Pre-flight checks and post-transfer reconciliation of an upload.

    Phases run strictly in order per item and are never retried here:
    :meth:`accept`, :meth:`prepare`, the caller's data transfer, then
    :meth:`complete`.

    :param session: Session whose capabilities are used.
    :param options: Staging and attribute restoration policy.
    :param symlinks: Symbolic link policy.
    """

    def __init__(
        self,
        session: Session,
        options: UploadFilterOptions | None = None,
        symlinks: SymlinkPolicy | None = None,
    ) -> None:
        self._session = session
        self._options = options or UploadFilterOptions()
        self._symlinks = symlinks or SymlinkPolicy()

    def __repr__(self) -> str:
        return f"UploadFilter(session={self._session!r}, options={self._options!r})"

    def accept(self, item: TransferItem) -> bool:
        """Decide whether ``item`` takes part in the transfer.

        :raises NotFound: If the local source no longer exists.
        """
        local = item.local
        if not local.exists():
            raise NotFound(f"Local file not found: {local.path}", path=str(local.path), backend="local")
        if item.remote.is_file and local.is_symlink() and not self._symlinks.resolve(local):
            return self._symlinks.includes(local)
        return True

    def prepare(self, item: TransferItem, parent: TransferUnit) -> TransferUnit:
        """Compute the transfer unit of ``item``.

        :param parent: Unit of the parent directory; only its ``exists`` flag is read.
        """
        remote, local = item.remote, item.local
        unit = TransferUnit(target=remote.with_path(remote.path))
        if remote.is_file:
            if local.is_symlink():
                if self._symlinks.resolve(local):
                    unit.length = local.symlink_target.size
            else:
                unit.length = local.size
            if self._options.temporary:
                name = self._options.temporary_format.format(name=remote.name, uuid=uuid.uuid4().hex)
                unit.provisional = remote.with_path(remote.path.with_name(name))
        if parent.exists and self._session.supports(Capability.FIND):
            if self._session.find(unit.target):
                unit.exists = True
                if self._session.supports(Capability.ATTRIBUTES):
                    unit.target.attributes = self._session.attributes(unit.target)
        log.debug("Prepared %s: %s", remote.absolute, unit)
        return unit

    def complete(
        self,
        item: TransferItem,
        unit: TransferUnit,
        listener: ProgressListener | None = None,
    ) -> Outcome:
        """Finish a transferred unit.

        Renames the provisional entry to the target, then restores
        permissions, ACL and timestamps on the target. A failing rename
        propagates; failing restorations are logged and reported as a
        ``DEGRADED`` outcome. Running again on a finalized unit, or on a
        unit whose transfer did not finish, is a no-op.

        :raises RemoteOpsError: If the rename fails.
        """
        if unit.finalized or not unit.complete:
            return Outcome.skipped()
        listener = listener or DisabledProgressListener()
        target = unit.target if unit.target is not None else item.remote
        log.debug("Complete %s with status %s", target.absolute, unit)
        if unit.provisional is not None:
            self._session.move(unit.provisional, target, True, listener)
            unit.provisional = None

        failures: list[RemoteOpsError] = []
        options = self._options
        if options.permissions and self._session.supports(Capability.UNIX_PERMISSION):
            permission = self._permission(failures, item)
            if not permission.is_empty:
                notify(listener, f"Changing permission of {target.name} to {permission}")
                self._restore(failures, target, self._session.set_unix_permission, target, permission)
        if options.acl and self._session.supports(Capability.ACL_PERMISSION):
            permission = self._permission(failures, item)
            acl = Acl.from_permission(permission)
            if len(acl):
                notify(listener, f"Changing permission of {target.name} to {permission}")
                self._restore(failures, target, self._session.set_acl, target, acl)
        if options.timestamp and self._session.supports(Capability.TIMESTAMP):
            self._timestamp(failures, item, target, listener)

        unit.finalized = True
        return Outcome.from_failures(failures)

    def _permission(self, failures: list[RemoteOpsError], item: TransferItem) -> Permission:
        options = self._options
        if options.use_default_permissions:
            if item.remote.is_file:
                return Permission.from_mode(options.default_file_permission)
            return Permission.from_mode(options.default_folder_permission)
        try:
            return item.local.permission
        except NotFound as exc:
            log.warning("Cannot read permission of %s: %s", item.local.path, exc)
            failures.append(exc)
            return Permission()

    def _timestamp(
        self,
        failures: list[RemoteOpsError],
        item: TransferItem,
        target: Entry,
        listener: ProgressListener,
    ) -> None:
        try:
            modified = item.local.modified
            created = item.local.created
            accessed = item.local.accessed
        except NotFound as exc:
            log.warning("Cannot read timestamps of %s: %s", item.local.path, exc)
            failures.append(exc)
            return
        date = datetime.datetime.fromtimestamp(modified / 1000, tz=datetime.timezone.utc)
        notify(listener, f"Changing timestamp of {target.name} to {date:%Y-%m-%d %H:%M}")
        self._restore(failures, target, self._session.set_timestamp, target, modified, created, accessed)

    @staticmethod
    def _restore(failures: list[RemoteOpsError], target: Entry, setter: Callable[..., None], *args: object) -> None:
        try:
            setter(*args)
        except RemoteOpsError as exc:
            log.warning("Failure restoring attributes of %s: %s", target.absolute, exc)
            failures.append(exc)


# region: batch driver


@dataclasses.dataclass(frozen=True)
class TransferReport:
    """Result of one item in a batch.

    :param item: The item.
    :param unit: Its transfer unit, ``None`` if it was rejected or never prepared.
    :param outcome: Outcome of ``complete``; ``SKIPPED`` for rejected items.
    :param error: The error that stopped the item, if any.
    """

    item: TransferItem
    unit: TransferUnit | None = None
    outcome: Outcome = dataclasses.field(default_factory=Outcome.skipped)
    error: RemoteOpsError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UploadTransfer:
    """Runs the filter pipeline over a batch on a bounded worker pool.

    Items run concurrently; the phases of one item stay in order. The
    session serialises its own client calls. Cancellation is checked before
    every item and between phases; calls already issued are not rolled back.

    :param session: Target session.
    :param transfer_data: Moves the bytes of one unit to
        ``unit.destination`` and sets ``unit.complete``.
    :param options: Upload policy.
    :param symlinks: Symbolic link policy.
    :param max_workers: Worker pool size.
    :param listener: Progress sink shared by all items.
    """

    def __init__(
        self,
        session: Session,
        transfer_data: TransferData,
        *,
        options: UploadFilterOptions | None = None,
        symlinks: SymlinkPolicy | None = None,
        max_workers: int = 4,
        listener: ProgressListener | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self._session = session
        self._filter = UploadFilter(session, options, symlinks)
        self._transfer_data = transfer_data
        self._max_workers = max_workers
        self._listener = listener or DisabledProgressListener()
        self._parents: dict[RemotePath, bool] = {}
        self._parents_lock = threading.Lock()

    @property
    def filter(self) -> UploadFilter:
        return self._filter

    def run(self, items: Sequence[TransferItem], cancel: threading.Event | None = None) -> list[TransferReport]:
        """Upload ``items``; the reports keep the input order."""
        cancel = cancel or threading.Event()
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = [pool.submit(self._run_one, item, cancel) for item in items]
            return [f.result() for f in futures]

    def _run_one(self, item: TransferItem, cancel: threading.Event) -> TransferReport:
        unit: TransferUnit | None = None
        try:
            self._check(cancel, item)
            if not self._filter.accept(item):
                log.debug("Skipping %s", item.local.path)
                return TransferReport(item)
            unit = self._filter.prepare(item, self._parent_status(item.remote))
            self._check(cancel, item)
            self._transfer_data(item, unit)
            self._check(cancel, item)
            outcome = self._filter.complete(item, unit, self._listener)
        except RemoteOpsError as exc:
            log.warning("Upload of %s failed: %s", item.local.path, exc)
            return TransferReport(item, unit, error=exc)
        return TransferReport(item, unit, outcome)

    @staticmethod
    def _check(cancel: threading.Event, item: TransferItem) -> None:
        if cancel.is_set():
            raise Canceled(f"Upload canceled before {item.remote.name}", path=item.remote.absolute)

    def _parent_status(self, remote: Entry) -> TransferUnit:
        parent = remote.parent
        if parent is None or parent.path.is_root:
            return TransferUnit(target=parent, exists=True)
        with self._parents_lock:
            known = self._parents.get(parent.path)
        if known is None:
            known = self._session.supports(Capability.FIND) and self._session.find(parent)
            with self._parents_lock:
                known = self._parents.setdefault(parent.path, known)
        return TransferUnit(target=parent, exists=known)


# endregion
