"""Outcome: result of an operation whose best-effort steps may have failed."""

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from remote_ops._errors import RemoteOpsError


class OutcomeStatus(enum.Enum):
    COMPLETE = "complete"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


@dataclasses.dataclass(frozen=True)
class Outcome:
    """Result of a delete batch or a transfer completion.

    ``DEGRADED`` means the primary effect happened but one or more
    best-effort steps (attribute restoration, segment cleanup) failed; the
    failures are listed in ``failures``.

    :param status: Overall status.
    :param failures: Errors swallowed by best-effort steps.
    """

    status: OutcomeStatus = OutcomeStatus.COMPLETE
    failures: tuple[RemoteOpsError, ...] = ()

    @classmethod
    def complete(cls) -> Outcome:
        return cls(OutcomeStatus.COMPLETE)

    @classmethod
    def skipped(cls) -> Outcome:
        return cls(OutcomeStatus.SKIPPED)

    @classmethod
    def from_failures(cls, failures: Iterable[RemoteOpsError]) -> Outcome:
        """``COMPLETE`` when ``failures`` is empty, ``DEGRADED`` otherwise."""
        failures = tuple(failures)
        if failures:
            return cls(OutcomeStatus.DEGRADED, failures)
        return cls(OutcomeStatus.COMPLETE)

    @property
    def ok(self) -> bool:
        """``True`` unless degraded."""
        return self.status is not OutcomeStatus.DEGRADED

    @property
    def degraded(self) -> bool:
        return self.status is OutcomeStatus.DEGRADED
