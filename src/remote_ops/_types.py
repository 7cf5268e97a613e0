"""Type aliases used throughout remote_ops."""

from __future__ import annotations

import os  # noqa: TC003
from typing import TYPE_CHECKING, Callable, Union

if TYPE_CHECKING:
    from remote_ops._transfer import TransferItem, TransferUnit

PathLike = Union[str, "os.PathLike[str]"]  # noqa: UP007
TransferData = Callable[["TransferItem", "TransferUnit"], None]
"""Moves the bytes of one unit and marks it complete; supplied by the caller."""
