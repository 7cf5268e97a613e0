"""Protocol-agnostic file operations over remote storage backends."""

from remote_ops._callbacks import (
    Credentials,
    DisabledLoginCallback,
    DisabledProgressListener,
    LoggingProgressListener,
    LoginCallback,
    ProgressListener,
)
from remote_ops._capabilities import Capability, CapabilitySet, CapabilityTable
from remote_ops._config import RegistryConfig, SessionConfig, UploadFilterOptions
from remote_ops._errors import (
    AlreadyExists,
    BackendUnavailable,
    Canceled,
    CapabilityNotSupported,
    InvalidPath,
    LoginCanceled,
    NotFound,
    ParseError,
    PermissionDenied,
    ProtocolError,
    RemoteOpsError,
)
from remote_ops._local import LocalFile
from remote_ops._models import Acl, Action, Entry, EntryAttributes, EntryType, Grant, Permission
from remote_ops._outcome import Outcome, OutcomeStatus
from remote_ops._path import RemotePath
from remote_ops._region import Region, RegionCache, RegionResolver
from remote_ops._registry import Registry, register_protocol
from remote_ops._session import Session
from remote_ops._transfer import (
    SymlinkPolicy,
    TransferItem,
    TransferReport,
    TransferUnit,
    UploadFilter,
    UploadTransfer,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "Session",
    "Registry",
    "register_protocol",
    # Path & Models
    "RemotePath",
    "Entry",
    "EntryType",
    "EntryAttributes",
    "Permission",
    "Action",
    "Acl",
    "Grant",
    "LocalFile",
    # Capabilities
    "Capability",
    "CapabilitySet",
    "CapabilityTable",
    # Regions
    "Region",
    "RegionCache",
    "RegionResolver",
    # Transfer
    "TransferItem",
    "TransferUnit",
    "TransferReport",
    "SymlinkPolicy",
    "UploadFilter",
    "UploadTransfer",
    "Outcome",
    "OutcomeStatus",
    # Callbacks
    "ProgressListener",
    "LoginCallback",
    "Credentials",
    "DisabledProgressListener",
    "LoggingProgressListener",
    "DisabledLoginCallback",
    # Config
    "SessionConfig",
    "UploadFilterOptions",
    "RegistryConfig",
    # Errors
    "RemoteOpsError",
    "NotFound",
    "AlreadyExists",
    "PermissionDenied",
    "InvalidPath",
    "CapabilityNotSupported",
    "BackendUnavailable",
    "LoginCanceled",
    "ProtocolError",
    "ParseError",
    "Canceled",
    # Version
    "__version__",
]
