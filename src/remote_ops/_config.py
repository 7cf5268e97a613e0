"""Configuration model: immutable data containers describing sessions and upload policy."""

from __future__ import annotations

import dataclasses


def _mode(value: object) -> int:
    """Accept ``0o644``, ``420`` or the octal string ``"644"``."""
    if isinstance(value, str):
        return int(value, 8)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise TypeError(f"Permission must be an int or an octal string, got {value!r}")


@dataclasses.dataclass(frozen=True)
class SessionConfig:
    """Describes a session instance.

    :param protocol: Protocol identifier (e.g. ``"ftp"``, ``"swift"``).
    :param options: Protocol-specific constructor options.
    """

    protocol: str
    options: dict[str, object] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class UploadFilterOptions:
    """Post-transfer policy of the upload filter.

    :param temporary: Upload under a provisional name, rename on completion.
    :param permissions: Restore UNIX permissions after transfer.
    :param acl: Restore an ACL derived from the permission after transfer.
    :param timestamp: Restore the modification time after transfer.
    :param use_default_permissions: Use the defaults below instead of the local mode.
    :param default_file_permission: Mode applied to files when using defaults.
    :param default_folder_permission: Mode applied to directories when using defaults.
    :param temporary_format: Template for the provisional name; ``{name}`` and
        ``{uuid}`` are substituted.
    """

    temporary: bool = False
    permissions: bool = False
    acl: bool = False
    timestamp: bool = False
    use_default_permissions: bool = False
    default_file_permission: int = 0o644
    default_folder_permission: int = 0o755
    temporary_format: str = "{name}-{uuid}"

    def __post_init__(self) -> None:
        if "{name}" not in self.temporary_format or "{uuid}" not in self.temporary_format:
            raise ValueError(
                f"temporary_format must contain '{{name}}' and '{{uuid}}', got {self.temporary_format!r}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> UploadFilterOptions:
        """Construct from a plain dict; unknown keys are rejected.

        :raises TypeError: If a key is unknown or a value has the wrong type.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise TypeError(f"Unknown upload options: {unknown}")
        kwargs: dict[str, object] = dict(data)
        for key in ("default_file_permission", "default_folder_permission"):
            if key in kwargs:
                kwargs[key] = _mode(kwargs[key])
        return cls(**kwargs)  # type: ignore[arg-type]


@dataclasses.dataclass(frozen=True)
class RegistryConfig:
    """Top-level configuration container.

    :param sessions: Mapping of session names to their configs.
    :param upload: Upload filter policy.
    """

    sessions: dict[str, SessionConfig] = dataclasses.field(default_factory=dict)
    upload: UploadFilterOptions = dataclasses.field(default_factory=UploadFilterOptions)

    def validate(self, known_protocols: set[str] | None = None) -> None:
        """Validate the session configs.

        :param known_protocols: If given, every session must use one of them.
        :raises ValueError: If a session has no protocol or an unknown one.
        """
        for name, cfg in self.sessions.items():
            if not cfg.protocol:
                raise ValueError(f"Session '{name}' has no protocol")
            if known_protocols is not None and cfg.protocol not in known_protocols:
                raise ValueError(
                    f"Session '{name}' uses unknown protocol '{cfg.protocol}'. "
                    f"Available protocols: {sorted(known_protocols)}"
                )

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> RegistryConfig:
        """Construct from a plain dict (e.g. parsed TOML/JSON).

        :param data: Dict with ``sessions`` and optional ``upload`` keys.
        """
        raw_sessions = data.get("sessions", {})
        raw_upload = data.get("upload", {})
        if not isinstance(raw_sessions, dict) or not isinstance(raw_upload, dict):
            msg = "Expected 'sessions' and 'upload' to be dicts"
            raise TypeError(msg)

        sessions: dict[str, SessionConfig] = {}
        for name, cfg in raw_sessions.items():
            if not isinstance(cfg, dict):
                msg = f"Session config for '{name}' must be a dict"
                raise TypeError(msg)
            sessions[str(name)] = SessionConfig(
                protocol=str(cfg["protocol"]),
                options=dict(cfg.get("options", {})),
            )

        return cls(sessions=sessions, upload=UploadFilterOptions.from_dict(raw_upload))
