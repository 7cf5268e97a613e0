"""Tests for configuration."""

from __future__ import annotations

import dataclasses

import pytest

from remote_ops._config import RegistryConfig, SessionConfig, UploadFilterOptions


class TestSessionConfig:
    def test_fields(self) -> None:
        sc = SessionConfig(protocol="ftp", options={"host": "example.com"})
        assert sc.protocol == "ftp"
        assert sc.options == {"host": "example.com"}

    def test_defaults(self) -> None:
        assert SessionConfig(protocol="ftp").options == {}

    def test_frozen(self) -> None:
        sc = SessionConfig(protocol="ftp")
        with pytest.raises(dataclasses.FrozenInstanceError):
            sc.protocol = "sftp"  # type: ignore[misc]


class TestUploadFilterOptions:
    def test_defaults(self) -> None:
        options = UploadFilterOptions()
        assert not options.temporary
        assert not options.permissions
        assert not options.acl
        assert not options.timestamp
        assert options.default_file_permission == 0o644
        assert options.default_folder_permission == 0o755
        assert options.temporary_format == "{name}-{uuid}"

    def test_template_must_hold_placeholders(self) -> None:
        with pytest.raises(ValueError, match="temporary_format"):
            UploadFilterOptions(temporary_format="{name}.part")

    def test_from_dict_octal_strings(self) -> None:
        options = UploadFilterOptions.from_dict({"default_file_permission": "600", "default_folder_permission": 0o700})
        assert options.default_file_permission == 0o600
        assert options.default_folder_permission == 0o700

    def test_from_dict_rejects_unknown_keys(self) -> None:
        with pytest.raises(TypeError, match="Unknown upload options"):
            UploadFilterOptions.from_dict({"temporary": True, "bogus": 1})

    def test_from_dict_rejects_bad_mode(self) -> None:
        with pytest.raises(TypeError, match="octal string"):
            UploadFilterOptions.from_dict({"default_file_permission": True})


class TestRegistryConfigValidation:
    def test_valid(self) -> None:
        RegistryConfig(sessions={"main": SessionConfig(protocol="ftp")}).validate({"ftp"})

    def test_missing_protocol(self) -> None:
        with pytest.raises(ValueError, match="has no protocol"):
            RegistryConfig(sessions={"main": SessionConfig(protocol="")}).validate()

    def test_unknown_protocol(self) -> None:
        config = RegistryConfig(sessions={"main": SessionConfig(protocol="gopher")})
        with pytest.raises(ValueError, match="gopher"):
            config.validate({"ftp", "sftp"})

    def test_empty_is_valid(self) -> None:
        RegistryConfig().validate(set())


class TestRegistryConfigFromDict:
    def test_from_dict(self) -> None:
        config = RegistryConfig.from_dict(
            {
                "sessions": {
                    "archive": {"protocol": "sftp", "options": {"host": "example.com", "port": 2222}},
                    "cdn": {"protocol": "s3"},
                },
                "upload": {"temporary": True, "timestamp": True, "default_file_permission": "640"},
            }
        )
        assert config.sessions["archive"] == SessionConfig("sftp", {"host": "example.com", "port": 2222})
        assert config.sessions["cdn"].options == {}
        assert config.upload.temporary
        assert config.upload.timestamp
        assert config.upload.default_file_permission == 0o640

    def test_empty_dict(self) -> None:
        config = RegistryConfig.from_dict({})
        assert config.sessions == {}
        assert config.upload == UploadFilterOptions()

    def test_sessions_must_be_dict(self) -> None:
        with pytest.raises(TypeError, match="to be dicts"):
            RegistryConfig.from_dict({"sessions": ["ftp"]})

    def test_session_entry_must_be_dict(self) -> None:
        with pytest.raises(TypeError, match="must be a dict"):
            RegistryConfig.from_dict({"sessions": {"main": "ftp"}})
