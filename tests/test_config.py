"""Tests for imapcmd configuration."""

import os
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

from imapcmd.config import (
    ActionsConfig,
    ImapConfig,
    ListenConfig,
    LoggingConfig,
    ReceiverConfig,
    environment_overlay_path,
    get_config_path,
    load_config,
    merge_dicts,
)
from imapcmd.errors import ConfigError
from imapcmd.models import CommandKind

BASE = {
    "imap": {"host": "imap.example.com", "username": "home@example.com"},
    "trusted_sender": "me@example.com",
}


def write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.dump(data))
    return path


class TestImapConfig:
    def test_create_with_defaults(self):
        imap = ImapConfig(host="imap.example.com", username="user@example.com")
        assert imap.port == 993
        assert imap.ssl is True
        assert imap.timeout == 60

    def test_create_custom_port(self):
        imap = ImapConfig(host="imap.example.com", username="user", port=143, ssl=False)
        assert imap.port == 143
        assert imap.ssl is False


class TestActionsConfig:
    def test_defaults(self):
        actions = ActionsConfig()
        assert actions.script_dir == Path("/root/bin")
        assert actions.shell == "/bin/sh"
        assert actions.script_for(CommandKind.SCENE) == Path("/root/bin/scene.sh")
        assert actions.report_path() == Path("/root/bin/sceneReport.sh")

    def test_override(self):
        actions = ActionsConfig(scripts={"solar": "battery.sh"})
        assert actions.script_for(CommandKind.SOLAR) == Path("/root/bin/battery.sh")
        assert actions.script_for(CommandKind.WATER) == Path("/root/bin/water.sh")

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            ActionsConfig(scripts={"lights": "lights.sh"})


class TestListenConfig:
    def test_defaults(self):
        listen = ListenConfig()
        assert listen.folder == "INBOX"
        assert listen.idle_renew_seconds == 1500
        assert listen.scan_on_start is True
        assert listen.reconnect is True

    def test_renew_below_server_timeout(self):
        with pytest.raises(ValueError):
            ListenConfig(idle_renew_seconds=3600)


class TestLoggingConfig:
    def test_level_case_insensitive(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_bad_level(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="chatty")


class TestReceiverConfig:
    def test_minimal(self):
        config = ReceiverConfig.model_validate(BASE)
        assert config.imap.host == "imap.example.com"
        assert config.trusted_sender == "me@example.com"
        assert config.actions == ActionsConfig()

    def test_trusted_sender_required(self):
        with pytest.raises(ValueError, match="trusted_sender"):
            ReceiverConfig.model_validate({"imap": BASE["imap"]})

    def test_trusted_sender_must_be_address(self):
        with pytest.raises(ValueError):
            ReceiverConfig.model_validate({**BASE, "trusted_sender": "not an address"})


class TestGetPassword:
    @patch("imapcmd.config.keyring.get_password")
    def test_keyring_first(self, mock_get):
        mock_get.return_value = "from-keyring"
        config = ReceiverConfig.model_validate({**BASE, "password_cmd": "echo other"})
        assert config.get_password() == "from-keyring"
        mock_get.assert_called_once_with("imapcmd", "home@example.com")

    @patch("imapcmd.config.subprocess.run")
    @patch("imapcmd.config.keyring.get_password", return_value=None)
    def test_password_cmd(self, mock_get, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="secret\n", stderr="")
        config = ReceiverConfig.model_validate({**BASE, "password_cmd": "pass show mail"})
        assert config.get_password() == "secret"

    @patch("imapcmd.config.subprocess.run")
    @patch("imapcmd.config.keyring.get_password", return_value=None)
    def test_password_cmd_failure(self, mock_get, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="locked")
        config = ReceiverConfig.model_validate({**BASE, "password_cmd": "pass show mail"})
        with pytest.raises(ConfigError, match="locked"):
            config.get_password()

    @patch("imapcmd.config.subprocess.run")
    @patch("imapcmd.config.keyring.get_password", return_value=None)
    def test_password_cmd_timeout(self, mock_get, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired("pass show mail", 10)
        config = ReceiverConfig.model_validate({**BASE, "password_cmd": "pass show mail"})
        with pytest.raises(ConfigError, match="timed out after 10s") as exc_info:
            config.get_password()
        assert isinstance(exc_info.value.__cause__, subprocess.TimeoutExpired)

    @patch("imapcmd.config.keyring.get_password", return_value=None)
    def test_password_file(self, mock_get, tmp_path):
        secret = tmp_path / "password"
        secret.write_text("hunter2\n")
        os.chmod(secret, 0o600)
        config = ReceiverConfig.model_validate({**BASE, "password_file": str(secret)})
        assert config.get_password() == "hunter2"

    @patch("imapcmd.config.keyring.get_password", return_value=None)
    def test_password_file_permissions(self, mock_get, tmp_path):
        secret = tmp_path / "password"
        secret.write_text("hunter2")
        os.chmod(secret, 0o644)
        config = ReceiverConfig.model_validate({**BASE, "password_file": str(secret)})
        with pytest.raises(ConfigError, match="insecure"):
            config.get_password()

    @patch("imapcmd.config.keyring.get_password", return_value=None)
    def test_nothing_configured(self, mock_get):
        config = ReceiverConfig.model_validate(BASE)
        with pytest.raises(ConfigError, match="No password"):
            config.get_password()


class TestMergeDicts:
    def test_nested(self):
        merged = merge_dicts({"imap": {"host": "a", "port": 1}}, {"imap": {"host": "b"}})
        assert merged == {"imap": {"host": "b", "port": 1}}

    def test_does_not_mutate(self):
        base = {"a": {"b": 1}}
        merge_dicts(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}


class TestLoadConfig:
    def test_load(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", BASE)
        config = load_config(path, env="")
        assert config.imap.username == "home@example.com"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml", env="")

    def test_invalid(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {"imap": {"host": "x"}})
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path, env="")

    def test_bad_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("imap: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path, env="")

    def test_environment_overlay(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", BASE)
        write_yaml(tmp_path / "config.test.yaml", {"imap": {"port": 3143, "ssl": False}})

        config = load_config(path, env="test")

        assert config.imap.host == "imap.example.com"
        assert config.imap.port == 3143
        assert config.imap.ssl is False

    def test_missing_overlay_ignored(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", BASE)
        assert load_config(path, env="staging").imap.port == 993

    def test_env_from_environment(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path / "config.yaml", BASE)
        write_yaml(tmp_path / "config.prod.yaml", {"trusted_sender": "boss@example.com"})
        monkeypatch.setenv("IMAPCMD_ENV", "prod")
        assert load_config(path).trusted_sender == "boss@example.com"

    def test_overlay_path(self):
        assert environment_overlay_path(Path("/etc/imapcmd/config.yaml"), "dev") == Path(
            "/etc/imapcmd/config.dev.yaml"
        )


class TestConfigPath:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IMAPCMD_CONFIG", str(tmp_path / "custom.yaml"))
        assert get_config_path() == tmp_path / "custom.yaml"

    def test_xdg(self, monkeypatch, tmp_path):
        monkeypatch.delenv("IMAPCMD_CONFIG", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert get_config_path() == tmp_path / "imapcmd" / "config.yaml"
