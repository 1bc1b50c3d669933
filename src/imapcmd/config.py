"""Configuration loading and validation for imapcmd."""

import os
import subprocess
from pathlib import Path
from typing import Any, Literal

import keyring
import yaml
from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

from .errors import ConfigError
from .models import CommandKind

KEYRING_SERVICE = "imapcmd"


def get_config_dir() -> Path:
    """Get the configuration directory."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "imapcmd"
    return Path.home() / ".config" / "imapcmd"


def get_config_path() -> Path:
    """Get the configuration file path, honouring IMAPCMD_CONFIG."""
    override = os.environ.get("IMAPCMD_CONFIG")
    if override:
        return Path(override).expanduser()
    return get_config_dir() / "config.yaml"


class ImapConfig(BaseModel):
    """IMAP server configuration."""

    host: str
    port: int = 993
    username: str
    ssl: bool = True
    timeout: float = Field(default=60, gt=0, description="Socket timeout in seconds")


DEFAULT_SCRIPTS: dict[CommandKind, str] = {
    CommandKind.SCENE: "scene.sh",
    CommandKind.SOLAR: "solar.sh",
    CommandKind.ALARM: "alarm.sh",
    CommandKind.WATER: "water.sh",
    CommandKind.FREE: "free.sh",
}


class ActionsConfig(BaseModel):
    """Where the action scripts live and how to launch them."""

    script_dir: Path = Path("/root/bin")
    shell: str = "/bin/sh"
    timeout: float = Field(default=300, gt=0, description="Seconds before a script is killed")
    report_script: str = "sceneReport.sh"
    scripts: dict[CommandKind, str] = Field(default_factory=dict)

    def script_for(self, kind: CommandKind) -> Path:
        """Resolve the script path for a command kind."""
        name = self.scripts.get(kind, DEFAULT_SCRIPTS[kind])
        return self.script_dir.expanduser() / name

    def report_path(self) -> Path:
        return self.script_dir.expanduser() / self.report_script


class ListenConfig(BaseModel):
    """Idle listener tuning."""

    folder: str = "INBOX"
    idle_renew_seconds: float = Field(default=1500, gt=0, le=1740)
    poll_seconds: float = Field(default=1.0, gt=0)
    scan_on_start: bool = True
    reconnect: bool = True
    reconnect_delay: float = Field(default=30, ge=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file: Path | None = None
    protocol: bool = Field(default=False, description="Log the IMAP conversation")

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value


class ReceiverConfig(BaseModel):
    """Root configuration for imapcmd."""

    imap: ImapConfig
    trusted_sender: EmailStr

    # Credential retrieval options
    password_cmd: str | None = None
    password_file: Path | None = None

    actions: ActionsConfig = Field(default_factory=ActionsConfig)
    listen: ListenConfig = Field(default_factory=ListenConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_password(self) -> str:
        """Retrieve the IMAP password using the configured method.

        Priority:
        1. System keyring
        2. password_cmd (shell command)
        3. password_file
        """
        username = self.imap.username

        # Try keyring first
        try:
            password = keyring.get_password(KEYRING_SERVICE, username)
            if password:
                return password
        except keyring.errors.KeyringError:
            pass

        # Try password command
        if self.password_cmd:
            try:
                result = subprocess.run(
                    self.password_cmd,
                    shell=True,
                    capture_output=True,
                    text=True,
                    timeout=10,
                )
            except subprocess.TimeoutExpired as e:
                raise ConfigError(f"Password command timed out after {e.timeout}s") from e
            if result.returncode == 0:
                return result.stdout.strip()
            raise ConfigError(f"Password command failed: {result.stderr.strip()}")

        # Try password file
        if self.password_file:
            path = Path(self.password_file).expanduser()
            if not path.exists():
                raise ConfigError(f"Password file not found: {path}")
            # Check permissions (should be 600)
            mode = path.stat().st_mode & 0o777
            if mode != 0o600:
                raise ConfigError(
                    f"Password file {path} has insecure permissions {oct(mode)}, should be 0600"
                )
            return path.read_text().strip()

        raise ConfigError(
            f"No password configured for '{username}'. "
            "Set via keyring, password_cmd, or password_file."
        )


def merge_dicts(base: dict, overlay: dict) -> dict:
    """Recursively merge ``overlay`` over ``base`` without mutating either."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def environment_overlay_path(config_path: Path, env: str) -> Path:
    """``config.yaml`` + ``production`` -> ``config.production.yaml``."""
    return config_path.with_name(f"{config_path.stem}.{env}{config_path.suffix}")


_config: ReceiverConfig | None = None


def load_config(config_path: Path | None = None, env: str | None = None) -> ReceiverConfig:
    """Load configuration from YAML, applying the IMAPCMD_ENV overlay if any."""
    global _config

    if config_path is None:
        config_path = get_config_path()
    if env is None:
        env = os.environ.get("IMAPCMD_ENV") or None

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    data = _read_yaml(config_path)

    if env:
        overlay_path = environment_overlay_path(config_path, env)
        if overlay_path.exists():
            data = merge_dicts(data, _read_yaml(overlay_path))

    try:
        _config = ReceiverConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e
    return _config


def get_config() -> ReceiverConfig:
    """Get the current configuration, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def save_password(username: str, password: str) -> None:
    """Save password to system keyring."""
    keyring.set_password(KEYRING_SERVICE, username, password)
