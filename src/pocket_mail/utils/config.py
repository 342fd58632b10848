"""Settings persisted as JSON under the pocket-mail home directory."""

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import (
    FileSystemError,
    InvalidConfigError,
    MissingConfigError,
)
from .logging import get_logger, log_call
from .paths import CONFIG_PATH

logger = get_logger(__name__)


class ImapConfig(BaseModel):
    """Pydantic model for mailbox and server settings."""

    mailbox: str = "INBOX"
    window_size: int = Field(default=10, ge=1)
    verify_tls: bool = True
    extra_providers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("extra_providers")
    @classmethod
    def _lowercase_domains(cls, value: Dict[str, str]) -> Dict[str, str]:
        return {domain.lower(): host for domain, host in value.items()}


class TimeoutConfig(BaseModel):
    """Pydantic model for per-exchange timeouts (seconds)."""

    connect: float = Field(default=30.0, gt=0)
    login: float = Field(default=30.0, gt=0)
    select: float = Field(default=10.0, gt=0)
    fetch: float = Field(default=30.0, gt=0)
    store: float = Field(default=10.0, gt=0)
    expunge: float = Field(default=10.0, gt=0)
    logout: float = Field(default=5.0, gt=0)


class LoggingConfig(BaseModel):
    """Log levels and rotation for the file handlers."""

    log_level: str = "INFO"
    console_level: str = "WARNING"
    file_logging: bool = True
    max_file_size: int = 5_242_880  # 5 MB
    backup_count: int = 5

    @field_validator("log_level", "console_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown logging level {value!r}")
        return value


class AppConfig(BaseModel):
    """Root of config.json."""

    version: str = "0.1.0"
    imap: ImapConfig = Field(default_factory=ImapConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Loads ``config.json``, creating it with defaults on first run."""

    def __init__(self, config_path: Optional[Path] = None):
        self.path = config_path or CONFIG_PATH
        self.config = self._load()
        logger.info(f"Using configuration at {self.path}")

    def _load(self) -> AppConfig:
        if not self.path.exists():
            logger.info(f"Writing default configuration to {self.path}")
            config = AppConfig()
            self._write(config)
            return config

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise FileSystemError(f"Cannot read {self.path}: {e}") from e

        try:
            return AppConfig.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Rejected configuration in {self.path}: {e}")
            raise InvalidConfigError(f"{self.path} is not a valid configuration: {e}") from e

    def _write(self, config: Optional[AppConfig] = None) -> None:
        config = config or self.config
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise FileSystemError(f"Cannot write {self.path}: {e}") from e
        logger.debug(f"Saved configuration to {self.path}")

    @log_call
    def get_config(self, key_path: str, default: Any = None) -> Any:
        """Value at a dotted path such as ``imap.window_size``, or ``default``."""
        node: Any = self.config
        for key in key_path.split("."):
            if isinstance(node, dict):
                node = node.get(key, default)
            elif key in getattr(type(node), "model_fields", {}):
                node = getattr(node, key)
            else:
                return default
        return node

    @log_call
    def set_config(self, key_path: str, value: Any, persist: bool = True) -> None:
        """Change one dotted key; the whole config is revalidated before it is kept."""
        *parents, leaf = key_path.split(".")
        data = self.config.model_dump()

        section: Any = data
        for key in parents:
            if not isinstance(section.get(key), dict):
                raise MissingConfigError(f"No configuration section '{key}' in '{key_path}'")
            section = section[key]
        if leaf not in section:
            raise MissingConfigError(f"No configuration key '{key_path}'")

        section[leaf] = value
        try:
            self.config = AppConfig.model_validate(data)
        except ValidationError as e:
            raise InvalidConfigError(f"Invalid value for '{key_path}': {e}") from e

        if persist:
            self._write()
        logger.info(f"Configuration key '{key_path}' changed")

    def reset(self, persist: bool = True) -> None:
        """Go back to the built-in defaults."""
        self.config = AppConfig()
        if persist:
            self._write()
