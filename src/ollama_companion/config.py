"""Configuration loading and validation for the Ollama companion engine."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from platformdirs import user_config_path
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ConfigValidationError

import tomllib  # stdlib since Python 3.11 (project requires >=3.11)

LOGGER = logging.getLogger(__name__)

APP_NAME = "ollama-companion"
CONFIG_DIR = user_config_path(APP_NAME)
CONFIG_PATH = CONFIG_DIR / "config.toml"

DEFAULT_HOST = "http://localhost:11434"
VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _require_string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Expected a string value.")
    normalized = value.strip()
    if not normalized:
        raise ValueError("String value must not be empty.")
    return normalized


def validate_host(host: str) -> str:
    """Return ``host`` without a trailing slash or raise ``ValueError``."""
    parsed = urlparse(host)
    if parsed.scheme.lower() not in {"http", "https"}:
        raise ValueError("server.host must use http or https scheme.")
    if not (parsed.hostname or "").strip():
        raise ValueError("server.host must include a hostname.")
    return host.rstrip("/")


class ServerConfig(BaseModel):
    """Ollama endpoint, model names and timeout tiers."""

    host: str = DEFAULT_HOST
    model: str = ""
    vision_model: str = "llava:7b"
    document_model: str = "gemma3:4b"
    system_prompt: str = ""
    probe_timeout_seconds: float = Field(default=2.0, gt=0, le=60)
    request_timeout_seconds: float = Field(default=60.0, gt=0, le=3600)
    resource_timeout_seconds: float = Field(default=300.0, gt=0, le=7200)
    connection_check_interval_seconds: int = Field(default=15, ge=1, le=3600)

    @field_validator("host", "vision_model", "document_model", mode="before")
    @classmethod
    def _validate_required_string(cls, value: Any) -> str:
        return _require_string(value)

    @field_validator("host")
    @classmethod
    def _validate_host(cls, value: str) -> str:
        return validate_host(value)

    @field_validator("model", "system_prompt", mode="before")
    @classmethod
    def _normalize_optional_string(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("Expected a string value.")
        return value.strip()


class GenerationOptions(BaseModel):
    """Sampling and runtime options forwarded verbatim to the server.

    Every field is optional; only the ones that were set end up in the
    request's ``options`` object.
    """

    temperature: float | None = Field(default=None, ge=0, le=2)
    seed: int | None = None
    top_k: int | None = Field(default=None, ge=0)
    top_p: float | None = Field(default=None, ge=0, le=1)
    min_p: float | None = Field(default=None, ge=0, le=1)
    mirostat: int | None = Field(default=None, ge=0, le=2)
    mirostat_eta: float | None = None
    mirostat_tau: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    repeat_last_n: int | None = None
    repeat_penalty: float | None = None
    tfs_z: float | None = None
    num_keep: int | None = None
    num_predict: int | None = None
    num_ctx: int | None = Field(default=None, ge=1)
    num_batch: int | None = Field(default=None, ge=1)
    use_mmap: bool | None = None
    use_mlock: bool | None = None
    num_thread: int | None = Field(default=None, ge=1)
    num_gpu: int | None = Field(default=None, ge=0)
    stop: list[str] | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_context_length(cls, data: Any) -> Any:
        # ``context_length`` is the user-facing name for ``num_ctx``.
        if isinstance(data, dict) and "context_length" in data:
            data = dict(data)
            context_length = data.pop("context_length")
            if data.get("num_ctx") is None:
                data["num_ctx"] = context_length
        return data

    @field_validator("stop", mode="before")
    @classmethod
    def _split_stop_sequences(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, list):
            raise ValueError("stop must be a list or a comma-separated string.")
        sequences = [str(item).strip() for item in value if str(item).strip()]
        return sequences or None

    def to_options(self) -> dict[str, Any]:
        """Return only the options the user set, keyed by server option name."""
        return self.model_dump(exclude_none=True)


class AttachmentsConfig(BaseModel):
    """Limits for attachment loading, PDF extraction and document context."""

    max_pdf_pages: int = Field(default=5, ge=1, le=500)
    ocr_enabled: bool = True
    ocr_dpi: int = Field(default=144, ge=36, le=600)
    ocr_language: str = "eng"
    max_image_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    max_file_bytes: int = Field(default=20 * 1024 * 1024, ge=1)
    document_context_chars: int = Field(default=8000, ge=100, le=1_000_000)

    @field_validator("ocr_language", mode="before")
    @classmethod
    def _validate_language(cls, value: Any) -> str:
        return _require_string(value)


class SecurityConfig(BaseModel):
    """Security policy for remote host access."""

    allow_remote_hosts: bool = False
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "::1"]

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _validate_allowed_hosts(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            raise ValueError("allowed_hosts must be a list.")
        normalized_hosts = [
            item.strip().lower()
            for item in value
            if isinstance(item, str) and item.strip()
        ]
        if not normalized_hosts:
            raise ValueError("allowed_hosts must contain at least one host.")
        return normalized_hosts


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = "~/.local/state/ollama-companion/app.log"

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        return _require_string(value)


class Config(BaseModel):
    """Root configuration model for all sections."""

    server: ServerConfig = ServerConfig()
    generation: GenerationOptions = GenerationOptions()
    attachments: AttachmentsConfig = AttachmentsConfig()
    security: SecurityConfig = SecurityConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="after")
    def _validate_security_policy(self) -> Config:
        hostname = (urlparse(self.server.host).hostname or "").strip().lower()
        if not self.security.allow_remote_hosts and hostname not in set(
            self.security.allowed_hosts
        ):
            raise ValueError(
                "server.host is not in security.allowed_hosts while allow_remote_hosts is false."
            )
        return self


DEFAULT_CONFIG: dict[str, dict[str, Any]] = Config().model_dump()


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _enforce_private_permissions(path: Path) -> None:
    """Best-effort enforcement of private file permissions on POSIX systems."""
    if os.name != "posix" or not path.exists():
        return
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)


def _validate_config(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Validate merged config and fall back to safe defaults when possible."""
    try:
        return Config.model_validate(raw).model_dump()
    except ValidationError as exc:
        LOGGER.warning(
            "config.invalid",
            extra={"event": "config.invalid", "reason": str(exc)},
        )
        return deepcopy(DEFAULT_CONFIG)
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(config_path: Path | None = None) -> dict[str, dict[str, Any]]:
    """
    Load configuration from TOML, merge with defaults, and validate.

    The optional ``config_path`` argument is intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        _enforce_private_permissions(target_path)
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            LOGGER.warning("Failed to parse config at %s: %s", target_path, exc)
            raw_data = {}

    return _validate_config(_deep_merge(DEFAULT_CONFIG, raw_data))
