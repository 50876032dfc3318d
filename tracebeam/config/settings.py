from __future__ import annotations

import configparser
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tracebeam.constants import (
    COMMON_RELEASE_ENVS,
    CONFIG_FILE_USER,
    CONFIG_SETTINGS_SECTION,
    DEFAULT_BASE_URL,
    DEFAULT_FETCH_RETRY_COUNT,
    DEFAULT_FETCH_RETRY_DELAY,
    DEFAULT_FETCH_RETRY_JITTER,
    DEFAULT_FETCH_RETRY_MAX_DELAY,
    DEFAULT_FLUSH_AT,
    DEFAULT_FLUSH_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SDK_INTEGRATION,
    ENV_PREFIX,
    MAX_BATCH_BYTES,
    MAX_EVENT_BYTES,
)
from tracebeam.errors import ConfigurationError

from .log_codes import CONFIG_FILE_UNREADABLE, CONFIG_RESOLVED

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ("public_key", "secret_key")


class ClientConfig(BaseModel):
    """
    Read-only delivery settings consumed by the client, queue, scheduler,
    sender and retry controller. Durations are expressed in seconds.
    """

    model_config = ConfigDict(frozen=True)

    public_key: str
    secret_key: str
    base_url: str = DEFAULT_BASE_URL
    flush_at: int = DEFAULT_FLUSH_AT
    flush_interval: float = Field(default=DEFAULT_FLUSH_INTERVAL, ge=0)
    fetch_retry_count: int = Field(default=DEFAULT_FETCH_RETRY_COUNT, ge=0)
    fetch_retry_delay: float = Field(default=DEFAULT_FETCH_RETRY_DELAY, ge=0)
    fetch_retry_max_delay: float = Field(default=DEFAULT_FETCH_RETRY_MAX_DELAY, ge=0)
    fetch_retry_jitter: float = Field(default=DEFAULT_FETCH_RETRY_JITTER, ge=0)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    # Left unvalidated on purpose: the sampler warns and fails open.
    sample_rate: Optional[float] = None
    enabled: bool = True
    release: Optional[str] = None
    sdk_integration: str = DEFAULT_SDK_INTEGRATION
    max_event_bytes: int = Field(default=MAX_EVENT_BYTES, gt=0)
    max_batch_bytes: int = Field(default=MAX_BATCH_BYTES, gt=0)
    debug: bool = False

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slashes(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("flush_at")
    @classmethod
    def _keep_flush_at_positive(cls, value: int) -> int:
        return max(value, 1)

    @classmethod
    def resolve(
        cls, config_path: Optional[Path] = None, **overrides: Any
    ) -> "ClientConfig":
        """
        Build the configuration from explicit arguments, environment variables
        and the user config file, in that order of precedence.

        Args:
            config_path (Optional[Path]): The config.ini to read, defaults to ~/.tracebeam/config.ini.
            **overrides: Explicit settings; ``None`` values are ignored.

        Returns:
            ClientConfig: The resolved configuration.

        Raises:
            ConfigurationError: If a required setting is missing or a value is invalid.
            TypeError: If an unknown setting is passed.
        """
        unknown = set(overrides) - set(cls.model_fields)
        if unknown:
            raise TypeError(f"Unknown tracebeam settings: {', '.join(sorted(unknown))}")

        path = config_path or CONFIG_FILE_USER
        file_settings = _read_config_file(path)

        values: Dict[str, Any] = {}
        sources: Dict[str, str] = {}
        for name in cls.model_fields:
            candidates = (
                ("argument", overrides.get(name)),
                ("env", os.getenv(ENV_PREFIX + name.upper())),
                ("config", file_settings.get(name)),
            )
            for source, value in candidates:
                if value is not None and value != "":
                    values[name] = value
                    sources[name] = source
                    break

        if "release" not in values:
            release = get_common_release_env()
            if release:
                values["release"] = release
                sources["release"] = "ci"

        for setting in REQUIRED_SETTINGS:
            if not values.get(setting):
                raise ConfigurationError(setting)

        try:
            config = cls(**values)
        except ValidationError as e:
            error = e.errors()[0]
            setting = str(error["loc"][0]) if error["loc"] else ""
            raise ConfigurationError(
                setting,
                message="Invalid tracebeam {setting} setting ({env}): " + error["msg"],
            ) from e

        logger.info(
            CONFIG_RESOLVED,
            extra={"config_path": str(path), "sources": sources},
        )
        return config

    def masked(self) -> Dict[str, Any]:
        """
        Return the settings as a dict with the secret key masked.
        """
        data = self.model_dump()
        secret = data["secret_key"]
        data["secret_key"] = secret[:4] + "*" * max(len(secret) - 4, 0)
        return data


def _read_config_file(path: Path) -> Dict[str, str]:
    """
    Read the ``[settings]`` section of a config.ini file.

    Args:
        path (Path): The config file path.

    Returns:
        Dict[str, str]: The settings found, empty if the file or section is missing.
    """
    config = configparser.ConfigParser()
    try:
        config.read(path)
    except configparser.Error as e:
        logger.warning(CONFIG_FILE_UNREADABLE, extra={"config_path": str(path), "error": str(e)})
        return {}

    if CONFIG_SETTINGS_SECTION not in config.sections():
        return {}

    return dict(config[CONFIG_SETTINGS_SECTION])


def get_common_release_env() -> Optional[str]:
    """
    Return the commit hash exposed by common hosting and CI providers, if any.
    """
    for key in COMMON_RELEASE_ENVS:
        value = os.getenv(key)
        if value:
            return value
    return None
