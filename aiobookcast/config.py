"""
User configuration.

Settings are read from ``$XDG_CONFIG_HOME/abs/config.json`` and overridden by
ABS_* environment variables.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Annotated, Any
from urllib.parse import urlsplit

import orjson
from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = "abs"
CONFIG_FILE_NAME = "config.json"


@dataclass
class AppConfig(DataClassORJSONMixin):
    """Application configuration. Every field is optional until validated."""

    url: str | None = None
    """Audiobookshelf server URL."""
    api_key: Annotated[str | None, Alias("apiKey")] = None
    """Audiobookshelf API token."""
    default_device: Annotated[str | None, Alias("defaultDevice")] = None
    """Name of the Cast device to use when none is given."""
    timeout: int | None = None
    """Request timeout in milliseconds."""
    proxy_port: Annotated[int | None, Alias("proxyPort")] = None
    """Port of the audio proxy."""

    class Config(BaseConfig):
        """Config for the JSON file format."""

        serialize_by_alias = True
        omit_none = True


def get_config_path(env: Mapping[str, str] | None = None) -> Path:
    """Return the path of the config file."""
    env = os.environ if env is None else env
    config_home = env.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def redact_api_key(api_key: str | None) -> str:
    """Mask all but the last 4 characters of an API key."""
    if not api_key:
        return ""
    if len(api_key) <= 4:
        return "*" * len(api_key)
    return "*" * (len(api_key) - 4) + api_key[-4:]


def validate(config: AppConfig) -> list[str]:
    """Return a list of problems with the config; empty when it is usable."""
    errors: list[str] = []
    if not config.url:
        errors.append("url is required")
    else:
        parts = urlsplit(config.url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            errors.append("url must be a valid URL")
    if not config.api_key:
        errors.append("apiKey is required")
    return errors


def merge(base: AppConfig, override: AppConfig) -> AppConfig:
    """Return base with every field that is set in override replaced."""
    changes = {
        f.name: getattr(override, f.name)
        for f in fields(override)
        if getattr(override, f.name) is not None
    }
    return replace(base, **changes)


def format_for_display(config: AppConfig) -> str:
    """Render the config as indented JSON with the API key redacted."""
    data: dict[str, Any] = config.to_dict()
    data["apiKey"] = redact_api_key(config.api_key)
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode()


def _parse_int(name: str, value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s", name)
        return None


def config_from_env(env: Mapping[str, str] | None = None) -> AppConfig:
    """Build a config from ABS_* environment variables."""
    env = os.environ if env is None else env
    return AppConfig(
        url=env.get("ABS_SERVER") or None,
        api_key=env.get("ABS_TOKEN") or None,
        default_device=env.get("ABS_DEVICE") or None,
        timeout=_parse_int("ABS_TIMEOUT", env.get("ABS_TIMEOUT")),
        proxy_port=_parse_int("ABS_PROXY_PORT", env.get("ABS_PROXY_PORT")),
    )


def load_config_file(path: Path) -> AppConfig:
    """Read a config file; a missing or invalid file yields an empty config."""
    try:
        data = orjson.loads(path.read_bytes())
    except FileNotFoundError:
        return AppConfig()
    except (OSError, orjson.JSONDecodeError) as err:
        logger.warning("Ignoring unreadable config file %s: %s", path, err)
        return AppConfig()
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: not a JSON object", path)
        return AppConfig()
    try:
        return AppConfig.from_dict(data)
    except ValueError as err:
        logger.warning("Ignoring invalid config file %s: %s", path, err)
        return AppConfig()


def load_config(
    path: Path | None = None, env: Mapping[str, str] | None = None
) -> AppConfig:
    """Load the config file and apply environment overrides."""
    path = get_config_path(env) if path is None else path
    return merge(load_config_file(path), config_from_env(env))


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    """Write the config file, creating its directory. Returns the path written."""
    path = get_config_path() if path is None else path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(config.to_dict(), option=orjson.OPT_INDENT_2))
    logger.debug("Saved config to %s", path)
    return path
