"""Configuration management for stored run defaults."""

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError
from .launch import MAX_TILE_WIDTH, TILE_WIDTH


logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".tiledmm"
CONFIG_FILE = CONFIG_DIR / "config.json"


class Settings(BaseModel):
    """Defaults applied when a CLI option is not given."""
    kernel: Literal["naive", "tiled"] = "tiled"
    tile_width: int = Field(default=TILE_WIDTH, ge=1, le=MAX_TILE_WIDTH)
    rtol: float = Field(default=1e-3, ge=0)
    atol: float = Field(default=1e-5, ge=0)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def ensure_config_dir():
    """Ensure configuration directory exists."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)


def make_settings(**values) -> Settings:
    """Validate settings values, raising ConfigError on bad input."""
    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def load_settings() -> Settings:
    """Load stored settings, falling back to defaults."""
    if not CONFIG_FILE.exists():
        return Settings()

    try:
        with open(CONFIG_FILE, 'r') as f:
            data = json.load(f)
        return Settings.model_validate(data)
    except (OSError, ValueError) as e:
        # ValidationError is a ValueError; corrupt JSON is too
        logger.warning("Ignoring unreadable config %s: %s", CONFIG_FILE, e)
        return Settings()


def save_settings(settings: Settings):
    """Persist settings."""
    ensure_config_dir()
    with open(CONFIG_FILE, 'w') as f:
        json.dump(settings.model_dump(), f, indent=2)


def update_setting(key: str, value: str) -> Settings:
    """Set a single key from its string form and persist the result."""
    current = load_settings()
    if key not in Settings.model_fields:
        raise ConfigError(
            f"Unknown setting {key!r}; choose one of {', '.join(Settings.model_fields)}"
        )
    data = current.model_dump()
    data[key] = value.upper() if key == "log_level" else value
    settings = make_settings(**data)
    save_settings(settings)
    return settings


def clear_settings():
    """Remove stored settings."""
    if CONFIG_FILE.exists():
        CONFIG_FILE.unlink()
