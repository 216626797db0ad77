"""Engine configuration module."""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from edugame.common.error_handling import ConfigurationError
from edugame.common.logger import configure_logger

logger = logging.getLogger("edugame.config")


class Settings(BaseSettings):
    """Engine settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    LOG_JSON: bool = False
    LOG_FILE: Optional[str] = None

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./edugame.db"
    SQL_ECHO: bool = False

    # Event bus settings
    EVENT_HISTORY_LIMIT: int = Field(default=1000, ge=1)
    EVENT_WAIT_TIMEOUT_MS: int = Field(default=5000, ge=0)

    # AI recommendation settings
    AI_RECOMMENDATION_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    AI_MAX_RETRIES: int = Field(default=1, ge=0)
    AI_RETRY_DELAY: float = Field(default=0.5, ge=0)

    # Adaptive difficulty settings
    DIFFICULTY_SENSITIVITY: str = "medium"
    ADAPTATION_INTERVAL_ANSWERS: int = Field(default=5, ge=1)

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator('DIFFICULTY_SENSITIVITY')
    @classmethod
    def validate_sensitivity(cls, v):
        """Validate difficulty sensitivity"""
        valid = ['low', 'medium', 'high']
        if v.lower() not in valid:
            raise ValueError(f"Invalid difficulty sensitivity: {v}. Must be one of {valid}")
        return v.lower()


def _load_from_file(path: str) -> Dict[str, Any]:
    """
    Load configuration values from a YAML or JSON file.

    Args:
        path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    try:
        if path.suffix.lower() in ['.yaml', '.yml']:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        elif path.suffix.lower() == '.json':
            with open(path, 'r') as f:
                return json.load(f)
        else:
            logger.warning(f"Unsupported config file format: {path.suffix}")
            return {}
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Error loading config file {path}: {e}") from e


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings from defaults, a config file and the environment.

    Environment variables, including those set in the .env file, take
    priority over values from the file.

    Args:
        config_path: Path to a YAML or JSON config file (falls back to CONFIG_PATH)

    Returns:
        Loaded settings
    """
    config_path = config_path or os.environ.get("CONFIG_PATH")
    file_values = _load_from_file(config_path) if config_path else {}
    env_file = Settings.model_config.get("env_file")
    dotenv_keys = set(dotenv_values(env_file)) if env_file and Path(env_file).is_file() else set()
    overrides = {
        k: v for k, v in file_values.items()
        if k not in os.environ and k not in dotenv_keys
    }
    return Settings(**overrides)


def setup_logging(config: Settings) -> logging.Logger:
    """Configure the application logger from settings."""
    return configure_logger(
        name="edugame",
        level=config.LOG_LEVEL,
        format_string=config.LOG_FORMAT,
        use_json=config.LOG_JSON,
        log_file=config.LOG_FILE
    )


# Create global settings instance
settings = Settings()
