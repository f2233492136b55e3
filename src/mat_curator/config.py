"""
Configuration management for mat-curator.

This module provides centralized configuration management with environment variable
handling, validation, and default values for the curation pipeline.
"""

import os
from typing import Optional, Dict, Any
from pathlib import Path
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict
from dotenv import load_dotenv

from .models import EvaluationMode


class Configuration(BaseModel):
    """
    Configuration class for the mat-curator pipeline.

    Handles API keys, run parameters, quality thresholds, quota limits and
    storage settings with environment variable support and validation.
    """

    model_config = ConfigDict(validate_assignment=True)

    # API Configuration
    youtube_api_key: str = Field(..., description="YouTube Data API v3 key")
    openai_api_key: str = Field(..., description="OpenAI API key for candidate evaluation")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI model for candidate evaluation")

    # Run parameters
    target_batch_size: int = Field(default=12, ge=1, le=100, description="Targets curated per run")
    quality_threshold: float = Field(default=65.0, ge=0.0, le=100.0, description="Minimum score for approval (0-100)")
    dimension_floor: float = Field(default=40.0, ge=0.0, le=100.0, description="Minimum score for every dimension in strict mode")
    min_duration_seconds: int = Field(default=120, ge=0, description="Shortest acceptable video")
    max_duration_seconds: Optional[int] = Field(default=3600, ge=1, description="Longest acceptable video (None disables)")
    evaluation_mode: EvaluationMode = Field(default=EvaluationMode.STRICT, description="simple or strict evaluation")
    search_max_results: int = Field(default=20, ge=1, le=50, description="Results requested per search query")

    # Quota
    daily_quota_limit: int = Field(default=10000, ge=1, description="Daily YouTube API quota in units")

    # Storage Configuration
    database_path: Path = Field(default=Path("./data/knowledge_base.db"), description="SQLite knowledge base path")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Path = Field(default=Path("./logs/mat-curator.log"), description="Log file path")

    # Development Settings
    debug: bool = Field(default=False, description="Enable debug mode")

    @field_validator('youtube_api_key')
    @classmethod
    def validate_youtube_api_key(cls, v):
        """Validate YouTube API key format."""
        if not v or v == "your_youtube_api_key_here":
            raise ValueError("YouTube API key must be provided and cannot be the placeholder value")
        if len(v) < 20:
            raise ValueError("YouTube API key appears to be invalid (too short)")
        return v

    @field_validator('openai_api_key')
    @classmethod
    def validate_openai_api_key(cls, v):
        """Validate OpenAI API key format."""
        if not v or v == "your_openai_api_key_here":
            raise ValueError("OpenAI API key must be provided and cannot be the placeholder value")
        if not v.startswith(('sk-', 'sk-proj-')):
            raise ValueError("OpenAI API key must start with 'sk-' or 'sk-proj-'")
        return v

    @field_validator('openai_model')
    @classmethod
    def validate_openai_model(cls, v):
        """Validate OpenAI model name is present."""
        if not v or not v.strip():
            raise ValueError("OpenAI model must be provided")
        return v.strip()

    @field_validator('max_duration_seconds')
    @classmethod
    def validate_duration_range(cls, v, info):
        """Ensure the duration ceiling is above the floor."""
        if v is not None and info.data and 'min_duration_seconds' in info.data and v <= info.data['min_duration_seconds']:
            raise ValueError("Maximum duration must be greater than minimum duration")
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    def __init__(self, **data):
        """Initialize configuration; explicit keyword arguments win over the environment."""
        load_dotenv()

        env_data = self._load_from_environment()
        env_data.update(data)

        super().__init__(**env_data)

        self._ensure_directories()

    @staticmethod
    def _load_from_environment() -> dict:
        """Load configuration values from environment variables."""
        env_mapping = {
            'youtube_api_key': 'YOUTUBE_API_KEY',
            'openai_api_key': 'OPENAI_API_KEY',
            'openai_model': 'OPENAI_MODEL',
            'target_batch_size': 'TARGET_BATCH_SIZE',
            'quality_threshold': 'QUALITY_THRESHOLD',
            'dimension_floor': 'DIMENSION_FLOOR',
            'min_duration_seconds': 'MIN_DURATION_SECONDS',
            'max_duration_seconds': 'MAX_DURATION_SECONDS',
            'evaluation_mode': 'EVALUATION_MODE',
            'search_max_results': 'SEARCH_MAX_RESULTS',
            'daily_quota_limit': 'DAILY_QUOTA_LIMIT',
            'database_path': 'DATABASE_PATH',
            'log_level': 'LOG_LEVEL',
            'log_file': 'LOG_FILE',
            'debug': 'DEBUG',
        }

        env_data = {}
        for field_name, env_var in env_mapping.items():
            env_value = os.getenv(env_var)
            if env_value is None:
                continue
            if field_name in ['target_batch_size', 'min_duration_seconds', 'search_max_results', 'daily_quota_limit']:
                try:
                    env_data[field_name] = int(env_value)
                except ValueError:
                    raise ValueError(f"Environment variable {env_var} must be an integer")
            elif field_name == 'max_duration_seconds':
                if env_value.strip().lower() in ('', 'none', '0'):
                    env_data[field_name] = None
                else:
                    try:
                        env_data[field_name] = int(env_value)
                    except ValueError:
                        raise ValueError(f"Environment variable {env_var} must be an integer")
            elif field_name in ['quality_threshold', 'dimension_floor']:
                try:
                    env_data[field_name] = float(env_value)
                except ValueError:
                    raise ValueError(f"Environment variable {env_var} must be a number")
            elif field_name == 'debug':
                env_data[field_name] = env_value.lower() in ('true', '1', 'yes', 'on')
            elif field_name in ['database_path', 'log_file']:
                env_data[field_name] = Path(env_value)
            elif field_name == 'evaluation_mode':
                env_data[field_name] = env_value.strip().lower()
            else:
                env_data[field_name] = env_value

        return env_data

    def _ensure_directories(self):
        """Ensure required directories exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load_config(cls, config_file: Optional[Path] = None, **overrides) -> 'Configuration':
        """
        Load configuration from environment variables and optional config file.

        Args:
            config_file: Optional path to .env file to load
            **overrides: Explicit values that take precedence over the environment

        Returns:
            Configuration instance

        Raises:
            ValidationError: If configuration validation fails
            FileNotFoundError: If specified config file doesn't exist
        """
        if config_file and not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")

        if config_file:
            load_dotenv(config_file)

        try:
            return cls(**overrides)
        except ValidationError as e:
            raise e

    def get_run_settings(self) -> Dict[str, Any]:
        """
        Get the run entrypoint parameters as a dictionary.

        Returns:
            Dictionary with batch size, quality threshold and minimum duration
        """
        return {
            'target_batch_size': self.target_batch_size,
            'quality_threshold': self.quality_threshold,
            'min_duration_seconds': self.min_duration_seconds,
        }

    def to_dict(self) -> dict:
        """
        Convert configuration to dictionary, excluding sensitive data.

        Returns:
            Dictionary representation of configuration (API keys masked)
        """
        config_dict = self.model_dump()
        config_dict['youtube_api_key'] = '***masked***'
        config_dict['openai_api_key'] = '***masked***'
        config_dict['evaluation_mode'] = self.evaluation_mode.value
        config_dict['database_path'] = str(self.database_path)
        config_dict['log_file'] = str(self.log_file)
        return config_dict


# Global configuration instance
_config_instance: Optional[Configuration] = None


def get_config() -> Configuration:
    """
    Get the global configuration instance.

    Returns:
        Configuration instance

    Raises:
        RuntimeError: If configuration hasn't been initialized
    """
    global _config_instance
    if _config_instance is None:
        raise RuntimeError("Configuration not initialized. Call init_config() first.")
    return _config_instance


def init_config(config_file: Optional[Path] = None, **overrides) -> Configuration:
    """
    Initialize the global configuration instance.

    Args:
        config_file: Optional path to .env file to load
        **overrides: Explicit values that take precedence over the environment

    Returns:
        Configuration instance

    Raises:
        ValidationError: If configuration validation fails
    """
    global _config_instance
    _config_instance = Configuration.load_config(config_file, **overrides)
    return _config_instance


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config_instance
    _config_instance = None
