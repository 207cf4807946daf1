"""
Configuration module for CitationLedger.

Centralizes all configuration settings, environment variables, and defaults.
Settings can be overridden via environment variables or .env file.

Usage:
    from citeledger.config import config

    width = config.POSITION_KEY_WIDTH
    if config.ENABLE_FILE_LOGGING:
        ...
"""

import os
from pathlib import Path
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load from project root .env file
_ENV_PATH = Path(__file__).parent.parent / '.env'
if _ENV_PATH.exists():
    load_dotenv(_ENV_PATH)


def _get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    val = os.environ.get(key, "")
    try:
        return int(val) if val else default
    except ValueError:
        return default


def _get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    val = os.environ.get(key, "")
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class Config:
    """
    CitationLedger configuration settings.

    All settings can be overridden via environment variables.
    """

    # ==========================================================================
    # Reference Ledger Settings
    # ==========================================================================

    # Width of the zero-padded position key ("0001")
    POSITION_KEY_WIDTH: int = field(default_factory=lambda: _get_env_int(
        "POSITION_KEY_WIDTH", 4
    ))

    # Range of 4-digit numbers treated as publication years, not citations
    YEAR_MIN: int = field(default_factory=lambda: _get_env_int(
        "YEAR_MIN", 1800
    ))
    YEAR_MAX: int = field(default_factory=lambda: _get_env_int(
        "YEAR_MAX", 2100
    ))

    # Style assumed when detection cannot tell
    DEFAULT_STYLE: str = field(default_factory=lambda: _get_env(
        "DEFAULT_STYLE", "Vancouver"
    ))

    # Citation style catalogue (YAML)
    STYLES_PATH: str = field(default_factory=lambda: _get_env(
        "STYLES_PATH", str(Path(__file__).parent / "data" / "citation_styles.yaml")
    ))

    # ==========================================================================
    # Change Log Persistence
    # ==========================================================================

    CHANGE_LOG_DB_PATH: str = field(default_factory=lambda: _get_env(
        "CHANGE_LOG_DB_PATH", str(Path(__file__).parent.parent / ".data" / "change_log.db")
    ))

    # ==========================================================================
    # Ollama/LLM Settings (AI collaborator)
    # ==========================================================================

    OLLAMA_URL: str = field(default_factory=lambda: _get_env(
        "OLLAMA_URL", "http://localhost:11434"
    ))

    OLLAMA_MODEL: str = field(default_factory=lambda: _get_env(
        "OLLAMA_MODEL", "qwen2.5:32b-instruct"
    ))

    # Request timeout in seconds
    LLM_TIMEOUT: float = field(default_factory=lambda: _get_env_float(
        "LLM_TIMEOUT", 120.0
    ))

    # ==========================================================================
    # Export Settings
    # ==========================================================================

    # Suffix appended to exported file names
    OUTPUT_SUFFIX: str = field(default_factory=lambda: _get_env(
        "OUTPUT_SUFFIX", "_tracked"
    ))

    # ==========================================================================
    # Logging Settings
    # ==========================================================================

    # Log level: DEBUG, INFO, WARNING, ERROR
    LOG_LEVEL: str = field(default_factory=lambda: _get_env(
        "LOG_LEVEL", "INFO"
    ))

    VERBOSE: bool = field(default_factory=lambda: _get_env_bool(
        "VERBOSE", False
    ))

    ENABLE_FILE_LOGGING: bool = field(default_factory=lambda: _get_env_bool(
        "ENABLE_FILE_LOGGING", False
    ))

    # Log file rotation size (MB)
    LOG_ROTATION_SIZE_MB: int = field(default_factory=lambda: _get_env_int(
        "LOG_ROTATION_SIZE_MB", 10
    ))

    # Number of log files to retain
    LOG_RETENTION_COUNT: int = field(default_factory=lambda: _get_env_int(
        "LOG_RETENTION_COUNT", 5
    ))

    def to_dict(self) -> dict:
        """Return configuration as dictionary."""
        return {
            'position_key_width': self.POSITION_KEY_WIDTH,
            'year_min': self.YEAR_MIN,
            'year_max': self.YEAR_MAX,
            'default_style': self.DEFAULT_STYLE,
            'styles_path': self.STYLES_PATH,
            'change_log_db_path': self.CHANGE_LOG_DB_PATH,
            'ollama_url': self.OLLAMA_URL,
            'ollama_model': self.OLLAMA_MODEL,
            'llm_timeout': self.LLM_TIMEOUT,
            'output_suffix': self.OUTPUT_SUFFIX,
            'log_level': self.LOG_LEVEL,
            'verbose': self.VERBOSE,
        }


# Global configuration instance
config = Config()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config


def reload_config() -> Config:
    """Reload configuration from environment."""
    global config
    config = Config()
    return config
