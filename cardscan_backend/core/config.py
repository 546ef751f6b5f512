import os
import re
from functools import lru_cache
from pathlib import Path
from typing import List

import yaml
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load .env from project root
project_root = Path(__file__).parent.parent.parent
env_path = project_root / ".env"
load_dotenv(env_path)


def substitute_env_vars(value):
    """
    Recursively substitute ${VAR_NAME} or ${VAR_NAME:-default} patterns
    with environment variable values.
    """
    if isinstance(value, str):
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace_match(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(var_name, default_value)

        return re.sub(pattern, replace_match, value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    return value


def load_yaml_with_env(yaml_path: Path) -> dict:
    """Load YAML file with environment variable substitution."""
    if not yaml_path.exists():
        return {}

    with open(yaml_path) as f:
        raw_config = yaml.safe_load(f) or {}

    return substitute_env_vars(raw_config)


class ProcessingSettings(BaseSettings):
    max_retries: int = 3
    concurrent_uploads: int = 5
    concurrent_extractions: int = 3
    retry_delays: List[float] = [2.0, 4.0, 8.0]


class StorageSettings(BaseSettings):
    base_path: str = "storage"
    bucket: str = "connect-cards"
    signing_secret: str = "change-me"
    credential_ttl_seconds: int = 360
    max_upload_mb: int = 15


class DatabaseSettings(BaseSettings):
    url: str = "sqlite:///./cardscan.db"


class GeminiSettings(BaseSettings):
    model: str = "gemini-1.5-flash"
    api_key: str | None = None


class RedisSettings(BaseSettings):
    url: str = "redis://localhost:6379/0"


class SessionSettings(BaseSettings):
    """Settings for processor session snapshots."""
    ttl_hours: int = 24
    key_prefix: str = "card_session"


class BackendSettings(BaseSettings):
    """Where the processor finds the backend API."""
    base_url: str = "http://localhost:8000/api/v1"
    request_timeout: float = 30.0


class Settings(BaseSettings):
    processing: ProcessingSettings = ProcessingSettings()
    storage: StorageSettings = StorageSettings()
    database: DatabaseSettings = DatabaseSettings()
    gemini: GeminiSettings = GeminiSettings()
    redis: RedisSettings = RedisSettings()
    session: SessionSettings = SessionSettings()
    backend: BackendSettings = BackendSettings()

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"
        extra = "ignore"  # Ignore extra fields not in the model


@lru_cache()
def get_settings() -> Settings:
    """Load settings from YAML config file with environment variable substitution."""
    config_path = Path(__file__).parent.parent.parent / "config" / "settings.yaml"

    # Load YAML with ${VAR_NAME} substitution from .env
    yaml_config = load_yaml_with_env(config_path)

    # Groups missing from the YAML fall back to environment variables
    return Settings(**yaml_config)
