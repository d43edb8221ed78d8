"""
Loads and handles config from config.yml
API credentials (ANTHROPIC_API_KEY, GITHUB_TOKEN, ...) are loaded from .env for security
"""
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

PROVIDER_NAMES = ("claude", "openai", "gemini", "glm", "ollama")


class ScheduleConfig(BaseModel):
    """Wall-clock hours (UTC) for the timer-driven jobs."""
    daily_collection_hour: int = 6
    weekly_collection_weekday: int = 6  # Monday=0 .. Sunday=6
    digest_hour: int = 7
    processing_interval_minutes: int = 30
    enabled: bool = True


class Config(BaseModel):
    # Core
    DATABASE_PATH: str = "data/tech_intel.db"
    LOG_LEVEL: str = "INFO"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # LLM
    LLM_DEFAULT_PROVIDER: str = "claude"
    LLM_FALLBACK_PROVIDER: str = "ollama"
    LLM_CLOUD_TIMEOUT: float = 60.0
    LLM_LOCAL_TIMEOUT: float = 300.0  # local models are slow
    LLM_MAX_TOKENS: int = 4096
    LLM_TEMPERATURE: float = 0.7

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1:8b"

    ANTHROPIC_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    GOOGLE_AI_API_KEY: Optional[str] = None
    GLM_API_KEY: Optional[str] = None

    # Collectors
    COLLECTOR_TIMEOUT: float = 30.0
    RSS_TIMEOUT: float = 10.0
    COLLECTOR_CONCURRENCY: int = 4
    GITHUB_TOKEN: Optional[str] = None
    REDDIT_CLIENT_ID: Optional[str] = None
    REDDIT_CLIENT_SECRET: Optional[str] = None
    REDDIT_USER_AGENT: str = "TechIntelligence/1.0"

    # Processing / digest
    PROCESSING_BATCH_SIZE: int = 20
    DIGEST_RELEVANCE_THRESHOLD: float = 0.3

    schedule: ScheduleConfig = ScheduleConfig()

    @field_validator("LLM_DEFAULT_PROVIDER", "LLM_FALLBACK_PROVIDER")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in PROVIDER_NAMES:
            raise ValueError(f"Unknown LLM provider: {value}")
        return value


def _get_config_path() -> Optional[str]:
    """Get the path to config.yml, handling different working directories."""
    env_path = os.getenv("TECH_INTEL_CONFIG")
    if env_path:
        if not os.path.exists(env_path):
            raise FileNotFoundError(f"Config file not found: {env_path}")
        return env_path

    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    return None


def _read_yaml(path: Optional[str]) -> Dict[str, Any]:
    if path is None:
        return {}
    with open(path, 'r', encoding='utf-8') as file:
        return yaml.safe_load(file) or {}


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from config.yml and credentials from .env."""
    # Load .env for sensitive credentials
    load_dotenv()

    config = _read_yaml(path or _get_config_path())
    defaults = Config()

    def setting(key: str) -> Any:
        # Environment wins over the YAML file
        return os.getenv(key, config.get(key, getattr(defaults, key)))

    return Config(
        DATABASE_PATH=setting("DATABASE_PATH"),
        LOG_LEVEL=setting("LOG_LEVEL"),

        API_HOST=setting("API_HOST"),
        API_PORT=int(setting("API_PORT")),

        LLM_DEFAULT_PROVIDER=setting("LLM_DEFAULT_PROVIDER"),
        LLM_FALLBACK_PROVIDER=setting("LLM_FALLBACK_PROVIDER"),
        LLM_CLOUD_TIMEOUT=float(setting("LLM_CLOUD_TIMEOUT")),
        LLM_LOCAL_TIMEOUT=float(setting("LLM_LOCAL_TIMEOUT")),
        LLM_MAX_TOKENS=int(setting("LLM_MAX_TOKENS")),
        LLM_TEMPERATURE=float(setting("LLM_TEMPERATURE")),

        OLLAMA_BASE_URL=setting("OLLAMA_BASE_URL"),
        OLLAMA_MODEL=setting("OLLAMA_MODEL"),

        ANTHROPIC_API_KEY=os.getenv("ANTHROPIC_API_KEY") or None,
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY") or None,
        GOOGLE_AI_API_KEY=os.getenv("GOOGLE_AI_API_KEY") or None,
        GLM_API_KEY=os.getenv("GLM_API_KEY") or None,

        COLLECTOR_TIMEOUT=float(setting("COLLECTOR_TIMEOUT")),
        RSS_TIMEOUT=float(setting("RSS_TIMEOUT")),
        COLLECTOR_CONCURRENCY=int(setting("COLLECTOR_CONCURRENCY")),
        GITHUB_TOKEN=os.getenv("GITHUB_TOKEN") or None,
        REDDIT_CLIENT_ID=os.getenv("REDDIT_CLIENT_ID") or None,
        REDDIT_CLIENT_SECRET=os.getenv("REDDIT_CLIENT_SECRET") or None,
        REDDIT_USER_AGENT=setting("REDDIT_USER_AGENT"),

        PROCESSING_BATCH_SIZE=int(setting("PROCESSING_BATCH_SIZE")),
        DIGEST_RELEVANCE_THRESHOLD=float(setting("DIGEST_RELEVANCE_THRESHOLD")),

        schedule=ScheduleConfig(**config.get("schedule", {})),
    )
