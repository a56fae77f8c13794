"""
Configuration management for the haunting server.
Supports environment variables and config files.
"""
import os
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = "haunt_server.log"

    # Text generation backend
    llm_provider: str = os.getenv("HAUNT_LLM_PROVIDER", "ollama")  # "ollama" | "openrouter"
    ollama_model: str = os.getenv("HAUNT_OLLAMA_MODEL", "qwen2.5:3b")
    ollama_base_url: Optional[str] = os.getenv("HAUNT_OLLAMA_BASE_URL", None)
    openrouter_api_key: Optional[str] = os.getenv("OPENROUTER_API_KEY", None)
    openrouter_model: str = os.getenv("HAUNT_OPENROUTER_MODEL", "anthropic/claude-3.5-haiku")
    openrouter_url: str = os.getenv("HAUNT_OPENROUTER_URL", "https://openrouter.ai")
    llm_max_tokens: int = int(os.getenv("HAUNT_LLM_MAX_TOKENS", 512))

    # Sampling: calmer for the opening ambiance, wilder for random triggers
    scene_setup_temperature: float = float(os.getenv("HAUNT_SCENE_SETUP_TEMPERATURE", 0.7))
    trigger_temperature: float = float(os.getenv("HAUNT_TRIGGER_TEMPERATURE", 0.8))
    device_setup_temperature: float = float(os.getenv("HAUNT_DEVICE_SETUP_TEMPERATURE", 0.7))

    # Orchestration
    default_min_trigger_interval: int = 5000  # ms
    default_max_trigger_interval: int = 30000  # ms
    min_queue_size: int = int(os.getenv("HAUNT_MIN_QUEUE_SIZE", 5))
    fire_initial_batch: bool = os.getenv("HAUNT_FIRE_INITIAL_BATCH", "true").lower() in ("true", "1", "yes")
    agent_timeout_seconds: Optional[float] = None
    default_theme: str = "Classic Ghost"

    # Storage
    haunt_db_path: str = os.getenv("HAUNT_DB_PATH", "haunted_home.db")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
