"""Process settings loaded from the environment (NANNA_ prefix)."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HarnessSettings(BaseSettings):
    """Settings shared by the agent loop and the evaluation harness"""

    model_config = SettingsConfigDict(env_prefix="NANNA_", env_file=".env", extra="ignore", protected_namespaces=())

    # Model
    model_name: str = Field(default="qwen3:0.6b", description="Chat model used by the judge")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")
    service_name: str = Field(default="nanna-agent")

    # Agent loop
    max_iterations: int = Field(default=100, ge=1)
    verbose: bool = False

    # Evaluation
    evaluation_timeout_seconds: float = Field(default=300.0, gt=0)


@lru_cache()
def get_settings() -> HarnessSettings:
    """Get cached settings instance"""
    return HarnessSettings()
