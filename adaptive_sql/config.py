"""
Adaptive SQL Configuration
==========================
Centralized configuration management with validation.
"""

import os
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in _TRUTHY


class OpenAIProviderConfig(BaseModel):
    """Credentials for the primary (OpenAI) provider."""
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    model: str = "gpt-4o-mini"

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key)


class AzureOpenAIProviderConfig(BaseModel):
    """Credentials for the secondary-cloud (Azure OpenAI) provider."""
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("AZURE_OPENAI_API_KEY"))
    endpoint: Optional[str] = Field(default_factory=lambda: os.getenv("AZURE_OPENAI_ENDPOINT"))
    deployment_name: Optional[str] = Field(
        default_factory=lambda: os.getenv("AZURE_OPENAI_DEPLOYMENT")
    )
    api_version: str = "2024-06-01"
    model: str = "gpt-4o-mini"

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key and self.endpoint and self.deployment_name)


class LLMConfig(BaseModel):
    """Configuration for LLM providers."""
    prefer_azure_openai: bool = Field(default_factory=lambda: _env_flag("PREFER_AZURE_OPENAI"))

    temperature: float = 0.1
    max_tokens: int = 2000
    timeout: int = 60

    openai: OpenAIProviderConfig = Field(default_factory=OpenAIProviderConfig)
    azure_openai: AzureOpenAIProviderConfig = Field(default_factory=AzureOpenAIProviderConfig)

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v):
        return max(0.0, min(2.0, v))


class FallbackConfig(BaseModel):
    """Configuration for the offline fallback provider."""
    chunk_delay_seconds: float = 0.1


class OptimizerConfig(BaseModel):
    """Configuration for the adaptive prompt optimizer."""
    enabled: bool = True
    max_schema_hints: int = 3
    max_pattern_comments: int = 5


class ResilienceConfig(BaseModel):
    """Configuration for provider call resilience."""
    max_retries: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0
    failure_threshold: int = 5
    recovery_timeout: int = 60


class StorageConfig(BaseModel):
    """Configuration for feedback and attempt storage."""
    data_dir: str = Field(
        default_factory=lambda: os.getenv("ADAPTIVE_SQL_DATA_DIR", ".cache/adaptive_sql")
    )
    max_entries: int = 5000


class ObservabilityConfig(BaseModel):
    """Configuration for logging and metrics."""
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: str = "json"
    log_to_file: bool = Field(default_factory=lambda: _env_flag("ADAPTIVE_SQL_LOG_TO_FILE"))
    log_dir: str = "logs"
    prometheus_enabled: bool = False
    prometheus_port: int = 8000


class AdaptiveConfig(BaseModel):
    """Complete adaptive SQL generation configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# Singleton
_config: Optional[AdaptiveConfig] = None


def get_config() -> AdaptiveConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AdaptiveConfig()
    return _config


def reload_config() -> AdaptiveConfig:
    """Reload configuration from environment."""
    global _config
    load_dotenv(override=True)
    _config = AdaptiveConfig()
    return _config
