"""Configuration management for the agent core."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI service configuration."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI-compatible endpoint configuration (OpenAI, DeepSeek, local servers...)."""

    api_key: str
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    max_concurrent: int = 50


@dataclass(frozen=True)
class DispatcherConfig:
    """Queue and retry policy of the AgentDispatcher."""

    max_concurrency: int = 3
    queue_size: int = 100
    max_retries: int = 2
    retry_delay_ms: int = 1000

    @classmethod
    def from_env(cls) -> DispatcherConfig:
        return cls(
            max_concurrency=int(os.getenv("PETAGENT_MAX_CONCURRENCY", "3")),
            queue_size=int(os.getenv("PETAGENT_QUEUE_SIZE", "100")),
            max_retries=int(os.getenv("PETAGENT_MAX_RETRIES", "2")),
            retry_delay_ms=int(os.getenv("PETAGENT_RETRY_DELAY_MS", "1000")),
        )


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    azure_openai: Optional[AzureOpenAIConfig] = None
    openai: Optional[OpenAIConfig] = None
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    chat_model: str = "gpt-4"
    log_level: str = "INFO"
    environment: str = "development"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")

        azure_config = None
        if azure_key and azure_endpoint:
            azure_config = AzureOpenAIConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
            )

        openai_config = None
        openai_key = os.getenv("OPENAI_API_KEY")
        if openai_key:
            openai_config = OpenAIConfig(
                api_key=openai_key,
                base_url=os.getenv("OPENAI_BASE_URL"),
                model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                max_concurrent=int(os.getenv("OPENAI_MAX_CONCURRENT", "50")),
            )

        return cls(
            azure_openai=azure_config,
            openai=openai_config,
            dispatcher=DispatcherConfig.from_env(),
            chat_model=os.getenv("PETAGENT_CHAT_MODEL", "gpt-4"),
            log_level=os.getenv("PETAGENT_LOG_LEVEL", "INFO"),
            environment=os.getenv("ENVIRONMENT", "development"),
        )


# Global config instance
config = Config.from_env()
