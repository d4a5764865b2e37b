"""LLM client pool for shared model access with concurrency control."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Union

from openai import AsyncAzureOpenAI, AsyncOpenAI

from petagent.config import AzureOpenAIConfig, OpenAIConfig

logger = logging.getLogger(__name__)

ProviderConfig = Union[AzureOpenAIConfig, OpenAIConfig]


class LLMPool:
    """Manages shared LLM clients with concurrency limiting."""

    def __init__(self) -> None:
        self._configs: Dict[str, ProviderConfig] = {}
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def register_azure_openai(self, name: str, config: AzureOpenAIConfig) -> None:
        """Register an Azure OpenAI model configuration."""
        self._register(name, config)

    def register_openai(self, name: str, config: OpenAIConfig) -> None:
        """Register an OpenAI-compatible model configuration."""
        self._register(name, config)

    def register_client(self, name: str, client: Any, max_concurrent: int = 50) -> None:
        """Register an already constructed client (used by tests and embedders)."""
        self._clients[name] = client
        self._semaphores[name] = asyncio.Semaphore(max_concurrent)

    def _register(self, name: str, config: ProviderConfig) -> None:
        self._configs[name] = config
        self._clients.pop(name, None)
        self._semaphores[name] = asyncio.Semaphore(config.max_concurrent)
        logger.info(f"Registered model {name} ({type(config).__name__})")

    def has_model(self, name: str) -> bool:
        return name in self._semaphores

    def model_id(self, name: str) -> str:
        """Provider-side model identifier for a registered name."""
        config = self._configs.get(name)
        if isinstance(config, AzureOpenAIConfig):
            return config.deployment_name
        if isinstance(config, OpenAIConfig):
            return config.model
        return name

    @asynccontextmanager
    async def acquire(self, model_name: str) -> AsyncIterator[Any]:
        """Acquire access to a model client with concurrency control."""
        if model_name not in self._semaphores:
            raise KeyError(f"Model '{model_name}' not registered in LLM pool")

        semaphore = self._semaphores[model_name]
        await semaphore.acquire()

        try:
            # Lazy initialization on first use
            if model_name not in self._clients:
                self._clients[model_name] = self._create_client(self._configs[model_name])

            yield self._clients[model_name]
        finally:
            semaphore.release()

    @staticmethod
    def _create_client(config: ProviderConfig) -> Any:
        if isinstance(config, AzureOpenAIConfig):
            return AsyncAzureOpenAI(
                api_key=config.api_key,
                api_version=config.api_version,
                azure_endpoint=config.endpoint,
            )
        return AsyncOpenAI(api_key=config.api_key, base_url=config.base_url)
