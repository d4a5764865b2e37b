"""Application runtime composition helpers."""
from __future__ import annotations

import logging
from dataclasses import replace
from functools import lru_cache
from typing import List

from petagent.agents.base import BaseAgent
from petagent.agents.care_agent import ProactiveCareAgent
from petagent.agents.chat_agent import ChatAgent
from petagent.agents.workflow_agent import WorkflowAgent
from petagent.config import config
from petagent.orchestration.dispatcher import AgentDispatcher
from petagent.orchestration.triggers import TriggerManager
from petagent.scheduler.task_agent import ScheduledTaskAgent
from petagent.scheduler.tasks import TaskRepository
from petagent.services.chat_model import ChatModel, OpenAIChatModel
from petagent.services.llm_pool import LLMPool
from petagent.services.mcp import MCPRegistry
from petagent.services.store import InMemoryRowStore, RowStore
from petagent.workflows.presets import WorkflowConfig

logger = logging.getLogger(__name__)


@lru_cache
def get_trigger_manager() -> TriggerManager:
    return TriggerManager()


@lru_cache
def get_dispatcher() -> AgentDispatcher:
    return AgentDispatcher(config.dispatcher, trigger_manager=get_trigger_manager())


@lru_cache
def get_row_store() -> RowStore:
    return InMemoryRowStore()


@lru_cache
def get_task_repository() -> TaskRepository:
    return TaskRepository(get_row_store())


@lru_cache
def get_mcp_registry() -> MCPRegistry:
    return MCPRegistry()


@lru_cache
def get_llm_pool() -> LLMPool:
    pool = LLMPool()

    # Register Azure OpenAI if configured
    if config.azure_openai:
        pool.register_azure_openai(config.chat_model, config.azure_openai)

    if config.openai and not pool.has_model(config.chat_model):
        pool.register_openai(config.chat_model, config.openai)

    return pool


@lru_cache
def get_chat_model() -> ChatModel:
    return OpenAIChatModel(get_llm_pool(), config.chat_model)


@lru_cache
def get_workflow_config() -> WorkflowConfig:
    return WorkflowConfig(model=get_chat_model(), audit_store=get_row_store())


async def build_default_agents() -> List[BaseAgent]:
    """Chat, care and workflow agents plus one agent per stored scheduled task."""
    model = get_chat_model()
    store = get_row_store()
    mcp_tools = await get_mcp_registry().discover_tools()

    agents: List[BaseAgent] = [
        ChatAgent(model, extra_tools=mcp_tools, audit_store=store),
        ProactiveCareAgent(),
        WorkflowAgent(replace(get_workflow_config(), tools=mcp_tools)),
    ]
    repository = get_task_repository()
    for task in await repository.list():
        agents.append(ScheduledTaskAgent(task, repository, model, audit_store=store))
    return agents


async def register_default_agents(dispatcher: AgentDispatcher) -> None:
    for agent in await build_default_agents():
        dispatcher.register_agent(agent)
        if isinstance(agent, ProactiveCareAgent):
            for expression, evaluator in agent.condition_evaluators().items():
                dispatcher.trigger_manager.register_condition_evaluator(expression, evaluator)
    logger.info(f"Registered {len(dispatcher.get_registered_agents())} default agents")
