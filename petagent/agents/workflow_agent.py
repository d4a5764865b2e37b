"""Meta-agent that hands research and writing requests to a workflow preset."""
from __future__ import annotations

from typing import Optional

from petagent.agents.base import BaseAgent
from petagent.core.models import (
    AgentConfig,
    AgentContext,
    AgentMetadata,
    AgentPriority,
    AgentResult,
    AgentTrigger,
    TriggerType,
    UserMessageTriggerConfig,
)
from petagent.workflows.models import WorkflowStatus
from petagent.workflows.presets import WorkflowConfig, run_workflow

RESEARCH_KEYWORDS = ["调研", "研究", "分析", "research"]
CONTENT_KEYWORDS = ["写一篇", "撰写", "文章", "报告", "write"]

METADATA = AgentMetadata(
    id="agent-workflow",
    name="多智能体工作流",
    description="将复杂的调研与写作请求交给监督者/工作者协作完成",
    icon="🧭",
    category="workflow",
    priority=AgentPriority.NORMAL,
)


def choose_preset(message: str) -> str:
    """``content`` for writing requests, ``research`` otherwise."""
    lowered = message.lower()
    if any(keyword in lowered for keyword in CONTENT_KEYWORDS):
        return "content"
    return "research"


class WorkflowAgent(BaseAgent):
    """Runs the supervisor/worker workflow that fits the user's request."""

    def __init__(
        self,
        workflow_config: WorkflowConfig,
        *,
        config: Optional[AgentConfig] = None,
    ) -> None:
        super().__init__(
            METADATA,
            config or AgentConfig(timeout_ms=300000),
            [
                AgentTrigger(
                    id="trigger-workflow-keywords",
                    type=TriggerType.USER_MESSAGE,
                    config=UserMessageTriggerConfig(keywords=RESEARCH_KEYWORDS + CONTENT_KEYWORDS),
                    description="调研或写作类请求",
                )
            ],
        )
        self.workflow_config = workflow_config

    async def on_execute(self, context: AgentContext) -> AgentResult:
        request = context.user_message or (context.metadata or {}).get("input")
        if not request:
            return self.create_result(False, error="No workflow input")

        preset = (context.metadata or {}).get("preset") or choose_preset(request)
        self.log("info", f"Running {preset} workflow")
        state = await run_workflow(preset, request, self.workflow_config)

        data = {
            "preset": preset,
            "iterations": state.iteration,
            "results": dict(state.results),
            "tasks": [
                {"description": t.description, "assigned_to": t.assigned_to, "status": t.status.value}
                for t in state.tasks
            ],
        }
        if state.status is not WorkflowStatus.COMPLETED:
            return self.create_result(
                False,
                error=state.error or f"Workflow ended as {state.status.value}",
                data=data,
            )
        return self.create_result(True, state.output, should_speak=True, data=data)
