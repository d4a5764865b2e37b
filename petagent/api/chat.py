"""Chat endpoint routing natural language messages to the best matching agent."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from petagent.api.routes import ResultResponse
from petagent.orchestration.dispatcher import AgentDispatcher, build_context
from petagent.runtime import get_dispatcher

router = APIRouter(prefix="/chat", tags=["chat"])

NO_AGENT_MESSAGE = "No agent is available to handle this message"


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message to route")
    user_id: str = Field(default="default", description="User the message belongs to")


class ChatResponse(BaseModel):
    handled: bool
    result: Optional[ResultResponse] = None
    detail: Optional[str] = None


@router.post("", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
) -> ChatResponse:
    """Send a user message through the dispatcher's trigger matching."""
    result = await dispatcher.dispatch_user_message(request.message, build_context(request.user_id))
    if result is None:
        return ChatResponse(handled=False, detail=NO_AGENT_MESSAGE)
    return ChatResponse(handled=True, result=ResultResponse.from_result(result))
