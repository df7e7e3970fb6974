"""Chat endpoints driving the orchestration loop."""
from __future__ import annotations

import json
import logging
from typing import AsyncIterator, List, Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from release_agent.core.errors import IterationCapExceeded, RateLimitExceeded, ReasoningEngineError
from release_agent.core.models import ConversationTurn, Role
from release_agent.orchestration.loop import EventType, LoopEvent, OrchestrationLoop
from release_agent.runtime import get_accounts, get_loop, get_rate_limiter
from release_agent.services.accounts import AccountService
from release_agent.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

NOT_CONFIGURED_REPLY = "The assistant is not configured yet. Please set a reasoning engine API key and try again."
ITERATION_CAP_REPLY = (
    "I couldn't finish that in a reasonable number of steps. Could you break the request down a little?"
)
ENGINE_DOWN_REPLY = "I'm having trouble reaching my reasoning service right now. Please try again in a moment."
RATE_LIMITED_REPLY = "You've reached the message limit for now. Please try again later."


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1, description="Conversation so far, oldest first")


class ChatResponse(BaseModel):
    response: str
    error: Optional[str] = None


async def caller_identity(
    request: Request,
    x_api_key: Optional[str] = Header(default=None),
    accounts: AccountService = Depends(get_accounts),
) -> str:
    """Identify the caller: the key's user when a valid API key is sent, otherwise the client address.

    Unknown or disabled keys are rejected with 401 only when API keys are required.
    """
    api_key = await accounts.validate(x_api_key)
    if api_key is not None:
        return f"user:{api_key.user_id}"
    if accounts.require_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key. Send a valid key in the X-API-Key header.",
        )
    if x_api_key:
        logger.info("Ignoring unknown API key; identifying caller by address")
    return f"ip:{request.client.host}" if request.client else "anonymous"


def to_history(messages: List[ChatMessage]) -> List[ConversationTurn]:
    return [
        ConversationTurn(role=Role.USER if message.role == "user" else Role.ASSISTANT, content=message.content)
        for message in messages
    ]


@router.post("", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    response: Response,
    caller_id: str = Depends(caller_identity),
    loop: Optional[OrchestrationLoop] = Depends(get_loop),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> ChatResponse:
    """Answer the latest user message, calling tools as needed."""
    if loop is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ChatResponse(response=NOT_CONFIGURED_REPLY, error="not_configured")
    try:
        await limiter.check(caller_id, "chat")
    except RateLimitExceeded as exc:
        response.status_code = status.HTTP_429_TOO_MANY_REQUESTS
        return ChatResponse(response=RATE_LIMITED_REPLY, error=exc.kind)

    try:
        text = await loop.respond(to_history(body.messages), caller_id=caller_id)
    except IterationCapExceeded as exc:
        logger.warning(f"Chat for {caller_id} hit the iteration cap")
        return ChatResponse(response=ITERATION_CAP_REPLY, error=exc.kind)
    except ReasoningEngineError as exc:
        response.status_code = status.HTTP_502_BAD_GATEWAY
        return ChatResponse(response=ENGINE_DOWN_REPLY, error=exc.kind)
    return ChatResponse(response=text)


def sse(event: LoopEvent) -> str:
    return f"data: {json.dumps(event.to_dict(), default=str, ensure_ascii=False)}\n\n"


@router.post("/stream")
async def chat_stream(
    body: ChatRequest,
    caller_id: str = Depends(caller_identity),
    loop: Optional[OrchestrationLoop] = Depends(get_loop),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> StreamingResponse:
    """Same as ``POST /chat`` but streams loop events as server-sent events."""

    async def events() -> AsyncIterator[str]:
        if loop is None:
            yield sse(LoopEvent(EventType.ERROR, {"kind": "not_configured", "message": NOT_CONFIGURED_REPLY}))
            return
        try:
            await limiter.check(caller_id, "chat")
        except RateLimitExceeded as exc:
            yield sse(LoopEvent(EventType.ERROR, {"kind": exc.kind, "message": RATE_LIMITED_REPLY}))
            return
        async for event in loop.stream(to_history(body.messages), caller_id=caller_id):
            if event.type is EventType.ERROR:
                reply = ITERATION_CAP_REPLY if event.data.get("kind") == IterationCapExceeded.kind else ENGINE_DOWN_REPLY
                event = LoopEvent(EventType.ERROR, {**event.data, "message": reply})
            yield sse(event)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
