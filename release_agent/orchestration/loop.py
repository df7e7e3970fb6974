"""Tool-orchestration loop between the reasoning engine and the tool registry."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from release_agent.core.errors import IterationCapExceeded, ReleaseAgentError
from release_agent.core.models import (
    ConversationTurn,
    Role,
    ToolContext,
    ToolError,
    ToolInvocationRequest,
    ToolInvocationResult,
)
from release_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a music distribution assistant. You take releases from idea to store submission.

Authentication is handled for you. Never ask the user to log in or create accounts.

Intent handling:
- Clear intent to create ("make a beat", "generate a song"): ask for genre or style, then proceed.
- The user already has a track: ask for the audio URL.
- Ambiguous ("release a song"): ask whether they have a track ready or want one created.

Rules:
- Ask one question at a time and keep replies to two or three sentences.
- As soon as you have enough information, call the tools.
- Prefer release_ai_track when the user wants a generated song released in one go.
- Without custom lyrics, generate an instrumental.

Tool results are JSON. When "ok" is false, read "error". If "terminal" is true, do not retry that
tool; explain the problem to the user in plain words. Retry only when "retryable" is true, and
never show raw error bodies to the user."""


class EventType(str, Enum):
    STATUS = "status"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    FINAL = "final"
    ERROR = "error"


@dataclass(slots=True)
class LoopEvent:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.data}


def failure_result(request: ToolInvocationRequest, exc: ReleaseAgentError) -> ToolInvocationResult:
    """Turn a tool error into data the reasoning engine can act on."""
    return ToolInvocationResult(
        invocation_id=request.invocation_id,
        tool_name=request.tool_name,
        success=False,
        error=ToolError(kind=exc.kind, message=exc.message, retryable=exc.retryable, status=exc.status),
        is_terminal=exc.terminal,
    )


class OrchestrationLoop:
    """Alternates between the reasoning engine and tool execution.

    Tool failures are fed back to the engine as results; only the iteration
    cap and engine transport failures abort a run.
    """

    def __init__(
        self,
        engine: Any,
        registry: ToolRegistry,
        max_iterations: int = 10,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt

    async def execute(self, request: ToolInvocationRequest, ctx: ToolContext) -> ToolInvocationResult:
        """Resolve, validate and run one tool call. Never raises for tool errors."""
        try:
            spec = self._registry.resolve(request.tool_name)
            arguments = self._registry.validate(spec, request.arguments)
        except ReleaseAgentError as exc:
            logger.info(f"Rejected {request.tool_name} call {request.invocation_id}: {exc.message}")
            return failure_result(request, exc)

        try:
            payload = await spec.handler(arguments, ctx)
        except ReleaseAgentError as exc:
            logger.warning(f"Tool {request.tool_name} failed: {exc.message}")
            return failure_result(request, exc)
        except Exception:  # noqa: BLE001
            logger.exception(f"Tool {request.tool_name} crashed")
            return ToolInvocationResult(
                invocation_id=request.invocation_id,
                tool_name=request.tool_name,
                success=False,
                error=ToolError(kind="internal_error", message=f"{request.tool_name} failed unexpectedly"),
            )
        return ToolInvocationResult(
            invocation_id=request.invocation_id,
            tool_name=request.tool_name,
            success=True,
            payload=payload,
        )

    async def _execute_batch(
        self,
        calls: Sequence[ToolInvocationRequest],
        caller_id: str,
        queue: "asyncio.Queue[Optional[LoopEvent]]",
    ) -> List[ToolInvocationResult]:
        def notifier(call: ToolInvocationRequest) -> Callable[[str], Awaitable[None]]:
            async def notify(message: str) -> None:
                await queue.put(
                    LoopEvent(
                        EventType.STATUS,
                        {"message": message, "tool": call.tool_name, "invocation_id": call.invocation_id},
                    )
                )

            return notify

        try:
            # gather returns results in argument order, whatever the completion order.
            return list(
                await asyncio.gather(
                    *(self.execute(call, ToolContext(caller_id=caller_id, notify=notifier(call))) for call in calls)
                )
            )
        finally:
            await queue.put(None)

    async def events(
        self,
        history: Sequence[ConversationTurn],
        caller_id: str = "anonymous",
    ) -> AsyncIterator[LoopEvent]:
        """Run the loop, yielding events; raises on the iteration cap or engine failure."""
        turns: List[ConversationTurn] = list(history)
        tools = self._registry.schemas()

        for iteration in range(1, self.max_iterations + 1):
            reply = await self._engine.complete(self.system_prompt, tools, turns)
            if reply.is_final:
                text = reply.text or ""
                turns.append(ConversationTurn(role=Role.ASSISTANT, content=text))
                yield LoopEvent(EventType.FINAL, {"response": text, "iterations": iteration})
                return

            turns.append(ConversationTurn(role=Role.ASSISTANT, content=reply.text, tool_calls=list(reply.tool_calls)))
            if reply.text:
                yield LoopEvent(EventType.STATUS, {"message": reply.text})
            for call in reply.tool_calls:
                yield LoopEvent(
                    EventType.TOOL_CALL,
                    {"invocation_id": call.invocation_id, "tool": call.tool_name, "arguments": call.arguments},
                )

            queue: asyncio.Queue[Optional[LoopEvent]] = asyncio.Queue()
            batch = asyncio.create_task(self._execute_batch(reply.tool_calls, caller_id, queue))
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            results = await batch

            for result in results:
                turns.append(
                    ConversationTurn(role=Role.TOOL, content=result.to_content(), invocation_id=result.invocation_id)
                )
                yield LoopEvent(
                    EventType.TOOL_RESULT,
                    {
                        "invocation_id": result.invocation_id,
                        "tool": result.tool_name,
                        "success": result.success,
                        "result": result.payload,
                        "error": asdict(result.error) if result.error else None,
                        "terminal": result.is_terminal,
                    },
                )
            logger.debug(f"Iteration {iteration}: executed {len(results)} tool call(s)")

        raise IterationCapExceeded(self.max_iterations)

    async def respond(self, history: Sequence[ConversationTurn], caller_id: str = "anonymous") -> str:
        """Return the final answer for ``history``."""
        async for event in self.events(history, caller_id=caller_id):
            if event.type is EventType.FINAL:
                return event.data["response"]
        raise IterationCapExceeded(self.max_iterations)

    async def stream(self, history: Sequence[ConversationTurn], caller_id: str = "anonymous") -> AsyncIterator[LoopEvent]:
        """Like :meth:`events`, but hard failures become a trailing ``error`` event."""
        try:
            async for event in self.events(history, caller_id=caller_id):
                yield event
        except ReleaseAgentError as exc:
            logger.error(f"Conversation aborted: {exc.message}")
            yield LoopEvent(EventType.ERROR, {"kind": exc.kind, "message": exc.message})
