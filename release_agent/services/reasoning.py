"""Reasoning engine backed by an OpenAI-compatible chat-completions API."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import openai

from release_agent.config import ReasoningConfig
from release_agent.core.errors import ReasoningEngineError
from release_agent.core.models import ConversationTurn, Role, ToolInvocationRequest
from release_agent.services.llm_pool import LLMPool

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EngineReply:
    """Either a final answer or a batch of tool calls."""

    text: Optional[str] = None
    tool_calls: List[ToolInvocationRequest] = field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return not self.tool_calls


def _dump(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def to_messages(history: Sequence[ConversationTurn]) -> List[Dict[str, Any]]:
    """Convert conversation turns into chat-completions messages."""
    messages: List[Dict[str, Any]] = []
    for turn in history:
        if turn.role is Role.TOOL:
            messages.append(
                {"role": "tool", "tool_call_id": turn.invocation_id, "content": _dump(turn.content)}
            )
        elif turn.role is Role.ASSISTANT:
            message: Dict[str, Any] = {"role": "assistant", "content": turn.content}
            if turn.tool_calls:
                message["tool_calls"] = [
                    {
                        "id": call.invocation_id,
                        "type": "function",
                        "function": {"name": call.tool_name, "arguments": _dump(call.arguments)},
                    }
                    for call in turn.tool_calls
                ]
            messages.append(message)
        else:
            messages.append({"role": "user", "content": _dump(turn.content)})
    return messages


def parse_tool_calls(raw_calls: Any) -> List[ToolInvocationRequest]:
    requests: List[ToolInvocationRequest] = []
    for call in raw_calls or []:
        arguments: Any = call.function.arguments or "{}"
        try:
            arguments = json.loads(arguments)
        except ValueError:
            # Left as a string; validation reports it back to the engine.
            logger.warning(f"Undecodable arguments for {call.function.name}: {arguments[:200]}")
        requests.append(
            ToolInvocationRequest(invocation_id=call.id, tool_name=call.function.name, arguments=arguments)
        )
    return requests


class ReasoningEngine:
    """Asks the model for the next action given the whole conversation."""

    def __init__(self, pool: LLMPool, model_name: str, config: ReasoningConfig) -> None:
        self._pool = pool
        self._model_name = model_name
        self._config = config

    async def complete(
        self,
        system_prompt: str,
        tools: List[Dict[str, Any]],
        history: Sequence[ConversationTurn],
    ) -> EngineReply:
        request: Dict[str, Any] = {
            "model": self._config.model,
            "messages": [{"role": "system", "content": system_prompt}, *to_messages(history)],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
        }
        if tools:
            request["tools"] = tools

        try:
            async with self._pool.acquire(self._model_name) as client:
                response = await client.chat.completions.create(**request)
        except openai.APIError as exc:
            logger.error(f"Reasoning engine call failed: {exc!r}")
            raise ReasoningEngineError(f"The reasoning engine is unavailable: {exc.__class__.__name__}") from exc

        message = response.choices[0].message
        return EngineReply(text=message.content, tool_calls=parse_tool_calls(message.tool_calls))
