"""Fakes shared by the test modules."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from release_agent.core.clock import Clock
from release_agent.core.errors import BackendError, UnknownOperation
from release_agent.core.models import GeneratedTrack, ToolInvocationRequest
from release_agent.services.reasoning import EngineReply


class FakeClock(Clock):
    """Clock whose sleeps advance time instantly."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now
        self.mono = 0.0
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.now += seconds
        self.mono += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


def call(invocation_id: str, tool_name: str, arguments: Any = None) -> ToolInvocationRequest:
    return ToolInvocationRequest(invocation_id=invocation_id, tool_name=tool_name, arguments=arguments or {})


class FakeEngine:
    """Replays scripted replies and records the history it was shown."""

    def __init__(self, replies: List[Any]) -> None:
        self._replies = list(replies)
        self.histories: List[list] = []

    async def complete(self, system_prompt: str, tools: List[Dict[str, Any]], history: Any) -> EngineReply:
        self.histories.append(list(history))
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeAdapter:
    """Records ``invoke`` calls and answers from per-operation callables or values."""

    name = "fake"

    def __init__(self, responses: Optional[Dict[str, Any]] = None) -> None:
        self.responses: Dict[str, Any] = dict(responses or {})
        self.calls: List[tuple] = []
        self.downloads: List[str] = []
        self.media: Dict[str, bytes] = {}

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def invoke(self, operation: str, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        args = dict(args or {})
        self.calls.append((operation, args))
        if operation not in self.responses:
            raise UnknownOperation(self.name, operation)
        response = self.responses[operation]
        if callable(response):
            response = response(args)
        if isinstance(response, Exception):
            raise response
        return response

    async def fetch_media(self, url: str, *, fallback_url: Optional[str] = None) -> bytes:
        self.downloads.append(url)
        if url in self.media:
            return self.media[url]
        raise BackendError(f"Could not download {url}", status=404)


def track(audio_url: str = "https://cdn.example/song.mp3", **overrides: Any) -> GeneratedTrack:
    fields = {
        "id": "trk-1",
        "title": "Night Drive",
        "audio_url": audio_url,
        "stream_audio_url": "https://cdn.example/song",
        "image_url": None,
        "duration": 182.4,
    }
    fields.update(overrides)
    return GeneratedTrack(**fields)


def generation_adapter(statuses: List[Any], tracks: Optional[List[GeneratedTrack]] = None) -> FakeAdapter:
    """Generation fake whose polls walk through ``statuses``.

    Entries that are exceptions are raised instead of answered.
    """
    remaining = list(statuses)
    adapter = FakeAdapter()

    def submit(args: Dict[str, Any]) -> Dict[str, Any]:
        return {"task_id": "task-1"}

    def poll(args: Dict[str, Any]) -> Any:
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(status, Exception):
            return status
        return {
            "task_id": args["task_id"],
            "status": status,
            "tracks": list(tracks or []) if status == "SUCCESS" else [],
            "error": "flagged content" if status == "SENSITIVE_WORD_ERROR" else None,
        }

    adapter.responses = {"submit_generation": submit, "get_generation": poll}
    return adapter
