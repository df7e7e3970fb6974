"""Core data models shared across the orchestration components."""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Type

if TYPE_CHECKING:
    from pydantic import BaseModel


class ToolName(str, Enum):
    """Every tool the reasoning engine can call."""

    CREATE_ARTIST = "create_artist"
    GET_ARTISTS = "get_artists"
    CREATE_RELEASE = "create_release"
    GET_RELEASE_STATUS = "get_release_status"
    GET_RELEASES = "get_releases"
    UPLOAD_TRACK = "upload_track"
    UPDATE_TRACK = "update_track"
    UPLOAD_ARTWORK = "upload_artwork"
    GENERATE_ARTWORK = "generate_artwork"
    GET_STORES = "get_stores"
    GET_GENRES = "get_genres"
    SUBMIT_RELEASE = "submit_release"
    GET_EARNINGS = "get_earnings"
    GET_STREAMS = "get_streams"
    SET_SPLITS = "set_splits"
    GET_SPLITS = "get_splits"
    GET_ACCOUNT = "get_account"
    GENERATE_MUSIC = "generate_music"
    RELEASE_AI_TRACK = "release_ai_track"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class JobState(Enum):
    """Lifecycle states of an asynchronous generation job."""

    SUBMITTED = auto()
    POLLING = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    TIMED_OUT = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT)


@dataclass(slots=True)
class ToolContext:
    """Per-invocation context handed to tool handlers."""

    caller_id: str = "anonymous"
    notify: Optional[Callable[[str], Awaitable[None]]] = None

    async def report(self, message: str) -> None:
        """Emit an intermediate status notification, if anyone is listening."""
        if self.notify is not None:
            await self.notify(message)


ToolHandler = Callable[["BaseModel", ToolContext], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Static description of a tool and the handler it is bound to."""

    name: ToolName
    description: str
    input_model: Type["BaseModel"]
    handler: ToolHandler

    def schema(self) -> Dict[str, Any]:
        """Return the function-tool schema sent to the reasoning engine."""
        parameters = self.input_model.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass(frozen=True, slots=True)
class ToolInvocationRequest:
    """A tool call requested by the reasoning engine."""

    invocation_id: str
    tool_name: str
    arguments: Any


@dataclass(frozen=True, slots=True)
class ToolError:
    kind: str
    message: str
    retryable: bool = False
    status: Optional[int] = None


@dataclass(slots=True)
class ToolInvocationResult:
    """Outcome of one tool invocation, owned by the loop once created."""

    invocation_id: str
    tool_name: str
    success: bool
    payload: Optional[Dict[str, Any]] = None
    error: Optional[ToolError] = None
    is_terminal: bool = False

    def to_content(self) -> Dict[str, Any]:
        """Serialise into the body of a tool-result turn."""
        if self.success:
            return {"ok": True, "result": self.payload}
        error = asdict(self.error) if self.error else {"kind": "unknown", "message": "Unknown error"}
        return {"ok": False, "error": error, "terminal": self.is_terminal}


@dataclass(slots=True)
class ConversationTurn:
    """One entry of the append-only conversation history."""

    role: Role
    content: Any = None
    tool_calls: List[ToolInvocationRequest] = field(default_factory=list)
    invocation_id: Optional[str] = None


@dataclass(slots=True)
class GeneratedTrack:
    """Candidate media produced by the generation backend."""

    id: str
    title: str
    audio_url: str
    stream_audio_url: Optional[str] = None
    image_url: Optional[str] = None
    duration: Optional[float] = None
    tags: Optional[str] = None

    @property
    def recommended_url(self) -> str:
        return self.stream_audio_url or self.audio_url


@dataclass(slots=True)
class CachedMedia:
    """Binary assets fetched as soon as a job was observed complete."""

    title: str
    audio: bytes
    image: Optional[bytes] = None
    fetched_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class AsyncJob:
    """Local projection of an external generation job."""

    job_id: str
    state: JobState = JobState.SUBMITTED
    raw_status: Optional[str] = None
    result: Optional[List[GeneratedTrack]] = None
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    media: Optional[CachedMedia] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "state": self.state.name,
            "raw_status": self.raw_status,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "media_cached": self.media is not None,
            "tracks": [asdict(track) for track in self.result or []],
        }
