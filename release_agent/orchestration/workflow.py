"""One-shot release: generate, resolve artist, create release, attach media, submit."""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from release_agent.adapters.base import BackendAdapter
from release_agent.core.clock import SYSTEM_CLOCK, Clock
from release_agent.core.errors import BackendError, ReleaseAgentError
from release_agent.core.models import AsyncJob, CachedMedia, GeneratedTrack
from release_agent.jobs.tracker import AsyncJobTracker, JobStatus

logger = logging.getLogger(__name__)

Reporter = Callable[[str], Awaitable[None]]

STEP_NAMES = ("generate", "artist", "release", "audio", "artwork", "submit", "finalize")


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class StepOutcome:
    name: str
    status: StepStatus
    detail: Optional[str] = None


@dataclass(slots=True)
class WorkflowResult:
    success: bool = False
    steps: List[StepOutcome] = field(default_factory=list)
    artist_id: Optional[str] = None
    release_id: Optional[str] = None
    track_id: Optional[str] = None
    job_id: Optional[str] = None
    error: Optional[str] = None
    generated: Optional[GeneratedTrack] = None

    def step(self, name: str) -> Optional[StepOutcome]:
        return next((outcome for outcome in self.steps if outcome.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "steps": [{**asdict(outcome), "status": outcome.status.value} for outcome in self.steps],
            "artist_id": self.artist_id,
            "release_id": self.release_id,
            "track_id": self.track_id,
            "job_id": self.job_id,
            "error": self.error,
            "generated_track": asdict(self.generated) if self.generated else None,
        }


@dataclass(frozen=True, slots=True)
class ReleaseRequest:
    prompt: str
    artist_name: str
    track_title: str
    release_date: str
    style: Optional[str] = None
    lyrics: Optional[str] = None
    instrumental: bool = False
    platforms: Sequence[str] = ()
    artwork_prompt: Optional[str] = None


def audio_filename(title: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", title) + ".mp3"


class _Abort(Exception):
    """Raised internally when a fatal step fails."""


class ReleaseWorkflow:
    """Runs the release pipeline as a single tool call.

    Generation, artist resolution, release creation and audio attachment
    are fatal on failure; artwork, submission and finalisation are
    reported but never undo an otherwise valid release.
    """

    def __init__(
        self,
        tracker: AsyncJobTracker,
        distribution: BackendAdapter,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._tracker = tracker
        self._distribution = distribution
        self._clock = clock

    async def run(self, request: ReleaseRequest, report: Optional[Reporter] = None) -> WorkflowResult:
        release_run = _ReleaseRun(self._tracker, self._distribution, self._clock, report)
        return await release_run.execute(request)


class _ReleaseRun:
    """State of one workflow execution."""

    def __init__(
        self,
        tracker: AsyncJobTracker,
        distribution: BackendAdapter,
        clock: Clock,
        report: Optional[Reporter],
    ) -> None:
        self._tracker = tracker
        self._distribution = distribution
        self._clock = clock
        self._report = report

    async def execute(self, request: ReleaseRequest) -> WorkflowResult:
        result = WorkflowResult()

        try:
            job, media = await self._fatal(result, "generate", self._generate(request, result))
            track = job.result[0]
            await self._fatal(result, "artist", self._resolve_artist(request.artist_name, result))
            await self._fatal(result, "release", self._create_release(request, result))
            await self._fatal(result, "audio", self._attach_audio(request, track, media, result))
        except _Abort:
            for name in STEP_NAMES:
                if result.step(name) is None:
                    result.steps.append(StepOutcome(name, StepStatus.SKIPPED, "not attempted"))
            return result

        await self._optional(result, "artwork", self._attach_artwork(request, track, media, result))
        if request.platforms:
            submitted = await self._optional(result, "submit", self._submit(request, result))
            if submitted:
                await self._optional(result, "finalize", self._finalize(result))
            else:
                result.steps.append(StepOutcome("finalize", StepStatus.SKIPPED, "nothing submitted"))
        else:
            result.steps.append(StepOutcome("submit", StepStatus.SKIPPED, "no platforms requested"))
            result.steps.append(StepOutcome("finalize", StepStatus.SKIPPED, "nothing submitted"))

        result.success = True
        await self._notify(f"Release {result.release_id} is set up")
        return result

    async def _notify(self, message: str) -> None:
        if self._report is not None:
            await self._report(message)

    async def _fatal(self, result: WorkflowResult, name: str, step: Awaitable[Any]) -> Any:
        try:
            value = await step
        except ReleaseAgentError as exc:
            logger.warning(f"release_ai_track step {name} failed: {exc.message}")
            result.steps.append(StepOutcome(name, StepStatus.FAILED, exc.message))
            result.error = f"{name} failed: {exc.message}"
            raise _Abort() from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception(f"release_ai_track step {name} crashed")
            result.steps.append(StepOutcome(name, StepStatus.FAILED, f"unexpected {exc.__class__.__name__}"))
            result.error = f"{name} failed unexpectedly"
            raise _Abort() from exc
        return value

    async def _optional(self, result: WorkflowResult, name: str, step: Awaitable[Optional[str]]) -> bool:
        try:
            detail = await step
        except ReleaseAgentError as exc:
            logger.warning(f"release_ai_track step {name} failed, continuing: {exc.message}")
            result.steps.append(StepOutcome(name, StepStatus.FAILED, exc.message))
            await self._notify(f"{name} failed: {exc.message}")
            return False
        except Exception as exc:  # noqa: BLE001
            logger.exception(f"release_ai_track step {name} crashed, continuing")
            result.steps.append(StepOutcome(name, StepStatus.FAILED, f"unexpected {exc.__class__.__name__}"))
            await self._notify(f"{name} failed unexpectedly")
            return False
        if detail is None:
            result.steps.append(StepOutcome(name, StepStatus.SKIPPED, "nothing to do"))
            return False
        result.steps.append(StepOutcome(name, StepStatus.SUCCEEDED, detail))
        return True

    async def _generate(self, request: ReleaseRequest, result: WorkflowResult) -> Tuple[AsyncJob, Optional[CachedMedia]]:
        await self._notify("Generating music" + (" with your lyrics" if request.lyrics else ""))

        async def on_poll(status: JobStatus) -> None:
            await self._notify(f"Generation status: {status.raw_status}")

        job_id = await self._tracker.submit(
            {
                "prompt": request.prompt,
                "style": request.style,
                "lyrics": request.lyrics,
                "title": request.track_title,
                "instrumental": request.instrumental,
            }
        )
        result.job_id = job_id
        job = await self._tracker.await_completion(job_id, on_poll=on_poll)
        if not job.result:
            raise BackendError("Generation finished without any tracks")
        result.generated = job.result[0]
        duration = job.result[0].duration
        detail = f'Generated "{job.result[0].title}"' + (f" ({round(duration)}s)" if duration else "")
        result.steps.append(StepOutcome("generate", StepStatus.SUCCEEDED, detail))
        return job, await self._tracker.cached_media(job_id)

    async def _resolve_artist(self, name: str, result: WorkflowResult) -> None:
        await self._notify(f'Looking up artist "{name}"')
        listing = await self._distribution.invoke("list_artists")
        wanted = name.strip().casefold()
        existing = next(
            (
                artist
                for artist in listing.get("items", [])
                if isinstance(artist, dict) and str(artist.get("name", "")).strip().casefold() == wanted
            ),
            None,
        )
        if existing is not None and existing.get("id"):
            result.artist_id = str(existing["id"])
            result.steps.append(StepOutcome("artist", StepStatus.SUCCEEDED, f"Reused artist {result.artist_id}"))
            return
        created = await self._distribution.invoke("create_artist", {"name": name})
        result.artist_id = _require_id(created, "artist")
        result.steps.append(StepOutcome("artist", StepStatus.SUCCEEDED, f"Created artist {result.artist_id}"))

    async def _create_release(self, request: ReleaseRequest, result: WorkflowResult) -> None:
        await self._notify(f'Creating release "{request.track_title}" for {request.release_date}')
        year = datetime.fromtimestamp(self._clock.time(), tz=timezone.utc).year
        created = await self._distribution.invoke(
            "create_release",
            {
                "title": request.track_title,
                "artist_id": result.artist_id,
                "release_date": request.release_date,
                "copyright_line": request.artist_name,
                "copyright_year": year,
            },
        )
        result.release_id = _require_id(created, "release")
        result.steps.append(StepOutcome("release", StepStatus.SUCCEEDED, f"Created release {result.release_id}"))

    async def _attach_audio(
        self,
        request: ReleaseRequest,
        track: GeneratedTrack,
        media: Optional[CachedMedia],
        result: WorkflowResult,
    ) -> None:
        await self._notify("Uploading audio")
        filename = audio_filename(request.track_title)
        if media is not None:
            attached = await self._distribution.invoke(
                "attach_audio",
                {"release_id": result.release_id, "audio": media.audio, "filename": filename},
            )
        else:
            attached = await self._distribution.invoke(
                "attach_audio_from_url",
                {
                    "release_id": result.release_id,
                    "audio_url": track.audio_url,
                    "stream_url": track.stream_audio_url,
                    "filename": filename,
                },
            )
        result.track_id = attached.get("id")
        result.steps.append(StepOutcome("audio", StepStatus.SUCCEEDED, f"Track {result.track_id} created with audio"))

    async def _attach_artwork(
        self,
        request: ReleaseRequest,
        track: GeneratedTrack,
        media: Optional[CachedMedia],
        result: WorkflowResult,
    ) -> Optional[str]:
        if request.artwork_prompt:
            await self._notify("Generating artwork")
            await self._distribution.invoke(
                "generate_artwork", {"release_id": result.release_id, "prompt": request.artwork_prompt}
            )
            return "Artwork generated from prompt"
        if media is not None and media.image:
            await self._notify("Uploading cover art")
            await self._distribution.invoke("attach_artwork", {"release_id": result.release_id, "image": media.image})
            return "Generated cover image attached"
        if track.image_url:
            await self._notify("Uploading cover art")
            await self._distribution.invoke(
                "attach_artwork_from_url", {"release_id": result.release_id, "image_url": track.image_url}
            )
            return "Generated cover image attached"
        return None

    async def _submit(self, request: ReleaseRequest, result: WorkflowResult) -> Optional[str]:
        await self._notify(f"Submitting to {', '.join(request.platforms)}")
        await self._distribution.invoke(
            "submit_to_stores", {"release_id": result.release_id, "platforms": list(request.platforms)}
        )
        return f"Submitted to {', '.join(request.platforms)}"

    async def _finalize(self, result: WorkflowResult) -> Optional[str]:
        await self._distribution.invoke("finalize_release", {"release_id": result.release_id})
        return "Release finalised"


def _require_id(payload: Dict[str, Any], entity: str) -> str:
    entity_id = payload.get("id")
    if not entity_id:
        raise BackendError(f"Distribution backend created the {entity} but returned no id")
    return str(entity_id)
