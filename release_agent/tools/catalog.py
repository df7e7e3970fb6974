"""Tool input models and the handlers bound to each tool name."""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from release_agent.adapters.base import BackendAdapter, normalize_id
from release_agent.core.errors import AccessDenied, BackendError, BackendNotConfigured
from release_agent.core.models import ToolContext, ToolName, ToolSpec
from release_agent.jobs.tracker import AsyncJobTracker, JobStatus
from release_agent.orchestration.workflow import ReleaseRequest, ReleaseWorkflow, audio_filename
from release_agent.services.accounts import AccountService
from release_agent.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

Platform = Literal[
    "spotify",
    "apple_music",
    "amazon_music",
    "youtube_music",
    "deezer",
    "tidal",
    "pandora",
    "soundcloud",
    "tiktok",
    "instagram",
]

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
ISRC_PATTERN = r"^[A-Z]{2}[A-Z0-9]{3}\d{7}$"


class NoArguments(BaseModel):
    pass


class CreateArtistInput(BaseModel):
    name: str = Field(..., min_length=1, description="Artist name as it should appear on stores")
    genres: Optional[List[str]] = Field(default=None, description="Genre names or IRIs")


class CreateReleaseInput(BaseModel):
    title: str = Field(..., min_length=1)
    artist_id: str = Field(..., min_length=1, description="Artist id or IRI")
    release_date: str = Field(..., pattern=DATE_PATTERN, description="YYYY-MM-DD")
    genre: Optional[str] = None
    label: Optional[str] = None
    upc: Optional[str] = None
    copyright_line: Optional[str] = None
    copyright_year: Optional[int] = Field(default=None, ge=1900, le=2100)


class ReleaseIdInput(BaseModel):
    release_id: str = Field(..., min_length=1)


class ListReleasesInput(BaseModel):
    mine: bool = Field(default=False, description="Only releases created by the current user")


class UploadTrackInput(BaseModel):
    release_id: str = Field(..., min_length=1)
    audio_url: Optional[str] = Field(default=None, description="Public URL of an MP3 file")
    job_id: Optional[str] = Field(default=None, description="Use the audio of a finished generate_music job")
    title: Optional[str] = Field(default=None, description="Track title; also names the uploaded file")
    artist_id: Optional[str] = Field(default=None, description="Required for a metadata-only track")
    isrc: Optional[str] = Field(default=None, pattern=ISRC_PATTERN)
    explicit: bool = False
    language: str = Field(default="en", min_length=2, max_length=5)
    track_number: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _needs_source(self) -> "UploadTrackInput":
        if not self.audio_url and not self.job_id and not (self.title and self.artist_id):
            raise ValueError("pass audio_url or job_id, or title and artist_id for a track without audio")
        return self


class UpdateTrackInput(BaseModel):
    track_id: str = Field(..., min_length=1)
    title: Optional[str] = None
    isrc: Optional[str] = Field(default=None, pattern=ISRC_PATTERN)
    language: Optional[str] = Field(default=None, min_length=2, max_length=5)
    explicit: Optional[bool] = None

    @model_validator(mode="after")
    def _needs_change(self) -> "UpdateTrackInput":
        if all(value is None for value in (self.title, self.isrc, self.language, self.explicit)):
            raise ValueError("nothing to update")
        return self


class UploadArtworkInput(BaseModel):
    release_id: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    job_id: Optional[str] = Field(default=None, description="Use the cover image of a generate_music job")

    @model_validator(mode="after")
    def _needs_source(self) -> "UploadArtworkInput":
        if not self.image_url and not self.job_id:
            raise ValueError("either image_url or job_id is required")
        return self


class GenerateArtworkInput(BaseModel):
    release_id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)


class SubmitReleaseInput(BaseModel):
    release_id: str = Field(..., min_length=1)
    platforms: List[Platform] = Field(..., min_length=1)
    finalize: bool = True


class AnalyticsInput(BaseModel):
    release_id: Optional[str] = None
    track_id: Optional[str] = None
    start_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    end_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    store_id: Optional[str] = None


class SplitInput(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+$")
    name: Optional[str] = None
    percentage: float = Field(..., gt=0, le=100)
    role: str = "artist"


class SetSplitsInput(BaseModel):
    release_id: str = Field(..., min_length=1)
    splits: List[SplitInput] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _adds_up(self) -> "SetSplitsInput":
        total = sum(split.percentage for split in self.splits)
        if abs(total - 100) > 0.01:
            raise ValueError(f"split percentages must add up to 100, got {total:g}")
        return self


class GenerateMusicInput(BaseModel):
    prompt: str = Field(..., min_length=1, description="What the song should sound like")
    style: Optional[str] = Field(default=None, description="Genre and mood, used with custom lyrics")
    lyrics: Optional[str] = Field(default=None, description="Custom lyrics; [Verse]/[Chorus] tags allowed")
    title: Optional[str] = None
    instrumental: bool = False
    wait: bool = Field(default=True, description="Wait for the audio instead of returning the job id")

    @model_validator(mode="after")
    def _lyrics_need_vocals(self) -> "GenerateMusicInput":
        if self.instrumental and self.lyrics:
            raise ValueError("instrumental tracks cannot have lyrics")
        return self


class ReleaseAiTrackInput(BaseModel):
    prompt: str = Field(..., min_length=1)
    artist_name: str = Field(..., min_length=1)
    track_title: str = Field(..., min_length=1)
    release_date: str = Field(..., pattern=DATE_PATTERN, description="YYYY-MM-DD, at least 7 days ahead")
    style: Optional[str] = None
    lyrics: Optional[str] = None
    instrumental: bool = False
    platforms: Optional[List[Platform]] = None
    artwork_prompt: Optional[str] = None

    @model_validator(mode="after")
    def _lyrics_need_vocals(self) -> "ReleaseAiTrackInput":
        if self.instrumental and self.lyrics:
            raise ValueError("instrumental tracks cannot have lyrics")
        return self


class Toolbox:
    """Binds every tool to the collaborators that serve it.

    A missing backend leaves its tools registered; they answer with a
    terminal ``BackendNotConfigured`` error instead.
    """

    def __init__(
        self,
        distribution: Optional[BackendAdapter] = None,
        tracker: Optional[AsyncJobTracker] = None,
        workflow: Optional[ReleaseWorkflow] = None,
        rate_limiter: Optional[RateLimiter] = None,
        accounts: Optional[AccountService] = None,
    ) -> None:
        self._distribution = distribution
        self._tracker = tracker
        self._workflow = workflow
        self._rate_limiter = rate_limiter
        self._accounts = accounts

    def _dist(self) -> BackendAdapter:
        if self._distribution is None:
            raise BackendNotConfigured(
                "Distribution backend", "Set DITTO_EMAIL and DITTO_PASSWORD to enable distribution tools."
            )
        return self._distribution

    def _jobs(self) -> AsyncJobTracker:
        if self._tracker is None:
            raise BackendNotConfigured("Music generation", "Set SUNO_API_KEY to enable music generation.")
        return self._tracker

    async def _limit(self, ctx: ToolContext, kind: str) -> None:
        if self._rate_limiter is not None:
            await self._rate_limiter.check(ctx.caller_id, kind)

    async def _check_owner(self, ctx: ToolContext, release_id: str) -> None:
        """Refuse a release recorded as created by a different caller.

        Releases with no recorded owner (made outside this service) stay open.
        """
        if self._accounts is None:
            return
        owner = await self._accounts.release_owner(normalize_id(release_id))
        if owner is not None and owner != ctx.caller_id:
            logger.info(f"Caller {ctx.caller_id} denied access to release {release_id}")
            raise AccessDenied(release_id)

    async def _record_owner(self, ctx: ToolContext, release_id: Optional[str]) -> None:
        if self._accounts is not None and release_id:
            await self._accounts.set_release_owner(normalize_id(release_id), ctx.caller_id)

    async def create_artist(self, args: CreateArtistInput, ctx: ToolContext) -> Dict[str, Any]:
        distribution = self._dist()
        await self._limit(ctx, "artist")
        return await distribution.invoke("create_artist", args.model_dump(exclude_none=True))

    async def get_artists(self, args: NoArguments, ctx: ToolContext) -> Dict[str, Any]:
        return await self._dist().invoke("list_artists")

    async def create_release(self, args: CreateReleaseInput, ctx: ToolContext) -> Dict[str, Any]:
        release = await self._dist().invoke("create_release", args.model_dump(exclude_none=True))
        await self._record_owner(ctx, release.get("id"))
        return release

    async def get_release_status(self, args: ReleaseIdInput, ctx: ToolContext) -> Dict[str, Any]:
        distribution = self._dist()
        await self._check_owner(ctx, args.release_id)
        return await distribution.invoke("get_release", {"release_id": args.release_id})

    async def get_releases(self, args: ListReleasesInput, ctx: ToolContext) -> Dict[str, Any]:
        releases = await self._dist().invoke("list_releases")
        if not args.mine or self._accounts is None:
            return releases
        owned = set(await self._accounts.release_ids_for(ctx.caller_id))
        items = [item for item in releases.get("items", []) if isinstance(item, dict) and item.get("id") in owned]
        return {"items": items, "count": len(items)}

    async def upload_track(self, args: UploadTrackInput, ctx: ToolContext) -> Dict[str, Any]:
        distribution = self._dist()
        await self._check_owner(ctx, args.release_id)
        if not args.audio_url and not args.job_id:
            metadata = {"release_id", "artist_id", "title", "isrc", "explicit", "language", "track_number"}
            return await distribution.invoke("create_track", args.model_dump(include=metadata))
        filename = audio_filename(args.title or "track")
        audio_url = args.audio_url
        stream_url = None
        if args.job_id:
            tracker = self._jobs()
            media = await tracker.cached_media(args.job_id)
            if media is not None:
                await ctx.report("Uploading cached audio")
                filename = audio_filename(args.title or media.title)
                return await distribution.invoke(
                    "attach_audio", {"release_id": args.release_id, "audio": media.audio, "filename": filename}
                )
            job = await tracker.get_job(args.job_id)
            if job is not None and job.result:
                audio_url = job.result[0].audio_url
                stream_url = job.result[0].stream_audio_url
        if not audio_url:
            raise BackendError(f"No audio is available for job {args.job_id}; pass audio_url instead.")
        await ctx.report("Downloading and uploading audio")
        return await distribution.invoke(
            "attach_audio_from_url",
            {"release_id": args.release_id, "audio_url": audio_url, "stream_url": stream_url, "filename": filename},
        )

    async def update_track(self, args: UpdateTrackInput, ctx: ToolContext) -> Dict[str, Any]:
        fields = args.model_dump(exclude_none=True, exclude={"track_id"})
        return await self._dist().invoke("update_track", {"track_id": args.track_id, "fields": fields})

    async def upload_artwork(self, args: UploadArtworkInput, ctx: ToolContext) -> Dict[str, Any]:
        distribution = self._dist()
        await self._check_owner(ctx, args.release_id)
        if args.job_id:
            tracker = self._jobs()
            media = await tracker.cached_media(args.job_id)
            if media is not None and media.image:
                return await distribution.invoke(
                    "attach_artwork", {"release_id": args.release_id, "image": media.image}
                )
            job = await tracker.get_job(args.job_id)
            if not args.image_url and job is not None and job.result and job.result[0].image_url:
                return await distribution.invoke(
                    "attach_artwork_from_url", {"release_id": args.release_id, "image_url": job.result[0].image_url}
                )
        if not args.image_url:
            raise BackendError(f"No cover image is available for job {args.job_id}.")
        return await distribution.invoke(
            "attach_artwork_from_url", {"release_id": args.release_id, "image_url": args.image_url}
        )

    async def generate_artwork(self, args: GenerateArtworkInput, ctx: ToolContext) -> Dict[str, Any]:
        distribution = self._dist()
        await self._check_owner(ctx, args.release_id)
        return await distribution.invoke("generate_artwork", args.model_dump())

    async def get_stores(self, args: NoArguments, ctx: ToolContext) -> Dict[str, Any]:
        return await self._dist().invoke("list_stores")

    async def get_genres(self, args: NoArguments, ctx: ToolContext) -> Dict[str, Any]:
        return await self._dist().invoke("list_genres")

    async def submit_release(self, args: SubmitReleaseInput, ctx: ToolContext) -> Dict[str, Any]:
        distribution = self._dist()
        await self._check_owner(ctx, args.release_id)
        await ctx.report(f"Submitting to {', '.join(args.platforms)}")
        submitted = await distribution.invoke(
            "submit_to_stores", {"release_id": args.release_id, "platforms": list(args.platforms)}
        )
        if args.finalize:
            submitted["finalized"] = await distribution.invoke("finalize_release", {"release_id": args.release_id})
        return submitted

    async def get_earnings(self, args: AnalyticsInput, ctx: ToolContext) -> Dict[str, Any]:
        return await self._dist().invoke("get_earnings", args.model_dump(exclude_none=True))

    async def get_streams(self, args: AnalyticsInput, ctx: ToolContext) -> Dict[str, Any]:
        return await self._dist().invoke("get_streams", args.model_dump(exclude_none=True))

    async def set_splits(self, args: SetSplitsInput, ctx: ToolContext) -> Dict[str, Any]:
        distribution = self._dist()
        await self._check_owner(ctx, args.release_id)
        splits = [split.model_dump() for split in args.splits]
        return await distribution.invoke("set_release_splits", {"release_id": args.release_id, "splits": splits})

    async def get_splits(self, args: ReleaseIdInput, ctx: ToolContext) -> Dict[str, Any]:
        distribution = self._dist()
        await self._check_owner(ctx, args.release_id)
        return await distribution.invoke("get_release_splits", {"release_id": args.release_id})

    async def get_account(self, args: NoArguments, ctx: ToolContext) -> Dict[str, Any]:
        return await self._dist().invoke("get_account")

    async def generate_music(self, args: GenerateMusicInput, ctx: ToolContext) -> Dict[str, Any]:
        tracker = self._jobs()
        await self._limit(ctx, "generate")
        job_id = await tracker.submit(args.model_dump(exclude={"wait"}))
        if not args.wait:
            return {"job_id": job_id, "state": "SUBMITTED"}

        await ctx.report(f"Generation {job_id} started")

        async def on_poll(status: JobStatus) -> None:
            await ctx.report(f"Generation status: {status.raw_status}")

        job = await tracker.await_completion(job_id, on_poll=on_poll)
        return {
            "job_id": job.job_id,
            "state": job.state.name,
            "tracks": [asdict(track) for track in job.result or []],
            "audio_cached": job.media is not None,
        }

    async def release_ai_track(self, args: ReleaseAiTrackInput, ctx: ToolContext) -> Dict[str, Any]:
        self._jobs()
        self._dist()
        if self._workflow is None:
            raise BackendNotConfigured("Release workflow", "Both generation and distribution must be configured.")
        await self._limit(ctx, "release")
        request = ReleaseRequest(
            prompt=args.prompt,
            artist_name=args.artist_name,
            track_title=args.track_title,
            release_date=args.release_date,
            style=args.style,
            lyrics=args.lyrics,
            instrumental=args.instrumental,
            platforms=tuple(args.platforms or ()),
            artwork_prompt=args.artwork_prompt,
        )
        result = await self._workflow.run(request, report=ctx.report)
        await self._record_owner(ctx, result.release_id)
        return result.to_dict()

    def specs(self) -> List[ToolSpec]:
        """Return one :class:`ToolSpec` per :class:`ToolName`."""
        bindings = [
            (ToolName.CREATE_ARTIST, CreateArtistInput, self.create_artist,
             "Create a new artist profile on the distribution platform."),
            (ToolName.GET_ARTISTS, NoArguments, self.get_artists,
             "List the artists on the account."),
            (ToolName.CREATE_RELEASE, CreateReleaseInput, self.create_release,
             "Create a new music release for an artist."),
            (ToolName.GET_RELEASE_STATUS, ReleaseIdInput, self.get_release_status,
             "Get the details and status of a release."),
            (ToolName.GET_RELEASES, ListReleasesInput, self.get_releases,
             "List releases on the account; mine=true keeps only releases you created here."),
            (ToolName.UPLOAD_TRACK, UploadTrackInput, self.upload_track,
             "Add a track to a release from an audio URL or a finished generation job. "
             "Without audio, title and artist_id create a metadata-only track."),
            (ToolName.UPDATE_TRACK, UpdateTrackInput, self.update_track,
             "Edit track metadata such as ISRC, language, title or explicit flag."),
            (ToolName.UPLOAD_ARTWORK, UploadArtworkInput, self.upload_artwork,
             "Attach cover art to a release; images are squared and upscaled to 1400x1400."),
            (ToolName.GENERATE_ARTWORK, GenerateArtworkInput, self.generate_artwork,
             "Generate cover art for a release from a text prompt."),
            (ToolName.GET_STORES, NoArguments, self.get_stores,
             "List the stores a release can be delivered to."),
            (ToolName.GET_GENRES, NoArguments, self.get_genres,
             "List the genres the platform accepts."),
            (ToolName.SUBMIT_RELEASE, SubmitReleaseInput, self.submit_release,
             "Submit a release to streaming platforms."),
            (ToolName.GET_EARNINGS, AnalyticsInput, self.get_earnings,
             "Get sales and earnings, optionally filtered."),
            (ToolName.GET_STREAMS, AnalyticsInput, self.get_streams,
             "Get stream counts, optionally filtered."),
            (ToolName.SET_SPLITS, SetSplitsInput, self.set_splits,
             "Set royalty splits for a release; percentages must add up to 100."),
            (ToolName.GET_SPLITS, ReleaseIdInput, self.get_splits,
             "Get the royalty splits of a release."),
            (ToolName.GET_ACCOUNT, NoArguments, self.get_account,
             "Get the account profile and balances."),
            (ToolName.GENERATE_MUSIC, GenerateMusicInput, self.generate_music,
             "Generate a song with AI, from a description or from custom lyrics."),
            (ToolName.RELEASE_AI_TRACK, ReleaseAiTrackInput, self.release_ai_track,
             "One-shot: generate a song, find or create the artist, create the release, upload audio "
             "and artwork, and optionally submit to platforms."),
        ]
        return [
            ToolSpec(name=name, description=description, input_model=model, handler=handler)
            for name, model, handler, description in bindings
        ]
