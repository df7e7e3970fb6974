"""Tool catalogue, argument validation and tool handlers."""
from __future__ import annotations

import pytest

from release_agent.config import RateLimitConfig, TrackerConfig
from release_agent.core.errors import AccessDenied, RateLimitExceeded, ToolNotFound, ToolValidationError
from release_agent.core.models import ToolContext, ToolName
from release_agent.jobs.tracker import AsyncJobTracker
from release_agent.services.accounts import AccountService
from release_agent.services.rate_limit import RateLimiter
from release_agent.tools.catalog import Toolbox
from release_agent.tools.registry import ToolRegistry
from support import FakeAdapter, FakeClock, generation_adapter, track


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry(Toolbox().specs())


def test_every_tool_name_is_registered(registry: ToolRegistry) -> None:
    assert sorted(registry.names()) == sorted(name.value for name in ToolName)
    assert len(registry.schemas()) == len(ToolName)


def test_schemas_are_function_tools(registry: ToolRegistry) -> None:
    schema = registry.resolve("submit_release").schema()

    assert schema["type"] == "function"
    parameters = schema["function"]["parameters"]
    assert parameters["required"] == ["release_id", "platforms"]
    assert "spotify" in str(parameters)


def test_duplicate_names_are_rejected() -> None:
    specs = Toolbox().specs()
    with pytest.raises(ValueError):
        ToolRegistry(specs + specs[:1])


def test_unknown_tool(registry: ToolRegistry) -> None:
    with pytest.raises(ToolNotFound):
        registry.resolve("delete_release")
    assert "delete_release" not in registry


@pytest.mark.parametrize(
    "tool,arguments",
    [
        ("submit_release", {"release_id": "1", "platforms": ["myspace"]}),
        ("submit_release", {"release_id": "1", "platforms": []}),
        ("create_release", {"title": "X", "artist_id": "1", "release_date": "01/12/2026"}),
        ("generate_music", {"prompt": "ballad", "instrumental": True, "lyrics": "la la"}),
        ("set_splits", {"release_id": "1", "splits": [{"email": "a@b.c", "percentage": 60}]}),
        ("upload_track", {"release_id": "1"}),
        ("upload_track", {"release_id": "1", "title": "Night Drive"}),
        ("update_track", {"track_id": "1"}),
        ("update_track", {"track_id": "1", "isrc": "not-an-isrc"}),
        ("create_artist", {}),
    ],
)
def test_invalid_arguments(registry: ToolRegistry, tool: str, arguments: dict) -> None:
    with pytest.raises(ToolValidationError) as excinfo:
        registry.validate(registry.resolve(tool), arguments)
    assert excinfo.value.tool_name == tool


def test_string_arguments_are_rejected(registry: ToolRegistry) -> None:
    with pytest.raises(ToolValidationError) as excinfo:
        registry.validate(registry.resolve("get_artists"), '{"broken"')
    assert "not valid JSON" in excinfo.value.message


def test_valid_arguments_are_parsed(registry: ToolRegistry) -> None:
    args = registry.validate(
        registry.resolve("set_splits"),
        {
            "release_id": "55",
            "splits": [{"email": "a@example.com", "percentage": 70}, {"email": "b@example.com", "percentage": 30}],
        },
    )
    assert [split.percentage for split in args.splits] == [70, 30]


@pytest.mark.anyio
async def test_submit_release_finalizes_by_default() -> None:
    dist = FakeAdapter({"submit_to_stores": {"store_ids": ["2", "63"]}, "finalize_release": {"status": "pending"}})
    toolbox = Toolbox(distribution=dist)
    registry = ToolRegistry(toolbox.specs())
    spec = registry.resolve("submit_release")

    result = await spec.handler(
        registry.validate(spec, {"release_id": "55", "platforms": ["spotify", "apple_music"]}), ToolContext()
    )

    assert result["finalized"] == {"status": "pending"}
    assert dist.calls[0] == ("submit_to_stores", {"release_id": "55", "platforms": ["spotify", "apple_music"]})


@pytest.mark.anyio
async def test_upload_track_prefers_cached_job_audio() -> None:
    generation = generation_adapter(["SUCCESS"], tracks=[track()])
    generation.media["https://cdn.example/song.mp3"] = b"ID3audio"
    tracker = AsyncJobTracker(generation, TrackerConfig(), clock=FakeClock())
    await tracker.generate({"prompt": "x"})
    dist = FakeAdapter({"attach_audio": {"id": "91"}})
    registry = ToolRegistry(Toolbox(distribution=dist, tracker=tracker).specs())
    spec = registry.resolve("upload_track")

    result = await spec.handler(registry.validate(spec, {"release_id": "55", "job_id": "task-1"}), ToolContext())

    assert result == {"id": "91"}
    operation, args = dist.calls[0]
    assert operation == "attach_audio"
    assert args["audio"] == b"ID3audio"
    assert args["filename"] == "Night_Drive.mp3"


@pytest.mark.anyio
async def test_generate_music_without_waiting_returns_job_id() -> None:
    generation = generation_adapter(["PENDING"])
    tracker = AsyncJobTracker(generation, TrackerConfig(), clock=FakeClock())
    registry = ToolRegistry(Toolbox(tracker=tracker).specs())
    spec = registry.resolve("generate_music")

    result = await spec.handler(registry.validate(spec, {"prompt": "lofi", "wait": False}), ToolContext())

    assert result == {"job_id": "task-1", "state": "SUBMITTED"}
    assert generation.count("get_generation") == 0
    assert "wait" not in generation.calls[0][1]


@pytest.mark.anyio
async def test_artist_creation_is_rate_limited_per_caller() -> None:
    dist = FakeAdapter({"create_artist": {"id": "7"}})
    limiter = RateLimiter(RateLimitConfig(artist=(1, 86400)), clock=FakeClock())
    registry = ToolRegistry(Toolbox(distribution=dist, rate_limiter=limiter).specs())
    spec = registry.resolve("create_artist")
    args = registry.validate(spec, {"name": "Jane Doe"})

    await spec.handler(args, ToolContext(caller_id="ip:1.2.3.4"))
    with pytest.raises(RateLimitExceeded):
        await spec.handler(args, ToolContext(caller_id="ip:1.2.3.4"))
    await spec.handler(args, ToolContext(caller_id="ip:5.6.7.8"))

    assert dist.count("create_artist") == 2


@pytest.mark.anyio
async def test_upload_track_without_audio_creates_a_metadata_track() -> None:
    dist = FakeAdapter({"create_track": {"id": "91"}})
    registry = ToolRegistry(Toolbox(distribution=dist).specs())
    spec = registry.resolve("upload_track")
    arguments = {"release_id": "55", "artist_id": "7", "title": "Night Drive", "isrc": "GBAYE2600001"}

    result = await spec.handler(registry.validate(spec, arguments), ToolContext())

    assert result == {"id": "91"}
    assert dist.calls == [
        (
            "create_track",
            {
                "release_id": "55",
                "artist_id": "7",
                "title": "Night Drive",
                "isrc": "GBAYE2600001",
                "explicit": False,
                "language": "en",
                "track_number": 1,
            },
        )
    ]


def owned_toolbox(dist: FakeAdapter) -> ToolRegistry:
    return ToolRegistry(Toolbox(distribution=dist, accounts=AccountService()).specs())


async def run_tool(registry: ToolRegistry, tool: str, arguments: dict, caller_id: str) -> dict:
    spec = registry.resolve(tool)
    return await spec.handler(registry.validate(spec, arguments), ToolContext(caller_id=caller_id))


@pytest.mark.anyio
async def test_created_release_is_closed_to_other_callers() -> None:
    dist = FakeAdapter({"create_release": {"id": "55"}, "get_release": {"id": "55"}})
    registry = owned_toolbox(dist)
    release = {"title": "Night Drive", "artist_id": "7", "release_date": "2026-12-01"}

    await run_tool(registry, "create_release", release, "user:jane")

    assert await run_tool(registry, "get_release_status", {"release_id": "55"}, "user:jane") == {"id": "55"}
    with pytest.raises(AccessDenied):
        await run_tool(registry, "get_release_status", {"release_id": "/api/me/releases/55"}, "user:sam")
    with pytest.raises(AccessDenied):
        await run_tool(registry, "submit_release", {"release_id": "55", "platforms": ["spotify"]}, "user:sam")
    with pytest.raises(AccessDenied):
        await run_tool(registry, "get_splits", {"release_id": "55"}, "user:sam")
    assert dist.count("get_release") == 1
    assert dist.count("submit_to_stores") == 0


@pytest.mark.anyio
async def test_releases_without_recorded_owner_stay_open() -> None:
    dist = FakeAdapter({"get_release": {"id": "12"}})

    result = await run_tool(owned_toolbox(dist), "get_release_status", {"release_id": "12"}, "user:sam")

    assert result == {"id": "12"}


@pytest.mark.anyio
async def test_get_releases_can_keep_only_the_callers_releases() -> None:
    listing = {"items": [{"id": "55", "title": "Mine"}, {"id": "60", "title": "Other"}], "count": 2}
    dist = FakeAdapter({"create_release": {"id": "55"}, "list_releases": listing})
    registry = owned_toolbox(dist)
    release = {"title": "Mine", "artist_id": "7", "release_date": "2026-12-01"}
    await run_tool(registry, "create_release", release, "user:jane")

    everything = await run_tool(registry, "get_releases", {}, "user:jane")
    mine = await run_tool(registry, "get_releases", {"mine": True}, "user:jane")

    assert everything["count"] == 2
    assert mine == {"items": [{"id": "55", "title": "Mine"}], "count": 1}
