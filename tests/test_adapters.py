"""Backend adapter tests against httpx.MockTransport."""
from __future__ import annotations

import io
import json
from typing import Callable, List

import httpx
import pytest
from PIL import Image

from release_agent.adapters.base import normalize_id, normalize_payload, summarize_body
from release_agent.adapters.distribution import DistributionAdapter
from release_agent.adapters.generation import GenerationAdapter
from release_agent.config import DistributionConfig, GenerationConfig
from release_agent.core.errors import AuthenticationFailed, BackendError, UnknownOperation
from support import FakeClock

BASE = "https://dash.test"
RELEASES = "https://releases.test"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def distribution(handler: Callable[[httpx.Request], httpx.Response], clock: FakeClock = None, **overrides) -> DistributionAdapter:
    config = DistributionConfig(
        email="label@example.com",
        password="secret",
        base_url=BASE,
        releases_url=RELEASES,
        sales_url="https://sales.test",
        trends_url="https://trends.test",
        **overrides,
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DistributionAdapter(config, client=client, clock=clock or FakeClock())


def login_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"token": "tok-1", "refresh_token": "ref-1"})


def test_normalize_id_takes_trailing_number() -> None:
    assert normalize_id("/api/me/artists/42") == "42"
    assert normalize_id(42) == "42"
    assert normalize_id("abc") == "abc"


def test_hydra_collections_are_unwrapped() -> None:
    payload = normalize_payload(
        {
            "@context": "/api/contexts/Artist",
            "hydra:member": [{"@id": "/api/me/artists/7", "@type": "Artist", "name": "Jane Doe"}],
            "hydra:totalItems": 1,
        }
    )
    assert payload == {"items": [{"id": "7", "iri": "/api/me/artists/7", "name": "Jane Doe"}], "count": 1}


def test_error_bodies_are_summarised() -> None:
    body = json.dumps({"hydra:title": "An error occurred", "hydra:description": "Release date too soon"})
    assert summarize_body(body) == "Release date too soon"
    assert len(summarize_body("x" * 1000)) == 200
    assert summarize_body({"violations": [{"propertyPath": "title", "message": "blank"}]}) == "title: blank"


@pytest.mark.anyio
@pytest.mark.parametrize("status,retryable", [(500, True), (503, True), (429, True), (404, False), (422, False)])
async def test_http_errors_map_to_backend_error(status: int, retryable: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/authentication_token":
            return login_ok(request)
        return httpx.Response(status, json={"detail": "nope " * 100})

    adapter = distribution(handler)
    with pytest.raises(BackendError) as excinfo:
        await adapter.invoke("get_release", {"release_id": "9"})

    assert excinfo.value.status == status
    assert excinfo.value.retryable is retryable
    assert len(excinfo.value.message) < 260
    assert excinfo.value.detail.startswith('{"detail"')


@pytest.mark.anyio
async def test_transport_errors_are_retryable_without_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/authentication_token":
            return login_ok(request)
        raise httpx.ConnectError("connection refused", request=request)

    adapter = distribution(handler)
    with pytest.raises(BackendError) as excinfo:
        await adapter.invoke("list_artists")

    assert excinfo.value.retryable is True
    assert excinfo.value.status is None


@pytest.mark.anyio
async def test_unknown_operation_is_rejected() -> None:
    adapter = distribution(login_ok)
    with pytest.raises(UnknownOperation) as excinfo:
        await adapter.invoke("delete_everything")
    assert excinfo.value.retryable is False


@pytest.mark.anyio
async def test_login_falls_back_to_secondary_endpoint() -> None:
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/authentication_token":
            return httpx.Response(401, json={"message": "Invalid credentials."})
        if request.url.path == "/api/login":
            assert request.headers["Authorization"].startswith("Basic ")
            return httpx.Response(200, json={"token": "tok-2"})
        assert request.headers["Authorization"] == "Bearer tok-2"
        assert request.headers["X-Basic-Authorization"].startswith("Basic ")
        return httpx.Response(200, json={"hydra:member": [], "hydra:totalItems": 0})

    adapter = distribution(handler, basic_auth_user="qa", basic_auth_pass="qa-pass")
    result = await adapter.invoke("list_artists")

    assert result == {"items": [], "count": 0}
    assert seen == ["/authentication_token", "/api/login", "/api/me/artists"]


@pytest.mark.anyio
async def test_all_strategies_rejected_raises_authentication_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Invalid credentials."})

    adapter = distribution(handler)
    with pytest.raises(AuthenticationFailed) as excinfo:
        await adapter.invoke("list_artists")

    assert len(excinfo.value.reasons) == 2
    assert excinfo.value.terminal is True


@pytest.mark.anyio
async def test_login_transport_failure_does_not_try_next_strategy() -> None:
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        raise httpx.ReadTimeout("slow", request=request)

    adapter = distribution(handler)
    with pytest.raises(BackendError) as excinfo:
        await adapter.invoke("list_artists")

    assert excinfo.value.retryable is True
    assert seen == ["/authentication_token"]


@pytest.mark.anyio
@pytest.mark.parametrize("remaining,expect_refresh", [(4 * 60, True), (10 * 60, False)])
async def test_token_refresh_threshold(remaining: float, expect_refresh: bool) -> None:
    clock = FakeClock()
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/api/token/refresh":
            assert json.loads(request.content) == {"refresh_token": "ref-1"}
            return httpx.Response(200, json={"token": "tok-new", "refresh_token": "ref-2"})
        return httpx.Response(200, json={"id": 1, "email": "label@example.com"})

    adapter = distribution(handler, clock=clock)
    adapter.auth.cache.store("tok-old", "ref-1", clock.time())
    clock.advance(3600 - remaining)

    await adapter.invoke("get_release", {"release_id": "1"})

    assert ("/api/token/refresh" in seen) is expect_refresh
    assert "/authentication_token" not in seen


@pytest.mark.anyio
async def test_failed_refresh_falls_back_to_login() -> None:
    clock = FakeClock()
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/api/token/refresh":
            return httpx.Response(401, json={"message": "expired"})
        if request.url.path == "/authentication_token":
            return login_ok(request)
        return httpx.Response(200, json={"id": 3})

    adapter = distribution(handler, clock=clock)
    adapter.auth.cache.store("tok-old", "ref-old", clock.time())
    clock.advance(3600)

    await adapter.invoke("get_release", {"release_id": "3"})

    assert seen == ["/api/token/refresh", "/authentication_token", "/api/me/releases/music/3"]


@pytest.mark.anyio
async def test_create_release_references_artist_iri() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/authentication_token":
            return login_ok(request)
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"@id": "/api/me/releases/music/55", "title": "Night Drive"})

    adapter = distribution(handler)
    result = await adapter.invoke(
        "create_release", {"title": "Night Drive", "artist_id": "7", "release_date": "2026-12-01"}
    )

    assert result["id"] == "55"
    assert bodies == [{"title": "Night Drive", "artist": "/api/me/artists/7", "originalReleaseDate": "2026-12-01"}]


@pytest.mark.anyio
async def test_submit_maps_platforms_to_store_ids() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/authentication_token":
            return login_ok(request)
        assert request.url.path == "/api/me/releases/55/stores"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"status": "queued"})

    adapter = distribution(handler)
    result = await adapter.invoke(
        "submit_to_stores", {"release_id": "55", "platforms": ["spotify", "tiktok", "instagram", "apple_music"]}
    )

    assert bodies == [{"stores": ["2", "100", "63"]}]
    assert result["store_ids"] == ["2", "100", "63"]


@pytest.mark.anyio
async def test_audio_download_falls_back_to_stream_url_on_403() -> None:
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if request.url.path == "/authentication_token":
            return login_ok(request)
        if request.url.host == "cdn.test":
            if request.url.path.endswith(".mp3"):
                return httpx.Response(403)
            return httpx.Response(200, content=b"ID3stream")
        assert request.url.path == "/api/me/releases/55/tracks"
        assert b"ID3stream" in request.content
        return httpx.Response(201, json={"@id": "/api/me/release_tracks/91"})

    adapter = distribution(handler)
    result = await adapter.invoke(
        "attach_audio_from_url", {"release_id": "55", "audio_url": "https://cdn.test/a.mp3"}
    )

    assert result["id"] == "91"
    assert seen[:2] == ["https://cdn.test/a.mp3", "https://cdn.test/a"]


def generation(handler: Callable[[httpx.Request], httpx.Response]) -> GenerationAdapter:
    config = GenerationConfig(api_key="suno-key", base_url="https://gen.test")
    return GenerationAdapter(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.anyio
async def test_lyrics_switch_generation_to_custom_mode() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer suno-key"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"code": 200, "msg": "success", "data": {"taskId": "t-1"}})

    adapter = generation(handler)
    result = await adapter.invoke(
        "submit_generation",
        {"prompt": "dreamy pop", "lyrics": "[Verse] hello", "title": "Hello", "style": "indie pop"},
    )

    assert result == {"task_id": "t-1"}
    assert bodies[0]["customMode"] is True
    assert bodies[0]["prompt"] == "[Verse] hello"
    assert bodies[0]["style"] == "indie pop"
    assert bodies[0]["title"] == "Hello"


@pytest.mark.anyio
async def test_generation_envelope_error_is_not_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 430, "msg": "Insufficient credits"})

    adapter = generation(handler)
    with pytest.raises(BackendError) as excinfo:
        await adapter.invoke("submit_generation", {"prompt": "x"})

    assert excinfo.value.retryable is False
    assert "Insufficient credits" in excinfo.value.message


@pytest.mark.anyio
async def test_generation_details_are_parsed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["taskId"] == "t-1"
        return httpx.Response(
            200,
            json={
                "code": 200,
                "data": {
                    "status": "SUCCESS",
                    "response": {
                        "sunoData": [
                            {
                                "id": "s1",
                                "title": "Hello",
                                "audioUrl": "https://cdn.test/s1.mp3",
                                "streamAudioUrl": "https://cdn.test/s1",
                                "imageUrl": "https://cdn.test/s1.jpg",
                                "duration": 120.5,
                            }
                        ]
                    },
                },
            },
        )

    adapter = generation(handler)
    details = await adapter.invoke("get_generation", {"task_id": "t-1"})

    assert details["status"] == "SUCCESS"
    assert details["tracks"][0].audio_url == "https://cdn.test/s1.mp3"
    assert details["tracks"][0].recommended_url == "https://cdn.test/s1"


@pytest.mark.anyio
async def test_redirect_loop_becomes_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": str(request.url)})

    adapter = distribution(handler)
    with pytest.raises(BackendError) as excinfo:
        await adapter.fetch_media("https://cdn.test/cover.jpg")

    assert excinfo.value.retryable is True
    assert "TooManyRedirects" in excinfo.value.message


@pytest.mark.anyio
async def test_artwork_generation_rejects_non_numeric_release_id() -> None:
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return login_ok(request)

    adapter = distribution(handler)
    with pytest.raises(BackendError) as excinfo:
        await adapter.invoke("generate_artwork", {"release_id": "rel-abc", "prompt": "neon"})

    assert excinfo.value.retryable is False
    assert seen == []


@pytest.mark.anyio
async def test_artwork_upload_is_normalised_before_sending() -> None:
    uploads: List[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/authentication_token":
            return login_ok(request)
        assert request.url.path == "/api/me/releases/55/artworks"
        uploads.append(request.content)
        return httpx.Response(201, json={"@id": "/api/me/artworks/3"})

    buffer = io.BytesIO()
    Image.new("RGB", (200, 100), (10, 20, 30)).save(buffer, format="PNG")
    adapter = distribution(handler)

    result = await adapter.invoke("attach_artwork", {"release_id": "55", "image": buffer.getvalue()})

    assert result["id"] == "3"
    assert b"image/jpeg" in uploads[0]
    assert b"artwork.jpg" in uploads[0]
