"""Adapter for the music-distribution platform (JSON-LD REST API)."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from release_agent.adapters.auth import Authenticator
from release_agent.adapters.base import BackendAdapter, Operation, normalize_id
from release_agent.config import DistributionConfig
from release_agent.core.clock import SYSTEM_CLOCK, Clock
from release_agent.core.errors import BackendError
from release_agent.services.artwork import normalize_artwork

logger = logging.getLogger(__name__)

# Lookup ids of the digital stores on the platform.
PLATFORM_STORE_IDS: Dict[str, str] = {
    "spotify": "2",
    "apple_music": "63",
    "amazon_music": "104",
    "youtube_music": "102",
    "tidal": "81",
    "tiktok": "100",
    "soundcloud": "92",
    "deezer": "16",
    "pandora": "85",
    "instagram": "100",
}


def artist_iri(artist_id: str) -> str:
    if str(artist_id).startswith("/api/"):
        return str(artist_id)
    return f"/api/me/artists/{normalize_id(artist_id)}"


def release_iri(release_id: str) -> str:
    if str(release_id).startswith("/api/"):
        return str(release_id)
    return f"/api/me/releases/music/{normalize_id(release_id)}"


def store_ids_for(platforms: Iterable[str]) -> List[str]:
    """Map platform names to store ids, dropping unknown names and duplicates."""
    ids: List[str] = []
    for platform in platforms:
        store_id = PLATFORM_STORE_IDS.get(platform)
        if store_id is None:
            logger.warning(f"No store id known for platform {platform!r}")
            continue
        if store_id not in ids:
            ids.append(store_id)
    return ids


def _split_body(splits: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        "splits": [
            {
                "email": split["email"],
                "name": split.get("name"),
                "percentage": split["percentage"],
                "role": split.get("role"),
            }
            for split in splits
        ]
    }


def _compact(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


class DistributionAdapter(BackendAdapter):
    """Artists, releases, tracks, artwork, stores, splits and analytics."""

    name = "distribution"

    def __init__(
        self,
        config: DistributionConfig,
        client: Optional[httpx.AsyncClient] = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        client = client or httpx.AsyncClient(timeout=config.timeout)
        super().__init__(client)
        self.config = config
        self.auth = Authenticator(client, config, clock=clock)

    def _build_operations(self) -> Dict[str, Operation]:
        return {
            "create_artist": self.create_artist,
            "list_artists": self.list_artists,
            "create_release": self.create_release,
            "get_release": self.get_release,
            "list_releases": self.list_releases,
            "create_track": self.create_track,
            "update_track": self.update_track,
            "attach_audio": self.attach_audio,
            "attach_audio_from_url": self.attach_audio_from_url,
            "attach_artwork": self.attach_artwork,
            "attach_artwork_from_url": self.attach_artwork_from_url,
            "generate_artwork": self.generate_artwork,
            "list_stores": self.list_stores,
            "list_genres": self.list_genres,
            "submit_to_stores": self.submit_to_stores,
            "finalize_release": self.finalize_release,
            "get_earnings": self.get_earnings,
            "get_streams": self.get_streams,
            "set_release_splits": self.set_release_splits,
            "get_release_splits": self.get_release_splits,
            "get_account": self.get_account,
        }

    async def _api(
        self,
        method: str,
        path: str,
        *,
        base_url: Optional[str] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        headers = await self.auth.api_headers()
        url = f"{base_url or self.config.base_url}{path}"
        return await self._request_json(method, url, headers=headers, **kwargs)

    # Artists

    async def create_artist(self, name: str, genres: Optional[List[str]] = None) -> Dict[str, Any]:
        return await self._api("POST", "/api/me/artists", json={"name": name, "genres": genres or []})

    async def list_artists(self) -> Dict[str, Any]:
        return await self._api("GET", "/api/me/artists")

    # Releases

    async def create_release(
        self,
        title: str,
        artist_id: str,
        release_date: str,
        genre: Optional[str] = None,
        label: Optional[str] = None,
        upc: Optional[str] = None,
        copyright_line: Optional[str] = None,
        copyright_year: Optional[int] = None,
    ) -> Dict[str, Any]:
        body = _compact(
            {
                "title": title,
                "artist": artist_iri(artist_id),
                "originalReleaseDate": release_date,
                "genre": genre,
                "label": label,
                "upc": upc,
                "cLine": copyright_line,
                "cLineYear": copyright_year,
            }
        )
        return await self._api("POST", "/api/me/releases/music", json=body)

    async def get_release(self, release_id: str) -> Dict[str, Any]:
        return await self._api("GET", f"/api/me/releases/music/{normalize_id(release_id)}")

    async def list_releases(self) -> Dict[str, Any]:
        return await self._api("GET", "/api/me/releases/music")

    # Tracks

    async def create_track(
        self,
        release_id: str,
        artist_id: str,
        title: str,
        isrc: Optional[str] = None,
        explicit: bool = False,
        language: str = "en",
        track_number: int = 1,
    ) -> Dict[str, Any]:
        body = _compact(
            {
                "title": title,
                "release": release_iri(release_id),
                "artist": artist_iri(artist_id),
                "isrc": isrc,
                "explicit": explicit,
                "language": language,
                "trackNumber": track_number,
            }
        )
        return await self._api("POST", "/api/me/release_tracks", json=body)

    async def update_track(self, track_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._api("PUT", f"/api/me/release_tracks/{normalize_id(track_id)}", json=dict(fields))

    # Media

    async def attach_audio(self, release_id: str, audio: bytes, filename: str = "track.mp3") -> Dict[str, Any]:
        """Create a track on the release with the given audio as its file."""
        if not audio:
            raise BackendError("Refusing to upload an empty audio file")
        logger.info(f"Uploading {len(audio)} bytes of audio to release {release_id}")
        return await self._api(
            "POST",
            f"/api/me/releases/{normalize_id(release_id)}/tracks",
            base_url=self.config.releases_url,
            files={"file": (filename, audio, "audio/mpeg")},
        )

    async def attach_audio_from_url(
        self,
        release_id: str,
        audio_url: str,
        filename: str = "track.mp3",
        stream_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        audio = await self.fetch_media(audio_url, fallback_url=stream_url)
        return await self.attach_audio(release_id, audio, filename=filename)

    async def attach_artwork(self, release_id: str, image: bytes) -> Dict[str, Any]:
        """Upload cover art, squared and upscaled to the platform minimum first."""
        artwork = await asyncio.to_thread(normalize_artwork, image)
        return await self._api(
            "POST",
            f"/api/me/releases/{normalize_id(release_id)}/artworks",
            base_url=self.config.releases_url,
            files={"file": ("artwork.jpg", artwork, "image/jpeg")},
        )

    async def attach_artwork_from_url(self, release_id: str, image_url: str) -> Dict[str, Any]:
        image = await self.fetch_media(image_url)
        return await self.attach_artwork(release_id, image)

    async def generate_artwork(self, release_id: str, prompt: str) -> Dict[str, Any]:
        numeric_id = normalize_id(release_id)
        if not numeric_id.isdigit():
            raise BackendError(f"Artwork generation needs a numeric release id, got {release_id!r}")
        return await self._api(
            "POST",
            "/api/me/artgen/generate",
            base_url=self.config.releases_url,
            json={"releaseId": int(numeric_id), "prompt": prompt},
        )

    # Stores

    async def list_stores(self) -> Dict[str, Any]:
        return await self._api("GET", "/api/lookup/stores")

    async def list_genres(self) -> Dict[str, Any]:
        return await self._api("GET", "/api/lookup/genres")

    async def submit_to_stores(
        self,
        release_id: str,
        platforms: Optional[List[str]] = None,
        store_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        ids = [str(store_id) for store_id in store_ids or []]
        for store_id in store_ids_for(platforms or []):
            if store_id not in ids:
                ids.append(store_id)
        if not ids:
            raise BackendError("None of the requested platforms map to a known store")
        result = await self._api(
            "POST",
            f"/api/me/releases/{normalize_id(release_id)}/stores",
            json={"stores": ids},
        )
        result.setdefault("store_ids", ids)
        return result

    async def finalize_release(self, release_id: str) -> Dict[str, Any]:
        return await self._api("POST", f"/api/me/releases/{normalize_id(release_id)}/finalize", json={})

    # Analytics

    async def get_earnings(
        self,
        release_id: Optional[str] = None,
        track_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = self._analytics_params(release_id, track_id, start_date, end_date, store_id)
        return await self._api("GET", "/api/sales", base_url=self.config.sales_url, params=params)

    async def get_streams(
        self,
        release_id: Optional[str] = None,
        track_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = self._analytics_params(release_id, track_id, start_date, end_date, store_id)
        return await self._api("GET", "/api/trends", base_url=self.config.trends_url, params=params)

    @staticmethod
    def _analytics_params(
        release_id: Optional[str],
        track_id: Optional[str],
        start_date: Optional[str],
        end_date: Optional[str],
        store_id: Optional[str],
    ) -> Dict[str, str]:
        return _compact(
            {
                "release": normalize_id(release_id) if release_id else None,
                "track": normalize_id(track_id) if track_id else None,
                "startDate": start_date,
                "endDate": end_date,
                "store": store_id,
            }
        )

    # Splits

    async def set_release_splits(self, release_id: str, splits: List[Mapping[str, Any]]) -> Dict[str, Any]:
        total = sum(float(split["percentage"]) for split in splits)
        if abs(total - 100.0) > 0.01:
            raise BackendError(f"Split percentages must add up to 100, got {total:g}")
        return await self._api(
            "PUT",
            f"/api/me/release/{normalize_id(release_id)}/royalty-splits",
            json=_split_body(splits),
        )

    async def get_release_splits(self, release_id: str) -> Dict[str, Any]:
        return await self._api("GET", f"/api/me/release/{normalize_id(release_id)}/royalty-splits")

    # Account

    async def get_account(self) -> Dict[str, Any]:
        profile = await self._api("GET", "/api/me")
        balances = await self._api("GET", "/api/me/account_balances")
        return {"profile": profile, "balances": balances}
