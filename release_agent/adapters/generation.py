"""Adapter for the AI music generation service (submit, then poll)."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from release_agent.adapters.base import BackendAdapter, Operation, summarize_body
from release_agent.config import GenerationConfig
from release_agent.core.errors import BackendError
from release_agent.core.models import GeneratedTrack

logger = logging.getLogger(__name__)


def parse_tracks(records: Any) -> List[GeneratedTrack]:
    tracks: List[GeneratedTrack] = []
    for record in records or []:
        if not isinstance(record, dict):
            continue
        tracks.append(
            GeneratedTrack(
                id=str(record.get("id", "")),
                title=record.get("title") or "Untitled",
                audio_url=record.get("audioUrl") or "",
                stream_audio_url=record.get("streamAudioUrl") or None,
                image_url=record.get("imageUrl") or None,
                duration=record.get("duration"),
                tags=record.get("tags"),
            )
        )
    return tracks


class GenerationAdapter(BackendAdapter):
    """Wraps the generation backend's JSON envelope (``{code, msg, data}``)."""

    name = "generation"

    def __init__(self, config: GenerationConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        client = client or httpx.AsyncClient(timeout=config.timeout)
        super().__init__(client)
        self.config = config

    def _build_operations(self) -> Dict[str, Operation]:
        return {
            "submit_generation": self.submit_generation,
            "get_generation": self.get_generation,
        }

    async def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": "application/json",
        }
        response = await self._send(
            method,
            f"{self.config.base_url}{path}",
            headers=headers,
            timeout=self.config.timeout,
            **kwargs,
        )
        try:
            envelope = response.json()
        except ValueError as exc:
            raise BackendError(
                f"generation returned a non-JSON body: {summarize_body(response.text)}",
                status=response.status_code,
            ) from exc
        if not isinstance(envelope, dict) or envelope.get("code") != 200:
            message = envelope.get("msg") if isinstance(envelope, dict) else None
            raise BackendError(
                f"generation error: {message or summarize_body(envelope)}",
                status=envelope.get("code") if isinstance(envelope, dict) else None,
                detail=response.text[:1000],
            )
        return envelope.get("data") or {}

    async def submit_generation(
        self,
        prompt: str,
        style: Optional[str] = None,
        lyrics: Optional[str] = None,
        title: Optional[str] = None,
        instrumental: bool = False,
    ) -> Dict[str, Any]:
        """Start a generation job and return ``{"task_id": ...}``.

        Lyrics switch the backend into custom mode, where the lyrics become
        the prompt and the free-text description becomes the style.
        """
        body: Dict[str, Any] = {
            "customMode": False,
            "instrumental": instrumental,
            "prompt": prompt,
            "model": self.config.model,
            "callBackUrl": self.config.callback_url,
        }
        if lyrics:
            body.update(
                customMode=True,
                prompt=lyrics,
                style=style or prompt,
                title=title or "Untitled",
            )
        elif style:
            body["prompt"] = f"{prompt}. Style: {style}"
        data = await self._call("POST", "/api/v1/generate", json=body)
        task_id = data.get("taskId")
        if not task_id:
            raise BackendError("generation accepted the request but returned no task id")
        logger.info(f"Submitted generation task {task_id} (custom mode: {bool(lyrics)})")
        return {"task_id": str(task_id)}

    async def get_generation(self, task_id: str) -> Dict[str, Any]:
        data = await self._call("GET", "/api/v1/generate/record-info", params={"taskId": task_id})
        response = data.get("response") or {}
        tracks = parse_tracks(response.get("sunoData"))
        return {
            "task_id": task_id,
            "status": data.get("status") or "PENDING",
            "tracks": tracks,
            "error": data.get("errorMessage"),
        }
