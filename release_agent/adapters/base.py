"""Common plumbing for adapters that talk to one external HTTP service."""
from __future__ import annotations

import abc
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from release_agent.core.errors import BackendError, UnknownOperation

logger = logging.getLogger(__name__)

Operation = Callable[..., Awaitable[Dict[str, Any]]]

SUMMARY_LIMIT = 200
DETAIL_LIMIT = 1000

_MESSAGE_KEYS = (
    "hydra:description",
    "detail",
    "message",
    "errorMessage",
    "error_description",
    "error",
    "msg",
    "hydra:title",
    "title",
)
_TRAILING_ID = re.compile(r"(\d+)/?$")

# Request-level failures that never produced a usable response.
REQUEST_ERRORS = (httpx.RequestError, httpx.InvalidURL)


def normalize_id(value: Any) -> str:
    """Return the bare id of an entity reference.

    ``/api/me/artists/42`` and ``42`` both give ``"42"``; values without a
    trailing number are returned unchanged.
    """
    text = str(value).strip()
    match = _TRAILING_ID.search(text)
    return match.group(1) if match else text


def summarize_body(body: Any, limit: int = SUMMARY_LIMIT) -> str:
    """Reduce an error body to its first meaningful message."""
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return _truncate(" ".join(body.split()), limit)
    if isinstance(body, dict):
        violations = body.get("violations")
        if isinstance(violations, list) and violations:
            parts = [
                f"{item.get('propertyPath', 'field')}: {item.get('message', 'invalid')}"
                for item in violations
                if isinstance(item, dict)
            ]
            if parts:
                return _truncate("; ".join(parts), limit)
        for key in _MESSAGE_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return _truncate(value.strip(), limit)
            if isinstance(value, dict):
                return summarize_body(value, limit)
    if body in (None, "", {}, []):
        return "no details"
    return _truncate(json.dumps(body, default=str), limit)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def normalize_entity(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Strip JSON-LD keys from an entity and make sure it carries an ``id``."""
    entity = {key: value for key, value in data.items() if not key.startswith("@")}
    iri = data.get("@id")
    if iri is not None:
        entity["iri"] = iri
    if entity.get("id") is None and iri is not None:
        entity["id"] = normalize_id(iri)
    if entity.get("id") is not None:
        entity["id"] = str(entity["id"])
    return entity


def normalize_payload(data: Any) -> Dict[str, Any]:
    """Turn a decoded response body into a plain dict.

    Collections, bare or hydra-wrapped, become ``{"items": [...], "count": n}``.
    """
    if data is None:
        return {}
    if isinstance(data, list):
        items = [normalize_entity(item) if isinstance(item, dict) else item for item in data]
        return {"items": items, "count": len(items)}
    if isinstance(data, dict):
        for key in ("hydra:member", "member"):
            members = data.get(key)
            if isinstance(members, list):
                collection = normalize_payload(members)
                total = data.get("hydra:totalItems", data.get("totalItems"))
                if isinstance(total, int):
                    collection["count"] = total
                return collection
        return normalize_entity(data)
    return {"value": data}


def error_from_response(backend: str, response: httpx.Response) -> BackendError:
    """Map an HTTP error response onto a :class:`BackendError`."""
    status = response.status_code
    text = response.text
    summary = summarize_body(text)
    return BackendError(
        f"{backend} request failed ({status}): {summary}",
        status=status,
        retryable=status >= 500 or status == 429,
        detail=text[:DETAIL_LIMIT],
    )


class BackendAdapter(abc.ABC):
    """Presents one external service as ``invoke(operation, args)``.

    Subclasses list their operations in :meth:`_build_operations`; each one
    is a coroutine method taking keyword arguments and returning a
    normalised payload. Adapters never retry on their own.
    """

    name = "backend"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client
        self.operations: Dict[str, Operation] = self._build_operations()

    @abc.abstractmethod
    def _build_operations(self) -> Dict[str, Operation]:
        """Return the static name -> coroutine mapping for this backend."""

    async def invoke(self, operation: str, args: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        handler = self.operations.get(operation)
        if handler is None:
            raise UnknownOperation(self.name, operation)
        return await handler(**dict(args or {}))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except REQUEST_ERRORS as exc:
            logger.warning(f"{self.name} {method} {url} transport failure: {exc!r}")
            raise BackendError(
                f"{self.name} is unreachable ({exc.__class__.__name__})",
                retryable=True,
            ) from exc
        if response.is_error:
            error = error_from_response(self.name, response)
            logger.warning(f"{self.name} {method} {url} -> {response.status_code}: {error.detail}")
            raise error
        return response

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._send(method, url, **kwargs)
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {"value": summarize_body(response.text)}
        return normalize_payload(data)

    async def fetch_media(self, url: str, *, fallback_url: Optional[str] = None) -> bytes:
        """Download a binary asset from a short-lived URL.

        A 403 on the primary URL retries once against ``fallback_url``;
        when none is given and the URL ends in ``.mp3`` the extension is
        dropped, which yields the streaming variant on the generation CDN.
        """
        try:
            response = await self._client.get(url, follow_redirects=True)
        except REQUEST_ERRORS as exc:
            logger.warning(f"Download of {url} failed: {exc!r}")
            raise BackendError(
                f"Could not download {url} ({exc.__class__.__name__})",
                retryable=True,
            ) from exc
        if response.status_code == 403:
            alternate = fallback_url or (url[:-4] if url.endswith(".mp3") else None)
            if alternate and alternate != url:
                logger.info(f"Download of {url} forbidden, retrying with {alternate}")
                return await self.fetch_media(alternate)
        if response.is_error:
            raise error_from_response("media download", response)
        return response.content
