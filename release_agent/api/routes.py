"""HTTP API exposing the tool catalogue, generation jobs and the caller's account."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from release_agent.api.chat import caller_identity
from release_agent.jobs.tracker import AsyncJobTracker
from release_agent.runtime import get_accounts, get_job_tracker, get_rate_limiter, get_registry
from release_agent.services.accounts import AccountService
from release_agent.services.rate_limit import RateLimiter
from release_agent.tools.registry import ToolRegistry

tools_router = APIRouter(prefix="/tools", tags=["tools"])
jobs_router = APIRouter(prefix="/jobs", tags=["jobs"])
account_router = APIRouter(prefix="/me", tags=["account"])


class ToolResponse(BaseModel):
    name: str
    description: str
    parameters: Dict[str, Any]


@tools_router.get("", response_model=List[ToolResponse])
async def list_tools(registry: ToolRegistry = Depends(get_registry)) -> List[ToolResponse]:
    return [
        ToolResponse(
            name=schema["function"]["name"],
            description=schema["function"]["description"],
            parameters=schema["function"]["parameters"],
        )
        for schema in registry.schemas()
    ]


def _require_tracker(tracker: Optional[AsyncJobTracker]) -> AsyncJobTracker:
    if tracker is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Music generation not configured")
    return tracker


@jobs_router.get("/{job_id}")
async def get_job(job_id: str, tracker: Optional[AsyncJobTracker] = Depends(get_job_tracker)) -> Dict[str, Any]:
    job = await _require_tracker(tracker).get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown or expired job")
    return job.summary()


@jobs_router.get("/{job_id}/audio")
async def get_job_audio(job_id: str, tracker: Optional[AsyncJobTracker] = Depends(get_job_tracker)) -> Response:
    media = await _require_tracker(tracker).cached_media(job_id)
    if media is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No cached audio for this job")
    return Response(
        content=media.audio,
        media_type="audio/mpeg",
        headers={"Content-Disposition": f'inline; filename="{job_id}.mp3"'},
    )


class KeyRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


def _require_user(caller_id: str) -> str:
    if not caller_id.startswith("user:"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="A valid API key is required")
    return caller_id[len("user:"):]


@account_router.get("")
async def get_me(
    caller_id: str = Depends(caller_identity),
    accounts: AccountService = Depends(get_accounts),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    """Caller identity, releases created through this service, and rate-limit usage."""
    usage = await limiter.usage(caller_id)
    return {
        "caller_id": caller_id,
        "release_ids": await accounts.release_ids_for(caller_id),
        "usage": {
            kind: {"limit": result.limit, "remaining": result.remaining, "reset_at": result.reset_at}
            for kind, result in usage.items()
        },
    }


@account_router.post("/keys", status_code=status.HTTP_201_CREATED)
async def issue_key(
    body: KeyRequest,
    caller_id: str = Depends(caller_identity),
    accounts: AccountService = Depends(get_accounts),
) -> Dict[str, Any]:
    """Issue another API key for the user behind the current key."""
    api_key = await accounts.issue(_require_user(caller_id), body.name)
    return {"key": api_key.key, "user_id": api_key.user_id, "name": api_key.name}


@account_router.delete("/keys/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_key(
    key: str,
    caller_id: str = Depends(caller_identity),
    accounts: AccountService = Depends(get_accounts),
) -> Response:
    user_id = _require_user(caller_id)
    api_key = await accounts.validate(key)
    if api_key is None or api_key.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown API key")
    await accounts.revoke(key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
