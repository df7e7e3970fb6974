"""Bearer-token acquisition for the distribution backend."""
from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import httpx

from release_agent.adapters.base import REQUEST_ERRORS, summarize_body
from release_agent.config import DistributionConfig
from release_agent.core.clock import SYSTEM_CLOCK, Clock
from release_agent.core.errors import AuthenticationFailed, BackendError

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = 3600.0
REFRESH_MARGIN = 300.0


@dataclass(slots=True)
class TokenCache:
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: float = 0.0

    def is_fresh(self, now: float) -> bool:
        """A token is reused only while it expires more than five minutes from now."""
        return self.token is not None and self.expires_at > now + REFRESH_MARGIN

    def store(self, token: str, refresh_token: Optional[str], now: float) -> None:
        self.token = token
        self.refresh_token = refresh_token or self.refresh_token
        self.expires_at = now + TOKEN_LIFETIME


@dataclass(frozen=True, slots=True)
class CredentialStrategy:
    """One login endpoint that exchanges email and password for a token."""

    name: str
    path: str


DEFAULT_STRATEGIES = (
    CredentialStrategy(name="authentication_token", path="/authentication_token"),
    CredentialStrategy(name="api_login", path="/api/login"),
)


def basic_auth_header(user: Optional[str], password: Optional[str]) -> Optional[str]:
    if not user or not password:
        return None
    encoded = base64.b64encode(f"{user}:{password}".encode()).decode()
    return f"Basic {encoded}"


class Authenticator:
    """Keeps one adapter's token fresh.

    Refresh failures fall through to a full login; strategies are tried in
    order and a rejection moves on to the next one, while a transport
    failure propagates at once.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: DistributionConfig,
        clock: Clock = SYSTEM_CLOCK,
        strategies: Sequence[CredentialStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self._client = client
        self._config = config
        self._clock = clock
        self._strategies = tuple(strategies)
        self._lock = asyncio.Lock()
        self._basic = basic_auth_header(config.basic_auth_user, config.basic_auth_pass)
        self.cache = TokenCache()

    async def bearer_token(self) -> str:
        async with self._lock:
            if self.cache.is_fresh(self._clock.time()):
                return self.cache.token  # type: ignore[return-value]
            if self.cache.refresh_token:
                token = await self._refresh()
                if token:
                    return token
            return await self._login()

    async def api_headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {await self.bearer_token()}",
            "Accept": "application/json",
        }
        if self._basic:
            headers["X-Basic-Authorization"] = self._basic
        return headers

    def _login_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._basic:
            headers["Authorization"] = self._basic
        return headers

    async def _refresh(self) -> Optional[str]:
        url = f"{self._config.base_url}/api/token/refresh"
        try:
            response = await self._client.post(
                url,
                json={"refresh_token": self.cache.refresh_token},
                headers=self._login_headers(),
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.info(f"Token refresh failed, falling back to login: {exc!r}")
            return None
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            logger.info("Token refresh returned no token, falling back to login")
            return None
        self.cache.store(token, data.get("refresh_token"), self._clock.time())
        logger.debug("Refreshed distribution token")
        return token

    async def _login(self) -> str:
        reasons: List[str] = []
        credentials = {"email": self._config.email, "password": self._config.password}
        for strategy in self._strategies:
            url = f"{self._config.base_url}{strategy.path}"
            try:
                response = await self._client.post(url, json=credentials, headers=self._login_headers())
            except REQUEST_ERRORS as exc:
                raise BackendError(
                    f"Login endpoint {strategy.path} is unreachable ({exc.__class__.__name__})",
                    retryable=True,
                ) from exc
            if response.is_error:
                reasons.append(f"{strategy.path}: {response.status_code} {summarize_body(response.text)}")
                continue
            try:
                data = response.json()
            except ValueError:
                data = {}
            token = data.get("token") if isinstance(data, dict) else None
            if not token:
                reasons.append(f"{strategy.path}: response carried no token")
                continue
            self.cache.store(token, data.get("refresh_token"), self._clock.time())
            logger.info(f"Authenticated with distribution backend via {strategy.name}")
            return token
        raise AuthenticationFailed(reasons)
