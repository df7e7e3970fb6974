"""API keys and release ownership."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Tuple

from release_agent.core.clock import SYSTEM_CLOCK, Clock
from release_agent.core.store import MemoryStore, Store

logger = logging.getLogger(__name__)

KEY_PREFIX = "rk_"


@dataclass(frozen=True, slots=True)
class ApiKey:
    key: str
    user_id: str
    name: str
    created_at: float
    enabled: bool = True


class AccountService:
    """Issues and validates API keys and records who created which release.

    Keys and ownership live in :class:`Store` instances so a shared backing
    can replace the in-process one.
    """

    def __init__(
        self,
        preset_keys: Iterable[Tuple[str, str, str]] = (),
        require_api_key: bool = False,
        keys: Optional[Store[str, ApiKey]] = None,
        ownership: Optional[Store[str, object]] = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self.require_api_key = require_api_key
        self._keys: Store[str, ApiKey] = keys or MemoryStore()
        self._ownership: Store[str, object] = ownership or MemoryStore()
        self._clock = clock
        self._preset = list(preset_keys)

    async def _load_preset(self) -> None:
        while self._preset:
            key, user_id, name = self._preset.pop(0)
            await self._keys.put(key, ApiKey(key=key, user_id=user_id, name=name, created_at=self._clock.time()))

    async def issue(self, user_id: str, name: str) -> ApiKey:
        """Create and store a new key for ``user_id``."""
        await self._load_preset()
        api_key = ApiKey(
            key=f"{KEY_PREFIX}{uuid.uuid4().hex}", user_id=user_id, name=name, created_at=self._clock.time()
        )
        await self._keys.put(api_key.key, api_key)
        logger.info(f"Issued API key for {user_id}")
        return api_key

    async def revoke(self, key: str) -> bool:
        await self._load_preset()
        api_key = await self._keys.get(key)
        if api_key is None:
            return False
        await self._keys.put(key, replace(api_key, enabled=False))
        return True

    async def validate(self, key: Optional[str]) -> Optional[ApiKey]:
        """Return the enabled key record for ``key``, or ``None``."""
        if not key:
            return None
        await self._load_preset()
        api_key = await self._keys.get(key)
        if api_key is None or not api_key.enabled:
            return None
        return api_key

    async def set_release_owner(self, release_id: str, owner: str) -> None:
        await self._ownership.put(f"release:owner:{release_id}", owner)
        owned_key = f"user:releases:{owner}"
        owned = list(await self._ownership.get(owned_key) or [])
        if release_id not in owned:
            owned.append(release_id)
        await self._ownership.put(owned_key, owned)

    async def release_owner(self, release_id: str) -> Optional[str]:
        owner = await self._ownership.get(f"release:owner:{release_id}")
        return owner if isinstance(owner, str) else None

    async def release_ids_for(self, owner: str) -> List[str]:
        return list(await self._ownership.get(f"user:releases:{owner}") or [])
