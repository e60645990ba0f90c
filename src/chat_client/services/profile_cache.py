"""Read-through cache of author display names, owned by the caller."""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Iterable

from chat_client.application.exceptions import AppError
from chat_client.application.ports.backend import ProfileSource
from chat_client.domain.entities.profile import DEFAULT_DISPLAY_NAME

logger = logging.getLogger(__name__)


class ProfileCache:
    """user_id -> display name with a TTL, a size bound and explicit invalidation."""

    def __init__(
        self,
        source: ProfileSource,
        *,
        ttl_seconds: float = 300.0,
        max_size: int = 1000,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._monotonic = monotonic
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get_cached(self, user_id: str) -> str | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        name, expires_at = entry
        if expires_at <= self._monotonic():
            del self._entries[user_id]
            return None
        self._entries.move_to_end(user_id)
        return name

    def put(self, user_id: str, display_name: str) -> None:
        self._entries[user_id] = (display_name, self._monotonic() + self._ttl)
        self._entries.move_to_end(user_id)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def invalidate(self, user_id: str) -> None:
        """Drop one entry, e.g. after that user's profile changed."""
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()

    async def prefetch(self, user_ids: Iterable[str]) -> dict[str, str]:
        """Resolve every id not already cached with one batched lookup.

        Lookup failures are logged and leave the ids unresolved.
        """
        resolved: dict[str, str] = {}
        missing: list[str] = []
        for user_id in dict.fromkeys(user_ids):
            cached = self.get_cached(user_id)
            if cached is None:
                missing.append(user_id)
            else:
                resolved[user_id] = cached
        if not missing:
            return resolved

        try:
            profiles = await self._source.fetch_profiles(missing)
        except AppError as exc:
            logger.warning("Profile lookup failed for %d users: %s", len(missing), exc.detail)
            return resolved

        for profile in profiles:
            name = profile.display_name
            self.put(profile.user_id, name)
            resolved[profile.user_id] = name
        return resolved

    async def get_display_name(self, user_id: str) -> str:
        names = await self.prefetch([user_id])
        return names.get(user_id, DEFAULT_DISPLAY_NAME)
