from __future__ import annotations

from typing import Protocol


class TokenProvider(Protocol):
    async def get_token(self) -> str: ...

    async def refresh(self) -> str:
        """Force a refresh. Raises ``AuthExpired`` if the session is gone."""
        ...
