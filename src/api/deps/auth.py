"""Optional API key authentication dependency."""

from __future__ import annotations

import hmac
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from ..settings import APISettings, get_settings


class AuthService:
    """Validates ``X-API-Key`` headers against the configured keys."""

    def __init__(self, keys: tuple[str, ...]) -> None:
        self.keys = keys

    @property
    def enabled(self) -> bool:
        return bool(self.keys)

    def verify(self, candidate: str | None) -> bool:
        if not self.enabled:
            return True
        if not candidate:
            return False
        return any(hmac.compare_digest(candidate, key) for key in self.keys)


@lru_cache()
def _auth_service(keys: tuple[str, ...]) -> AuthService:
    return AuthService(keys)


def reset_auth_service_cache() -> None:
    _auth_service.cache_clear()


async def get_api_key(
    x_api_key: str | None = Header(default=None),
    settings: APISettings = Depends(get_settings),
) -> str | None:
    service = _auth_service(tuple(settings.api_keys))
    if not service.verify(x_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
