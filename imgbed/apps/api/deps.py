from __future__ import annotations

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.core.config import get_settings
from imgbed.persistence.db import get_session
from imgbed.providers.moderation.client import ModerationClient
from imgbed.providers.moderation.factory import get_moderation_client
from imgbed.services.quota import ROLE_ADMIN, ROLE_ANONYMOUS, normalize_role


UNKNOWN_IP = "unknown"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Identity forwarded by the upstream auth provider.
    role: str = ROLE_ANONYMOUS
    user_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def get_principal(request: Request) -> Principal:
    settings = get_settings()
    user_id = (request.headers.get(settings.auth_user_header) or "").strip() or None
    if not settings.auth_enabled:
        return Principal(role=ROLE_ADMIN, user_id=user_id)
    return Principal(role=normalize_role(request.headers.get(settings.auth_role_header)), user_id=user_id)


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.is_admin:
        return principal
    if principal.role == ROLE_ANONYMOUS:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin role required")


def resolve_client_ip(request: Request) -> str:
    # First trusted proxy header wins; only the left-most forwarded hop is used.
    header_names = [name.strip() for name in get_settings().trusted_ip_headers.split(",") if name.strip()]
    for name in header_names:
        value = request.headers.get(name)
        if value:
            candidate = value.split(",")[0].strip()
            if candidate:
                return candidate
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IP


def resolve_referer(request: Request) -> str:
    return request.headers.get("referer") or ""


def resolve_origin(request: Request) -> str:
    return str(request.base_url).rstrip("/")


@lru_cache
def get_moderation() -> ModerationClient:
    return get_moderation_client()
