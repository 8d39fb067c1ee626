from __future__ import annotations

import httpx

from imgbed.core.config import get_settings
from imgbed.providers.moderation.base import ModerationProvider
from imgbed.providers.moderation.client import ModerationClient
from imgbed.providers.moderation.moderate_content import ModerateContentProvider
from imgbed.providers.moderation.rating_api import GenericRatingProvider


def get_moderation_provider(client: httpx.AsyncClient | None = None) -> ModerationProvider | None:
    # A configured rating endpoint wins over ModerateContent; None means no backend.
    settings = get_settings()
    if settings.rating_api:
        return GenericRatingProvider(settings.rating_api, client=client)
    if settings.moderate_content_api_key:
        return ModerateContentProvider(settings.moderate_content_api_key, client=client)
    return None


def get_moderation_client(client: httpx.AsyncClient | None = None) -> ModerationClient:
    return ModerationClient(get_moderation_provider(client=client))
