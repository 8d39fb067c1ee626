from __future__ import annotations

import logging

from imgbed.core.config import get_settings
from imgbed.providers.moderation.base import RATING_CLEAN, RATING_FAILED, ModerationProvider


logger = logging.getLogger(__name__)

FAIL_OPEN = "open"
FAIL_CLOSED = "closed"


def is_violation(rating: int, *, threshold: int | None = None, fail_mode: str | None = None) -> bool:
    # A failed rating only counts as a violation when the fail mode is closed.
    settings = get_settings()
    threshold = settings.moderation_threshold if threshold is None else threshold
    fail_mode = (fail_mode or settings.moderation_fail_mode or FAIL_OPEN).lower()
    if rating == RATING_FAILED:
        return fail_mode == FAIL_CLOSED
    return rating >= threshold


class ModerationClient:
    def __init__(self, provider: ModerationProvider | None) -> None:
        self._provider = provider

    @property
    def configured(self) -> bool:
        return self._provider is not None

    @property
    def provider_name(self) -> str | None:
        return self._provider.name if self._provider is not None else None

    async def rate(self, asset_url: str) -> int:
        # Without a backend every upload is treated as clean.
        if self._provider is None:
            return RATING_CLEAN
        rating = await self._provider.rate(asset_url)
        logger.info("moderation_rated provider=%s rating=%s", self._provider.name, rating)
        return rating
