from __future__ import annotations

from urllib.parse import quote

import httpx

from imgbed.providers.moderation.base import HttpModerationProvider


class ModerateContentProvider(HttpModerationProvider):
    # Keyed ModerateContent endpoint; only a direct rating_index is understood.
    name = "moderatecontent"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(client=client)
        self._api_key = api_key
        self._base_url = base_url or self._settings.moderate_content_url

    def build_url(self, asset_url: str) -> str:
        return f"{self._base_url}?key={quote(self._api_key, safe='')}&url={quote(asset_url, safe='')}"
