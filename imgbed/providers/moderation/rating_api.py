from __future__ import annotations

from urllib.parse import quote

import httpx

from imgbed.providers.moderation.base import (
    RATING_FAILED,
    ClassificationResult,
    HttpModerationProvider,
    RatingIndexResult,
    RatingResponse,
    rating_from_classifications,
)


def build_rating_url(endpoint: str, asset_url: str) -> str:
    # Attach the encoded asset URL as the ``url`` query parameter.
    encoded = quote(asset_url, safe="")
    if endpoint.endswith("url="):
        return f"{endpoint}{encoded}"
    if endpoint.endswith(("?", "&")):
        return f"{endpoint}url={encoded}"
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}url={encoded}"


class GenericRatingProvider(HttpModerationProvider):
    """Operator-supplied rating endpoint.

    Accepts either a ready ``rating_index`` or a list of NSFW classifier
    predictions, which are reduced to 4 (explicit) or 0 (clean).
    """

    name = "rating_api"

    def __init__(self, endpoint: str, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client=client)
        self._endpoint = endpoint

    def build_url(self, asset_url: str) -> str:
        return build_rating_url(self._endpoint, asset_url)

    def interpret(self, result: RatingResponse) -> int:
        if isinstance(result, RatingIndexResult):
            return result.rating_index
        if isinstance(result, ClassificationResult):
            return rating_from_classifications(result)
        return RATING_FAILED
