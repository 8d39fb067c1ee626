from __future__ import annotations

import httpx
import pytest

from imgbed.core.config import get_settings
from imgbed.providers.moderation.base import (
    ClassificationResult,
    RatingIndexResult,
    UnrecognizedResult,
    parse_rating_response,
    rating_from_classifications,
)
from imgbed.providers.moderation.client import ModerationClient, is_violation
from imgbed.providers.moderation.factory import get_moderation_provider
from imgbed.providers.moderation.moderate_content import ModerateContentProvider
from imgbed.providers.moderation.rating_api import GenericRatingProvider, build_rating_url


ASSET = "https://img.example/api/rfile/cat one.jpg"
ENCODED = "https%3A%2F%2Fimg.example%2Fapi%2Frfile%2Fcat%20one.jpg"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    ("endpoint", "expected"),
    [
        ("https://r.test/rate?url=", f"https://r.test/rate?url={ENCODED}"),
        ("https://r.test/rate?", f"https://r.test/rate?url={ENCODED}"),
        ("https://r.test/rate?model=v2&", f"https://r.test/rate?model=v2&url={ENCODED}"),
        ("https://r.test/rate?model=v2", f"https://r.test/rate?model=v2&url={ENCODED}"),
        ("https://r.test/rate", f"https://r.test/rate?url={ENCODED}"),
    ],
)
def test_build_rating_url_attaches_encoded_asset(endpoint: str, expected: str) -> None:
    assert build_rating_url(endpoint, ASSET) == expected


def test_parse_rating_response_shapes() -> None:
    assert parse_rating_response({"rating_index": 3}) == RatingIndexResult(rating_index=3)
    assert parse_rating_response({"rating_index": "2"}) == RatingIndexResult(rating_index=2)
    classified = parse_rating_response(
        [{"className": "Neutral", "probability": 0.9}, {"className": "Porn", "probability": 0.1}]
    )
    assert isinstance(classified, ClassificationResult)
    assert len(classified.items) == 2
    assert isinstance(parse_rating_response({"status": "ok"}), UnrecognizedResult)
    assert isinstance(parse_rating_response({"rating_index": "high"}), UnrecognizedResult)
    assert isinstance(parse_rating_response([{"probability": 0.3}]), UnrecognizedResult)


def test_classification_porn_threshold() -> None:
    explicit = parse_rating_response([{"className": "Porn", "probability": 0.6}])
    borderline = parse_rating_response([{"className": "Porn", "probability": 0.59}])
    assert rating_from_classifications(explicit) == 4
    assert rating_from_classifications(borderline) == 0


@pytest.mark.asyncio
async def test_generic_provider_reads_rating_index() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"rating_index": 2})

    provider = GenericRatingProvider("https://r.test/rate", client=_client(handler))
    assert await provider.rate(ASSET) == 2
    assert seen == [f"https://r.test/rate?url={ENCODED}"]


@pytest.mark.asyncio
async def test_generic_provider_maps_classifications() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"className": "Porn", "probability": 0.93}])

    provider = GenericRatingProvider("https://r.test/rate", client=_client(handler))
    assert await provider.rate(ASSET) == 4


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(503, json={"rating_index": 1}),
        lambda request: httpx.Response(200, content=b"not json"),
        lambda request: httpx.Response(200, json={"unexpected": True}),
    ],
)
async def test_generic_provider_failures_return_minus_one(handler) -> None:
    provider = GenericRatingProvider("https://r.test/rate", client=_client(handler))
    assert await provider.rate(ASSET) == -1


@pytest.mark.asyncio
async def test_generic_provider_timeout_returns_minus_one() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    provider = GenericRatingProvider("https://r.test/rate", client=_client(handler))
    assert await provider.rate(ASSET) == -1


@pytest.mark.asyncio
async def test_moderate_content_builds_keyed_url_and_ignores_classifications() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if len(seen) == 1:
            return httpx.Response(200, json={"rating_index": 3})
        return httpx.Response(200, json=[{"className": "Porn", "probability": 0.99}])

    provider = ModerateContentProvider("k3y", client=_client(handler))
    assert await provider.rate(ASSET) == 3
    assert seen[0] == f"https://api.moderatecontent.com/moderate/?key=k3y&url={ENCODED}"
    assert await provider.rate(ASSET) == -1


@pytest.mark.asyncio
async def test_unconfigured_client_rates_clean() -> None:
    client = ModerationClient(None)
    assert client.configured is False
    assert await client.rate(ASSET) == 0


def test_is_violation_threshold_and_fail_modes() -> None:
    assert is_violation(3, threshold=3, fail_mode="open") is True
    assert is_violation(2, threshold=3, fail_mode="open") is False
    assert is_violation(-1, threshold=3, fail_mode="open") is False
    assert is_violation(-1, threshold=3, fail_mode="closed") is True


def test_factory_prefers_generic_endpoint(monkeypatch) -> None:
    monkeypatch.setenv("RATING_API", "https://r.test/rate")
    monkeypatch.setenv("MODERATE_CONTENT_API_KEY", "k3y")
    get_settings.cache_clear()
    assert isinstance(get_moderation_provider(), GenericRatingProvider)

    monkeypatch.delenv("RATING_API")
    get_settings.cache_clear()
    assert isinstance(get_moderation_provider(), ModerateContentProvider)

    monkeypatch.delenv("MODERATE_CONTENT_API_KEY")
    get_settings.cache_clear()
    assert get_moderation_provider() is None
