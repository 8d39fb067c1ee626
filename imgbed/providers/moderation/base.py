from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Protocol

import httpx

from imgbed.core.config import get_settings
from imgbed.services.resilience import call_with_timeout
from imgbed.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

RATING_FAILED = -1
RATING_CLEAN = 0
RATING_EXPLICIT = 4

PORN_CLASS = "porn"
PORN_PROBABILITY_THRESHOLD = 0.6


class ModerationProvider(Protocol):
    name: str

    async def rate(self, asset_url: str) -> int:
        ...


@dataclass(frozen=True)
class RatingIndexResult:
    # Upstream already computed a rating index.
    rating_index: int


@dataclass(frozen=True)
class Classification:
    class_name: str
    probability: float


@dataclass(frozen=True)
class ClassificationResult:
    # NSFW classifier output: one probability per class.
    items: tuple[Classification, ...]


@dataclass(frozen=True)
class UnrecognizedResult:
    reason: str


RatingResponse = RatingIndexResult | ClassificationResult | UnrecognizedResult


def _parse_classifications(payload: list[Any]) -> RatingResponse:
    items: list[Classification] = []
    for entry in payload:
        if not isinstance(entry, dict) or "className" not in entry:
            return UnrecognizedResult("classification entry without className")
        try:
            probability = float(entry.get("probability", 0))
        except (TypeError, ValueError):
            return UnrecognizedResult("classification probability is not numeric")
        items.append(Classification(class_name=str(entry["className"]), probability=probability))
    return ClassificationResult(items=tuple(items))


def parse_rating_response(payload: Any) -> RatingResponse:
    # Classify the upstream body once so providers only match on shapes.
    if isinstance(payload, dict) and "rating_index" in payload:
        try:
            return RatingIndexResult(rating_index=int(payload["rating_index"]))
        except (TypeError, ValueError):
            return UnrecognizedResult("rating_index is not an integer")
    if isinstance(payload, list):
        return _parse_classifications(payload)
    return UnrecognizedResult(f"unexpected payload type {type(payload).__name__}")


def rating_from_classifications(result: ClassificationResult) -> int:
    for item in result.items:
        if item.class_name.lower() == PORN_CLASS and item.probability >= PORN_PROBABILITY_THRESHOLD:
            return RATING_EXPLICIT
    return RATING_CLEAN


class HttpModerationProvider:
    """Shared GET-and-interpret flow for HTTP rating services.

    Subclasses build the request URL and decide which response shapes they
    understand. Every failure collapses to ``RATING_FAILED`` so callers only
    ever see an integer.
    """

    name = "moderation"

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._settings.moderation_timeout_ms / 1000.0)
        return self._client

    def build_url(self, asset_url: str) -> str:
        raise NotImplementedError

    def interpret(self, result: RatingResponse) -> int:
        if isinstance(result, RatingIndexResult):
            return result.rating_index
        return RATING_FAILED

    async def rate(self, asset_url: str) -> int:
        url = self.build_url(asset_url)
        client = self._get_client()
        start = time.monotonic()
        try:
            response = await call_with_timeout(
                lambda: client.get(url),
                timeout_ms=self._settings.moderation_timeout_ms,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, TimeoutError, ValueError) as exc:
            record_external_call(
                integration=f"moderation.{self.name}",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning("moderation_request_failed provider=%s", self.name, exc_info=exc)
            return RATING_FAILED

        result = parse_rating_response(payload)
        rating = self.interpret(result)
        record_external_call(
            integration=f"moderation.{self.name}",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=rating != RATING_FAILED,
        )
        if isinstance(result, UnrecognizedResult):
            logger.warning("moderation_response_unrecognized provider=%s reason=%s", self.name, result.reason)
        return rating
