from __future__ import annotations

import logging
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.domain.models import Asset, TagRegistry, utc_now
from imgbed.persistence.db import dialect_insert


logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset(
    {
        "jpg", "jpeg", "png", "gif", "bmp", "tiff", "tif", "webp",
        "svg", "ico", "heic", "heif", "raw", "psd", "ai", "eps",
    }
)
VIDEO_EXTENSIONS = frozenset(
    {
        "mp4", "mkv", "avi", "mov", "wmv", "flv", "webm", "ogg",
        "ogv", "m4v", "3gp", "3g2", "mpg", "mpeg", "mxf", "vob",
    }
)
KIND_TAGS = ("image", "video", "file")
RESERVED_TAGS = frozenset({"all", *KIND_TAGS})
MAX_TAG_LENGTH = 48


def _extension(name: str) -> str:
    filename = (name or "").lower().split("?")[0].rsplit("/", 1)[-1]
    return filename.rsplit(".", 1)[-1] if "." in filename else ""


def determine_kind_tag(content_type: str | None, filename: str | None) -> str:
    # Prefer the declared MIME family, then fall back to the file extension.
    lowered = (content_type or "").lower()
    if lowered.startswith("image/"):
        return "image"
    if lowered.startswith("video/"):
        return "video"
    extension = _extension(filename or "")
    if extension in IMAGE_EXTENSIONS:
        return "image"
    if extension in VIDEO_EXTENSIONS:
        return "video"
    return "file"


def sanitize_tag(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    trimmed = tag.strip()
    if not trimmed or trimmed.lower() == "all":
        return ""
    return trimmed[:MAX_TAG_LENGTH]


def build_storage_string(tags: list[str]) -> str:
    # Wrap in commas so a LIKE '%,tag,%' lookup never matches a prefix.
    return f",{','.join(tags)}," if tags else ""


def parse_storage_string(value: str | None) -> list[str]:
    return [tag.strip() for tag in (value or "").split(",") if tag.strip()]


def normalise_tags(custom_tags: str | list[str], kind_tag: str | None) -> tuple[list[str], str]:
    raw = custom_tags.split(",") if isinstance(custom_tags, str) else list(custom_tags)
    ordered: list[str] = []
    for item in raw:
        tag = sanitize_tag(item)
        if tag and tag not in ordered:
            ordered.append(tag)
    if kind_tag and kind_tag not in ordered:
        ordered.append(kind_tag)
    return ordered, build_storage_string(ordered)


def normalize_asset_url(value: str) -> str:
    # Reduce absolute or /api-prefixed references to the canonical /rfile/... form.
    if not value:
        return ""
    key = value.strip()
    if key.startswith(("http://", "https://")):
        key = urlparse(key).path or key
    if key.startswith("/api/"):
        key = key[len("/api"):]
    if not key.startswith("/"):
        key = f"/{key}"
    return key


async def update_asset_tags(
    session: AsyncSession,
    url: str,
    tags: list[str],
) -> tuple[list[str], str] | None:
    # Replace an asset's tag list; the kind tag derived from the URL is always kept.
    canonical = normalize_asset_url(url)
    result = await session.execute(select(Asset).where(Asset.url == canonical))
    asset = result.scalar_one_or_none()
    if asset is None:
        return None
    unique_tags, storage = normalise_tags(tags, determine_kind_tag(None, asset.url))
    asset.tags = storage
    await session.commit()
    return unique_tags, storage


async def register_tag(session: AsyncSession, name: str) -> str | None:
    tag = sanitize_tag(name)
    if not tag or tag in RESERVED_TAGS:
        return None
    stmt = dialect_insert(session, TagRegistry).values(name=tag, created_at=utc_now())
    stmt = stmt.on_conflict_do_nothing(index_elements=[TagRegistry.name])
    await session.execute(stmt)
    await session.commit()
    return tag


async def list_tags(session: AsyncSession) -> list[str]:
    # Base kinds, registered tags and any tag seen on an asset, sorted case-insensitively.
    tag_set: set[str] = set(KIND_TAGS)
    registry = await session.execute(select(TagRegistry.name))
    for name in registry.scalars().all():
        trimmed = str(name or "").strip()
        if trimmed and trimmed not in RESERVED_TAGS:
            tag_set.add(trimmed)
    stored = await session.execute(select(Asset.tags).where(Asset.tags.is_not(None), Asset.tags != ""))
    for value in stored.scalars().all():
        for tag in parse_storage_string(value):
            if tag not in RESERVED_TAGS:
                tag_set.add(tag)
    return sorted(tag_set, key=str.casefold)
