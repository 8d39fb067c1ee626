from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.core.config import get_settings
from imgbed.core.errors import (
    ImgbedError,
    IpBlockedError,
    ModerationRejectedError,
    PersistenceError,
    QuotaExceededError,
    StorageError,
    UploadValidationError,
    UpstreamError,
)
from imgbed.domain.models import utc_now
from imgbed.providers.moderation.base import RATING_CLEAN, RATING_FAILED
from imgbed.providers.moderation.client import ModerationClient, is_violation
from imgbed.providers.storage.base import IncomingFile, StorageAdapter, StoredObject
from imgbed.services.app_config import is_moderation_enabled
from imgbed.services.assets import delete_assets, get_asset, insert_asset, save_telegram_meta
from imgbed.services.ip_blocks import get_active_block, maybe_auto_block
from imgbed.services.quota import ROLE_ADMIN, ROLE_ANONYMOUS, QuotaService, QuotaSubject, display_zone
from imgbed.services.tags import determine_kind_tag, normalise_tags
from imgbed.services.telemetry import increment_counter
from imgbed.services.upload_logs import (
    STATUS_BLOCKED,
    STATUS_ERROR,
    STATUS_SUCCESS,
    record_upload_log,
)


logger = logging.getLogger(__name__)

NO_VALID_FILE = "no valid file"
MULTIPLE_FILES = "multiple files"
FILE_TOO_LARGE = "file too large"
QUOTA_EXCEEDED = "quota exceeded"
MODERATION_REJECTED = "moderation rejected"

SUCCESS_CODE = 200
SUCCESS_MSG = "2"

ANONYMOUS_QUOTA_MESSAGE = "anonymous uploads are limited, please sign in to continue"
USER_QUOTA_MESSAGE = "daily upload limit reached, please try again tomorrow"


def format_now_time(now: datetime) -> str:
    # Human-readable local timestamp echoed back to uploaders and stored on the asset.
    local = now.astimezone(display_zone())
    return f"{local.year}年{local.month}月{local.day}日 {local:%H:%M:%S}"


@dataclass(frozen=True)
class UploadContext:
    client_ip: str
    referer: str
    origin: str
    role: str = ROLE_ANONYMOUS
    identity: str | None = None
    tags: str = ""
    # Number of file parts in the request and whether the route takes only one.
    file_count: int = 1
    single_file: bool = False


@dataclass
class UploadOutcome:
    stored: StoredObject
    rating: int
    now_time: str
    referer: str
    client_ip: str
    tags: list[str] = field(default_factory=list)
    index_error: str | None = None

    def as_response(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "url": self.stored.url,
            "code": SUCCESS_CODE,
            "name": self.stored.display_name,
            "msg": self.index_error or SUCCESS_MSG,
            "Referer": self.referer,
            "clientIp": self.client_ip,
            "rating_index": self.rating,
            "nowTime": self.now_time,
        }
        if self.tags:
            payload["tags"] = self.tags
        return payload


class UploadPipeline:
    """Admission, storage and moderation for one uploaded file.

    Every request that gets past configuration checks leaves exactly one
    upload log row, whatever the outcome. Policy rejections surface as
    ``ImgbedError`` subclasses that the API layer renders directly.
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        *,
        moderation: ModerationClient | None = None,
        quota: QuotaService | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._adapter = adapter
        self._moderation = moderation or ModerationClient(None)
        self._time_provider = time_provider or utc_now
        self._quota = quota or QuotaService(time_provider=self._time_provider)

    async def _log(
        self,
        context: UploadContext,
        *,
        file_name: str,
        status: str,
        compliant: bool,
        message: str,
        rating: int | None = None,
    ) -> None:
        increment_counter(f"uploads_{status}_total")
        await record_upload_log(
            file_name=file_name,
            storage=self._adapter.name,
            ip=context.client_ip,
            referer=context.referer,
            rating=rating,
            compliant=compliant,
            status=status,
            message=message,
            created_at=self._time_provider(),
        )

    async def _rate(self, stored: StoredObject) -> int:
        if not self._moderation.configured:
            return RATING_CLEAN
        try:
            public_url = await self._adapter.resolve_public_url(stored)
        except StorageError as exc:
            logger.warning("moderation_url_unresolved storage=%s reference=%s", self._adapter.name, stored.reference, exc_info=exc)
            return RATING_FAILED
        return await self._moderation.rate(public_url)

    async def _validate(self, upload: IncomingFile | None, context: UploadContext, *, file_name: str) -> IncomingFile:
        # Request-shape checks run after the block check so blocked IPs always see 423.
        if upload is None or not upload.data:
            await self._log(context, file_name=file_name, status=STATUS_ERROR, compliant=False, message=NO_VALID_FILE)
            raise UploadValidationError("file is required")
        if context.file_count > 1 and (context.single_file or context.role == ROLE_ANONYMOUS):
            await self._log(context, file_name=file_name, status=STATUS_ERROR, compliant=False, message=MULTIPLE_FILES)
            raise UploadValidationError("only one file may be uploaded per request")
        max_bytes = get_settings().upload_max_bytes
        if upload.size > max_bytes:
            await self._log(context, file_name=file_name, status=STATUS_ERROR, compliant=False, message=FILE_TOO_LARGE)
            raise UploadValidationError(f"file exceeds the {max_bytes} byte limit", status_code=413)
        return upload

    async def _retract(self, session: AsyncSession, stored: StoredObject) -> None:
        try:
            await self._adapter.retract(stored)
        except Exception as exc:  # noqa: BLE001 - the rejection is returned either way
            logger.warning("upload_retract_failed storage=%s reference=%s", self._adapter.name, stored.reference, exc_info=exc)
            return
        # Same-key re-uploads overwrite the indexed object, so its row now points at nothing.
        try:
            if await get_asset(session, stored.index_url) is not None:
                logger.warning("upload_retract_dropped_index url=%s", stored.index_url)
                await delete_assets(session, [stored.index_url])
        except Exception as exc:  # noqa: BLE001 - the rejection is returned either way
            await session.rollback()
            logger.warning("upload_retract_index_cleanup_failed url=%s", stored.index_url, exc_info=exc)

    async def _write_index(
        self,
        session: AsyncSession,
        stored: StoredObject,
        context: UploadContext,
        *,
        rating: int,
        now_time: str,
        tag_storage: str,
    ) -> None:
        # The remote object stays put even when bookkeeping fails.
        try:
            await insert_asset(
                session,
                url=stored.index_url,
                storage=self._adapter.name,
                referer=context.referer,
                ip=context.client_ip,
                rating=rating,
                time=now_time,
                tags=tag_storage,
            )
            if stored.message_id is not None or self._adapter.name == "telegram":
                await save_telegram_meta(
                    session,
                    file_id=stored.reference,
                    file_name=stored.display_name,
                    message_id=stored.message_id,
                    chat_id=stored.chat_id,
                )
        except Exception as exc:  # noqa: BLE001 - reported to the caller via msg
            await session.rollback()
            raise PersistenceError(f"asset index write failed: {exc}") from exc

    async def _consume_quota(self, session: AsyncSession, subject: QuotaSubject | None) -> None:
        try:
            await self._quota.consume(session, subject)
        except Exception as exc:  # noqa: BLE001 - the upload already succeeded
            await session.rollback()
            raise PersistenceError(f"quota increment failed: {exc}") from exc

    async def run(
        self,
        session: AsyncSession,
        upload: IncomingFile | None,
        context: UploadContext,
    ) -> UploadOutcome:
        self._adapter.ensure_configured()
        file_name = (upload.filename if upload else "") or "unknown"

        block = await get_active_block(session, context.client_ip, now=self._time_provider())
        if block is not None:
            await self._log(context, file_name=file_name, status=STATUS_BLOCKED, compliant=False, message=block.reason)
            logger.info("upload_rejected_blocked_ip ip=%s reason=%s", context.client_ip, block.reason)
            raise IpBlockedError(f"uploads from this IP are blocked: {block.reason}")

        upload = await self._validate(upload, context, file_name=file_name)

        quota_check = await self._quota.check(
            session,
            role=context.role,
            user_id=context.identity,
            client_ip=context.client_ip,
        )
        if not quota_check.allowed:
            await self._log(context, file_name=file_name, status=STATUS_BLOCKED, compliant=True, message=QUOTA_EXCEEDED)
            anonymous = quota_check.subject is not None and quota_check.subject.role == ROLE_ANONYMOUS
            raise QuotaExceededError(ANONYMOUS_QUOTA_MESSAGE if anonymous else USER_QUOTA_MESSAGE)

        try:
            stored = await self._adapter.store(upload, origin=context.origin)
        except ImgbedError as exc:
            await self._log(context, file_name=file_name, status=STATUS_ERROR, compliant=True, message=exc.message)
            raise
        except Exception as exc:  # noqa: BLE001 - surfaced as an upstream failure
            await self._log(context, file_name=file_name, status=STATUS_ERROR, compliant=True, message=str(exc))
            raise UpstreamError(str(exc) or "storage write failed") from exc

        rating = await self._rate(stored)
        if await is_moderation_enabled(session) and is_violation(rating):
            await self._retract(session, stored)
            await self._log(
                context,
                file_name=stored.display_name,
                status=STATUS_BLOCKED,
                compliant=False,
                message=MODERATION_REJECTED,
                rating=rating,
            )
            await maybe_auto_block(context.client_ip, time_provider=self._time_provider)
            logger.info("upload_rejected_moderation ip=%s rating=%s", context.client_ip, rating)
            raise ModerationRejectedError("upload rejected by content moderation")

        now_time = format_now_time(self._time_provider())
        tag_list, tag_storage = normalise_tags(
            context.tags or "", determine_kind_tag(upload.content_type, upload.filename)
        )
        index_error: str | None = None
        try:
            await self._write_index(
                session,
                stored,
                context,
                rating=rating,
                now_time=now_time,
                tag_storage=tag_storage,
            )
        except PersistenceError as exc:
            logger.error("asset_index_write_failed url=%s", stored.index_url, exc_info=exc)
            index_error = exc.message
        if context.role != ROLE_ADMIN:
            try:
                await self._consume_quota(session, quota_check.subject)
            except PersistenceError as exc:
                logger.warning("upload_quota_increment_failed ip=%s", context.client_ip, exc_info=exc)

        compliant = rating < get_settings().moderation_threshold
        if index_error is None:
            await self._log(
                context,
                file_name=stored.display_name,
                status=STATUS_SUCCESS,
                compliant=compliant,
                message="",
                rating=rating,
            )
        else:
            await self._log(
                context,
                file_name=stored.display_name,
                status=STATUS_ERROR,
                compliant=compliant,
                message=index_error,
                rating=rating,
            )
        logger.info(
            "upload_completed storage=%s reference=%s rating=%s",
            self._adapter.name,
            stored.reference,
            rating,
        )
        return UploadOutcome(
            stored=stored,
            rating=rating,
            now_time=now_time,
            referer=context.referer,
            client_ip=context.client_ip,
            tags=tag_list,
            index_error=index_error,
        )
