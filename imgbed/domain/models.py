from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    # Assign timestamps in Python so SQLite and Postgres compare the same way.
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes; everything is stored as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class UploadLog(Base):
    __tablename__ = "upload_logs"
    __table_args__ = (
        Index("ix_upload_logs_ip", "ip"),
        Index("ix_upload_logs_created_at", "created_at"),
    )

    # Append-only audit trail: one row per upload attempt.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    file_name: Mapped[str] = mapped_column(String, default="unknown")
    # Adapter tag: r2, telegram or legacy.
    storage: Mapped[str] = mapped_column(String, default="r2")
    ip: Mapped[str] = mapped_column(String, default="")
    referer: Mapped[str] = mapped_column(Text, default="")
    # Null when no moderation rating was obtained for the attempt.
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    compliant: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # success | blocked | error
    status: Mapped[str] = mapped_column(String, default="success")
    message: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class IpBlock(Base):
    __tablename__ = "upload_ip_blocklist"

    ip: Mapped[str] = mapped_column(String, primary_key=True)
    reason: Mapped[str] = mapped_column(Text, default="")
    blocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    # Null means the block never expires.
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AppConfig(Base):
    __tablename__ = "app_config"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String, nullable=False)


class QuotaConfig(Base):
    __tablename__ = "quota_config"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class UploadQuota(Base):
    __tablename__ = "upload_quota"

    # Counters keyed by identity (anon:<ip> / user:<id>), scope and day.
    identity: Mapped[str] = mapped_column(String, primary_key=True)
    scope: Mapped[str] = mapped_column(String, primary_key=True)
    day: Mapped[str] = mapped_column(String, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class Asset(Base):
    __tablename__ = "assets"

    # Canonical index of servable assets, keyed by the public reference.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    url: Mapped[str] = mapped_column(String, unique=True, index=True)
    storage: Mapped[str] = mapped_column(String, default="r2")
    referer: Mapped[str] = mapped_column(Text, default="")
    ip: Mapped[str] = mapped_column(String, default="")
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # Comma-wrapped tag list (",image,cats,") so LIKE '%,tag,%' matches exactly.
    tags: Mapped[str] = mapped_column(Text, default="")
    time: Mapped[str] = mapped_column(String, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class TelegramFileMeta(Base):
    __tablename__ = "tg_file_meta"

    file_id: Mapped[str] = mapped_column(String, primary_key=True)
    file_name: Mapped[str | None] = mapped_column(String, nullable=True)
    message_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    chat_id: Mapped[str | None] = mapped_column(String, nullable=True)


class TagRegistry(Base):
    __tablename__ = "taglist"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class FileAccessLog(Base):
    __tablename__ = "file_access_logs"
    __table_args__ = (Index("ix_file_access_logs_url", "url"),)

    # One row per served file; joined to assets on url for rating and upload count.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    url: Mapped[str] = mapped_column(String, nullable=False)
    referer: Mapped[str] = mapped_column(Text, default="")
    ip: Mapped[str] = mapped_column(String, default="")
    # Display-timezone timestamp string, same format as assets.time.
    time: Mapped[str] = mapped_column(String, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
