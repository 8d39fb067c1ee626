from __future__ import annotations

from functools import lru_cache

from imgbed.providers.storage.legacy import LegacyHostAdapter
from imgbed.providers.storage.r2 import R2StorageAdapter
from imgbed.providers.storage.telegram import TelegramStorageAdapter


# Adapters hold pooled clients, so one instance per process is shared.
@lru_cache
def get_r2_adapter() -> R2StorageAdapter:
    return R2StorageAdapter()


@lru_cache
def get_telegram_adapter() -> TelegramStorageAdapter:
    return TelegramStorageAdapter()


@lru_cache
def get_legacy_adapter() -> LegacyHostAdapter:
    return LegacyHostAdapter()
