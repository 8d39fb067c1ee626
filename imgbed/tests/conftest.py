from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before any imgbed module builds it.
_DB_DIR = tempfile.mkdtemp(prefix="imgbed-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/imgbed.db"
)
os.environ.setdefault("AUTH_ENABLED", "true")

import pytest

from imgbed.apps.api.deps import get_moderation
from imgbed.core.config import get_settings
from imgbed.persistence.db import engine
from imgbed.persistence.schema import drop_schema, ensure_schema
from imgbed.providers.storage.factory import get_legacy_adapter, get_r2_adapter, get_telegram_adapter
from imgbed.services import telemetry


@pytest.fixture(autouse=True)
async def reset_database() -> None:
    # Every test starts from empty tables.
    await ensure_schema()
    yield
    await drop_schema()
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    yield
    get_settings.cache_clear()
    get_moderation.cache_clear()
    get_r2_adapter.cache_clear()
    get_telegram_adapter.cache_clear()
    get_legacy_adapter.cache_clear()
    telemetry.reset()
