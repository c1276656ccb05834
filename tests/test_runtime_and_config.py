import asyncio
import os

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.db.sqlite import sqlite_db
from app.services import task_runtime

pytestmark = pytest.mark.unit


@pytest.fixture()
def temp_db(tmp_path):
    old_db_path = sqlite_db._db_path
    try:
        db_path = tmp_path / "runtime.db"
        sqlite_db._db_path = str(db_path)
        sqlite_db._ensure_data_dir()
        sqlite_db._init_db()
        sqlite_db._last_event_cleanup_at = 0.0
        yield db_path
    finally:
        sqlite_db._db_path = old_db_path
        if os.path.exists(os.path.dirname(old_db_path)):
            sqlite_db._init_db()


def test_api_budget_must_stay_below_provider_limit():
    assert Settings(max_api_calls=190, provider_rate_limit=200).max_api_calls == 190
    with pytest.raises(ValidationError):
        Settings(max_api_calls=200, provider_rate_limit=200)
    with pytest.raises(ValidationError):
        Settings(max_api_calls=0)


def test_admin_id_list_parsing():
    assert Settings(telegram_admin_ids=" 1, 2 ,,3 ").telegram_admin_id_list == ["1", "2", "3"]
    assert Settings(telegram_admin_ids="").telegram_admin_id_list == []


@pytest.mark.asyncio
async def test_spawn_records_background_exception(temp_db):
    del temp_db

    async def _fail():
        raise RuntimeError("worker crashed")

    task = task_runtime.spawn(_fail(), task_name="refresh.run", metadata={"trigger": "http"})
    with pytest.raises(RuntimeError):
        await task
    await asyncio.sleep(0)

    logs = sqlite_db.list_event_logs(source="system", limit=10)
    assert logs[0]["action"] == "background.task.error"
    assert logs[0]["metadata"]["trigger"] == "http"
    assert task not in task_runtime._background_tasks


@pytest.mark.asyncio
async def test_spawn_returns_result():
    async def _ok():
        return 7

    assert await task_runtime.spawn(_ok(), task_name="demo") == 7


def test_event_log_masks_access_tokens(temp_db):
    del temp_db
    sqlite_db.create_event_log(
        source="refresh",
        action="refresh.run.error",
        message="GET https://graph.facebook.com/v18.0/1?fields=source&access_token=EAAB123 failed via /bot123:ABC_def/sendMessage",
    )
    message = sqlite_db.list_event_logs(source="refresh", limit=1)[0]["message"]
    assert "EAAB123" not in message
    assert "ABC_def" not in message
    assert "access_token=***" in message
