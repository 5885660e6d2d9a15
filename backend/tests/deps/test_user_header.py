import pytest
from dining.config import Settings, get_settings
from dining.deps import get_current_user_id
from fastapi import HTTPException


@pytest.mark.asyncio
async def test_get_current_user_id_reads_header() -> None:
    assert await get_current_user_id(x_user_id="123") == 123


@pytest.mark.asyncio
async def test_get_current_user_id_rejects_missing_header() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(x_user_id=None)
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_user_id_rejects_non_numeric() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(x_user_id="abc")
    assert excinfo.value.status_code == 400


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./dining.db")
    monkeypatch.setenv("ECHO_SQL", "true")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert isinstance(settings, Settings)
        assert settings.database_url == "sqlite+aiosqlite:///./dining.db"
        assert settings.echo_sql is True
    finally:
        get_settings.cache_clear()
