import pytest

from marketchat.config import Settings
from marketchat.utils.realtime_bus import LocalBus, RedisBus, close_bus, get_bus


def test_environment_aliases(monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setenv("ENV", "test")
    assert Settings(_env_file=None).is_test

    monkeypatch.delenv("ENV")
    monkeypatch.setenv("ENVIRONMENT", "production")
    settings = Settings(_env_file=None)
    assert settings.environment == "production"
    assert not settings.is_test


def test_defaults(monkeypatch):
    monkeypatch.delenv("MESSAGE_MAX_LENGTH", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    settings = Settings(_env_file=None)
    assert settings.message_max_length == 1000
    assert settings.redis_url is None


@pytest.mark.asyncio
async def test_bus_selection(monkeypatch):
    monkeypatch.setattr("marketchat.utils.realtime_bus.get_settings", lambda: Settings(_env_file=None, redis_url=None))
    await close_bus()
    bus = await get_bus()
    assert isinstance(bus, LocalBus)
    assert await get_bus() is bus
    await close_bus()

    monkeypatch.setattr(
        "marketchat.utils.realtime_bus.get_settings",
        lambda: Settings(_env_file=None, redis_url="redis://localhost:6379/0"),
    )
    bus = await get_bus()
    assert isinstance(bus, RedisBus)
    await close_bus()
