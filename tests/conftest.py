"""
Pytest configuration for the homecommand test suite.

Shared fakes for the device capabilities and a few settings helpers.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from homecommand.config import Settings
from homecommand.tools.capabilities import HomeCapabilities

# 64 hex chars -> 32-byte master key
TEST_MASTER_KEY_HEX = "00112233445566778899aabbccddeeff" * 2


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from the process environment and any .env file."""
    values: dict[str, Any] = {
        "ai_provider": "openai",
        "ai_model": None,
        "anthropic_api_key": None,
        "github_token": None,
        "zai_api_key": None,
        "openai_api_key": None,
        "azure_openai_api_key": None,
        "azure_openai_endpoint": None,
        "conversation_encryption_key": None,
        "resync_delay": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def capabilities() -> HomeCapabilities:
    """HomeCapabilities built from mocks with realistic return values."""
    car = MagicMock()
    car.lock = AsyncMock(return_value="Locked")
    car.unlock = AsyncMock(return_value="Unlocked")
    car.start = AsyncMock(return_value="Started")
    car.stop = AsyncMock(return_value="Stopped")
    car.resync = AsyncMock(return_value=None)
    car.status = {"batteryLevel": 80, "locked": True}
    car.odometer = 12345

    broombot = MagicMock()
    broombot.turn_on = AsyncMock(return_value=None)
    broombot.turn_off = AsyncMock(return_value=None)
    broombot.cached_status = {"battery": 90, "running": False}

    mopbot = MagicMock()
    mopbot.turn_on = AsyncMock(return_value=None)
    mopbot.turn_off = AsyncMock(return_value=None)
    mopbot.cached_status = {"battery": 40, "running": True}

    home_assistant = MagicMock()
    home_assistant.call_service = AsyncMock(return_value={})
    home_assistant.get_state = AsyncMock(
        return_value=[
            {"entity_id": "scene.relax", "state": "scening", "attributes": {"friendly_name": "Relax"}},
            {"entity_id": "light.ceiling", "state": "on", "attributes": {}},
            {"entity_id": "light.desk", "state": "off"},
        ]
    )

    laundry = MagicMock()
    laundry.washer = {"status": "running", "remaining": 35}
    laundry.dryer = {"status": "off"}

    dishwasher = MagicMock()
    dishwasher.dishwasher = {"status": "finished"}

    return HomeCapabilities(
        car=car,
        broombot=broombot,
        mopbot=mopbot,
        home_assistant=home_assistant,
        laundry=laundry,
        dishwasher=dishwasher,
    )
