"""
Device capability interfaces consumed by the tool executor.

The concrete device clients (car telemetry, robot vacuums, Home Assistant,
appliance clients) live outside this package. The executor only relies on
the structural interfaces below, so any object with matching methods and
attributes can be plugged in, including test doubles.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CarCapability(Protocol):
    """Remote control and cached telemetry for the car."""

    status: dict[str, Any]
    odometer: float

    async def lock(self) -> str: ...

    async def unlock(self) -> str: ...

    async def start(self, config: dict[str, Any]) -> str: ...

    async def stop(self) -> str: ...

    async def resync(self) -> None: ...


@runtime_checkable
class RobotCapability(Protocol):
    """A robot vacuum that can be started and sent back to its base."""

    cached_status: dict[str, Any]

    async def turn_on(self) -> None: ...

    async def turn_off(self) -> None: ...


@runtime_checkable
class HomeAssistantCapability(Protocol):
    """Home Assistant REST client.

    ``get_state("")`` returns the list of all entity states; any other
    entity id returns that entity's state dict.
    """

    async def get_state(self, entity_id: str) -> Any: ...

    async def call_service(
        self, domain: str, service: str, data: dict[str, Any]
    ) -> Any: ...


class LaundryCapability(Protocol):
    """Washer and dryer status snapshot."""

    washer: Any
    dryer: Any


class DishwasherCapability(Protocol):
    """Dishwasher status snapshot."""

    dishwasher: Any


@dataclass
class HomeCapabilities:
    """Bundle of device collaborators handed to the tool executor."""

    car: CarCapability
    broombot: RobotCapability
    mopbot: RobotCapability
    home_assistant: HomeAssistantCapability
    laundry: LaundryCapability | None = None
    dishwasher: DishwasherCapability | None = None

    def robot(self, name: str) -> RobotCapability:
        """Return the robot named *name* (``"broombot"`` or anything else -> mopbot)."""
        return self.broombot if name == "broombot" else self.mopbot
