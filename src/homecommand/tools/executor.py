"""
Tool executor for the homecommand agentic loop.

``ToolExecutor`` maps every tool name in the home catalogue to an async
handler and runs it against a ``HomeCapabilities`` bundle. Results are short
strings handed straight back to the model; read-only tools return a JSON
snapshot.

Arguments arrive already validated by the provider loop, so handlers do not
re-check them. Unknown tool names produce an ``"Unknown tool: <name>"``
result instead of raising, which lets the model recover within the
conversation.

Climate commands schedule a delayed status resync as a background task.
Resync failures are logged and never reach the model.

Typical usage::

    executor = ToolExecutor(resync_delay=5.0)
    dispatcher = executor.as_dispatcher(capabilities, timeout=30.0)
    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from homecommand.tools.capabilities import CarCapability, HomeCapabilities

logger = logging.getLogger(__name__)

# Handler signature: (arguments, capabilities) -> result string
ToolHandler = Callable[[dict[str, Any], HomeCapabilities], Awaitable[str]]

# Matches the ToolDispatcher type alias in conversation/loop.py
_DispatcherT = Callable[[str, dict[str, Any]], Awaitable[str]]

_SEAT_FIELDS = (
    ("seatFL", "driverSeat"),
    ("seatFR", "passengerSeat"),
    ("seatRL", "rearLeftSeat"),
    ("seatRR", "rearRightSeat"),
)


def _snapshot(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


class ToolExecutor:
    """Dispatches tool calls to device capabilities.

    Attributes:
        resync_delay: Seconds to wait before resyncing the car after a
            climate command.
    """

    def __init__(self, resync_delay: float = 5.0) -> None:
        self.resync_delay = resync_delay
        self._pending: set[asyncio.Task[None]] = set()
        self._handlers: dict[str, ToolHandler] = {
            "lock_car": self._lock_car,
            "unlock_car": self._unlock_car,
            "start_car": self._start_car,
            "stop_car": self._stop_car,
            "resync_car": self._resync_car,
            "start_robot": self._start_robot,
            "stop_robot": self._stop_robot,
            "list_entities": self._list_entities,
            "get_entity_state": self._get_entity_state,
            "call_ha_service": self._call_ha_service,
            "get_car_status": self._get_car_status,
            "get_robot_status": self._get_robot_status,
            "get_appliance_status": self._get_appliance_status,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def tool_names(self) -> list[str]:
        """Names this executor can dispatch."""
        return list(self._handlers)

    @property
    def pending_resyncs(self) -> set[asyncio.Task[None]]:
        """Background resync tasks that have not finished yet."""
        return set(self._pending)

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        capabilities: HomeCapabilities,
    ) -> str:
        """Run tool *name* with *arguments* and return its result string."""
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("Unknown tool requested: %r", name)
            return f"Unknown tool: {name}"
        logger.debug("Executing tool %s(%s)", name, arguments)
        return await handler(arguments, capabilities)

    def as_dispatcher(
        self,
        capabilities: HomeCapabilities,
        timeout: float | None = 30.0,
    ) -> _DispatcherT:
        """Bind *capabilities* and return an ``AgenticLoop`` dispatcher.

        Args:
            capabilities: Device collaborators for this command.
            timeout: Maximum seconds per tool call. ``None`` disables it.

        Returns:
            An async callable ``(name, args) -> str``.
        """

        async def _dispatch(name: str, args: dict[str, Any]) -> str:
            if timeout is None:
                return await self.execute(name, args, capabilities)
            return await asyncio.wait_for(
                self.execute(name, args, capabilities), timeout=timeout
            )

        return _dispatch

    async def aclose(self) -> None:
        """Cancel any resyncs that are still waiting."""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()

    # ------------------------------------------------------------------
    # Background resync
    # ------------------------------------------------------------------

    def _schedule_resync(self, car: CarCapability) -> None:
        task = asyncio.get_running_loop().create_task(self._delayed_resync(car))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _delayed_resync(self, car: CarCapability) -> None:
        await asyncio.sleep(self.resync_delay)
        try:
            await car.resync()
        except Exception as exc:
            logger.warning("Delayed car resync failed: %s", exc)

    # ------------------------------------------------------------------
    # Car
    # ------------------------------------------------------------------

    async def _lock_car(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        return await caps.car.lock()

    async def _unlock_car(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        return await caps.car.unlock()

    async def _start_car(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        config: dict[str, Any] = {}
        for key in ("temperature", "defrost", "heatedFeatures"):
            if args.get(key) is not None:
                config[key] = args[key]
        if any(args.get(arg) is not None for arg, _ in _SEAT_FIELDS):
            config["seatClimateSettings"] = {
                seat: args.get(arg) if args.get(arg) is not None else 0
                for arg, seat in _SEAT_FIELDS
            }
        result = await caps.car.start(config)
        self._schedule_resync(caps.car)
        return result

    async def _stop_car(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        result = await caps.car.stop()
        self._schedule_resync(caps.car)
        return result

    async def _resync_car(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        await caps.car.resync()
        return "Car resync initiated"

    async def _get_car_status(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        return _snapshot({"status": caps.car.status, "odometer": caps.car.odometer})

    # ------------------------------------------------------------------
    # Robots
    # ------------------------------------------------------------------

    async def _start_robot(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        robot = args.get("robot")
        await caps.robot(robot).turn_on()
        return f"{robot} started"

    async def _stop_robot(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        robot = args.get("robot")
        await caps.robot(robot).turn_off()
        return f"{robot} returning to base"

    async def _get_robot_status(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        return _snapshot(
            {
                "broombot": caps.broombot.cached_status,
                "mopbot": caps.mopbot.cached_status,
            }
        )

    # ------------------------------------------------------------------
    # Home Assistant
    # ------------------------------------------------------------------

    async def _list_entities(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        all_states = await caps.home_assistant.get_state("")
        entities = all_states if isinstance(all_states, list) else []
        domain = args.get("domain")
        if domain:
            prefix = f"{domain}."
            entities = [
                s for s in entities if str(s.get("entity_id") or "").startswith(prefix)
            ]
        result = [
            {
                "entity_id": s.get("entity_id"),
                "state": s.get("state"),
                "name": (s.get("attributes") or {}).get("friendly_name")
                or s.get("entity_id"),
            }
            for s in entities
        ]
        return _snapshot({"entities": result})

    async def _get_entity_state(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        state = await caps.home_assistant.get_state(args["entity_id"])
        return _snapshot(
            {
                "entity_id": state.get("entity_id"),
                "state": state.get("state"),
                "attributes": state.get("attributes"),
            }
        )

    async def _call_ha_service(self, args: dict[str, Any], caps: HomeCapabilities) -> str:
        extra = {k: v for k, v in args.items() if k not in ("domain", "service", "entity_id")}
        domain, service, entity_id = args["domain"], args["service"], args["entity_id"]
        service_data: dict[str, Any] = {"entity_id": entity_id}
        service_data.update({k: v for k, v in extra.items() if v is not None})
        await caps.home_assistant.call_service(domain, service, service_data)
        return f"Called {domain}.{service} on {entity_id}"

    # ------------------------------------------------------------------
    # Appliances
    # ------------------------------------------------------------------

    async def _get_appliance_status(
        self, args: dict[str, Any], caps: HomeCapabilities
    ) -> str:
        laundry = caps.laundry
        return _snapshot(
            {
                "washer": getattr(laundry, "washer", None),
                "dryer": getattr(laundry, "dryer", None),
                "dishwasher": getattr(caps.dishwasher, "dishwasher", None),
            }
        )
