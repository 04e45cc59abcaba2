"""
Home-automation tool catalogue.

``HOME_TOOLS`` is the fixed set of actions exposed to the model. The
``ToolExecutor`` handles exactly these names.
"""

from __future__ import annotations

from homecommand.tools.registry import ToolDefinition, ToolParameter, ToolRegistry

ROBOT_NAMES = ("broombot", "mopbot")


def _seat(position: str) -> ToolParameter:
    return ToolParameter(
        type="number",
        description=f"{position} seat heater level (0=off, 1-3)",
        minimum=0,
        maximum=3,
    )


HOME_TOOLS: list[ToolDefinition] = [
    ToolDefinition(name="lock_car", description="Lock the car doors"),
    ToolDefinition(name="unlock_car", description="Unlock the car doors"),
    ToolDefinition(
        name="start_car",
        description="Start the car climate control",
        parameters={
            "temperature": ToolParameter(
                type="number",
                description="Target temperature in Celsius (16-30)",
                minimum=16,
                maximum=30,
            ),
            "defrost": ToolParameter(
                type="boolean", description="Enable front windshield defrost"
            ),
            "heatedFeatures": ToolParameter(
                type="boolean", description="Enable heated steering wheel and mirrors"
            ),
            "seatFL": _seat("Front-left"),
            "seatFR": _seat("Front-right"),
            "seatRL": _seat("Rear-left"),
            "seatRR": _seat("Rear-right"),
        },
    ),
    ToolDefinition(name="stop_car", description="Stop the car climate control"),
    ToolDefinition(name="resync_car", description="Force a status sync from the car"),
    ToolDefinition(
        name="start_robot",
        description="Start a robot vacuum",
        parameters={
            "robot": ToolParameter(
                type="string", description="Which robot to start", enum=ROBOT_NAMES
            ),
        },
        required=("robot",),
    ),
    ToolDefinition(
        name="stop_robot",
        description="Stop a robot vacuum and return it to base",
        parameters={
            "robot": ToolParameter(
                type="string", description="Which robot to stop", enum=ROBOT_NAMES
            ),
        },
        required=("robot",),
    ),
    ToolDefinition(
        name="list_entities",
        description=(
            "List Home Assistant entities, optionally filtered by domain "
            "(light, switch, scene, climate, etc.)"
        ),
        parameters={
            "domain": ToolParameter(
                type="string",
                description=(
                    "Entity domain filter (e.g. light, switch, scene, climate). "
                    "Omit to list all."
                ),
            ),
        },
    ),
    ToolDefinition(
        name="get_entity_state",
        description="Get the current state and attributes of a Home Assistant entity",
        parameters={
            "entity_id": ToolParameter(
                type="string",
                description="Entity ID (e.g. light.bedroom, switch.porch)",
            ),
        },
        required=("entity_id",),
    ),
    ToolDefinition(
        name="call_ha_service",
        description=(
            "Call a Home Assistant service (e.g. turn on a light, toggle a switch, "
            "set climate temperature)"
        ),
        parameters={
            "domain": ToolParameter(
                type="string",
                description="Service domain (e.g. light, switch, climate, scene)",
            ),
            "service": ToolParameter(
                type="string",
                description="Service name (e.g. turn_on, turn_off, toggle)",
            ),
            "entity_id": ToolParameter(
                type="string", description="Target entity ID (e.g. light.bedroom)"
            ),
            "brightness_pct": ToolParameter(
                type="number",
                description="Brightness percentage (0-100), for lights only",
                minimum=0,
                maximum=100,
            ),
            "color_temp": ToolParameter(
                type="number", description="Color temperature in mireds, for lights only"
            ),
            "temperature": ToolParameter(
                type="number", description="Target temperature, for climate entities only"
            ),
        },
        required=("domain", "service", "entity_id"),
    ),
    ToolDefinition(
        name="get_car_status",
        description=(
            "Get the car status: battery level, EV range, doors, locks, HVAC, "
            "trunk, hood, odometer"
        ),
    ),
    ToolDefinition(
        name="get_robot_status",
        description=(
            "Get the status of robot vacuums (Broombot and Mopbot): battery, "
            "running, charging, bin full"
        ),
    ),
    ToolDefinition(
        name="get_appliance_status",
        description=(
            "Get the status of home appliances: washer, dryer (Miele), "
            "and dishwasher (HomeConnect)"
        ),
    ),
]


def default_registry() -> ToolRegistry:
    """Return a registry holding the home catalogue."""
    return ToolRegistry(HOME_TOOLS)
