# File: helpers/__init__.py
"""Home Assistant-bound helper functions for FocusHearts.

This module contains functions that REQUIRE Home Assistant dependencies.

NOTE: Functions that need `hass` object belong here, NOT in utils/.

Submodules:
    - entity_helpers: Event signal names, unique_id construction
    - device_helpers: DeviceInfo construction
    - flow_helpers: Config/options flow schemas and validators
"""

from . import device_helpers, entity_helpers, flow_helpers

__all__ = ["device_helpers", "entity_helpers", "flow_helpers"]
