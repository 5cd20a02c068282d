"""Diagnostics support for FocusHearts integration.

The config entry export is the raw storage document, so it can be inspected
or restored as-is. The device export focuses on one user.
"""

from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.device_registry import DeviceEntry

from . import const
from .coordinator import FocusHeartsDataCoordinator


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry
) -> dict[str, Any]:
    """Return diagnostics for a config entry."""
    coordinator: FocusHeartsDataCoordinator = hass.data[const.DOMAIN][entry.entry_id][
        const.COORDINATOR
    ]
    return {
        "options": dict(entry.options),
        "dirty": coordinator.store.dirty,
        "storage": coordinator.store.data,
    }


async def async_get_device_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry, device: DeviceEntry
) -> dict[str, Any]:
    """Return one user's state, snapshot, ledger and sync bookkeeping."""
    coordinator: FocusHeartsDataCoordinator = hass.data[const.DOMAIN][entry.entry_id][
        const.COORDINATOR
    ]

    user_id = None
    for identifier in device.identifiers:
        if identifier[0] == const.DOMAIN:
            user_id = identifier[1]
            break

    if not user_id:
        return {"error": "Could not determine user_id from device identifiers"}

    heart_manager = coordinator.heart_manager
    state = heart_manager.get_user_state(user_id)
    if state is None:
        return {"error": f"Heart state not found for user_id: {user_id}"}

    snapshot = heart_manager.get_snapshot(user_id)
    return {
        "user_id": user_id,
        "state": state,
        "snapshot": snapshot.as_dict() if snapshot else None,
        "transactions": list(heart_manager.ledger.query(user_id)),
        "sync": coordinator.store.data[const.DATA_SYNC].get(user_id),
    }
