# File: helpers/device_helpers.py
"""Device registry helper functions for FocusHearts."""

from __future__ import annotations

from typing import TYPE_CHECKING

from homeassistant.helpers.device_registry import DeviceEntryType, DeviceInfo

from .. import const

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry


def create_user_device_info(user_id: str, config_entry: ConfigEntry) -> DeviceInfo:
    """Create device info grouping a user's entities.

    Args:
        user_id: Caller-supplied user id
        config_entry: Config entry for this integration instance
    """
    return DeviceInfo(
        identifiers={(const.DOMAIN, user_id)},
        name=f"{user_id} ({config_entry.title})",
        manufacturer=const.FOCUS_HEARTS_TITLE,
        model="Heart Pool",
        entry_type=DeviceEntryType.SERVICE,
    )
