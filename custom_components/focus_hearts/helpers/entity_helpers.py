# File: helpers/entity_helpers.py
"""Entity helper functions for FocusHearts.

Signal names for manager communication and unique_id construction for the
per-user entities.
"""

from __future__ import annotations

from .. import const

# ==============================================================================
# Event Signal Helpers (Manager Communication)
# ==============================================================================


def get_event_signal(entry_id: str, suffix: str) -> str:
    """Build instance-scoped event signal name for dispatcher.

    Format: 'focus_hearts_{entry_id}_{suffix}', so two config entries never
    hear each other's events.

    Args:
        entry_id: ConfigEntry.entry_id from coordinator
        suffix: Signal suffix constant from const.py (e.g., SIGNAL_SUFFIX_HEARTS_CHANGED)
    """
    return f"{const.DOMAIN}_{entry_id}_{suffix}"


# ==============================================================================
# Unique IDs
# ==============================================================================


def hearts_sensor_unique_id(entry_id: str, user_id: str) -> str:
    """Unique id of a user's hearts sensor."""
    return f"{entry_id}_{user_id}{const.SENSOR_UID_SUFFIX_HEARTS}"


def user_id_from_unique_id(entry_id: str, unique_id: str) -> str | None:
    """Recover the user id from a hearts sensor unique id, or None."""
    prefix = f"{entry_id}_"
    if not unique_id.startswith(prefix) or not unique_id.endswith(
        const.SENSOR_UID_SUFFIX_HEARTS
    ):
        return None
    return unique_id[len(prefix) : -len(const.SENSOR_UID_SUFFIX_HEARTS)] or None
