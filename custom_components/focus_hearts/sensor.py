# File: sensor.py
"""Sensors for the FocusHearts integration.

One UserHeartsSensor per known user. State is the number of hearts, or
"unlimited" for premium users; attributes carry the countdown to the next
refill (formatted like "3h 59m"), the streak and lifetime totals.

Users created after setup get their sensor through SIGNAL_SUFFIX_USER_ADDED.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.components.sensor import SensorEntity
from homeassistant.core import callback
from homeassistant.helpers.dispatcher import async_dispatcher_connect

from . import const
from .entity import FocusHeartsCoordinatorEntity
from .helpers.device_helpers import create_user_device_info
from .helpers.entity_helpers import get_event_signal, hearts_sensor_unique_id

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import FocusHeartsDataCoordinator
    from .managers.heart_manager import HeartSnapshot


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
) -> None:
    """Set up hearts sensors for FocusHearts integration."""
    coordinator: FocusHeartsDataCoordinator = hass.data[const.DOMAIN][entry.entry_id][
        const.COORDINATOR
    ]
    known: set[str] = set()

    @callback
    def _add_users(user_ids: list[str]) -> None:
        new_ids = [user_id for user_id in user_ids if user_id not in known]
        if not new_ids:
            return
        known.update(new_ids)
        async_add_entities(
            UserHeartsSensor(coordinator, entry, user_id) for user_id in new_ids
        )

    _add_users(coordinator.heart_manager.user_ids)

    @callback
    def _on_user_added(payload: dict[str, Any]) -> None:
        _add_users([payload["user_id"]])

    entry.async_on_unload(
        async_dispatcher_connect(
            hass,
            get_event_signal(entry.entry_id, const.SIGNAL_SUFFIX_USER_ADDED),
            _on_user_added,
        )
    )


class UserHeartsSensor(FocusHeartsCoordinatorEntity, SensorEntity):
    """Sensor for a user's heart pool."""

    _attr_has_entity_name = True
    _attr_translation_key = const.TRANS_KEY_SENSOR_HEARTS

    def __init__(
        self,
        coordinator: FocusHeartsDataCoordinator,
        entry: ConfigEntry,
        user_id: str,
    ) -> None:
        """Initialize the sensor.

        Args:
            coordinator: FocusHeartsDataCoordinator instance for data access.
            entry: ConfigEntry for this integration instance.
            user_id: Caller-supplied user id.
        """
        super().__init__(coordinator)
        self._user_id = user_id
        self._attr_unique_id = hearts_sensor_unique_id(entry.entry_id, user_id)
        self._attr_translation_placeholders = {"user_id": user_id}
        self._attr_device_info = create_user_device_info(user_id, entry)

    def _snapshot(self) -> HeartSnapshot | None:
        return self.coordinator.heart_manager.get_snapshot(self._user_id)

    @property
    def native_value(self) -> int | str | None:
        """Hearts available, or "unlimited" for premium users."""
        snapshot = self._snapshot()
        return snapshot.current_hearts if snapshot else None

    @property
    def icon(self) -> str:
        """Icon reflecting an empty, partial or unlimited pool."""
        snapshot = self._snapshot()
        if snapshot is None:
            return const.DEFAULT_HEARTS_ICON
        if snapshot.is_premium:
            return const.DEFAULT_HEARTS_UNLIMITED_ICON
        if snapshot.current_hearts == 0:
            return const.DEFAULT_HEARTS_EMPTY_ICON
        return const.DEFAULT_HEARTS_ICON

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Countdown, streak and totals."""
        snapshot = self._snapshot()
        if snapshot is None:
            return {const.ATTR_USER_ID: self._user_id}
        return {
            const.ATTR_USER_ID: self._user_id,
            const.ATTR_MAX_HEARTS: snapshot.max_hearts,
            const.ATTR_IS_PREMIUM: snapshot.is_premium,
            const.ATTR_OPEN_SLOTS: snapshot.open_slots,
            const.ATTR_NEXT_REFILL_AT: (
                snapshot.next_refill_at.isoformat() if snapshot.next_refill_at else None
            ),
            const.ATTR_NEXT_REFILL_IN: snapshot.next_refill_display,
            const.ATTR_PERFECT_STREAK: snapshot.perfect_streak_count,
            const.ATTR_TOTAL_LOST: snapshot.total_hearts_lost,
            const.ATTR_TOTAL_GAINED: snapshot.total_hearts_gained,
            const.ATTR_LAST_HEART_LOST: snapshot.last_heart_lost,
        }
