"""Shared plumbing for FocusHearts managers: storage access and entry-scoped signals."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.helpers.dispatcher import (
    async_dispatcher_connect,
    async_dispatcher_send,
)

from .. import const
from ..helpers.entity_helpers import get_event_signal

if TYPE_CHECKING:
    from collections.abc import Callable

    from homeassistant.core import HomeAssistant

    from ..coordinator import FocusHeartsDataCoordinator


class BaseManager:
    """Base class for HeartManager and SyncManager.

    Signals are scoped to the config entry, and listeners registered through
    listen() are dropped when the entry unloads.
    """

    def __init__(
        self, hass: HomeAssistant, coordinator: FocusHeartsDataCoordinator
    ) -> None:
        self.hass = hass
        self.coordinator = coordinator
        self.entry_id = coordinator.config_entry.entry_id

    @property
    def _data(self) -> dict[str, Any]:
        """The in-memory storage document shared by every manager."""
        return self.coordinator.store.data  # type: ignore[return-value]

    async def async_setup(self) -> None:
        """Prepare the manager once the store is loaded."""

    def emit(self, suffix: str, **payload: Any) -> None:
        """Send a hearts signal; listeners receive the payload as one dict.

        Example:
            self.emit(
                const.SIGNAL_SUFFIX_HEARTS_CHANGED,
                user_id=user_id,
                current_hearts=4,
                transaction_ids=[tx_id],
            )
        """
        const.LOGGER.debug(
            "Signal '%s' for user %s", suffix, payload.get("user_id", "-")
        )
        async_dispatcher_send(self.hass, get_event_signal(self.entry_id, suffix), payload)

    def listen(self, suffix: str, callback: Callable[..., Any]) -> None:
        """Subscribe to a hearts signal until the config entry unloads."""
        unsub = async_dispatcher_connect(
            self.hass, get_event_signal(self.entry_id, suffix), callback
        )
        self.coordinator.config_entry.async_on_unload(unsub)
