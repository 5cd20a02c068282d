# File: coordinator.py
"""Coordinator for the FocusHearts integration.

Owns the store, the managers and the timers:
- a periodic tick (tick interval option) that matures due refills and retries
  failed saves
- a daily callback at local midnight, plus a catch-up at startup for a
  midnight crossed while Home Assistant was down
- an optional sync interval when a remote URL is configured
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from homeassistant.helpers.event import async_track_time_change, async_track_time_interval
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator

from . import const
from .managers.heart_manager import HeartManager
from .managers.sync_manager import SyncManager
from .remote import RemoteLedgerClient
from .store import HeartsPersistenceError
from .utils.dt_utils import Clock

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant

    from .store import FocusHeartsStore


class FocusHeartsDataCoordinator(DataUpdateCoordinator):
    """Coordinator for FocusHearts.

    `data` maps user id to HeartSnapshot and is refreshed on every tick and
    after every change announced by the managers.
    """

    config_entry: ConfigEntry

    def __init__(
        self,
        hass: HomeAssistant,
        config_entry: ConfigEntry,
        store: FocusHeartsStore,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the FocusHeartsDataCoordinator."""
        tick_minutes = config_entry.options.get(
            const.CONF_TICK_INTERVAL_MINUTES, const.DEFAULT_TICK_INTERVAL_MINUTES
        )
        super().__init__(
            hass,
            const.LOGGER,
            config_entry=config_entry,
            name=f"{const.DOMAIN}{const.COORDINATOR_SUFFIX}",
            update_interval=timedelta(minutes=tick_minutes),
        )
        self.store = store
        sync_url = self._option(const.CONF_SYNC_URL, const.DEFAULT_SYNC_URL)
        self.heart_manager = HeartManager(hass, self, clock)
        self.sync_manager = SyncManager(
            hass, self, RemoteLedgerClient(hass, sync_url) if sync_url else None
        )

    # -------------------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------------------

    def _option(self, key: str, default: Any) -> Any:
        return self.config_entry.options.get(key, self.config_entry.data.get(key, default))

    @property
    def max_hearts(self) -> int:
        """Capacity given to newly created users."""
        return int(self._option(const.CONF_MAX_HEARTS, const.DEFAULT_MAX_HEARTS))

    @property
    def refill_interval(self) -> timedelta:
        """Delay between a loss and its refill."""
        return timedelta(
            hours=self._option(
                const.CONF_REFILL_INTERVAL_HOURS, const.DEFAULT_REFILL_INTERVAL_HOURS
            )
        )

    @property
    def strict_invariants(self) -> bool:
        """Raise on invariant breaches instead of repairing."""
        return bool(
            self._option(const.CONF_STRICT_INVARIANTS, const.DEFAULT_STRICT_INVARIANTS)
        )

    @property
    def manual_refill_daily_limit(self) -> int:
        """Refill actions allowed per local day (0 = unlimited)."""
        return int(
            self._option(
                const.CONF_MANUAL_REFILL_DAILY_LIMIT,
                const.DEFAULT_MANUAL_REFILL_DAILY_LIMIT,
            )
        )

    @property
    def sync_interval(self) -> timedelta:
        """Time between opportunistic syncs."""
        return timedelta(
            minutes=self._option(
                const.CONF_SYNC_INTERVAL_MINUTES, const.DEFAULT_SYNC_INTERVAL_MINUTES
            )
        )

    # -------------------------------------------------------------------------------------
    # Periodic + First Refresh
    # -------------------------------------------------------------------------------------

    def _snapshots(self) -> dict[str, Any]:
        return {
            user_id: self.heart_manager.get_snapshot(user_id)
            for user_id in self.heart_manager.user_ids
        }

    async def _async_update_data(self) -> dict[str, Any]:
        """Periodic tick: retry a failed save, then mature due refills."""
        try:
            await self.store.async_save_if_dirty()
            await self.heart_manager.async_process_due()
        except HeartsPersistenceError as err:
            const.LOGGER.warning("Tick could not persist heart state, will retry: %s", err)
        return self._snapshots()

    async def async_config_entry_first_refresh(self) -> None:
        """Set up managers, catch up on missed events and register timers."""
        await self.heart_manager.async_setup()
        await self.sync_manager.async_setup()

        # Managers announce changes; entities follow without waiting for a tick
        self.heart_manager.listen(
            const.SIGNAL_SUFFIX_HEARTS_CHANGED, self._on_hearts_changed
        )

        # Startup catch-up: midnight first, then scheduled refills
        try:
            await self.heart_manager.async_process_due()
        except HeartsPersistenceError as err:
            const.LOGGER.warning("Startup catch-up could not persist: %s", err)

        self.config_entry.async_on_unload(
            async_track_time_change(
                self.hass, self._async_handle_midnight, **const.DEFAULT_DAILY_RESET_TIME
            )
        )
        if self.sync_manager.remote is not None:
            self.config_entry.async_on_unload(
                async_track_time_interval(
                    self.hass, self._async_handle_sync_interval, self.sync_interval
                )
            )

        await super().async_config_entry_first_refresh()

    def _on_hearts_changed(self, payload: dict[str, Any]) -> None:
        """Publish fresh snapshots after any manager change."""
        self.async_set_updated_data(self._snapshots())

    async def _async_handle_midnight(self, now: datetime) -> None:
        """Daily reset at local midnight."""
        const.LOGGER.debug("Midnight rollover at %s", now)
        try:
            await self.heart_manager.async_process_due()
        except HeartsPersistenceError as err:
            const.LOGGER.warning("Midnight reset could not persist, will retry: %s", err)
        self.async_set_updated_data(self._snapshots())

    async def _async_handle_sync_interval(self, now: datetime) -> None:
        """Opportunistic background sync."""
        try:
            await self.sync_manager.async_sync_all()
        except HeartsPersistenceError as err:
            const.LOGGER.warning("Sync result could not persist, will retry: %s", err)
