# File: __init__.py
"""Initialization file for the FocusHearts integration.

Handles setting up the integration, including loading the config entry,
initializing data storage, and preparing the coordinator.

Key Features:
- Config entry setup and unload support.
- Coordinator initialization (timers, startup catch-up).
- Storage management for heart pools and the ledger.
"""

from __future__ import annotations

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryNotReady
from homeassistant.helpers import entity_registry as er

from . import const
from .coordinator import FocusHeartsDataCoordinator
from .helpers.entity_helpers import user_id_from_unique_id
from .services import async_setup_services, async_unload_services
from .store import FocusHeartsStore, HeartsPersistenceError


def _remove_orphaned_sensors(
    hass: HomeAssistant, entry: ConfigEntry, coordinator: FocusHeartsDataCoordinator
) -> None:
    """Drop registry entries of hearts sensors whose user no longer exists."""
    known = set(coordinator.heart_manager.user_ids)
    registry = er.async_get(hass)
    for entity_entry in er.async_entries_for_config_entry(registry, entry.entry_id):
        user_id = user_id_from_unique_id(entry.entry_id, entity_entry.unique_id)
        if user_id is not None and user_id not in known:
            const.LOGGER.info(
                "Removing orphaned hearts sensor %s (user %s)",
                entity_entry.entity_id,
                user_id,
            )
            registry.async_remove(entity_entry.entity_id)


async def _async_update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Reload after the options flow changed settings."""
    const.LOGGER.debug("Options updated, reloading FocusHearts entry %s", entry.entry_id)
    await hass.config_entries.async_reload(entry.entry_id)


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up the integration from a config entry."""
    const.LOGGER.info("Starting setup for FocusHearts entry: %s", entry.entry_id)

    # Local timezone must be known before any midnight math runs
    const.set_default_timezone(hass)

    store = FocusHeartsStore(hass, const.STORAGE_KEY)
    await store.async_initialize()

    coordinator = FocusHeartsDataCoordinator(hass, entry, store)

    # Registered before the first refresh: sensors and services read it
    hass.data.setdefault(const.DOMAIN, {})[entry.entry_id] = {
        const.COORDINATOR: coordinator,
        const.STORE: store,
    }

    try:
        await coordinator.async_config_entry_first_refresh()
    except ConfigEntryNotReady as e:
        const.LOGGER.error("Failed to refresh coordinator data: %s", e)
        hass.data[const.DOMAIN].pop(entry.entry_id, None)
        raise

    _remove_orphaned_sensors(hass, entry, coordinator)

    async_setup_services(hass)

    await hass.config_entries.async_forward_entry_setups(entry, const.PLATFORMS)

    entry.async_on_unload(entry.add_update_listener(_async_update_listener))

    const.LOGGER.info("FocusHearts setup complete for entry: %s", entry.entry_id)
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    const.LOGGER.info("Unloading FocusHearts entry: %s", entry.entry_id)

    unload_ok = await hass.config_entries.async_unload_platforms(entry, const.PLATFORMS)

    if unload_ok:
        entry_data = hass.data[const.DOMAIN].pop(entry.entry_id)
        # Last chance to flush a save that failed earlier
        store: FocusHeartsStore = entry_data[const.STORE]
        try:
            await store.async_save_if_dirty()
        except HeartsPersistenceError as err:
            const.LOGGER.error("Unsaved heart changes lost on unload: %s", err)

        if not hass.data[const.DOMAIN]:
            await async_unload_services(hass)

    return unload_ok


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Handle removal of a config entry."""
    const.LOGGER.info("Removing FocusHearts entry: %s", entry.entry_id)

    await FocusHeartsStore(hass, const.STORAGE_KEY).async_remove()

    const.LOGGER.info("FocusHearts entry data cleared: %s", entry.entry_id)
