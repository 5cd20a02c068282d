# File: store.py
"""Handles persistent data storage for the FocusHearts integration.

Uses Home Assistant's Storage helper to save and load heart pools, the
transaction ledger, premium flags and sync bookkeeping so state survives
restarts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.storage import Store

from . import const

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from .type_defs import FocusHeartsStorage


class HeartsPersistenceError(HomeAssistantError):
    """Raised when the durable store rejects a save.

    Attributes:
        result: Outcome of the operation whose save failed (kept in memory)
    """

    def __init__(self, message: str, result: Any = None) -> None:
        """Initialize HeartsPersistenceError."""
        super().__init__(message)
        self.result = result


class FocusHeartsStore:
    """Thin wrapper around Home Assistant's Store API.

    Keeps an in-memory copy of the document and tracks whether it holds
    changes the disk has not seen (`dirty`).
    """

    def __init__(
        self, hass: HomeAssistant, storage_key: str = const.STORAGE_KEY
    ) -> None:
        """Initialize the store.

        Args:
            hass: Home Assistant core object.
            storage_key: Key to identify storage location (default: const.STORAGE_KEY).
        """
        self.hass = hass
        self._storage_key = storage_key
        self._store: Store = Store(hass, const.STORAGE_VERSION, storage_key)
        self._data: FocusHeartsStorage = self.get_default_structure()
        self.dirty = False

    @staticmethod
    def get_default_structure() -> FocusHeartsStorage:
        """Return canonical empty data structure for fresh installations."""
        return {
            const.DATA_META: {
                const.DATA_META_SCHEMA_VERSION: const.SCHEMA_VERSION,
            },
            const.DATA_USERS: {},
            const.DATA_TRANSACTIONS: {},
            const.DATA_PREMIUM: {},
            const.DATA_SYNC: {},
        }  # type: ignore[return-value]

    async def async_initialize(self) -> None:
        """Load data from storage during startup.

        Missing buckets in an older document are filled with empty defaults.
        """
        existing_data = await self._store.async_load()
        if existing_data is None:
            const.LOGGER.info("No existing storage found, initializing new data")
            self._data = self.get_default_structure()
            return

        default = self.get_default_structure()
        for key, value in default.items():
            existing_data.setdefault(key, value)
        self._data = existing_data
        const.LOGGER.debug(
            "Loaded storage: %d user(s), %d transaction list(s)",
            len(self._data[const.DATA_USERS]),
            len(self._data[const.DATA_TRANSACTIONS]),
        )

    @property
    def data(self) -> FocusHeartsStorage:
        """Retrieve the in-memory data cache."""
        return self._data

    def get_storage_path(self) -> str:
        """Absolute path of the storage file."""
        return self._store.path

    def set_data(self, new_data: FocusHeartsStorage) -> None:
        """Replace the entire in-memory data structure."""
        self._data = new_data
        self.dirty = True

    async def async_save(self) -> None:
        """Save the in-memory document.

        Raises:
            HeartsPersistenceError: The write failed; the document stays dirty
                in memory so the next attempt writes it again.
        """
        self.dirty = True
        try:
            await self._store.async_save(self._data)
        except (OSError, TypeError, ValueError) as err:
            const.LOGGER.error(
                "Failed to save storage to %s: %s", self._store.path, err
            )
            raise HeartsPersistenceError(f"Failed to save FocusHearts data: {err}") from err
        self.dirty = False
        const.LOGGER.debug("Data saved successfully to storage")

    async def async_save_if_dirty(self) -> bool:
        """Retry a previously failed save. Returns True when a save happened."""
        if not self.dirty:
            return False
        await self.async_save()
        return True

    async def async_clear_data(self) -> None:
        """Clear all stored data and reset to default structure."""
        const.LOGGER.warning("Clearing all FocusHearts data and resetting storage")
        self._data = self.get_default_structure()
        await self.async_save()

    async def async_remove(self) -> None:
        """Delete the storage file (config entry removal)."""
        await self._store.async_remove()
