"""Shared fixtures for FocusHearts tests."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest
from homeassistant.core import HomeAssistant
from pytest_homeassistant_custom_component.common import MockConfigEntry

from custom_components.focus_hearts import const
from custom_components.focus_hearts.engines.heart_engine import HeartPool
from custom_components.focus_hearts.engines.ledger_engine import TransactionLedger
from custom_components.focus_hearts.managers.heart_manager import HeartManager
from custom_components.focus_hearts.managers.sync_manager import SyncManager
from custom_components.focus_hearts.store import FocusHeartsStore
from custom_components.focus_hearts.utils.dt_utils import FixedClock
from tests.helpers import REFILL_INTERVAL, T0, USER_ID

# pylint: disable=invalid-name
pytest_plugins = "pytest_homeassistant_custom_component"
# pylint: enable=invalid-name


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(enable_custom_integrations: Any) -> Any:
    """Enable custom integrations in tests."""
    # pylint: disable=unused-argument
    yield


# ============================================================================
# Engine fixtures (pure, no hass)
# ============================================================================


@pytest.fixture
def ledger() -> TransactionLedger:
    """Return an empty ledger."""
    return TransactionLedger({})


@pytest.fixture
def fresh_state() -> dict[str, Any]:
    """Return a full 5-heart pool created at T0."""
    return TransactionLedger.new_state(USER_ID, const.DEFAULT_MAX_HEARTS, T0)


@pytest.fixture
def pool(
    fresh_state: dict[str, Any],  # pylint: disable=redefined-outer-name
    ledger: TransactionLedger,  # pylint: disable=redefined-outer-name
) -> HeartPool:
    """Return a strict HeartPool over the fresh state."""
    return HeartPool(fresh_state, ledger, refill_interval=REFILL_INTERVAL, strict=True)


# ============================================================================
# Manager fixtures (mocked coordinator and store)
# ============================================================================


@pytest.fixture
def clock() -> FixedClock:
    """Return a clock frozen at T0 with UTC as local time."""
    return FixedClock(T0, tz=ZoneInfo("UTC"))


@pytest.fixture
def mock_hass() -> MagicMock:
    """Create mock Home Assistant instance."""
    return MagicMock()


@pytest.fixture
def mock_store() -> MagicMock:
    """Return a mock store holding the default document."""
    store = MagicMock()
    store.data = FocusHeartsStore.get_default_structure()
    store.dirty = False
    store.async_save = AsyncMock()
    store.async_save_if_dirty = AsyncMock(return_value=False)
    return store


@pytest.fixture
def mock_coordinator(mock_store: MagicMock) -> MagicMock:  # pylint: disable=redefined-outer-name
    """Return a mock coordinator exposing the settings the managers read."""
    coordinator = MagicMock()
    coordinator.config_entry.entry_id = "test-entry-123"
    coordinator.store = mock_store
    coordinator.max_hearts = const.DEFAULT_MAX_HEARTS
    coordinator.refill_interval = REFILL_INTERVAL
    coordinator.strict_invariants = True
    coordinator.manual_refill_daily_limit = 0
    return coordinator


@pytest.fixture
def heart_manager(
    mock_hass: MagicMock,  # pylint: disable=redefined-outer-name
    mock_coordinator: MagicMock,  # pylint: disable=redefined-outer-name
    clock: FixedClock,  # pylint: disable=redefined-outer-name
) -> HeartManager:
    """Create HeartManager (and its SyncManager sibling) with mocks."""
    manager = HeartManager(mock_hass, mock_coordinator, clock)
    manager.emit = MagicMock()
    sync_manager = SyncManager(mock_hass, mock_coordinator, None)
    sync_manager.emit = MagicMock()
    mock_coordinator.heart_manager = manager
    mock_coordinator.sync_manager = sync_manager
    return manager


# ============================================================================
# Integration fixtures
# ============================================================================


@pytest.fixture
def mock_config_entry() -> MockConfigEntry:
    """Return a mock config entry."""
    return MockConfigEntry(
        domain=const.DOMAIN,
        title=const.FOCUS_HEARTS_TITLE,
        data={},
        options={
            const.CONF_MAX_HEARTS: const.DEFAULT_MAX_HEARTS,
            const.CONF_REFILL_INTERVAL_HOURS: const.DEFAULT_REFILL_INTERVAL_HOURS,
            const.CONF_TICK_INTERVAL_MINUTES: const.DEFAULT_TICK_INTERVAL_MINUTES,
            const.CONF_MANUAL_REFILL_DAILY_LIMIT: 0,
            const.CONF_SYNC_URL: "",
            const.CONF_SYNC_INTERVAL_MINUTES: const.DEFAULT_SYNC_INTERVAL_MINUTES,
            const.CONF_STRICT_INVARIANTS: True,
        },
        entry_id="test_entry_id",
        unique_id="test_unique_id",
    )


@pytest.fixture
def mock_storage_data() -> dict[str, Any]:
    """Return the stored document loaded at setup."""
    return FocusHeartsStore.get_default_structure()


@pytest.fixture
async def init_integration(
    hass: HomeAssistant,
    mock_config_entry: MockConfigEntry,  # pylint: disable=redefined-outer-name
    mock_storage_data: dict[str, Any],  # pylint: disable=redefined-outer-name
) -> MockConfigEntry:
    """Set up the FocusHearts integration for testing with mocked storage."""
    mock_config_entry.add_to_hass(hass)

    # Mock the Store's async_load to return our test data
    with patch(
        "homeassistant.helpers.storage.Store.async_load",
        return_value=mock_storage_data,
    ):
        assert await hass.config_entries.async_setup(mock_config_entry.entry_id)
        await hass.async_block_till_done()

    return mock_config_entry


@pytest.fixture
def coordinator(hass: HomeAssistant, init_integration: MockConfigEntry):  # pylint: disable=redefined-outer-name
    """Return the coordinator of the loaded entry."""
    return hass.data[const.DOMAIN][init_integration.entry_id][const.COORDINATOR]
