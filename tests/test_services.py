"""Integration tests for FocusHearts services, sensors and entry lifecycle."""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

from homeassistant.config_entries import ConfigEntryState
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ServiceValidationError
from homeassistant.helpers import entity_registry as er
from homeassistant.helpers.dispatcher import async_dispatcher_connect
import pytest
from pytest_homeassistant_custom_component.common import MockConfigEntry
import voluptuous as vol

from custom_components.focus_hearts import const
from custom_components.focus_hearts.engines.ledger_engine import TransactionLedger
from custom_components.focus_hearts.helpers.entity_helpers import (
    get_event_signal,
    hearts_sensor_unique_id,
)
from custom_components.focus_hearts.store import HeartsPersistenceError
from tests.helpers import T0, USER_ID


async def _call(hass: HomeAssistant, service: str, **data: Any) -> dict[str, Any]:
    return await hass.services.async_call(
        const.DOMAIN, service, data, blocking=True, return_response=True
    )


def _sensor_state(hass: HomeAssistant, entry: MockConfigEntry, user_id: str = USER_ID):
    entity_id = er.async_get(hass).async_get_entity_id(
        "sensor", const.DOMAIN, hearts_sensor_unique_id(entry.entry_id, user_id)
    )
    assert entity_id is not None
    return hass.states.get(entity_id)


async def test_services_registered(hass: HomeAssistant, init_integration: MockConfigEntry) -> None:
    """Every service is available once the entry is loaded."""
    for service in (
        const.SERVICE_LOSE_HEART,
        const.SERVICE_GAIN_HEART,
        const.SERVICE_RECORD_PERFECT,
        const.SERVICE_COMPLETE_REFILL_ACTION,
        const.SERVICE_GET_STATE,
        const.SERVICE_CAN_START_CHALLENGE,
        const.SERVICE_PROCESS_DUE,
        const.SERVICE_SET_PREMIUM,
        const.SERVICE_SYNC_NOW,
        const.SERVICE_VERIFY_LEDGER,
    ):
        assert hass.services.has_service(const.DOMAIN, service)


async def test_lose_heart_creates_sensor(
    hass: HomeAssistant, init_integration: MockConfigEntry
) -> None:
    """The first loss creates the user, its sensor and a refill countdown."""
    response = await _call(
        hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason=const.LOSS_REASON_FOCUS_BREAK
    )
    await hass.async_block_till_done()

    assert response["applied"] is True
    assert response["current_hearts"] == 4
    assert response["next_refill_in"] == 4 * 3600
    assert response["persisted"] is True

    state = _sensor_state(hass, init_integration)
    assert state.state == "4"
    assert state.attributes[const.ATTR_OPEN_SLOTS] == 1
    assert state.attributes[const.ATTR_TOTAL_LOST] == 1


async def test_hearts_changed_signal_payload(
    hass: HomeAssistant, init_integration: MockConfigEntry, coordinator
) -> None:
    """Entry-scoped listeners receive the change as one payload dict."""
    received: list[dict[str, Any]] = []
    coordinator.heart_manager.listen(const.SIGNAL_SUFFIX_HEARTS_CHANGED, received.append)
    other_entry: list[dict[str, Any]] = []
    async_dispatcher_connect(
        hass,
        get_event_signal("other_entry", const.SIGNAL_SUFFIX_HEARTS_CHANGED),
        other_entry.append,
    )

    await _call(
        hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason=const.LOSS_REASON_WRONG_TAP
    )
    await hass.async_block_till_done()

    assert received
    assert received[-1]["current_hearts"] == 4
    assert received[-1]["user_id"] == USER_ID
    assert len(received[-1]["transaction_ids"]) == 1
    assert other_entry == []


async def test_invalid_reasons_rejected_by_schema(
    hass: HomeAssistant, init_integration: MockConfigEntry
) -> None:
    """Unknown and internal-only reasons never reach the manager."""
    with pytest.raises(vol.Invalid):
        await _call(hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason="bored")
    with pytest.raises(vol.Invalid):
        await _call(
            hass,
            const.SERVICE_GAIN_HEART,
            user_id=USER_ID,
            reason=const.GAIN_REASON_HOURLY_REFILL,
        )
    with pytest.raises(vol.Invalid):
        await _call(
            hass,
            const.SERVICE_GAIN_HEART,
            user_id=USER_ID,
            reason=const.GAIN_REASON_WATCH_TIP,
            amount=0,
        )


async def test_gain_heart_reports_clamping(
    hass: HomeAssistant, init_integration: MockConfigEntry
) -> None:
    """Hearts above the cap are reported as clamped."""
    await _call(hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason=const.LOSS_REASON_WRONG_TAP)
    response = await _call(
        hass,
        const.SERVICE_GAIN_HEART,
        user_id=USER_ID,
        reason=const.GAIN_REASON_DAILY_SESSION_COMPLETE,
        amount=3,
    )
    assert response["applied_amount"] == 1
    assert response["clamped_amount"] == 2
    assert response["current_hearts"] == 5


async def test_refill_action_and_perfect_streak(
    hass: HomeAssistant, init_integration: MockConfigEntry
) -> None:
    """Refill actions and the perfect streak both credit hearts."""
    for _ in range(2):
        await _call(
            hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason=const.LOSS_REASON_WRONG_TAP
        )
    action = await _call(
        hass,
        const.SERVICE_COMPLETE_REFILL_ACTION,
        user_id=USER_ID,
        action=const.REFILL_ACTION_WATCH_TIP,
    )
    assert action["current_hearts"] == 4

    responses = [
        await _call(hass, const.SERVICE_RECORD_PERFECT, user_id=USER_ID) for _ in range(3)
    ]
    assert [r["streak_count"] for r in responses] == [1, 2, 0]
    assert responses[-1]["bonus_granted"] is True
    assert responses[-1]["current_hearts"] == 5


async def test_get_state_and_can_start(
    hass: HomeAssistant, init_integration: MockConfigEntry
) -> None:
    """Queries create the user lazily and gate difficult challenges."""
    state = await _call(hass, const.SERVICE_GET_STATE, user_id="newcomer")
    assert state["current_hearts"] == 5
    assert state["next_refill_in"] is None
    assert state["next_refill_display"] == "0"

    for _ in range(4):
        await _call(
            hass, const.SERVICE_LOSE_HEART, user_id="newcomer", reason=const.LOSS_REASON_TEST_FAIL
        )
    gate = await _call(
        hass, const.SERVICE_CAN_START_CHALLENGE, user_id="newcomer", is_difficult=True
    )
    assert gate == {
        "can_start": False,
        "reason": const.CAN_START_REASON_NEEDS_MORE_HEARTS,
        "required": 2,
    }


async def test_premium_flip(hass: HomeAssistant, init_integration: MockConfigEntry) -> None:
    """Premium users show unlimited hearts and ignore losses."""
    response = await _call(hass, const.SERVICE_SET_PREMIUM, user_id=USER_ID, premium=True)
    await hass.async_block_till_done()
    assert response["current_hearts"] == const.UNLIMITED_HEARTS_DISPLAY
    assert response["persisted"] is True
    assert _sensor_state(hass, init_integration).state == const.UNLIMITED_HEARTS_DISPLAY

    lose = await _call(
        hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason=const.LOSS_REASON_WRONG_TAP
    )
    assert lose["applied"] is False
    assert lose["noop_reason"] == const.NOOP_REASON_PREMIUM
    assert lose["current_hearts"] == const.UNLIMITED_HEARTS_DISPLAY

    response = await _call(hass, const.SERVICE_SET_PREMIUM, user_id=USER_ID, premium=False)
    assert response["current_hearts"] == 5


async def test_verify_ledger(hass: HomeAssistant, init_integration: MockConfigEntry) -> None:
    """Replay agrees with live state; unknown users are a validation error."""
    await _call(hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason=const.LOSS_REASON_WRONG_TAP)
    report = await _call(hass, const.SERVICE_VERIFY_LEDGER, user_id=USER_ID)
    assert report["consistent"] is True
    assert report["transaction_count"] == 1
    assert isinstance(report["actual"][const.DATA_HEART_REFILL_SLOTS][0], list)

    with pytest.raises(ServiceValidationError):
        await _call(hass, const.SERVICE_VERIFY_LEDGER, user_id="ghost")


async def test_process_due_and_sync_now(
    hass: HomeAssistant, init_integration: MockConfigEntry
) -> None:
    """Nothing is due right after a loss; sync is disabled without a URL."""
    await _call(hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason=const.LOSS_REASON_WRONG_TAP)
    assert await _call(hass, const.SERVICE_PROCESS_DUE) == {"appended": 0, "persisted": True}
    sync = await _call(hass, const.SERVICE_SYNC_NOW, user_id=USER_ID)
    assert sync == {"results": [{"user_id": USER_ID, "status": "disabled"}]}


async def test_failed_save_still_applies(
    hass: HomeAssistant, init_integration: MockConfigEntry, coordinator
) -> None:
    """A storage failure is reported, not raised; the tick retries later."""
    with patch.object(
        coordinator.store, "async_save", side_effect=HeartsPersistenceError("disk full")
    ):
        response = await _call(
            hass, const.SERVICE_LOSE_HEART, user_id=USER_ID, reason=const.LOSS_REASON_WRONG_TAP
        )
    assert response["applied"] is True
    assert response["persisted"] is False
    assert coordinator.heart_manager.get_snapshot(USER_ID).current_hearts == 4


# =============================================================================
# Entry lifecycle
# =============================================================================


@pytest.fixture
def stored_user_data(mock_storage_data: dict[str, Any]) -> dict[str, Any]:
    """Storage holding one user from a previous run."""
    mock_storage_data[const.DATA_USERS][USER_ID] = TransactionLedger.new_state(
        USER_ID, const.DEFAULT_MAX_HEARTS, T0
    )
    return mock_storage_data


async def test_stored_user_gets_sensor_at_startup(
    hass: HomeAssistant, stored_user_data: dict[str, Any], init_integration: MockConfigEntry
) -> None:
    """Users from storage get their sensor without any service call."""
    assert _sensor_state(hass, init_integration).state == "5"


async def test_unload_removes_services(
    hass: HomeAssistant, init_integration: MockConfigEntry
) -> None:
    """Services disappear with the last entry."""
    assert init_integration.state is ConfigEntryState.LOADED
    assert await hass.config_entries.async_unload(init_integration.entry_id)
    await hass.async_block_till_done()
    assert init_integration.state is ConfigEntryState.NOT_LOADED
    assert not hass.services.has_service(const.DOMAIN, const.SERVICE_LOSE_HEART)
