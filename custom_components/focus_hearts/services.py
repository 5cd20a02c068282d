# File: services.py
"""Defines custom services for the FocusHearts integration.

Every service returns a response so automations and the companion app can
read the outcome. A failed save never fails a gameplay call: the change is
kept in memory, retried by the coordinator tick, and the response carries
"persisted": false.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.core import HomeAssistant, ServiceCall, ServiceResponse, SupportsResponse
from homeassistant.exceptions import HomeAssistantError, ServiceValidationError
from homeassistant.helpers import config_validation as cv
import voluptuous as vol

from . import const
from .engines.heart_engine import InvariantViolationError
from .store import HeartsPersistenceError

if TYPE_CHECKING:
    from .coordinator import FocusHeartsDataCoordinator
    from .engines.heart_engine import HeartResult


# --- Service Schemas ---
USER_SCHEMA = vol.Schema({vol.Required(const.FIELD_USER_ID): cv.string})

OPTIONAL_USER_SCHEMA = vol.Schema({vol.Optional(const.FIELD_USER_ID): cv.string})

LOSE_HEART_SCHEMA = vol.Schema(
    {
        vol.Required(const.FIELD_USER_ID): cv.string,
        vol.Required(const.FIELD_REASON): vol.In(const.LOSS_REASONS),
        vol.Optional(const.FIELD_CHALLENGE_ID): cv.string,
    }
)

GAIN_HEART_SCHEMA = vol.Schema(
    {
        vol.Required(const.FIELD_USER_ID): cv.string,
        vol.Required(const.FIELD_REASON): vol.In(const.MANUAL_GAIN_REASONS),
        vol.Optional(const.FIELD_AMOUNT, default=1): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional(const.FIELD_CHALLENGE_ID): cv.string,
    }
)

COMPLETE_REFILL_ACTION_SCHEMA = vol.Schema(
    {
        vol.Required(const.FIELD_USER_ID): cv.string,
        vol.Required(const.FIELD_ACTION): vol.In(list(const.REFILL_ACTION_GAIN_REASONS)),
    }
)

CAN_START_CHALLENGE_SCHEMA = vol.Schema(
    {
        vol.Required(const.FIELD_USER_ID): cv.string,
        vol.Optional(const.FIELD_IS_DIFFICULT, default=False): cv.boolean,
    }
)

SET_PREMIUM_SCHEMA = vol.Schema(
    {
        vol.Required(const.FIELD_USER_ID): cv.string,
        vol.Required(const.FIELD_PREMIUM): cv.boolean,
    }
)

SERVICES = (
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
)


def _get_coordinator(hass: HomeAssistant) -> FocusHeartsDataCoordinator:
    """Coordinator of the (single) loaded config entry."""
    for entry_data in hass.data.get(const.DOMAIN, {}).values():
        if const.COORDINATOR in entry_data:
            return entry_data[const.COORDINATOR]
    raise HomeAssistantError(const.ERROR_NOT_LOADED)


def _hearts_value(coordinator: FocusHeartsDataCoordinator, user_id: str, hearts: int) -> int | str:
    if coordinator.heart_manager.is_premium(user_id):
        return const.UNLIMITED_HEARTS_DISPLAY
    return hearts


def _seconds(result: HeartResult) -> int | None:
    if result.next_refill_in is None:
        return None
    return int(result.next_refill_in.total_seconds())


async def _async_run_heart_operation(
    coordinator: FocusHeartsDataCoordinator, operation: Any, *args: Any
) -> tuple[HeartResult, bool]:
    """Run a manager call, mapping failures to service errors.

    Returns:
        (result, persisted)
    """
    try:
        return await operation(*args), True
    except HeartsPersistenceError as err:
        const.LOGGER.warning("Heart change applied but not yet saved: %s", err)
        return err.result, False
    except ValueError as err:
        raise ServiceValidationError(str(err)) from err
    except InvariantViolationError as err:
        raise HomeAssistantError(str(err)) from err


def async_setup_services(hass: HomeAssistant) -> None:
    """Register FocusHearts services."""
    if hass.services.has_service(const.DOMAIN, const.SERVICE_LOSE_HEART):
        return

    async def handle_lose_heart(call: ServiceCall) -> ServiceResponse:
        """Handle a failure event."""
        coordinator = _get_coordinator(hass)
        user_id = call.data[const.FIELD_USER_ID]
        result, persisted = await _async_run_heart_operation(
            coordinator,
            coordinator.heart_manager.async_lose_heart,
            user_id,
            call.data[const.FIELD_REASON],
            call.data.get(const.FIELD_CHALLENGE_ID),
        )
        return {
            "applied": result.applied,
            "current_hearts": _hearts_value(coordinator, user_id, result.current_hearts),
            "next_refill_in": _seconds(result),
            "noop_reason": result.noop_reason,
            "persisted": persisted,
        }

    async def handle_gain_heart(call: ServiceCall) -> ServiceResponse:
        """Handle a caller-reported heart gain."""
        coordinator = _get_coordinator(hass)
        user_id = call.data[const.FIELD_USER_ID]
        result, persisted = await _async_run_heart_operation(
            coordinator,
            coordinator.heart_manager.async_gain_heart,
            user_id,
            call.data[const.FIELD_REASON],
            call.data[const.FIELD_AMOUNT],
            call.data.get(const.FIELD_CHALLENGE_ID),
        )
        return {
            "applied": result.applied,
            "applied_amount": result.applied_amount,
            "clamped_amount": result.clamped_amount,
            "current_hearts": _hearts_value(coordinator, user_id, result.current_hearts),
            "noop_reason": result.noop_reason,
            "persisted": persisted,
        }

    async def handle_record_perfect(call: ServiceCall) -> ServiceResponse:
        """Handle a perfect challenge."""
        coordinator = _get_coordinator(hass)
        user_id = call.data[const.FIELD_USER_ID]
        result, persisted = await _async_run_heart_operation(
            coordinator, coordinator.heart_manager.async_record_perfect, user_id
        )
        return {
            "streak_count": result.streak_count,
            "bonus_granted": result.bonus_granted,
            "current_hearts": _hearts_value(coordinator, user_id, result.current_hearts),
            "persisted": persisted,
        }

    async def handle_complete_refill_action(call: ServiceCall) -> ServiceResponse:
        """Handle a completed refill action (breathing exercise, tip, ...)."""
        coordinator = _get_coordinator(hass)
        user_id = call.data[const.FIELD_USER_ID]
        result, persisted = await _async_run_heart_operation(
            coordinator,
            coordinator.heart_manager.async_complete_refill_action,
            user_id,
            call.data[const.FIELD_ACTION],
        )
        return {
            "applied": result.applied,
            "applied_amount": result.applied_amount,
            "current_hearts": _hearts_value(coordinator, user_id, result.current_hearts),
            "noop_reason": result.noop_reason,
            "persisted": persisted,
        }

    async def handle_get_state(call: ServiceCall) -> ServiceResponse:
        """Return a user's snapshot (applies due maturations first)."""
        coordinator = _get_coordinator(hass)
        user_id = call.data[const.FIELD_USER_ID]
        try:
            snapshot = await coordinator.heart_manager.async_get_state(user_id)
        except HeartsPersistenceError as err:
            const.LOGGER.warning("Due maturations applied but not yet saved: %s", err)
            snapshot = coordinator.heart_manager.get_snapshot(user_id)
        return snapshot.as_dict() if snapshot else {}

    async def handle_can_start_challenge(call: ServiceCall) -> ServiceResponse:
        """Return whether the user may start a challenge."""
        coordinator = _get_coordinator(hass)
        try:
            return await coordinator.heart_manager.async_can_start_challenge(
                call.data[const.FIELD_USER_ID], call.data[const.FIELD_IS_DIFFICULT]
            )
        except HeartsPersistenceError as err:
            raise HomeAssistantError(str(err)) from err

    async def handle_process_due(call: ServiceCall) -> ServiceResponse:
        """Apply due midnight resets and refills now."""
        coordinator = _get_coordinator(hass)
        try:
            appended = await coordinator.heart_manager.async_process_due(
                call.data.get(const.FIELD_USER_ID)
            )
            persisted = True
        except HeartsPersistenceError as err:
            appended, persisted = err.result, False
        return {"appended": appended, "persisted": persisted}

    async def handle_set_premium(call: ServiceCall) -> ServiceResponse:
        """Flip a user's premium flag."""
        coordinator = _get_coordinator(hass)
        user_id = call.data[const.FIELD_USER_ID]
        persisted = True
        try:
            await coordinator.heart_manager.async_set_premium(
                user_id, call.data[const.FIELD_PREMIUM]
            )
        except HeartsPersistenceError as err:
            const.LOGGER.warning("Premium flag changed but not yet saved: %s", err)
            persisted = False
        snapshot = coordinator.heart_manager.get_snapshot(user_id)
        response = snapshot.as_dict() if snapshot else {}
        response["persisted"] = persisted
        return response

    async def handle_sync_now(call: ServiceCall) -> ServiceResponse:
        """Push, pull and reconcile now."""
        coordinator = _get_coordinator(hass)
        try:
            summaries = await coordinator.sync_manager.async_sync_all(
                call.data.get(const.FIELD_USER_ID)
            )
        except HeartsPersistenceError as err:
            raise HomeAssistantError(str(err)) from err
        return {"results": summaries}

    async def handle_verify_ledger(call: ServiceCall) -> ServiceResponse:
        """Replay a user's ledger against the live state."""
        coordinator = _get_coordinator(hass)
        user_id = call.data[const.FIELD_USER_ID]
        try:
            report = await coordinator.heart_manager.async_verify_ledger(user_id)
        except KeyError as err:
            raise ServiceValidationError(f"Unknown user '{user_id}'") from err
        report["expected"][const.DATA_HEART_REFILL_SLOTS] = [
            list(slot) for slot in report["expected"][const.DATA_HEART_REFILL_SLOTS]
        ]
        report["actual"][const.DATA_HEART_REFILL_SLOTS] = [
            list(slot) for slot in report["actual"][const.DATA_HEART_REFILL_SLOTS]
        ]
        return report

    registrations = (
        (const.SERVICE_LOSE_HEART, handle_lose_heart, LOSE_HEART_SCHEMA, SupportsResponse.OPTIONAL),
        (const.SERVICE_GAIN_HEART, handle_gain_heart, GAIN_HEART_SCHEMA, SupportsResponse.OPTIONAL),
        (const.SERVICE_RECORD_PERFECT, handle_record_perfect, USER_SCHEMA, SupportsResponse.OPTIONAL),
        (
            const.SERVICE_COMPLETE_REFILL_ACTION,
            handle_complete_refill_action,
            COMPLETE_REFILL_ACTION_SCHEMA,
            SupportsResponse.OPTIONAL,
        ),
        (const.SERVICE_GET_STATE, handle_get_state, USER_SCHEMA, SupportsResponse.ONLY),
        (
            const.SERVICE_CAN_START_CHALLENGE,
            handle_can_start_challenge,
            CAN_START_CHALLENGE_SCHEMA,
            SupportsResponse.ONLY,
        ),
        (const.SERVICE_PROCESS_DUE, handle_process_due, OPTIONAL_USER_SCHEMA, SupportsResponse.OPTIONAL),
        (const.SERVICE_SET_PREMIUM, handle_set_premium, SET_PREMIUM_SCHEMA, SupportsResponse.OPTIONAL),
        (const.SERVICE_SYNC_NOW, handle_sync_now, OPTIONAL_USER_SCHEMA, SupportsResponse.OPTIONAL),
        (const.SERVICE_VERIFY_LEDGER, handle_verify_ledger, USER_SCHEMA, SupportsResponse.ONLY),
    )
    for service, handler, schema, supports_response in registrations:
        hass.services.async_register(
            const.DOMAIN,
            service,
            handler,
            schema=schema,
            supports_response=supports_response,
        )

    const.LOGGER.info("FocusHearts services have been registered successfully")


async def async_unload_services(hass: HomeAssistant) -> None:
    """Unregister FocusHearts services when unloading the integration."""
    for service in SERVICES:
        if hass.services.has_service(const.DOMAIN, service):
            hass.services.async_remove(const.DOMAIN, service)

    const.LOGGER.info("FocusHearts services have been unregistered")
