# File: helpers/flow_helpers.py
"""Config and options flow helpers for FocusHearts.

Schema builders (Layer 1) and input validators (Layer 2) shared by the config
flow and the options flow, so both present the same settings form.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from homeassistant.helpers import selector
import voluptuous as vol

from .. import const

# ----------------------------------------------------------------------------------
# SETTINGS SCHEMA
# ----------------------------------------------------------------------------------


def _number_selector(minimum: int, maximum: int | None = None) -> selector.NumberSelector:
    return selector.NumberSelector(
        selector.NumberSelectorConfig(
            mode=selector.NumberSelectorMode.BOX,
            min=minimum,
            max=maximum,
            step=1,
        )
    )


def build_settings_schema(default: dict[str, Any] | None = None) -> vol.Schema:
    """Build the heart pool settings form, pre-filled from `default`."""
    default = default or {}
    return vol.Schema(
        {
            vol.Required(
                const.CONF_MAX_HEARTS,
                default=default.get(const.CONF_MAX_HEARTS, const.DEFAULT_MAX_HEARTS),
            ): _number_selector(1, 100),
            vol.Required(
                const.CONF_REFILL_INTERVAL_HOURS,
                default=default.get(
                    const.CONF_REFILL_INTERVAL_HOURS, const.DEFAULT_REFILL_INTERVAL_HOURS
                ),
            ): _number_selector(1, 24),
            vol.Required(
                const.CONF_TICK_INTERVAL_MINUTES,
                default=default.get(
                    const.CONF_TICK_INTERVAL_MINUTES, const.DEFAULT_TICK_INTERVAL_MINUTES
                ),
            ): _number_selector(1, 60),
            vol.Required(
                const.CONF_MANUAL_REFILL_DAILY_LIMIT,
                default=default.get(
                    const.CONF_MANUAL_REFILL_DAILY_LIMIT,
                    const.DEFAULT_MANUAL_REFILL_DAILY_LIMIT,
                ),
            ): _number_selector(0),
            vol.Optional(
                const.CONF_SYNC_URL,
                default=default.get(const.CONF_SYNC_URL, const.DEFAULT_SYNC_URL),
            ): selector.TextSelector(
                selector.TextSelectorConfig(type=selector.TextSelectorType.URL)
            ),
            vol.Required(
                const.CONF_SYNC_INTERVAL_MINUTES,
                default=default.get(
                    const.CONF_SYNC_INTERVAL_MINUTES, const.DEFAULT_SYNC_INTERVAL_MINUTES
                ),
            ): _number_selector(1, 1440),
            vol.Required(
                const.CONF_STRICT_INVARIANTS,
                default=default.get(
                    const.CONF_STRICT_INVARIANTS, const.DEFAULT_STRICT_INVARIANTS
                ),
            ): selector.BooleanSelector(),
        }
    )


# ----------------------------------------------------------------------------------
# VALIDATION
# ----------------------------------------------------------------------------------


def validate_sync_url(value: str) -> str:
    """Accept an empty string (sync disabled) or an absolute http(s) URL.

    Raises:
        vol.Invalid: For anything else
    """
    value = (value or "").strip()
    if not value:
        return value
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise vol.Invalid(f"Invalid sync URL: '{value}'")
    return value.rstrip("/")


def validate_settings_inputs(user_input: dict[str, Any]) -> dict[str, str]:
    """Validate the settings form.

    Returns:
        Dictionary of errors (empty if validation passes).
    """
    errors: dict[str, str] = {}
    try:
        validate_sync_url(user_input.get(const.CONF_SYNC_URL, const.DEFAULT_SYNC_URL))
    except vol.Invalid:
        errors[const.CONF_SYNC_URL] = const.TRANS_KEY_ERROR_INVALID_SYNC_URL
    return errors


def build_settings_data(user_input: dict[str, Any]) -> dict[str, Any]:
    """Normalize form input: NumberSelector yields floats, URLs lose trailing '/'."""
    return {
        const.CONF_MAX_HEARTS: int(
            user_input.get(const.CONF_MAX_HEARTS, const.DEFAULT_MAX_HEARTS)
        ),
        const.CONF_REFILL_INTERVAL_HOURS: int(
            user_input.get(
                const.CONF_REFILL_INTERVAL_HOURS, const.DEFAULT_REFILL_INTERVAL_HOURS
            )
        ),
        const.CONF_TICK_INTERVAL_MINUTES: int(
            user_input.get(
                const.CONF_TICK_INTERVAL_MINUTES, const.DEFAULT_TICK_INTERVAL_MINUTES
            )
        ),
        const.CONF_MANUAL_REFILL_DAILY_LIMIT: int(
            user_input.get(
                const.CONF_MANUAL_REFILL_DAILY_LIMIT,
                const.DEFAULT_MANUAL_REFILL_DAILY_LIMIT,
            )
        ),
        const.CONF_SYNC_URL: validate_sync_url(
            user_input.get(const.CONF_SYNC_URL, const.DEFAULT_SYNC_URL)
        ),
        const.CONF_SYNC_INTERVAL_MINUTES: int(
            user_input.get(
                const.CONF_SYNC_INTERVAL_MINUTES, const.DEFAULT_SYNC_INTERVAL_MINUTES
            )
        ),
        const.CONF_STRICT_INVARIANTS: bool(
            user_input.get(const.CONF_STRICT_INVARIANTS, const.DEFAULT_STRICT_INVARIANTS)
        ),
    }
