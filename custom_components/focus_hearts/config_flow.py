# File: config_flow.py
"""Config flow for the FocusHearts integration.

A single instance holds every user's heart pool. The setup step asks for the
pool settings; the options flow edits the same settings later and the entry
reloads to apply them.
"""

from __future__ import annotations

from typing import Any

from homeassistant import config_entries
from homeassistant.core import callback

from . import const
from .helpers import flow_helpers as fh


class FocusHeartsConfigFlow(config_entries.ConfigFlow, domain=const.DOMAIN):
    """Config Flow for FocusHearts."""

    VERSION = 1

    async def async_step_user(self, user_input: dict[str, Any] | None = None):
        """Collect the heart pool settings."""
        if any(self._async_current_entries()):
            return self.async_abort(reason=const.TRANS_KEY_ERROR_SINGLE_INSTANCE)

        errors: dict[str, str] = {}
        if user_input is not None:
            errors = fh.validate_settings_inputs(user_input)
            if not errors:
                return self.async_create_entry(
                    title=const.FOCUS_HEARTS_TITLE,
                    data={},
                    options=fh.build_settings_data(user_input),
                )

        return self.async_show_form(
            step_id="user",
            data_schema=fh.build_settings_schema(user_input),
            errors=errors,
        )

    @staticmethod
    @callback
    def async_get_options_flow(config_entry):
        """Return the Options Flow."""
        return FocusHeartsOptionsFlowHandler(config_entry)


class FocusHeartsOptionsFlowHandler(config_entries.OptionsFlow):
    """Options Flow for editing the heart pool settings."""

    def __init__(self, _config_entry: config_entries.ConfigEntry):
        """Initialize the options flow."""

    async def async_step_init(self, user_input: dict[str, Any] | None = None):
        """Edit settings; saving triggers a reload through the update listener."""
        errors: dict[str, str] = {}
        if user_input is not None:
            errors = fh.validate_settings_inputs(user_input)
            if not errors:
                const.LOGGER.debug("Updating FocusHearts options: %s", user_input)
                return self.async_create_entry(
                    title="", data=fh.build_settings_data(user_input)
                )

        return self.async_show_form(
            step_id="init",
            data_schema=fh.build_settings_schema(
                user_input or dict(self.config_entry.options)
            ),
            errors=errors,
        )
