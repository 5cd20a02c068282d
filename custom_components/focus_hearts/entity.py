"""Base entity classes for FocusHearts integration."""

from __future__ import annotations

from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .coordinator import FocusHeartsDataCoordinator


class FocusHeartsCoordinatorEntity(CoordinatorEntity[FocusHeartsDataCoordinator]):
    """Base entity class for FocusHearts sensors with typed coordinator access."""

    @property
    def coordinator(self) -> FocusHeartsDataCoordinator:
        """Return typed coordinator.

        Reads the private _coordinator attribute set by CoordinatorEntity so
        type checkers see the concrete coordinator class.
        """
        return object.__getattribute__(self, "_coordinator")

    @coordinator.setter
    def coordinator(self, value: FocusHeartsDataCoordinator) -> None:
        """Set coordinator with proper typing."""
        object.__setattr__(self, "_coordinator", value)
