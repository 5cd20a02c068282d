"""Refill Engine - scheduling and maturation of per-heart refill slots.

One slot is opened per lost heart, so a burst of three losses yields three
staggered refills (each at its own loss time + refill interval) rather than a
single batch. The scheduler does not know why a slot was opened; HeartPool and
the ledger replay decide that.

ARCHITECTURE: Pure logic with NO Home Assistant dependencies. The scheduler
wraps the slot list owned by a HeartStateData and mutates it in place.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING
import uuid

from .. import const
from ..utils.dt_utils import dt_to_iso, dt_to_utc

if TYPE_CHECKING:
    from ..type_defs import RefillSlotData


DEFAULT_REFILL_INTERVAL = timedelta(hours=const.DEFAULT_REFILL_INTERVAL_HOURS)


class RefillScheduler:
    """Owns the ordered refill slots of one heart pool.

    Insertion order is loss order. "Oldest" always means earliest inserted;
    maturation additionally orders by scheduled time.
    """

    def __init__(
        self,
        slots: list[RefillSlotData],
        refill_interval: timedelta = DEFAULT_REFILL_INTERVAL,
    ) -> None:
        """Initialize the scheduler over an existing slot list.

        Args:
            slots: The state's slot list (mutated in place)
            refill_interval: Delay between a loss and its refill
        """
        self._slots = slots
        self.refill_interval = refill_interval

    @property
    def slots(self) -> list[RefillSlotData]:
        """All slots, refilled or not, in insertion order."""
        return self._slots

    def open_slots(self) -> list[RefillSlotData]:
        """Return unrefilled slots in insertion order."""
        return [
            slot for slot in self._slots if not slot[const.DATA_SLOT_IS_REFILLED]
        ]

    @property
    def open_count(self) -> int:
        """Number of unrefilled slots."""
        return sum(
            1 for slot in self._slots if not slot[const.DATA_SLOT_IS_REFILLED]
        )

    def open_slot(self, now: datetime, slot_id: str | None = None) -> RefillSlotData:
        """Create a slot maturing at now + refill interval and append it.

        Args:
            now: Time of the loss that opened the slot
            slot_id: Deterministic id (derived from the loss transaction);
                a random UUID is used when omitted

        Returns:
            The new slot
        """
        slot: RefillSlotData = {
            const.DATA_SLOT_ID: slot_id or str(uuid.uuid4()),
            const.DATA_SLOT_SCHEDULED_TIME: dt_to_iso(now + self.refill_interval),  # type: ignore[typeddict-item]
            const.DATA_SLOT_IS_REFILLED: False,
        }
        self._slots.append(slot)
        return slot

    def consume_oldest_open_slot(self) -> RefillSlotData | None:
        """Mark the oldest unrefilled slot as refilled and return it."""
        for slot in self._slots:
            if not slot[const.DATA_SLOT_IS_REFILLED]:
                slot[const.DATA_SLOT_IS_REFILLED] = True
                return slot
        return None

    def consume_slot(self, slot_id: str) -> RefillSlotData | None:
        """Mark a specific open slot as refilled.

        Returns:
            The slot, or None if no open slot has that id (already refilled,
            cleared by a midnight reset, or never opened on this replica)
        """
        for slot in self._slots:
            if slot[const.DATA_SLOT_ID] == slot_id and not slot[const.DATA_SLOT_IS_REFILLED]:
                slot[const.DATA_SLOT_IS_REFILLED] = True
                return slot
        return None

    def due_slots(self, now: datetime) -> list[RefillSlotData]:
        """Return unrefilled slots with scheduled time <= now, oldest first."""
        due = [
            slot
            for slot in self.open_slots()
            if (scheduled := self.scheduled_time(slot)) is not None and scheduled <= now
        ]
        # sorted() is stable, so equal times keep loss order
        return sorted(due, key=lambda slot: self.scheduled_time(slot))  # type: ignore[arg-type,return-value]

    def next_refill_at(self) -> datetime | None:
        """Return the earliest scheduled time among open slots."""
        times = [
            scheduled
            for slot in self.open_slots()
            if (scheduled := self.scheduled_time(slot)) is not None
        ]
        return min(times) if times else None

    def time_until_next(self, now: datetime, premium: bool = False) -> timedelta | None:
        """Return time until the next refill, floored at zero.

        None when the pool is full (no open slots) or the user is premium.
        """
        if premium:
            return None
        next_at = self.next_refill_at()
        if next_at is None:
            return None
        return max(next_at - now, timedelta())

    def clear(self) -> int:
        """Drop every slot regardless of maturity. Returns the open count dropped."""
        dropped = self.open_count
        self._slots.clear()
        return dropped

    def prune(self) -> int:
        """Remove refilled slots. Returns the number removed."""
        before = len(self._slots)
        self._slots[:] = [
            slot for slot in self._slots if not slot[const.DATA_SLOT_IS_REFILLED]
        ]
        return before - len(self._slots)

    @staticmethod
    def scheduled_time(slot: RefillSlotData) -> datetime | None:
        """Parse a slot's scheduled refill time."""
        return dt_to_utc(slot.get(const.DATA_SLOT_SCHEDULED_TIME))
