"""Heart Engine - the capped heart pool state machine.

HeartPool owns the transitions of one user's HeartStateData:
- lose_heart / gain_heart / record_perfect (gameplay signals)
- apply_midnight_reset / apply_due_refills (time-driven regeneration)
- time_until_next (pure countdown query)

Every applied transition appends exactly the transaction(s) that describe it
to the TransactionLedger BEFORE mutating state, so a duplicate append (the
event was already ledgered elsewhere) leaves state untouched.

ARCHITECTURE: Pure logic with NO Home Assistant dependencies. Callers pass
`now`; the pool never reads the time itself, never persists and never
retries I/O. Local events are stamped strictly after the user's latest
record so replay applies them in call order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from .. import const
from ..utils.dt_utils import Clock, dt_to_iso, dt_to_utc, local_date_key
from .ledger_engine import (
    AppendOutcome,
    TransactionLedger,
    derive_midnight_reset_id,
    derive_refill_id,
    derive_slot_id,
)
from .refill_engine import DEFAULT_REFILL_INTERVAL, RefillScheduler

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ..type_defs import HeartStateData, HeartTransactionData


class InvariantViolationError(Exception):
    """Raised in strict mode when a heart count leaves its legal range.

    Attributes:
        user_id: Owner of the pool
        field_name: Name of the offending field
        value: Observed value
    """

    def __init__(self, user_id: str, field_name: str, value: int, detail: str) -> None:
        """Initialize InvariantViolationError."""
        self.user_id = user_id
        self.field_name = field_name
        self.value = value
        super().__init__(f"Heart invariant violated for user {user_id}: {detail}")


@dataclass(frozen=True)
class HeartResult:
    """Outcome of one HeartPool operation.

    Attributes:
        applied: Whether state changed
        current_hearts: Hearts after the operation
        transactions: Transactions appended by the operation
        noop_reason: Why nothing happened (const.NOOP_REASON_*), None if applied
        applied_amount: Hearts credited (gain paths)
        clamped_amount: Requested hearts discarded at the cap (gain paths)
        next_refill_in: Countdown to the next slot maturation
        streak_count: Perfect streak after the operation
        bonus_granted: Whether a perfect streak bonus heart was credited
    """

    applied: bool
    current_hearts: int
    transactions: tuple[HeartTransactionData, ...] = ()
    noop_reason: str | None = None
    applied_amount: int = 0
    clamped_amount: int = 0
    next_refill_in: timedelta | None = None
    streak_count: int = 0
    bonus_granted: bool = False


@dataclass
class PremiumOverride:
    """Per-user premium predicate over the stored flag mapping."""

    flags: Mapping[str, bool] = field(default_factory=dict)

    def is_premium(self, user_id: str) -> bool:
        """Return True when the user is exempt from the capped model."""
        return bool(self.flags.get(user_id, False))


class HeartPool:
    """State machine over one user's heart pool."""

    def __init__(
        self,
        state: HeartStateData,
        ledger: TransactionLedger,
        *,
        premium: PremiumOverride | None = None,
        refill_interval: timedelta = DEFAULT_REFILL_INTERVAL,
        strict: bool = False,
    ) -> None:
        """Initialize the pool.

        Args:
            state: The user's state (mutated in place)
            ledger: Ledger receiving the transactions of applied operations
            premium: Premium predicate (defaults to nobody premium)
            refill_interval: Delay between a loss and its refill
            strict: Raise InvariantViolationError instead of clamping
        """
        self.state = state
        self.ledger = ledger
        self.premium = premium or PremiumOverride()
        self.strict = strict
        self.scheduler = RefillScheduler(
            state[const.DATA_HEART_REFILL_SLOTS], refill_interval
        )

    @property
    def user_id(self) -> str:
        """Owner of the pool."""
        return self.state[const.DATA_HEART_USER_ID]

    @property
    def is_premium(self) -> bool:
        """Whether the owner currently has premium."""
        return self.premium.is_premium(self.user_id)

    @property
    def current_hearts(self) -> int:
        """Hearts currently available."""
        return self.state[const.DATA_HEART_CURRENT]

    @property
    def max_hearts(self) -> int:
        """Pool capacity."""
        return self.state[const.DATA_HEART_MAX]

    def noop(self, reason: str, **kwargs) -> HeartResult:
        """Result for an operation that changed nothing."""
        return HeartResult(
            applied=False,
            current_hearts=self.current_hearts,
            noop_reason=reason,
            streak_count=self.state[const.DATA_HEART_PERFECT_STREAK],
            **kwargs,
        )

    def _append(self, tx: HeartTransactionData) -> bool:
        """Append to the ledger; False when the id was already present."""
        return self.ledger.append(tx) is AppendOutcome.APPENDED

    # -------------------------------------------------------------------------
    # Gameplay signals
    # -------------------------------------------------------------------------

    def lose_heart(
        self, reason: str, now: datetime, challenge_id: str | None = None
    ) -> HeartResult:
        """Remove one heart and schedule its refill.

        NoOp (no transaction) for premium users and for an empty pool.

        Raises:
            ValueError: Unknown loss reason
        """
        if reason not in const.LOSS_REASONS:
            raise ValueError(const.ERROR_UNKNOWN_REASON_FMT.format(reason))
        if self.is_premium:
            return self.noop(const.NOOP_REASON_PREMIUM)
        if self.current_hearts <= 0:
            return self.noop(const.NOOP_REASON_EMPTY)

        at = self.ledger.next_local_timestamp(self.user_id, now)
        tx = TransactionLedger.create_transaction(
            user_id=self.user_id,
            tx_type=const.TX_TYPE_LOSS,
            amount=1,
            reason=reason,
            timestamp=at,
            challenge_id=challenge_id,
        )
        if not self._append(tx):
            return self.noop(const.NOOP_REASON_DUPLICATE)

        self.state[const.DATA_HEART_CURRENT] = self.current_hearts - 1
        self.state[const.DATA_HEART_LAST_LOST] = dt_to_iso(at)
        self.state[const.DATA_HEART_TOTAL_LOST] += 1
        self.state[const.DATA_HEART_PERFECT_STREAK] = 0
        self.scheduler.open_slot(at, derive_slot_id(tx[const.DATA_TX_ID]))
        self.check_invariants(now)

        const.LOGGER.debug(
            "HeartPool: user %s lost a heart (%s), %d/%d left",
            self.user_id,
            reason,
            self.current_hearts,
            self.max_hearts,
        )
        return HeartResult(
            applied=True,
            current_hearts=self.current_hearts,
            transactions=(tx,),
            next_refill_in=self.time_until_next(now),
            streak_count=0,
        )

    def gain_heart(
        self,
        reason: str,
        now: datetime,
        amount: int = 1,
        challenge_id: str | None = None,
    ) -> HeartResult:
        """Credit hearts up to the cap, consuming the oldest open slots.

        The part of `amount` that would overflow the cap is reported as
        clamped_amount and is not ledgered. A gain that credits nothing
        appends nothing.

        Raises:
            ValueError: Unknown or internal-only reason, or amount < 1
        """
        if reason not in const.GAIN_REASONS or reason in (
            const.GAIN_REASON_MIDNIGHT_RESET,
            const.GAIN_REASON_HOURLY_REFILL,
        ):
            raise ValueError(const.ERROR_UNKNOWN_REASON_FMT.format(reason))
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise ValueError(f"Heart amount must be a positive integer, got {amount!r}")
        if self.is_premium:
            return self.noop(const.NOOP_REASON_PREMIUM)

        credit = min(amount, max(self.max_hearts - self.current_hearts, 0))
        clamped = amount - credit
        if credit == 0:
            return self.noop(const.NOOP_REASON_FULL, clamped_amount=clamped)

        tx = TransactionLedger.create_transaction(
            user_id=self.user_id,
            tx_type=const.TX_TYPE_GAIN,
            amount=credit,
            reason=reason,
            timestamp=self.ledger.next_local_timestamp(self.user_id, now),
            challenge_id=challenge_id,
        )
        if not self._append(tx):
            return self.noop(const.NOOP_REASON_DUPLICATE)

        for _ in range(credit):
            self.scheduler.consume_oldest_open_slot()
        self.scheduler.prune()
        self.state[const.DATA_HEART_CURRENT] = self.current_hearts + credit
        self.state[const.DATA_HEART_TOTAL_GAINED] += credit
        self.check_invariants(now)

        const.LOGGER.debug(
            "HeartPool: user %s gained %d heart(s) (%s), %d clamped, now %d/%d",
            self.user_id,
            credit,
            reason,
            clamped,
            self.current_hearts,
            self.max_hearts,
        )
        return HeartResult(
            applied=True,
            current_hearts=self.current_hearts,
            transactions=(tx,),
            applied_amount=credit,
            clamped_amount=clamped,
            next_refill_in=self.time_until_next(now),
            streak_count=self.state[const.DATA_HEART_PERFECT_STREAK],
        )

    def record_perfect(self, now: datetime) -> HeartResult:
        """Count a perfect challenge; every third in a row grants a heart.

        The streak resets after the bonus attempt even when the pool is full,
        so the bonus re-triggers every three perfects.
        """
        if self.is_premium:
            return self.noop(const.NOOP_REASON_PREMIUM)

        streak = self.state[const.DATA_HEART_PERFECT_STREAK] + 1
        self.state[const.DATA_HEART_PERFECT_STREAK] = streak
        if streak < const.PERFECT_STREAK_BONUS_THRESHOLD:
            return HeartResult(
                applied=True,
                current_hearts=self.current_hearts,
                streak_count=streak,
            )

        bonus = self.gain_heart(const.GAIN_REASON_PERFECT_STREAK_3, now)
        self.state[const.DATA_HEART_PERFECT_STREAK] = 0
        return HeartResult(
            applied=True,
            current_hearts=self.current_hearts,
            transactions=bonus.transactions,
            applied_amount=bonus.applied_amount,
            clamped_amount=bonus.clamped_amount,
            next_refill_in=bonus.next_refill_in,
            streak_count=0,
            bonus_granted=bonus.applied,
        )

    # -------------------------------------------------------------------------
    # Time-driven regeneration
    # -------------------------------------------------------------------------

    def apply_midnight_reset(self, now: datetime, clock: Clock | None = None) -> HeartResult:
        """Refill to max once per local calendar day.

        The clock supplies the local-midnight boundary (its now() is not read).
        The transaction is stamped at that boundary and its id derives from the
        local date, so replicas resetting the same day agree. A reset with no
        deficit only records that the day was handled.
        """
        if self.is_premium:
            return self.noop(const.NOOP_REASON_PREMIUM)
        last_reset = dt_to_utc(self.state[const.DATA_HEART_LAST_MIDNIGHT_RESET])
        clock = clock or Clock()
        if not clock.has_crossed_midnight(last_reset, now):
            return self.noop(const.NOOP_REASON_NO_MIDNIGHT)

        deficit = max(self.max_hearts - self.current_hearts, 0)
        transactions: tuple[HeartTransactionData, ...] = ()
        if deficit:
            tx = TransactionLedger.create_transaction(
                user_id=self.user_id,
                tx_type=const.TX_TYPE_GAIN,
                amount=deficit,
                reason=const.GAIN_REASON_MIDNIGHT_RESET,
                timestamp=clock.local_midnight(now),
                tx_id=derive_midnight_reset_id(
                    self.user_id, local_date_key(now, clock.timezone)
                ),
            )
            if self._append(tx):
                transactions = (tx,)
                self.scheduler.clear()
                self.state[const.DATA_HEART_CURRENT] = self.max_hearts
                self.state[const.DATA_HEART_TOTAL_GAINED] += deficit

        self.state[const.DATA_HEART_LAST_MIDNIGHT_RESET] = dt_to_iso(now)
        self.check_invariants(now)
        const.LOGGER.debug(
            "HeartPool: midnight reset for user %s restored %d heart(s)",
            self.user_id,
            deficit if transactions else 0,
        )
        return HeartResult(
            applied=True,
            current_hearts=self.current_hearts,
            transactions=transactions,
            applied_amount=deficit if transactions else 0,
            streak_count=self.state[const.DATA_HEART_PERFECT_STREAK],
        )

    def apply_due_refills(self, now: datetime) -> HeartResult:
        """Mature every slot scheduled at or before now, oldest first.

        Each slot yields one `refill` transaction stamped at the slot's
        scheduled time, not at `now`.
        """
        if self.is_premium:
            return self.noop(const.NOOP_REASON_PREMIUM)

        appended: list[HeartTransactionData] = []
        for slot in self.scheduler.due_slots(now):
            if self.current_hearts >= self.max_hearts:
                break
            slot_id = slot[const.DATA_SLOT_ID]
            scheduled = RefillScheduler.scheduled_time(slot)
            tx = TransactionLedger.create_transaction(
                user_id=self.user_id,
                tx_type=const.TX_TYPE_REFILL,
                amount=1,
                reason=const.GAIN_REASON_HOURLY_REFILL,
                timestamp=scheduled or now,
                tx_id=derive_refill_id(self.user_id, slot_id),
                slot_id=slot_id,
            )
            if not self._append(tx):
                continue
            self.scheduler.consume_slot(slot_id)
            self.state[const.DATA_HEART_CURRENT] = self.current_hearts + 1
            self.state[const.DATA_HEART_TOTAL_GAINED] += 1
            appended.append(tx)

        self.scheduler.prune()
        if appended:
            self.check_invariants(now)
            const.LOGGER.debug(
                "HeartPool: %d refill(s) matured for user %s, now %d/%d",
                len(appended),
                self.user_id,
                self.current_hearts,
                self.max_hearts,
            )
        return HeartResult(
            applied=bool(appended),
            current_hearts=self.current_hearts,
            transactions=tuple(appended),
            applied_amount=len(appended),
            next_refill_in=self.time_until_next(now),
            streak_count=self.state[const.DATA_HEART_PERFECT_STREAK],
        )

    def time_until_next(self, now: datetime) -> timedelta | None:
        """Countdown to the next maturation; None when full or premium."""
        return self.scheduler.time_until_next(now, premium=self.is_premium)

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def _violation(self, field_name: str, value: int, detail: str) -> None:
        if self.strict:
            raise InvariantViolationError(self.user_id, field_name, value, detail)
        const.LOGGER.error(
            "HeartPool: invariant violated for user %s (%s), repairing", self.user_id, detail
        )

    def check_invariants(self, now: datetime | None = None) -> None:
        """Verify the pool is within bounds; raise (strict) or repair (production).

        Bounds: 0 <= current <= max, counters >= 0, and the open slot count
        equals max - current.
        """
        current = self.current_hearts
        if current < 0 or current > self.max_hearts:
            self._violation(
                const.DATA_HEART_CURRENT,
                current,
                f"current_hearts={current} outside 0..{self.max_hearts}",
            )
            self.state[const.DATA_HEART_CURRENT] = min(max(current, 0), self.max_hearts)

        for counter in (
            const.DATA_HEART_PERFECT_STREAK,
            const.DATA_HEART_TOTAL_LOST,
            const.DATA_HEART_TOTAL_GAINED,
        ):
            value = self.state[counter]
            if value < 0:
                self._violation(counter, value, f"{counter}={value} is negative")
                self.state[counter] = 0

        deficit = self.max_hearts - self.current_hearts
        open_slots = self.scheduler.open_slots()
        if len(open_slots) == deficit:
            return
        self._violation(
            const.DATA_HEART_REFILL_SLOTS,
            len(open_slots),
            f"{len(open_slots)} open slot(s) for a deficit of {deficit}",
        )
        # Drop the newest surplus slots, or schedule the missing ones from now
        for slot in open_slots[deficit:]:
            slot[const.DATA_SLOT_IS_REFILLED] = True
        self.scheduler.prune()
        if now is not None:
            for _ in range(deficit - len(open_slots)):
                self.scheduler.open_slot(now)
