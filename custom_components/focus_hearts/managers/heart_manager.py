"""Heart Manager - Per-user orchestration of heart pools.

This manager is the public API of the integration:
- lose / gain / record_perfect / complete_refill_action gameplay signals
- can_start_challenge and snapshot queries
- process_due (midnight reset + matured refills), idempotent
- premium flag flips and ledger verification

ARCHITECTURE:
- HeartManager = STATEFUL orchestration (locks, persistence, events)
- HeartPool / TransactionLedger = pure transitions and replay (STATELESS engines)

Concurrency: one asyncio.Lock per user. Operations on one user are
serialized; different users proceed in parallel. Due maturations are applied
lazily before every operation so the ledger stays chronological.

Persistence: the in-memory document is authoritative. When a save fails the
state stays applied, the store stays dirty for the coordinator tick to retry,
and HeartsPersistenceError (carrying the operation result) reaches the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from .. import const
from ..engines.heart_engine import HeartPool, HeartResult, PremiumOverride
from ..engines.ledger_engine import TransactionLedger
from ..store import HeartsPersistenceError
from ..utils.dt_utils import (
    Clock,
    dt_format_duration,
    dt_to_iso,
    dt_to_utc,
)
from .base_manager import BaseManager

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from homeassistant.core import HomeAssistant

    from ..coordinator import FocusHeartsDataCoordinator
    from ..type_defs import HeartStateData, HeartTransactionData


__all__ = ["HeartManager", "HeartSnapshot", "HeartsPersistenceError"]


@dataclass(frozen=True)
class HeartSnapshot:
    """Immutable view of one user's pool at an instant.

    current_hearts is const.UNLIMITED_HEARTS_DISPLAY for premium users.
    """

    user_id: str
    current_hearts: int | str
    max_hearts: int
    is_premium: bool
    open_slots: int
    next_refill_at: datetime | None
    next_refill_in: timedelta | None
    perfect_streak_count: int
    total_hearts_lost: int
    total_hearts_gained: int
    last_heart_lost: str | None
    last_midnight_reset: str | None

    @property
    def next_refill_display(self) -> str:
        """Countdown formatted like "3h 59m"."""
        return dt_format_duration(self.next_refill_in)

    def as_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for service responses and diagnostics."""
        data = asdict(self)
        data["next_refill_at"] = dt_to_iso(self.next_refill_at)
        data["next_refill_in"] = (
            int(self.next_refill_in.total_seconds())
            if self.next_refill_in is not None
            else None
        )
        data["next_refill_display"] = self.next_refill_display
        return data


class HeartManager(BaseManager):
    """Manager for heart pools, the ledger and their time-driven maintenance.

    Responsibilities:
    - Lazily create users on first touch (full pool)
    - Serialize each user's operations behind a per-user lock
    - Apply due midnight resets and refills before each operation
    - Persist after every change and emit SIGNAL_SUFFIX_HEARTS_CHANGED

    NOT responsible for:
    - Transition rules (HeartPool)
    - Remote sync (SyncManager)
    """

    def __init__(
        self,
        hass: HomeAssistant,
        coordinator: FocusHeartsDataCoordinator,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the HeartManager.

        Args:
            hass: Home Assistant instance
            coordinator: The main FocusHearts coordinator
            clock: Time source (tests inject a FixedClock)
        """
        super().__init__(hass, coordinator)
        self.clock = clock or Clock()
        self._locks: dict[str, asyncio.Lock] = {}
        self._ledger: TransactionLedger | None = None
        self._ledger_source: Any = None

    async def async_setup(self) -> None:
        """Set up the HeartManager."""
        const.LOGGER.debug(
            "HeartManager ready with %d user(s)", len(self._data[const.DATA_USERS])
        )

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def ledger(self) -> TransactionLedger:
        """Ledger over the stored transactions (rebuilt if storage was replaced)."""
        transactions = self._data[const.DATA_TRANSACTIONS]
        if self._ledger is None or self._ledger_source is not transactions:
            self._ledger = TransactionLedger(transactions)
            self._ledger_source = transactions
        return self._ledger

    @property
    def premium(self) -> PremiumOverride:
        """Premium predicate over the stored flags."""
        return PremiumOverride(self._data[const.DATA_PREMIUM])

    @property
    def user_ids(self) -> list[str]:
        """Known users in creation order."""
        return list(self._data[const.DATA_USERS])

    def lock(self, user_id: str) -> asyncio.Lock:
        """Per-user lock (created on first use)."""
        return self._locks.setdefault(user_id, asyncio.Lock())

    def is_premium(self, user_id: str) -> bool:
        """Whether the user is currently premium."""
        return self.premium.is_premium(user_id)

    def get_user_state(self, user_id: str) -> HeartStateData | None:
        """Stored state of a user, or None if never touched."""
        return self._data[const.DATA_USERS].get(user_id)

    def ensure_user(self, user_id: str, now: datetime) -> tuple[HeartStateData, bool]:
        users = self._data[const.DATA_USERS]
        state = users.get(user_id)
        if state is not None:
            return state, False
        state = TransactionLedger.new_state(user_id, self.coordinator.max_hearts, now)
        users[user_id] = state
        const.LOGGER.info("Created heart pool for user %s", user_id)
        return state, True

    def _pool(self, state: HeartStateData) -> HeartPool:
        return HeartPool(
            state,
            self.ledger,
            premium=self.premium,
            refill_interval=self.coordinator.refill_interval,
            strict=self.coordinator.strict_invariants,
        )

    def _apply_due(self, pool: HeartPool, now: datetime) -> tuple[bool, list[HeartTransactionData]]:
        """Midnight reset first, then matured refills."""
        midnight = pool.apply_midnight_reset(now, self.clock)
        refills = pool.apply_due_refills(now)
        transactions = [*midnight.transactions, *refills.transactions]
        return midnight.applied or refills.applied, transactions

    async def _async_commit(
        self,
        user_id: str,
        transactions: list[HeartTransactionData],
        result: Any,
        *,
        created: bool = False,
    ) -> None:
        """Queue transactions for sync, persist, and notify listeners.

        Raises:
            HeartsPersistenceError: Save failed; `result` is attached
        """
        if transactions:
            self.coordinator.sync_manager.queue_pending(user_id, transactions)
        if created:
            self.emit(const.SIGNAL_SUFFIX_USER_ADDED, user_id=user_id)
        state = self._data[const.DATA_USERS][user_id]
        self.emit(
            const.SIGNAL_SUFFIX_HEARTS_CHANGED,
            user_id=user_id,
            current_hearts=state[const.DATA_HEART_CURRENT],
            transaction_ids=[tx[const.DATA_TX_ID] for tx in transactions],
        )
        try:
            await self.coordinator.store.async_save()
        except HeartsPersistenceError as err:
            const.LOGGER.error(
                "Heart state for user %s kept in memory, save will be retried: %s",
                user_id,
                err,
            )
            raise HeartsPersistenceError(str(err), result=result) from err

    async def _async_run(
        self, user_id: str, operation: str, action: Any
    ) -> HeartResult:
        """Run one pool operation under the user's lock.

        `action(pool, now)` performs the transition and returns a HeartResult.
        The clock is read after the lock is taken, so `now` is never older
        than events applied by whoever held the lock before.
        """
        async with self.lock(user_id):
            now = self.clock.now()
            state, created = self.ensure_user(user_id, now)
            pool = self._pool(state)
            due_changed, due_txs = self._apply_due(pool, now)
            result: HeartResult = action(pool, now)
            const.LOGGER.debug(
                "%s for user %s: applied=%s hearts=%s noop=%s",
                operation,
                user_id,
                result.applied,
                result.current_hearts,
                result.noop_reason,
            )
            if created or due_changed or result.applied:
                await self._async_commit(
                    user_id,
                    [*due_txs, *result.transactions],
                    result,
                    created=created,
                )
            return result

    # -------------------------------------------------------------------------
    # Gameplay API
    # -------------------------------------------------------------------------

    async def async_lose_heart(
        self, user_id: str, reason: str, challenge_id: str | None = None
    ) -> HeartResult:
        """Record a failure event. NoOp for premium users and empty pools.

        Raises:
            ValueError: Unknown loss reason
            HeartsPersistenceError: Applied in memory but not saved
        """
        if reason not in const.LOSS_REASONS:
            raise ValueError(const.ERROR_UNKNOWN_REASON_FMT.format(reason))
        return await self._async_run(
            user_id,
            "lose_heart",
            lambda pool, now: pool.lose_heart(reason, now, challenge_id),
        )

    async def async_gain_heart(
        self,
        user_id: str,
        reason: str,
        amount: int = 1,
        challenge_id: str | None = None,
    ) -> HeartResult:
        """Credit hearts for a caller-reported reason.

        Refill actions are subject to the manual refill daily limit.

        Raises:
            ValueError: Reason not allowed for manual gains, or amount < 1
            HeartsPersistenceError: Applied in memory but not saved
        """
        if reason not in const.MANUAL_GAIN_REASONS:
            raise ValueError(const.ERROR_UNKNOWN_REASON_FMT.format(reason))

        def _gain(pool: HeartPool, now: datetime) -> HeartResult:
            if self._rate_limited(pool, reason, now):
                const.LOGGER.info(
                    "Manual refill limit reached for user %s, ignoring %s",
                    pool.user_id,
                    reason,
                )
                return pool.noop(const.NOOP_REASON_RATE_LIMITED, clamped_amount=amount)
            return pool.gain_heart(reason, now, amount, challenge_id)

        return await self._async_run(user_id, "gain_heart", _gain)

    async def async_record_perfect(self, user_id: str) -> HeartResult:
        """Count a perfect challenge (every third in a row grants a heart)."""
        return await self._async_run(
            user_id, "record_perfect", lambda pool, now: pool.record_perfect(now)
        )

    async def async_complete_refill_action(self, user_id: str, action: str) -> HeartResult:
        """Credit one heart for a completed refill action.

        Raises:
            ValueError: Unknown action
        """
        reason = const.REFILL_ACTION_GAIN_REASONS.get(action)
        if reason is None:
            raise ValueError(const.ERROR_UNKNOWN_ACTION_FMT.format(action))
        return await self.async_gain_heart(user_id, reason)

    def _rate_limited(self, pool: HeartPool, reason: str, now: datetime) -> bool:
        limit = self.coordinator.manual_refill_daily_limit
        if limit <= 0 or reason not in const.RATE_LIMITED_GAIN_REASONS:
            return False
        day_start = self.clock.local_midnight(now)
        used = sum(
            1
            for tx in self.ledger.query(pool.user_id, since=day_start)
            if tx[const.DATA_TX_TYPE] == const.TX_TYPE_GAIN
            and tx[const.DATA_TX_REASON] in const.RATE_LIMITED_GAIN_REASONS
        )
        return used >= limit

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_snapshot(self, user_id: str, now: datetime | None = None) -> HeartSnapshot | None:
        """Read-only snapshot of stored state (no maturation applied)."""
        state = self.get_user_state(user_id)
        if state is None:
            return None
        now = now or self.clock.now()
        pool = self._pool(state)
        premium = pool.is_premium
        next_refill_at = None if premium else pool.scheduler.next_refill_at()
        return HeartSnapshot(
            user_id=user_id,
            current_hearts=(
                const.UNLIMITED_HEARTS_DISPLAY if premium else state[const.DATA_HEART_CURRENT]
            ),
            max_hearts=state[const.DATA_HEART_MAX],
            is_premium=premium,
            open_slots=pool.scheduler.open_count,
            next_refill_at=next_refill_at,
            next_refill_in=pool.time_until_next(now),
            perfect_streak_count=state[const.DATA_HEART_PERFECT_STREAK],
            total_hearts_lost=state[const.DATA_HEART_TOTAL_LOST],
            total_hearts_gained=state[const.DATA_HEART_TOTAL_GAINED],
            last_heart_lost=state[const.DATA_HEART_LAST_LOST],
            last_midnight_reset=state[const.DATA_HEART_LAST_MIDNIGHT_RESET],
        )

    async def async_get_state(self, user_id: str) -> HeartSnapshot:
        """Snapshot after applying due maturations (creates the user if new)."""
        await self._async_run(
            user_id,
            "get_state",
            lambda pool, now: HeartResult(applied=False, current_hearts=pool.current_hearts),
        )
        snapshot = self.get_snapshot(user_id)
        assert snapshot is not None
        return snapshot

    async def async_time_until_next_refill(self, user_id: str) -> timedelta | None:
        """Countdown to the next refill; None when full or premium."""
        return (await self.async_get_state(user_id)).next_refill_in

    async def async_can_start_challenge(
        self, user_id: str, is_difficult: bool = False
    ) -> dict[str, Any]:
        """Whether the user holds enough hearts to start a challenge."""
        snapshot = await self.async_get_state(user_id)
        required = (
            const.MIN_HEARTS_TO_START_DIFFICULT
            if is_difficult
            else const.MIN_HEARTS_TO_START
        )
        if snapshot.is_premium:
            return {"can_start": True, "reason": None, "required": required}
        hearts = int(snapshot.current_hearts)
        if hearts >= required:
            return {"can_start": True, "reason": None, "required": required}
        reason = (
            const.CAN_START_REASON_NO_HEARTS
            if hearts == 0
            else const.CAN_START_REASON_NEEDS_MORE_HEARTS
        )
        return {"can_start": False, "reason": reason, "required": required}

    # -------------------------------------------------------------------------
    # Time-driven maintenance
    # -------------------------------------------------------------------------

    async def async_process_due(
        self, user_id: str | None = None, now: datetime | None = None
    ) -> int:
        """Apply due midnight resets and refills.

        Idempotent: scheduled events carry deterministic ids, so running this
        twice for the same instant appends nothing the second time.

        Returns:
            Number of transactions appended

        Raises:
            HeartsPersistenceError: At least one user's save failed (every
                user is still processed; `result` is the appended count)
        """
        user_ids = [user_id] if user_id is not None else self.user_ids
        appended = 0
        failure: HeartsPersistenceError | None = None
        for uid in user_ids:
            async with self.lock(uid):
                at = now or self.clock.now()
                state, created = self.ensure_user(uid, at)
                changed, transactions = self._apply_due(self._pool(state), at)
                appended += len(transactions)
                if not (changed or created):
                    continue
                try:
                    await self._async_commit(uid, transactions, len(transactions), created=created)
                except HeartsPersistenceError as err:
                    failure = err
        if failure is not None:
            raise HeartsPersistenceError(str(failure), result=appended) from failure
        if appended:
            const.LOGGER.debug("process_due appended %d transaction(s)", appended)
        return appended

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    async def async_set_premium(self, user_id: str, premium: bool) -> HeartSnapshot:
        """Flip the premium flag.

        Losing premium applies any midnight reset immediately, so a returning
        free user starts the day with a full pool.
        """
        async with self.lock(user_id):
            now = self.clock.now()
            state, created = self.ensure_user(user_id, now)
            flags = self._data[const.DATA_PREMIUM]
            if premium:
                flags[user_id] = True
            else:
                flags.pop(user_id, None)
            const.LOGGER.info("Premium for user %s set to %s", user_id, premium)
            _, transactions = self._apply_due(self._pool(state), now)
            await self._async_commit(user_id, transactions, None, created=created)
        snapshot = self.get_snapshot(user_id, now)
        assert snapshot is not None
        return snapshot

    async def async_verify_ledger(self, user_id: str) -> dict[str, Any]:
        """Replay the user's ledger and compare with the live state."""
        async with self.lock(user_id):
            state = self.get_user_state(user_id)
            if state is None:
                raise KeyError(user_id)
            replayed = TransactionLedger.replay(
                self.ledger.query(user_id),
                user_id=user_id,
                max_hearts=state[const.DATA_HEART_MAX],
                refill_interval=self.coordinator.refill_interval,
                created_at=dt_to_utc(state[const.DATA_HEART_CREATED_AT]),
            )
            expected = TransactionLedger.fingerprint(replayed)
            actual = TransactionLedger.fingerprint(state)
            consistent = expected == actual
            if not consistent:
                const.LOGGER.warning(
                    "Ledger replay for user %s disagrees with live state: %s != %s",
                    user_id,
                    expected,
                    actual,
                )
            return {
                "consistent": consistent,
                "transaction_count": self.ledger.count(user_id),
                "expected": expected,
                "actual": actual,
            }
