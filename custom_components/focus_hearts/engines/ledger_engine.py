"""Ledger Engine - Append-only heart transaction ledger and replay.

This engine provides:
- Transaction creation and validation
- Deduplicated append (by transaction id) per user
- Ordered queries by (timestamp, id)
- Replay: a pure fold of transactions into a HeartStateData
- Fingerprint: the projection used to compare replayed and live state

Transaction ids for scheduled events (slot maturation, midnight reset) are
derived deterministically so two replicas that process the same event offline
produce the same id and the ledger collapses them.

ARCHITECTURE: Pure logic with NO Home Assistant dependencies. The ledger wraps
the storage dict `storage["transactions"]` and mutates it in place; persisting
it is HeartManager's job.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any
import uuid

from .. import const
from ..utils.dt_utils import as_utc, dt_to_iso, dt_to_utc
from .refill_engine import DEFAULT_REFILL_INTERVAL, RefillScheduler

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from ..type_defs import HeartStateData, HeartTransactionData


# Fixed namespace for uuid5-derived ids (never change: ids are persisted and synced)
LEDGER_NAMESPACE = uuid.UUID("7d1c5a52-3f0e-4b8e-9c51-2a6f4e8d9b10")

# Minimum gap between a user's local events (ISO storage keeps microseconds)
LOCAL_EVENT_SPACING = timedelta(microseconds=1)

# Reasons allowed per transaction type
_REASONS_BY_TYPE: dict[str, frozenset[str]] = {
    const.TX_TYPE_LOSS: frozenset(const.LOSS_REASONS),
    const.TX_TYPE_GAIN: frozenset(const.GAIN_REASONS) - {const.GAIN_REASON_HOURLY_REFILL},
    const.TX_TYPE_REFILL: frozenset({const.GAIN_REASON_HOURLY_REFILL}),
}


class AppendOutcome(StrEnum):
    """Result of TransactionLedger.append()."""

    APPENDED = "appended"
    DUPLICATE = "duplicate"


class InvalidTransactionError(ValueError):
    """Raised when a record does not satisfy the transaction schema."""


def derive_transaction_id(*parts: Any) -> str:
    """Return a stable UUID string for the given parts."""
    return str(uuid.uuid5(LEDGER_NAMESPACE, ":".join(str(part) for part in parts)))


def derive_slot_id(loss_tx_id: str, index: int = 0) -> str:
    """Slot id for the index-th heart removed by a loss transaction."""
    return derive_transaction_id("slot", loss_tx_id, index)


def derive_refill_id(user_id: str, slot_id: str) -> str:
    """Transaction id for the maturation of one slot."""
    return derive_transaction_id(const.TX_TYPE_REFILL, user_id, slot_id)


def derive_midnight_reset_id(user_id: str, local_date: str) -> str:
    """Transaction id for the midnight reset of one local calendar day."""
    return derive_transaction_id(const.GAIN_REASON_MIDNIGHT_RESET, user_id, local_date)


class TransactionLedger:
    """Per-user append-only transaction store with id deduplication.

    Records are kept in arrival order in storage; ordering by (timestamp, id)
    is applied on read.
    """

    def __init__(
        self, transactions: dict[str, list[HeartTransactionData]] | None = None
    ) -> None:
        """Initialize the ledger over a storage dict (mutated in place)."""
        self._transactions: dict[str, list[HeartTransactionData]] = (
            transactions if transactions is not None else {}
        )
        self._index: dict[str, dict[str, HeartTransactionData]] = {}

    def _user_index(self, user_id: str) -> dict[str, HeartTransactionData]:
        index = self._index.get(user_id)
        if index is None:
            index = {
                tx[const.DATA_TX_ID]: tx
                for tx in self._transactions.get(user_id, [])
            }
            self._index[user_id] = index
        return index

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def append(self, tx: HeartTransactionData) -> AppendOutcome:
        """Append a transaction unless its id is already present.

        Raises:
            InvalidTransactionError: The record is malformed
        """
        self.validate_transaction(tx)
        user_id = tx[const.DATA_TX_USER_ID]
        index = self._user_index(user_id)
        if tx[const.DATA_TX_ID] in index:
            const.LOGGER.debug(
                "Ledger: duplicate transaction %s for user %s ignored",
                tx[const.DATA_TX_ID],
                user_id,
            )
            return AppendOutcome.DUPLICATE
        self._transactions.setdefault(user_id, []).append(tx)
        index[tx[const.DATA_TX_ID]] = tx
        return AppendOutcome.APPENDED

    def extend(self, transactions: Iterable[HeartTransactionData]) -> list[HeartTransactionData]:
        """Append many transactions. Returns the ones actually appended."""
        return [
            tx for tx in transactions if self.append(tx) is AppendOutcome.APPENDED
        ]

    def replace_user(self, user_id: str, transactions: Iterable[HeartTransactionData]) -> None:
        """Swap a user's whole history (used after reconciliation)."""
        self._transactions[user_id] = list(transactions)
        self._index.pop(user_id, None)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def query(
        self, user_id: str, since: datetime | None = None
    ) -> Iterator[HeartTransactionData]:
        """Yield a user's transactions ordered by (timestamp, id).

        Args:
            user_id: Owner of the transactions
            since: When given, only transactions with timestamp >= since
        """
        since_utc = as_utc(since) if since is not None else None
        for tx in sorted(self._transactions.get(user_id, []), key=self.sort_key):
            if since_utc is not None and self.sort_key(tx)[0] < since_utc:
                continue
            yield tx

    def get(self, user_id: str, tx_id: str) -> HeartTransactionData | None:
        """Return a transaction by id, or None."""
        return self._user_index(user_id).get(tx_id)

    def contains(self, user_id: str, tx_id: str) -> bool:
        """Return True if the user's ledger holds tx_id."""
        return tx_id in self._user_index(user_id)

    def count(self, user_id: str | None = None) -> int:
        """Number of transactions for one user, or for everyone."""
        if user_id is not None:
            return len(self._transactions.get(user_id, []))
        return sum(len(txs) for txs in self._transactions.values())

    def last_timestamp(self, user_id: str) -> datetime | None:
        """Latest timestamp in a user's ledger, or None when empty."""
        transactions = self._transactions.get(user_id)
        if not transactions:
            return None
        return max(self.sort_key(tx)[0] for tx in transactions)

    def user_ids(self) -> list[str]:
        """Users with at least one stored transaction."""
        return [user_id for user_id, txs in self._transactions.items() if txs]

    def __len__(self) -> int:
        return self.count()

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    @staticmethod
    def create_transaction(
        *,
        user_id: str,
        tx_type: str,
        amount: int,
        reason: str,
        timestamp: datetime,
        tx_id: str | None = None,
        challenge_id: str | None = None,
        slot_id: str | None = None,
    ) -> HeartTransactionData:
        """Build a validated transaction record.

        A random id is used unless the caller supplies a derived one.
        """
        tx: HeartTransactionData = {
            const.DATA_TX_ID: tx_id or str(uuid.uuid4()),
            const.DATA_TX_USER_ID: user_id,
            const.DATA_TX_TIMESTAMP: dt_to_iso(timestamp),  # type: ignore[typeddict-item]
            const.DATA_TX_TYPE: tx_type,  # type: ignore[typeddict-item]
            const.DATA_TX_AMOUNT: amount,
            const.DATA_TX_REASON: reason,
        }
        if challenge_id is not None:
            tx[const.DATA_TX_CHALLENGE_ID] = challenge_id
        if slot_id is not None:
            tx[const.DATA_TX_SLOT_ID] = slot_id
        TransactionLedger.validate_transaction(tx)
        return tx

    @staticmethod
    def validate_transaction(tx: Any) -> None:
        """Check a record against the transaction schema.

        Raises:
            InvalidTransactionError: Describing the first problem found
        """
        if not isinstance(tx, dict):
            raise InvalidTransactionError(f"Transaction is not a mapping: {tx!r}")

        tx_id = tx.get(const.DATA_TX_ID)
        if not isinstance(tx_id, str) or not tx_id:
            raise InvalidTransactionError(f"Transaction has no id: {tx!r}")

        user_id = tx.get(const.DATA_TX_USER_ID)
        if not isinstance(user_id, str) or not user_id:
            raise InvalidTransactionError(f"Transaction {tx_id} has no user_id")

        if dt_to_utc(tx.get(const.DATA_TX_TIMESTAMP)) is None:
            raise InvalidTransactionError(f"Transaction {tx_id} has an invalid timestamp")

        tx_type = tx.get(const.DATA_TX_TYPE)
        if tx_type not in _REASONS_BY_TYPE:
            raise InvalidTransactionError(f"Transaction {tx_id} has unknown type {tx_type!r}")

        amount = tx.get(const.DATA_TX_AMOUNT)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise InvalidTransactionError(f"Transaction {tx_id} has invalid amount {amount!r}")

        reason = tx.get(const.DATA_TX_REASON)
        if reason not in _REASONS_BY_TYPE[tx_type]:
            raise InvalidTransactionError(
                f"Transaction {tx_id} has reason {reason!r} not valid for type {tx_type}"
            )

        for optional_key in (const.DATA_TX_CHALLENGE_ID, const.DATA_TX_SLOT_ID):
            value = tx.get(optional_key)
            if value is not None and not isinstance(value, str):
                raise InvalidTransactionError(
                    f"Transaction {tx_id} has non-string {optional_key}"
                )

    def next_local_timestamp(self, user_id: str, now: datetime) -> datetime:
        """Timestamp for a new local event: now, or just after the latest record.

        Replay orders by (timestamp, id) and event ids are random, so two local
        events of one user must never share a timestamp.
        """
        latest = self.last_timestamp(user_id)
        if latest is None:
            return as_utc(now)
        return max(as_utc(now), latest + LOCAL_EVENT_SPACING)

    @staticmethod
    def sort_key(tx: HeartTransactionData) -> tuple[datetime, str]:
        """Ordering key: timestamp, then id as tie-breaker."""
        timestamp = dt_to_utc(tx.get(const.DATA_TX_TIMESTAMP))
        if timestamp is None:
            raise InvalidTransactionError(f"Transaction {tx.get(const.DATA_TX_ID)} has no timestamp")
        return timestamp, tx[const.DATA_TX_ID]

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    @staticmethod
    def new_state(
        user_id: str, max_hearts: int, created_at: datetime
    ) -> HeartStateData:
        """State of a user on first touch: full pool, nothing scheduled."""
        created_iso = dt_to_iso(created_at)
        return {
            const.DATA_HEART_USER_ID: user_id,
            const.DATA_HEART_CURRENT: max_hearts,
            const.DATA_HEART_MAX: max_hearts,
            const.DATA_HEART_LAST_LOST: None,
            const.DATA_HEART_LAST_MIDNIGHT_RESET: created_iso,
            const.DATA_HEART_REFILL_SLOTS: [],
            const.DATA_HEART_PERFECT_STREAK: 0,
            const.DATA_HEART_TOTAL_LOST: 0,
            const.DATA_HEART_TOTAL_GAINED: 0,
            const.DATA_HEART_CREATED_AT: created_iso,  # type: ignore[typeddict-item]
        }

    @staticmethod
    def replay(
        transactions: Iterable[HeartTransactionData],
        *,
        user_id: str,
        max_hearts: int = const.DEFAULT_MAX_HEARTS,
        refill_interval: timedelta = DEFAULT_REFILL_INTERVAL,
        base: HeartStateData | None = None,
        created_at: datetime | None = None,
    ) -> HeartStateData:
        """Fold transactions into a heart state.

        Starts from a deep copy of `base` when given (a sync checkpoint),
        otherwise from a fresh pool. Transactions are applied in (timestamp, id)
        order; records belonging to another user are ignored.

        Credits are recomputed against the running state rather than trusted
        from the record: a refill whose slot is gone and a midnight reset whose
        deficit was already covered credit nothing.
        """
        if base is not None:
            state: HeartStateData = copy.deepcopy(base)
        else:
            genesis = created_at or datetime(1970, 1, 1, tzinfo=UTC)
            state = TransactionLedger.new_state(user_id, max_hearts, genesis)

        scheduler = RefillScheduler(state[const.DATA_HEART_REFILL_SLOTS], refill_interval)
        ordered = sorted(
            (tx for tx in transactions if tx.get(const.DATA_TX_USER_ID) == user_id),
            key=TransactionLedger.sort_key,
        )
        for tx in ordered:
            TransactionLedger._apply(state, scheduler, tx)
            scheduler.prune()
        return state

    @staticmethod
    def _apply(
        state: HeartStateData, scheduler: RefillScheduler, tx: HeartTransactionData
    ) -> None:
        """Apply one transaction to a replay state."""
        timestamp = dt_to_utc(tx[const.DATA_TX_TIMESTAMP])
        assert timestamp is not None  # validated upstream
        max_hearts = state[const.DATA_HEART_MAX]
        current = state[const.DATA_HEART_CURRENT]
        amount = tx[const.DATA_TX_AMOUNT]
        tx_type = tx[const.DATA_TX_TYPE]
        reason = tx[const.DATA_TX_REASON]

        if tx_type == const.TX_TYPE_LOSS:
            units = min(amount, current)
            for index in range(units):
                scheduler.open_slot(timestamp, derive_slot_id(tx[const.DATA_TX_ID], index))
            state[const.DATA_HEART_CURRENT] = current - units
            state[const.DATA_HEART_TOTAL_LOST] += units
            state[const.DATA_HEART_LAST_LOST] = dt_to_iso(timestamp)
            state[const.DATA_HEART_PERFECT_STREAK] = 0
            return

        if tx_type == const.TX_TYPE_REFILL:
            slot_id = tx.get(const.DATA_TX_SLOT_ID)
            slot = (
                scheduler.consume_slot(slot_id)
                if slot_id
                else scheduler.consume_oldest_open_slot()
            )
            if slot is not None and current < max_hearts:
                state[const.DATA_HEART_CURRENT] = current + 1
                state[const.DATA_HEART_TOTAL_GAINED] += 1
            return

        if reason == const.GAIN_REASON_MIDNIGHT_RESET:
            deficit = max(max_hearts - current, 0)
            scheduler.clear()
            state[const.DATA_HEART_CURRENT] = max_hearts
            state[const.DATA_HEART_TOTAL_GAINED] += deficit
            state[const.DATA_HEART_LAST_MIDNIGHT_RESET] = dt_to_iso(timestamp)
            return

        credit = min(amount, max(max_hearts - current, 0))
        for _ in range(credit):
            scheduler.consume_oldest_open_slot()
        state[const.DATA_HEART_CURRENT] = current + credit
        state[const.DATA_HEART_TOTAL_GAINED] += credit
        if reason == const.GAIN_REASON_PERFECT_STREAK_3:
            state[const.DATA_HEART_PERFECT_STREAK] = 0

    @staticmethod
    def fingerprint(state: HeartStateData) -> dict[str, Any]:
        """Projection of a state that replay must reproduce exactly.

        Excludes the perfect streak (not ledgered) and the midnight stamp
        (a zero-deficit reset leaves no record).
        """
        return {
            const.DATA_HEART_CURRENT: state[const.DATA_HEART_CURRENT],
            const.DATA_HEART_MAX: state[const.DATA_HEART_MAX],
            const.DATA_HEART_REFILL_SLOTS: [
                (slot[const.DATA_SLOT_ID], slot[const.DATA_SLOT_SCHEDULED_TIME])
                for slot in state[const.DATA_HEART_REFILL_SLOTS]
                if not slot[const.DATA_SLOT_IS_REFILLED]
            ],
            const.DATA_HEART_LAST_LOST: state[const.DATA_HEART_LAST_LOST],
            const.DATA_HEART_TOTAL_LOST: state[const.DATA_HEART_TOTAL_LOST],
            const.DATA_HEART_TOTAL_GAINED: state[const.DATA_HEART_TOTAL_GAINED],
        }
