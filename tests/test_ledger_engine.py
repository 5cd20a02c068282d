"""Tests for TransactionLedger - append-only store and replay, pure logic."""

from __future__ import annotations

from datetime import timedelta

import pytest

from custom_components.focus_hearts import const
from custom_components.focus_hearts.engines.ledger_engine import (
    AppendOutcome,
    InvalidTransactionError,
    TransactionLedger,
    derive_midnight_reset_id,
    derive_refill_id,
    derive_slot_id,
)
from tests.helpers import REFILL_INTERVAL, T0, USER_ID, make_tx

# =============================================================================
# Append / query
# =============================================================================


class TestAppend:
    """Deduplicated append."""

    def test_append_then_duplicate(self, ledger: TransactionLedger) -> None:
        """A repeated id is reported, not stored twice."""
        tx = make_tx(const.LOSS_REASON_WRONG_TAP, T0)
        assert ledger.append(tx) is AppendOutcome.APPENDED
        assert ledger.append(dict(tx)) is AppendOutcome.DUPLICATE
        assert ledger.count(USER_ID) == 1
        assert ledger.contains(USER_ID, tx[const.DATA_TX_ID])

    def test_extend_returns_only_new(self, ledger: TransactionLedger) -> None:
        """extend() reports what was actually appended."""
        first = make_tx(const.LOSS_REASON_WRONG_TAP, T0)
        second = make_tx(const.LOSS_REASON_FOCUS_BREAK, T0 + timedelta(minutes=1))
        ledger.append(first)
        assert ledger.extend([first, second]) == [second]
        assert len(ledger) == 2

    def test_index_survives_existing_storage(self) -> None:
        """A ledger over stored records dedups against them."""
        tx = make_tx(const.LOSS_REASON_WRONG_TAP, T0)
        ledger = TransactionLedger({USER_ID: [tx]})
        assert ledger.append(dict(tx)) is AppendOutcome.DUPLICATE
        assert ledger.get(USER_ID, tx[const.DATA_TX_ID]) is tx
        assert ledger.user_ids() == [USER_ID]

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            (const.DATA_TX_AMOUNT, 0),
            (const.DATA_TX_AMOUNT, True),
            (const.DATA_TX_TYPE, "bonus"),
            (const.DATA_TX_REASON, "hourly_refill"),
            (const.DATA_TX_TIMESTAMP, "yesterday"),
            (const.DATA_TX_USER_ID, ""),
        ],
    )
    def test_invalid_records_rejected(
        self, ledger: TransactionLedger, field: str, value: object
    ) -> None:
        """Malformed records never enter the ledger."""
        tx = make_tx(const.LOSS_REASON_WRONG_TAP, T0)
        tx[field] = value
        with pytest.raises(InvalidTransactionError):
            ledger.append(tx)
        assert len(ledger) == 0

    def test_refill_type_requires_hourly_reason(self) -> None:
        """Only scheduled maturations are refill transactions."""
        with pytest.raises(InvalidTransactionError):
            TransactionLedger.create_transaction(
                user_id=USER_ID,
                tx_type=const.TX_TYPE_REFILL,
                amount=1,
                reason=const.GAIN_REASON_WATCH_TIP,
                timestamp=T0,
            )


class TestQuery:
    """Ordered reads."""

    def test_ordered_by_timestamp_then_id(self, ledger: TransactionLedger) -> None:
        """Arrival order does not matter; ties break on id."""
        late = make_tx(const.LOSS_REASON_WRONG_TAP, T0 + timedelta(hours=1), tx_id="b")
        tie_b = make_tx(const.LOSS_REASON_WRONG_TAP, T0, tx_id="b2")
        tie_a = make_tx(const.LOSS_REASON_WRONG_TAP, T0, tx_id="a2")
        ledger.extend([late, tie_b, tie_a])
        assert [tx[const.DATA_TX_ID] for tx in ledger.query(USER_ID)] == ["a2", "b2", "b"]

    def test_since_is_inclusive(self, ledger: TransactionLedger) -> None:
        """since filters out strictly older records."""
        ledger.extend(
            [
                make_tx(const.LOSS_REASON_WRONG_TAP, T0 - timedelta(minutes=1)),
                make_tx(const.LOSS_REASON_WRONG_TAP, T0),
                make_tx(const.LOSS_REASON_WRONG_TAP, T0 + timedelta(minutes=1)),
            ]
        )
        assert len(list(ledger.query(USER_ID, since=T0))) == 2

    def test_query_is_lazy(self, ledger: TransactionLedger) -> None:
        """query() returns a generator."""
        ledger.append(make_tx(const.LOSS_REASON_WRONG_TAP, T0))
        result = ledger.query(USER_ID)
        assert next(result)[const.DATA_TX_USER_ID] == USER_ID

    def test_unknown_user_is_empty(self, ledger: TransactionLedger) -> None:
        """No history, no records."""
        assert list(ledger.query("nobody")) == []
        assert ledger.count("nobody") == 0
        assert ledger.last_timestamp("nobody") is None

    def test_next_local_timestamp_never_ties(self, ledger: TransactionLedger) -> None:
        """New local events land strictly after the latest record."""
        assert ledger.next_local_timestamp(USER_ID, T0) == T0
        ledger.append(make_tx(const.LOSS_REASON_WRONG_TAP, T0 + timedelta(minutes=5)))
        nudged = T0 + timedelta(minutes=5, microseconds=1)
        assert ledger.next_local_timestamp(USER_ID, T0) == nudged
        assert ledger.next_local_timestamp(USER_ID, T0 + timedelta(minutes=5)) == nudged
        later = T0 + timedelta(hours=1)
        assert ledger.next_local_timestamp(USER_ID, later) == later


class TestDerivedIds:
    """Scheduled events get the same id on every replica."""

    def test_ids_are_stable(self) -> None:
        """Same inputs, same ids; different inputs, different ids."""
        assert derive_slot_id("loss-1") == derive_slot_id("loss-1", 0)
        assert derive_slot_id("loss-1", 0) != derive_slot_id("loss-1", 1)
        assert derive_refill_id(USER_ID, "s") == derive_refill_id(USER_ID, "s")
        assert derive_midnight_reset_id(USER_ID, "2025-01-16") != derive_midnight_reset_id(
            USER_ID, "2025-01-17"
        )


# =============================================================================
# Replay
# =============================================================================


def _replay(transactions: list, **kwargs):
    return TransactionLedger.replay(
        transactions,
        user_id=USER_ID,
        max_hearts=const.DEFAULT_MAX_HEARTS,
        refill_interval=REFILL_INTERVAL,
        created_at=T0,
        **kwargs,
    )


class TestReplay:
    """Pure fold of transactions into state."""

    def test_empty_history_is_full_pool(self) -> None:
        """Genesis is a full pool with no slots."""
        state = _replay([])
        assert state[const.DATA_HEART_CURRENT] == const.DEFAULT_MAX_HEARTS
        assert state[const.DATA_HEART_REFILL_SLOTS] == []

    def test_loss_then_scheduled_refill(self) -> None:
        """A refill consumes exactly the slot it names."""
        loss = make_tx(const.LOSS_REASON_WRONG_TAP, T0)
        slot_id = derive_slot_id(loss[const.DATA_TX_ID])
        refill = make_tx(
            const.GAIN_REASON_HOURLY_REFILL,
            T0 + REFILL_INTERVAL,
            tx_id=derive_refill_id(USER_ID, slot_id),
            slot_id=slot_id,
        )
        state = _replay([refill, loss])
        assert state[const.DATA_HEART_CURRENT] == 5
        assert state[const.DATA_HEART_TOTAL_LOST] == 1
        assert state[const.DATA_HEART_TOTAL_GAINED] == 1
        assert state[const.DATA_HEART_REFILL_SLOTS] == []

    def test_refill_of_missing_slot_credits_nothing(self) -> None:
        """A slot already consumed by a gain cannot be refilled again."""
        loss = make_tx(const.LOSS_REASON_WRONG_TAP, T0)
        slot_id = derive_slot_id(loss[const.DATA_TX_ID])
        gain = make_tx(const.GAIN_REASON_WATCH_TIP, T0 + timedelta(hours=1))
        refill = make_tx(
            const.GAIN_REASON_HOURLY_REFILL,
            T0 + REFILL_INTERVAL,
            tx_id=derive_refill_id(USER_ID, slot_id),
            slot_id=slot_id,
        )
        state = _replay([loss, gain, refill])
        assert state[const.DATA_HEART_CURRENT] == 5
        assert state[const.DATA_HEART_TOTAL_GAINED] == 1

    def test_midnight_reset_recomputes_deficit(self) -> None:
        """The credit is the deficit at replay time, not the recorded amount."""
        losses = [
            make_tx(const.LOSS_REASON_WRONG_TAP, T0 + timedelta(minutes=i)) for i in range(2)
        ]
        midnight = T0.replace(hour=0) + timedelta(days=1)
        reset = make_tx(const.GAIN_REASON_MIDNIGHT_RESET, midnight, amount=4)
        state = _replay([*losses, reset])
        assert state[const.DATA_HEART_CURRENT] == 5
        assert state[const.DATA_HEART_TOTAL_GAINED] == 2
        assert state[const.DATA_HEART_LAST_MIDNIGHT_RESET] == midnight.isoformat()

    def test_gain_clamps_at_max(self) -> None:
        """Replayed gains never overflow the cap."""
        loss = make_tx(const.LOSS_REASON_WRONG_TAP, T0)
        gain = make_tx(const.GAIN_REASON_DAILY_SESSION_COMPLETE, T0 + timedelta(minutes=1), amount=3)
        state = _replay([loss, gain])
        assert state[const.DATA_HEART_CURRENT] == 5
        assert state[const.DATA_HEART_TOTAL_GAINED] == 1

    def test_loss_resets_streak(self) -> None:
        """A loss clears the perfect streak carried by the base."""
        base = _replay([])
        base[const.DATA_HEART_PERFECT_STREAK] = 2
        state = _replay([make_tx(const.LOSS_REASON_WRONG_TAP, T0)], base=base)
        assert state[const.DATA_HEART_PERFECT_STREAK] == 0
        assert base[const.DATA_HEART_PERFECT_STREAK] == 2

    def test_foreign_records_ignored(self) -> None:
        """Another user's transactions do not leak into the fold."""
        state = _replay([make_tx(const.LOSS_REASON_WRONG_TAP, T0, user_id="other")])
        assert state[const.DATA_HEART_CURRENT] == 5

    def test_fingerprint_ignores_streak_and_midnight_stamp(self) -> None:
        """Only ledgered fields are compared."""
        a = _replay([])
        b = _replay([])
        b[const.DATA_HEART_PERFECT_STREAK] = 2
        b[const.DATA_HEART_LAST_MIDNIGHT_RESET] = None
        assert TransactionLedger.fingerprint(a) == TransactionLedger.fingerprint(b)
