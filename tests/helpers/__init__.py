"""Test helpers for FocusHearts tests.

    from tests.helpers import T0, USER_ID, REFILL_INTERVAL, make_tx, open_slot_times
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from custom_components.focus_hearts import const
from custom_components.focus_hearts.engines.ledger_engine import TransactionLedger
from custom_components.focus_hearts.utils.dt_utils import dt_to_utc

# Wednesday noon UTC; the next local midnight (UTC) is 12 hours away
T0 = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
REFILL_INTERVAL = timedelta(hours=const.DEFAULT_REFILL_INTERVAL_HOURS)
USER_ID = "user-1"


def make_tx(
    reason: str,
    at: datetime,
    *,
    user_id: str = USER_ID,
    amount: int = 1,
    tx_id: str | None = None,
    slot_id: str | None = None,
) -> dict[str, Any]:
    """Build a valid transaction; the type follows from the reason."""
    if reason in const.LOSS_REASONS:
        tx_type = const.TX_TYPE_LOSS
    elif reason == const.GAIN_REASON_HOURLY_REFILL:
        tx_type = const.TX_TYPE_REFILL
    else:
        tx_type = const.TX_TYPE_GAIN
    return TransactionLedger.create_transaction(
        user_id=user_id,
        tx_type=tx_type,
        amount=amount,
        reason=reason,
        timestamp=at,
        tx_id=tx_id,
        slot_id=slot_id,
    )


def open_slot_times(state: dict[str, Any]) -> list[datetime]:
    """Scheduled times of a state's open slots, in loss order."""
    return [
        dt_to_utc(slot[const.DATA_SLOT_SCHEDULED_TIME])
        for slot in state[const.DATA_HEART_REFILL_SLOTS]
        if not slot[const.DATA_SLOT_IS_REFILLED]
    ]
