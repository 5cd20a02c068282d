"""Type definitions for FocusHearts data structures.

Storage records are TypedDicts: they are what the Home Assistant Store
serializes to JSON, so every value is a JSON primitive (timestamps are ISO 8601
UTC strings). TypedDict is static analysis only; runtime checks stay in the
engines and managers.

IMPORTANT: This file must NOT import from coordinator.py or any manager to avoid
circular dependencies. Only typing imports are allowed.
"""

from typing import Any, Literal, NotRequired, TypedDict

# =============================================================================
# Type Aliases (for readability)
# =============================================================================

UserId = str
TransactionId = str  # UUID string, deterministic for scheduled events
SlotId = str  # UUID string derived from the loss transaction
ISODatetime = str  # ISO 8601 datetime string "2026-01-18T12:30:00+00:00"

TransactionType = Literal["loss", "gain", "refill"]


# =============================================================================
# Heart Pool
# =============================================================================


class RefillSlotData(TypedDict):
    """A scheduled future point at which one heart is credited back."""

    id: SlotId
    scheduled_refill_time: ISODatetime
    is_refilled: bool


class HeartStateData(TypedDict):
    """The per-user capped pool.

    Owned by: HeartPool (engine)
    Stored in: storage["users"][user_id]
    """

    user_id: UserId
    current_hearts: int
    max_hearts: int
    last_heart_lost: ISODatetime | None
    last_midnight_reset: ISODatetime | None
    refill_slots: list[RefillSlotData]  # insertion order = loss order
    perfect_streak_count: int
    total_hearts_lost: int
    total_hearts_gained: int
    created_at: ISODatetime


class HeartTransactionData(TypedDict):
    """An immutable ledger record.

    Created by: TransactionLedger.create_transaction()
    Stored in: storage["transactions"][user_id]
    """

    id: TransactionId
    user_id: UserId
    timestamp: ISODatetime
    type: TransactionType
    amount: int
    reason: str
    challenge_id: NotRequired[str | None]
    slot_id: NotRequired[SlotId | None]


# =============================================================================
# Sync Bookkeeping
# =============================================================================


class SyncCheckpointData(TypedDict):
    """State both sides agreed on at the end of the last successful sync."""

    state: HeartStateData
    watermark: ISODatetime | None  # newest transaction timestamp included
    ids: list[TransactionId]


class UserSyncData(TypedDict):
    """Per-user sync bookkeeping."""

    pending_ids: list[TransactionId]  # appended locally, not yet acknowledged
    remote_cursor: str | None
    checkpoint: SyncCheckpointData | None
    last_synced: ISODatetime | None


# =============================================================================
# Storage Root
# =============================================================================


class StorageMeta(TypedDict):
    """Storage metadata."""

    schema_version: int


class FocusHeartsStorage(TypedDict):
    """Root of the persisted document."""

    meta: StorageMeta
    users: dict[UserId, HeartStateData]
    transactions: dict[UserId, list[HeartTransactionData]]
    premium: dict[UserId, bool]
    sync: dict[UserId, UserSyncData]


# Service responses are plain JSON dicts
ServiceResponseData = dict[str, Any]


__all__ = [
    "FocusHeartsStorage",
    "HeartStateData",
    "HeartTransactionData",
    "ISODatetime",
    "RefillSlotData",
    "ServiceResponseData",
    "SlotId",
    "StorageMeta",
    "SyncCheckpointData",
    "TransactionId",
    "TransactionType",
    "UserId",
    "UserSyncData",
]
