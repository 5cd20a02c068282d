"""Sync Engine - Pure reconciliation of local and remote heart ledgers.

Reconciliation merges two transaction tails, deduplicates by id and replays
the result on top of the last agreed checkpoint. When an incoming record is
older than the checkpoint watermark the checkpoint cannot be trusted and the
whole history is replayed from genesis instead.

Properties relied on by SyncManager:
- Commutative: reconcile(cp, A, B) and reconcile(cp, B, A) give equal states
- Idempotent: reconciling an already merged ledger changes nothing

ARCHITECTURE: Pure logic with NO Home Assistant dependencies. Network I/O,
locking and persistence belong in SyncManager.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import timedelta
import json
from typing import TYPE_CHECKING, Any

from .. import const
from ..utils.dt_utils import dt_to_iso, dt_to_utc
from .ledger_engine import InvalidTransactionError, TransactionLedger
from .refill_engine import DEFAULT_REFILL_INTERVAL

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from ..type_defs import HeartStateData, HeartTransactionData, SyncCheckpointData


class SyncConflictError(Exception):
    """Raised when remote data cannot be merged (malformed or foreign records).

    Attributes:
        user_id: User being synced
        record: The offending remote record
    """

    def __init__(self, user_id: str, record: Any, detail: str) -> None:
        """Initialize SyncConflictError."""
        self.user_id = user_id
        self.record = record
        super().__init__(f"Sync conflict for user {user_id}: {detail}")


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of SyncReconciler.reconcile().

    Attributes:
        state: Replayed state of the merged ledger
        transactions: Merged ledger ordered by (timestamp, id)
        checkpoint: New checkpoint covering every merged transaction
        incoming: Merged transactions the checkpoint did not cover yet
        full_replay: Whether the checkpoint was bypassed
    """

    state: HeartStateData
    transactions: tuple[HeartTransactionData, ...]
    checkpoint: SyncCheckpointData
    incoming: tuple[HeartTransactionData, ...]
    full_replay: bool


def _canonical_key(tx: HeartTransactionData) -> str:
    return json.dumps(tx, sort_keys=True, default=str)


class SyncReconciler:
    """Static reconciliation helpers."""

    @staticmethod
    def validate_remote(
        records: Iterable[Any], user_id: str
    ) -> list[HeartTransactionData]:
        """Validate downloaded records.

        Raises:
            SyncConflictError: A record is malformed or belongs to another user
        """
        validated: list[HeartTransactionData] = []
        for record in records:
            try:
                TransactionLedger.validate_transaction(record)
            except InvalidTransactionError as err:
                raise SyncConflictError(user_id, record, str(err)) from err
            if record[const.DATA_TX_USER_ID] != user_id:
                raise SyncConflictError(
                    user_id,
                    record,
                    f"record {record[const.DATA_TX_ID]} belongs to "
                    f"{record[const.DATA_TX_USER_ID]}",
                )
            validated.append(record)
        return validated

    @staticmethod
    def merge(
        local: Iterable[HeartTransactionData],
        remote: Iterable[HeartTransactionData],
    ) -> list[HeartTransactionData]:
        """Union of both tails, deduplicated by id, ordered by (timestamp, id).

        If both sides carry different bodies under one id, the canonical
        (lexicographically smallest) body wins on every replica.
        """
        by_id: dict[str, HeartTransactionData] = {}
        for tx in (*local, *remote):
            tx_id = tx[const.DATA_TX_ID]
            existing = by_id.get(tx_id)
            if existing is not None and existing != tx:
                const.LOGGER.warning(
                    "Sync: transaction %s has diverging bodies, keeping canonical one",
                    tx_id,
                )
            if existing is None or _canonical_key(tx) < _canonical_key(existing):
                by_id[tx_id] = tx
        return sorted(by_id.values(), key=TransactionLedger.sort_key)

    @staticmethod
    def reconcile(
        checkpoint: SyncCheckpointData | None,
        local: Iterable[HeartTransactionData],
        remote: Iterable[HeartTransactionData],
        *,
        user_id: str,
        max_hearts: int = const.DEFAULT_MAX_HEARTS,
        refill_interval: timedelta = DEFAULT_REFILL_INTERVAL,
        created_at: datetime | None = None,
    ) -> ReconcileResult:
        """Merge local and remote tails and replay them.

        Args:
            checkpoint: Last agreed state, or None for a first sync
            local: Local ledger (must include everything the checkpoint covers)
            remote: Remote tail
            user_id: Owner of the ledger
            max_hearts: Capacity for a replay from genesis
            refill_interval: Delay between loss and refill
            created_at: Genesis time for a replay from genesis
        """
        merged = SyncReconciler.merge(local, remote)

        covered: set[str] = set()
        watermark = None
        if checkpoint is not None:
            covered = set(checkpoint[const.DATA_SYNC_CHECKPOINT_IDS])
            watermark = dt_to_utc(checkpoint[const.DATA_SYNC_CHECKPOINT_WATERMARK])

        incoming = [tx for tx in merged if tx[const.DATA_TX_ID] not in covered]
        full_replay = checkpoint is None or (
            watermark is not None
            and any(TransactionLedger.sort_key(tx)[0] <= watermark for tx in incoming)
        )

        if full_replay:
            state = TransactionLedger.replay(
                merged,
                user_id=user_id,
                max_hearts=max_hearts,
                refill_interval=refill_interval,
                created_at=created_at,
            )
            if checkpoint is not None:
                const.LOGGER.debug(
                    "Sync: incoming history for user %s predates watermark, "
                    "replaying from genesis",
                    user_id,
                )
        else:
            assert checkpoint is not None
            state = TransactionLedger.replay(
                incoming,
                user_id=user_id,
                refill_interval=refill_interval,
                base=checkpoint[const.DATA_SYNC_CHECKPOINT_STATE],
            )

        new_watermark = (
            dt_to_iso(TransactionLedger.sort_key(merged[-1])[0])
            if merged
            else (checkpoint[const.DATA_SYNC_CHECKPOINT_WATERMARK] if checkpoint else None)
        )
        new_checkpoint: SyncCheckpointData = {
            const.DATA_SYNC_CHECKPOINT_STATE: copy.deepcopy(state),  # type: ignore[typeddict-item]
            const.DATA_SYNC_CHECKPOINT_WATERMARK: new_watermark,  # type: ignore[typeddict-item]
            const.DATA_SYNC_CHECKPOINT_IDS: [tx[const.DATA_TX_ID] for tx in merged],  # type: ignore[typeddict-item]
        }
        return ReconcileResult(
            state=state,
            transactions=tuple(merged),
            checkpoint=new_checkpoint,
            incoming=tuple(incoming),
            full_replay=full_replay,
        )
