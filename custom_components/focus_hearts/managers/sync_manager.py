"""Sync Manager - Opportunistic cross-device reconciliation.

Flow per user:
1. push: upload locally appended transactions not yet acknowledged
2. pull: download remote transactions after the stored cursor
3. reconcile: merge with the full local ledger under the user's lock and swap
   the result in atomically

Network I/O happens outside the per-user lock. Between the last await and the
swap there is no suspension point, so a cancellation (asyncio.CancelledError)
either happens before anything changed or not at all.

Failures never block gameplay:
- RemoteLedgerError: local state stays authoritative, pending ids stay queued
- SyncConflictError: the attempt is abandoned, local state wins
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .. import const
from ..engines.sync_engine import SyncConflictError, SyncReconciler
from ..remote import RemoteLedgerError
from ..utils.dt_utils import dt_to_iso, dt_to_utc
from .base_manager import BaseManager

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from ..coordinator import FocusHeartsDataCoordinator
    from ..engines.sync_engine import ReconcileResult
    from ..remote import RemoteLedgerClient
    from ..type_defs import HeartStateData, HeartTransactionData, UserSyncData


SYNC_STATUS_SYNCED = "synced"
SYNC_STATUS_DISABLED = "disabled"
SYNC_STATUS_OFFLINE = "offline"
SYNC_STATUS_CONFLICT = "conflict"

# Remote records that reset the (unledgered) perfect streak
_STREAK_RESETTING_REASONS = frozenset(
    {*const.LOSS_REASONS, const.GAIN_REASON_PERFECT_STREAK_3}
)


class SyncManager(BaseManager):
    """Manager for pushing, pulling and reconciling heart ledgers."""

    def __init__(
        self,
        hass: HomeAssistant,
        coordinator: FocusHeartsDataCoordinator,
        remote: RemoteLedgerClient | None = None,
    ) -> None:
        """Initialize the SyncManager.

        Args:
            hass: Home Assistant instance
            coordinator: The main FocusHearts coordinator
            remote: Remote adapter; None disables sync
        """
        super().__init__(hass, coordinator)
        self.remote = remote

    async def async_setup(self) -> None:
        """Set up the SyncManager."""
        const.LOGGER.debug(
            "SyncManager ready (remote %s)", "enabled" if self.remote else "disabled"
        )

    def bucket(self, user_id: str) -> UserSyncData:
        """Sync bookkeeping of one user (created on first use)."""
        return self._data[const.DATA_SYNC].setdefault(
            user_id,
            {
                const.DATA_SYNC_PENDING_IDS: [],
                const.DATA_SYNC_REMOTE_CURSOR: None,
                const.DATA_SYNC_CHECKPOINT: None,
                const.DATA_SYNC_LAST_SYNCED: None,
            },
        )

    def queue_pending(
        self, user_id: str, transactions: list[HeartTransactionData]
    ) -> None:
        """Remember locally appended transactions for the next push."""
        pending = self.bucket(user_id)[const.DATA_SYNC_PENDING_IDS]
        for tx in transactions:
            if tx[const.DATA_TX_ID] not in pending:
                pending.append(tx[const.DATA_TX_ID])

    # -------------------------------------------------------------------------
    # Network legs
    # -------------------------------------------------------------------------

    def _require_remote(self) -> RemoteLedgerClient:
        if self.remote is None:
            raise RemoteLedgerError("Sync is disabled: no sync URL configured")
        return self.remote

    async def async_push(self, user_id: str) -> int:
        """Upload pending transactions. Returns the number acknowledged.

        Raises:
            RemoteLedgerError: Sync disabled, or upload failed (pending ids
                remain queued)
        """
        remote = self._require_remote()
        heart_manager = self.coordinator.heart_manager
        pending_ids = list(self.bucket(user_id)[const.DATA_SYNC_PENDING_IDS])
        transactions = [
            tx
            for tx_id in pending_ids
            if (tx := heart_manager.ledger.get(user_id, tx_id)) is not None
        ]
        if not transactions:
            return 0

        accepted = set(await remote.async_push(user_id, transactions))
        # Ids missing from the ledger can never be pushed; drop them too.
        # Ids queued while the upload was in flight stay pending.
        known = {tx[const.DATA_TX_ID] for tx in transactions}
        dropped = accepted | (set(pending_ids) - known)
        pending = self.bucket(user_id)[const.DATA_SYNC_PENDING_IDS]
        pending[:] = [tx_id for tx_id in pending if tx_id not in dropped]
        const.LOGGER.debug(
            "Sync: pushed %d transaction(s) for user %s, %d still pending",
            len(accepted),
            user_id,
            len(pending),
        )
        return len(accepted)

    async def async_pull(
        self, user_id: str
    ) -> tuple[list[HeartTransactionData], str | None]:
        """Download and validate the remote tail.

        Raises:
            RemoteLedgerError: Sync disabled, or download failed
            SyncConflictError: A remote record is malformed
        """
        remote = self._require_remote()
        cursor = self.bucket(user_id)[const.DATA_SYNC_REMOTE_CURSOR]
        records, next_cursor = await remote.async_pull(user_id, cursor)
        return SyncReconciler.validate_remote(records, user_id), next_cursor

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    @staticmethod
    def overlay_local(
        reconciled: HeartStateData,
        local: HeartStateData,
        remote_tail: list[HeartTransactionData],
    ) -> HeartStateData:
        """Carry over local fields the ledger cannot reproduce.

        The perfect streak is not ledgered: the local count survives unless a
        remote record reset it. The midnight stamp keeps the later value.
        """
        if not any(
            tx[const.DATA_TX_REASON] in _STREAK_RESETTING_REASONS for tx in remote_tail
        ):
            reconciled[const.DATA_HEART_PERFECT_STREAK] = local[const.DATA_HEART_PERFECT_STREAK]
        stamps = [
            stamp
            for stamp in (
                dt_to_utc(local[const.DATA_HEART_LAST_MIDNIGHT_RESET]),
                dt_to_utc(reconciled[const.DATA_HEART_LAST_MIDNIGHT_RESET]),
            )
            if stamp is not None
        ]
        reconciled[const.DATA_HEART_LAST_MIDNIGHT_RESET] = (
            dt_to_iso(max(stamps)) if stamps else None
        )
        reconciled[const.DATA_HEART_CREATED_AT] = local[const.DATA_HEART_CREATED_AT]
        return reconciled

    async def async_reconcile(
        self,
        user_id: str,
        remote_tail: list[HeartTransactionData],
        next_cursor: str | None,
    ) -> ReconcileResult:
        """Merge the remote tail into the local ledger and swap state in."""
        heart_manager = self.coordinator.heart_manager
        async with heart_manager.lock(user_id):
            now = heart_manager.clock.now()
            local_state, created = heart_manager.ensure_user(user_id, now)
            bucket = self.bucket(user_id)
            result = SyncReconciler.reconcile(
                bucket[const.DATA_SYNC_CHECKPOINT],
                heart_manager.ledger.query(user_id),
                remote_tail,
                user_id=user_id,
                max_hearts=local_state[const.DATA_HEART_MAX],
                refill_interval=self.coordinator.refill_interval,
                created_at=dt_to_utc(local_state[const.DATA_HEART_CREATED_AT]),
            )
            local_ids = {
                tx[const.DATA_TX_ID] for tx in heart_manager.ledger.query(user_id)
            }
            new_from_remote = [
                tx for tx in remote_tail if tx[const.DATA_TX_ID] not in local_ids
            ]
            state = self.overlay_local(result.state, local_state, new_from_remote)

            # Atomic swap: no awaits from here until the save
            heart_manager.ledger.replace_user(user_id, result.transactions)
            self._data[const.DATA_USERS][user_id] = state
            bucket[const.DATA_SYNC_CHECKPOINT] = result.checkpoint
            bucket[const.DATA_SYNC_REMOTE_CURSOR] = next_cursor
            bucket[const.DATA_SYNC_LAST_SYNCED] = dt_to_iso(now)

            if created:
                self.emit(const.SIGNAL_SUFFIX_USER_ADDED, user_id=user_id)
            self.emit(
                const.SIGNAL_SUFFIX_HEARTS_CHANGED,
                user_id=user_id,
                current_hearts=state[const.DATA_HEART_CURRENT],
                transaction_ids=[tx[const.DATA_TX_ID] for tx in new_from_remote],
            )
            await self.coordinator.store.async_save()
        return result

    async def async_sync_user(self, user_id: str) -> dict[str, Any]:
        """Push, pull and reconcile one user.

        Returns a summary; network failures and conflicts are reported in it
        rather than raised.

        Raises:
            HeartsPersistenceError: Reconciled in memory but not saved
        """
        if self.remote is None:
            return {"user_id": user_id, "status": SYNC_STATUS_DISABLED}
        try:
            pushed = await self.async_push(user_id)
            remote_tail, next_cursor = await self.async_pull(user_id)
        except RemoteLedgerError as err:
            const.LOGGER.warning(
                "Sync for user %s failed, keeping local state: %s", user_id, err
            )
            return {"user_id": user_id, "status": SYNC_STATUS_OFFLINE, "error": str(err)}
        except SyncConflictError as err:
            const.LOGGER.warning(
                "Sync conflict for user %s, local state wins: %s (record: %r)",
                user_id,
                err,
                err.record,
            )
            return {"user_id": user_id, "status": SYNC_STATUS_CONFLICT, "error": str(err)}

        result = await self.async_reconcile(user_id, remote_tail, next_cursor)
        const.LOGGER.debug(
            "Sync for user %s: pushed %d, pulled %d, full replay %s",
            user_id,
            pushed,
            len(remote_tail),
            result.full_replay,
        )
        return {
            "user_id": user_id,
            "status": SYNC_STATUS_SYNCED,
            "pushed": pushed,
            "pulled": len(remote_tail),
            "incoming": len(result.incoming),
            "full_replay": result.full_replay,
            "current_hearts": result.state[const.DATA_HEART_CURRENT],
        }

    async def async_sync_all(self, user_id: str | None = None) -> list[dict[str, Any]]:
        """Sync one user or every known user.

        Raises:
            HeartsPersistenceError: A reconciled state could not be saved
        """
        user_ids = [user_id] if user_id is not None else self.coordinator.heart_manager.user_ids
        summaries = []
        for uid in user_ids:
            summaries.append(await self.async_sync_user(uid))
        return summaries

    def pending_count(self, user_id: str) -> int:
        """Transactions waiting for upload."""
        bucket = self._data[const.DATA_SYNC].get(user_id)
        return len(bucket[const.DATA_SYNC_PENDING_IDS]) if bucket else 0


__all__ = ["SyncManager"]
