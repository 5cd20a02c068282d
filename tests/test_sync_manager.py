"""Tests for SyncManager - push, pull and reconcile against a mocked remote."""

from __future__ import annotations

import asyncio
import copy
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from custom_components.focus_hearts import const
from custom_components.focus_hearts.engines.ledger_engine import TransactionLedger
from custom_components.focus_hearts.managers.heart_manager import HeartManager
from custom_components.focus_hearts.managers.sync_manager import (
    SYNC_STATUS_CONFLICT,
    SYNC_STATUS_DISABLED,
    SYNC_STATUS_OFFLINE,
    SYNC_STATUS_SYNCED,
    SyncManager,
)
from custom_components.focus_hearts.remote import RemoteLedgerError
from tests.helpers import T0, USER_ID, make_tx


@pytest.fixture
def remote() -> MagicMock:
    """Remote that accepts every push and has nothing new."""
    client = MagicMock()
    client.async_push = AsyncMock(
        side_effect=lambda user_id, txs: [tx[const.DATA_TX_ID] for tx in txs]
    )
    client.async_pull = AsyncMock(return_value=([], "cursor-1"))
    return client


@pytest.fixture
def sync_manager(
    heart_manager: HeartManager, mock_coordinator: MagicMock, remote: MagicMock
) -> SyncManager:
    """SyncManager wired to the mocked remote."""
    manager = mock_coordinator.sync_manager
    manager.remote = remote
    return manager


async def _lose(heart_manager: HeartManager, times: int = 1) -> None:
    for _ in range(times):
        await heart_manager.async_lose_heart(USER_ID, const.LOSS_REASON_WRONG_TAP)


class TestDisabled:
    """No remote configured."""

    async def test_disabled_without_remote(
        self, heart_manager: HeartManager, mock_coordinator: MagicMock
    ) -> None:
        """Sync reports disabled and touches nothing."""
        await _lose(heart_manager)
        summary = await mock_coordinator.sync_manager.async_sync_user(USER_ID)
        assert summary == {"user_id": USER_ID, "status": SYNC_STATUS_DISABLED}
        assert mock_coordinator.sync_manager.pending_count(USER_ID) == 1

    async def test_network_legs_refuse_without_remote(
        self, heart_manager: HeartManager, mock_coordinator: MagicMock
    ) -> None:
        """Calling push or pull directly raises instead of failing an assert."""
        await _lose(heart_manager)
        manager = mock_coordinator.sync_manager
        with pytest.raises(RemoteLedgerError):
            await manager.async_push(USER_ID)
        with pytest.raises(RemoteLedgerError):
            await manager.async_pull(USER_ID)
        assert manager.pending_count(USER_ID) == 1


class TestPushPull:
    """Happy path."""

    async def test_push_drains_pending(
        self, heart_manager: HeartManager, sync_manager: SyncManager, remote: MagicMock
    ) -> None:
        """Acknowledged ids leave the queue; bookkeeping is stamped."""
        await _lose(heart_manager, 2)
        summary = await sync_manager.async_sync_user(USER_ID)

        assert summary["status"] == SYNC_STATUS_SYNCED
        assert summary["pushed"] == 2
        assert summary["current_hearts"] == 3
        assert sync_manager.pending_count(USER_ID) == 0
        bucket = sync_manager.bucket(USER_ID)
        assert bucket[const.DATA_SYNC_REMOTE_CURSOR] == "cursor-1"
        assert bucket[const.DATA_SYNC_LAST_SYNCED] == T0.isoformat()
        assert bucket[const.DATA_SYNC_CHECKPOINT] is not None
        remote.async_pull.assert_awaited_once_with(USER_ID, None)

    async def test_partial_ack_keeps_rest_queued(
        self, heart_manager: HeartManager, sync_manager: SyncManager, remote: MagicMock
    ) -> None:
        """Only acknowledged ids are dropped."""
        await _lose(heart_manager, 2)
        first_id = sync_manager.bucket(USER_ID)[const.DATA_SYNC_PENDING_IDS][0]
        remote.async_push.side_effect = None
        remote.async_push.return_value = [first_id]
        assert await sync_manager.async_push(USER_ID) == 1
        assert sync_manager.pending_count(USER_ID) == 1

    async def test_nothing_pending_skips_upload(
        self, heart_manager: HeartManager, sync_manager: SyncManager, remote: MagicMock
    ) -> None:
        """An empty queue sends no request."""
        await heart_manager.async_get_state(USER_ID)
        assert await sync_manager.async_push(USER_ID) == 0
        remote.async_push.assert_not_awaited()

    async def test_remote_tail_is_merged(
        self,
        heart_manager: HeartManager,
        sync_manager: SyncManager,
        remote: MagicMock,
    ) -> None:
        """A loss made on another device lands locally, exactly once."""
        await _lose(heart_manager)
        other_device = make_tx(const.LOSS_REASON_EARLY_QUIT, T0 + timedelta(minutes=3))
        remote.async_pull.return_value = ([other_device], "cursor-2")

        summary = await sync_manager.async_sync_user(USER_ID)
        assert summary["pulled"] == 1
        assert summary["current_hearts"] == 3
        assert heart_manager.ledger.count(USER_ID) == 2
        assert heart_manager.get_user_state(USER_ID)[const.DATA_HEART_CURRENT] == 3
        sync_manager.emit.assert_any_call(
            const.SIGNAL_SUFFIX_HEARTS_CHANGED,
            user_id=USER_ID,
            current_hearts=3,
            transaction_ids=[other_device[const.DATA_TX_ID]],
        )

        # Pulling the same record again changes nothing
        remote.async_pull.return_value = ([other_device], "cursor-2")
        again = await sync_manager.async_sync_user(USER_ID)
        assert again["incoming"] == 0
        assert heart_manager.ledger.count(USER_ID) == 2
        assert (await heart_manager.async_verify_ledger(USER_ID))["consistent"]

    async def test_sync_all_covers_every_user(
        self, heart_manager: HeartManager, sync_manager: SyncManager
    ) -> None:
        """One summary per known user."""
        await heart_manager.async_get_state("user-1")
        await heart_manager.async_get_state("user-2")
        summaries = await sync_manager.async_sync_all()
        assert [s["user_id"] for s in summaries] == ["user-1", "user-2"]
        only = await sync_manager.async_sync_all("user-2")
        assert [s["user_id"] for s in only] == ["user-2"]


class TestFailures:
    """Network errors and conflicts never touch local state."""

    async def test_offline_keeps_queue(
        self, heart_manager: HeartManager, sync_manager: SyncManager, remote: MagicMock
    ) -> None:
        """A failed upload leaves everything pending."""
        await _lose(heart_manager)
        remote.async_push.side_effect = RemoteLedgerError("unreachable")
        summary = await sync_manager.async_sync_user(USER_ID)
        assert summary["status"] == SYNC_STATUS_OFFLINE
        assert sync_manager.pending_count(USER_ID) == 1
        assert sync_manager.bucket(USER_ID)[const.DATA_SYNC_CHECKPOINT] is None

    async def test_malformed_remote_is_conflict(
        self, heart_manager: HeartManager, sync_manager: SyncManager, remote: MagicMock
    ) -> None:
        """A bad record abandons the attempt; local state wins."""
        await _lose(heart_manager)
        remote.async_pull.return_value = ([{const.DATA_TX_ID: "x"}], "cursor-9")
        summary = await sync_manager.async_sync_user(USER_ID)
        assert summary["status"] == SYNC_STATUS_CONFLICT
        assert sync_manager.bucket(USER_ID)[const.DATA_SYNC_REMOTE_CURSOR] is None
        assert heart_manager.get_user_state(USER_ID)[const.DATA_HEART_CURRENT] == 4


class TestCancellation:
    """A cancelled sync leaves the ledger and state exactly as they were."""

    @staticmethod
    def _capture(heart_manager: HeartManager, sync_manager: SyncManager) -> dict:
        return copy.deepcopy(
            {
                "state": heart_manager.get_user_state(USER_ID),
                "ledger": list(heart_manager.ledger.query(USER_ID)),
                "bucket": sync_manager.bucket(USER_ID),
            }
        )

    async def test_cancelled_push_changes_nothing(
        self, heart_manager: HeartManager, sync_manager: SyncManager, remote: MagicMock
    ) -> None:
        """Cancellation during upload keeps every id queued."""
        await _lose(heart_manager, 2)
        before = self._capture(heart_manager, sync_manager)
        remote.async_push.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await sync_manager.async_sync_user(USER_ID)

        assert self._capture(heart_manager, sync_manager) == before
        assert sync_manager.pending_count(USER_ID) == 2
        assert not heart_manager.lock(USER_ID).locked()
        remote.async_pull.assert_not_awaited()

    async def test_cancelled_pull_changes_nothing(
        self, heart_manager: HeartManager, sync_manager: SyncManager, remote: MagicMock
    ) -> None:
        """Cancellation during download applies none of the remote tail."""
        await _lose(heart_manager, 1)
        await sync_manager.async_sync_user(USER_ID)
        before = self._capture(heart_manager, sync_manager)
        remote.async_pull.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await sync_manager.async_sync_user(USER_ID)

        assert self._capture(heart_manager, sync_manager) == before
        assert before["bucket"][const.DATA_SYNC_CHECKPOINT] is not None
        assert not heart_manager.lock(USER_ID).locked()

    async def test_cancelled_while_waiting_for_lock(
        self, heart_manager: HeartManager, sync_manager: SyncManager, remote: MagicMock
    ) -> None:
        """A reconcile cancelled before it holds the user lock swaps nothing in."""
        await _lose(heart_manager, 1)
        other_device = make_tx(const.LOSS_REASON_EARLY_QUIT, T0 + timedelta(minutes=3))
        remote.async_pull.return_value = ([other_device], "cursor-2")
        remote.async_push.side_effect = None
        remote.async_push.return_value = []
        before = self._capture(heart_manager, sync_manager)

        lock = heart_manager.lock(USER_ID)
        await lock.acquire()
        task = asyncio.create_task(sync_manager.async_sync_user(USER_ID))
        for _ in range(3):
            await asyncio.sleep(0)
        remote.async_pull.assert_awaited_once()
        task.cancel()
        lock.release()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert self._capture(heart_manager, sync_manager) == before
        assert not heart_manager.ledger.contains(USER_ID, other_device[const.DATA_TX_ID])
        assert (await heart_manager.async_verify_ledger(USER_ID))["consistent"]


class TestOverlay:
    """Local-only fields survive reconciliation."""

    @staticmethod
    def _states():
        local = TransactionLedger.new_state(USER_ID, 5, T0)
        local[const.DATA_HEART_PERFECT_STREAK] = 2
        local[const.DATA_HEART_LAST_MIDNIGHT_RESET] = (T0 + timedelta(hours=13)).isoformat()
        reconciled = TransactionLedger.new_state(USER_ID, 5, T0 - timedelta(days=1))
        return local, reconciled

    def test_streak_kept_without_remote_reset(self) -> None:
        """A remote gain does not clear the local streak."""
        local, reconciled = self._states()
        tail = [make_tx(const.GAIN_REASON_WATCH_TIP, T0)]
        state = SyncManager.overlay_local(reconciled, local, tail)
        assert state[const.DATA_HEART_PERFECT_STREAK] == 2
        assert state[const.DATA_HEART_LAST_MIDNIGHT_RESET] == (
            T0 + timedelta(hours=13)
        ).isoformat()
        assert state[const.DATA_HEART_CREATED_AT] == local[const.DATA_HEART_CREATED_AT]

    def test_remote_loss_resets_streak(self) -> None:
        """A remote loss breaks the streak."""
        local, reconciled = self._states()
        tail = [make_tx(const.LOSS_REASON_FOCUS_BREAK, T0)]
        state = SyncManager.overlay_local(reconciled, local, tail)
        assert state[const.DATA_HEART_PERFECT_STREAK] == 0
