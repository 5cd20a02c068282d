"""Engine modules for FocusHearts integration.

Contains pure computation engines:
- refill_engine: Per-heart refill slot scheduling
- ledger_engine: Append-only transaction ledger and replay
- heart_engine: Heart pool state machine and premium override
- sync_engine: Cross-device ledger reconciliation
"""

# Use relative imports within package to avoid mypy module resolution issues
from .heart_engine import HeartPool, HeartResult, InvariantViolationError, PremiumOverride
from .ledger_engine import (
    AppendOutcome,
    InvalidTransactionError,
    TransactionLedger,
    derive_transaction_id,
)
from .refill_engine import RefillScheduler
from .sync_engine import ReconcileResult, SyncConflictError, SyncReconciler

__all__ = [
    "AppendOutcome",
    "HeartPool",
    "HeartResult",
    "InvalidTransactionError",
    "InvariantViolationError",
    "PremiumOverride",
    "ReconcileResult",
    "RefillScheduler",
    "SyncConflictError",
    "SyncReconciler",
    "TransactionLedger",
    "derive_transaction_id",
]
