"""Manager modules for FocusHearts integration.

Managers are STATEFUL: they own per-user locks, persist through the store and
emit instance-scoped events. Transition rules live in the engines.
"""

from .base_manager import BaseManager
from .heart_manager import HeartManager, HeartSnapshot
from .sync_manager import SyncManager

__all__ = ["BaseManager", "HeartManager", "HeartSnapshot", "SyncManager"]
