# File: const.py
"""Constants for the FocusHearts integration.

This file centralizes configuration keys, defaults, storage keys, transaction
reasons, service names and signal suffixes for consistency across the
integration.
"""

import logging

import homeassistant.util.dt as dt_util
from homeassistant.const import Platform

from .utils import dt_utils


def set_default_timezone(hass):
    """Set the default timezone based on the Home Assistant configuration."""
    global DEFAULT_TIME_ZONE
    DEFAULT_TIME_ZONE = dt_util.get_time_zone(hass.config.time_zone)
    dt_utils.set_default_timezone(DEFAULT_TIME_ZONE)


# ------------------------------------------------------------------------------------------------
# General / Integration Information
# ------------------------------------------------------------------------------------------------
FOCUS_HEARTS_TITLE = "FocusHearts"

DOMAIN = "focus_hearts"

LOGGER = logging.getLogger(__package__)

PLATFORMS = [
    Platform.SENSOR,
]

# Coordinator
COORDINATOR = "coordinator"
COORDINATOR_SUFFIX = "_coordinator"

# Storage and Versioning
STORE = "store"
STORAGE_KEY = "focus_hearts_data"
STORAGE_VERSION = 1
SCHEMA_VERSION = 1

# Default timezone: initially None, to be set once hass is available.
DEFAULT_TIME_ZONE = None

# ------------------------------------------------------------------------------------------------
# Configuration Keys
# ------------------------------------------------------------------------------------------------
CONF_MAX_HEARTS = "max_hearts"
CONF_REFILL_INTERVAL_HOURS = "refill_interval_hours"
CONF_TICK_INTERVAL_MINUTES = "tick_interval_minutes"
CONF_SYNC_URL = "sync_url"
CONF_SYNC_INTERVAL_MINUTES = "sync_interval_minutes"
CONF_MANUAL_REFILL_DAILY_LIMIT = "manual_refill_daily_limit"
CONF_STRICT_INVARIANTS = "strict_invariants"

# ------------------------------------------------------------------------------------------------
# Defaults
# ------------------------------------------------------------------------------------------------
DEFAULT_MAX_HEARTS = 5
DEFAULT_REFILL_INTERVAL_HOURS = 4
DEFAULT_TICK_INTERVAL_MINUTES = 1
DEFAULT_SYNC_URL = ""
DEFAULT_SYNC_INTERVAL_MINUTES = 15
DEFAULT_MANUAL_REFILL_DAILY_LIMIT = 0  # 0 = unlimited
DEFAULT_STRICT_INVARIANTS = False

# Perfect challenges in a row that grant a bonus heart
PERFECT_STREAK_BONUS_THRESHOLD = 3

# Hearts required before a challenge may start
MIN_HEARTS_TO_START = 1
MIN_HEARTS_TO_START_DIFFICULT = 2

# Midnight rollover trigger (local time)
DEFAULT_DAILY_RESET_TIME = {"hour": 0, "minute": 0, "second": 0}

# Premium display sentinel
UNLIMITED_HEARTS_DISPLAY = "unlimited"

# ------------------------------------------------------------------------------------------------
# Storage Data Keys
# ------------------------------------------------------------------------------------------------
DATA_META = "meta"
DATA_META_SCHEMA_VERSION = "schema_version"

DATA_USERS = "users"
DATA_TRANSACTIONS = "transactions"
DATA_PREMIUM = "premium"
DATA_SYNC = "sync"

# HeartState fields
DATA_HEART_USER_ID = "user_id"
DATA_HEART_CURRENT = "current_hearts"
DATA_HEART_MAX = "max_hearts"
DATA_HEART_LAST_LOST = "last_heart_lost"
DATA_HEART_LAST_MIDNIGHT_RESET = "last_midnight_reset"
DATA_HEART_REFILL_SLOTS = "refill_slots"
DATA_HEART_PERFECT_STREAK = "perfect_streak_count"
DATA_HEART_TOTAL_LOST = "total_hearts_lost"
DATA_HEART_TOTAL_GAINED = "total_hearts_gained"
DATA_HEART_CREATED_AT = "created_at"

# RefillSlot fields
DATA_SLOT_ID = "id"
DATA_SLOT_SCHEDULED_TIME = "scheduled_refill_time"
DATA_SLOT_IS_REFILLED = "is_refilled"

# HeartTransaction fields
DATA_TX_ID = "id"
DATA_TX_USER_ID = "user_id"
DATA_TX_TIMESTAMP = "timestamp"
DATA_TX_TYPE = "type"
DATA_TX_AMOUNT = "amount"
DATA_TX_REASON = "reason"
DATA_TX_CHALLENGE_ID = "challenge_id"
DATA_TX_SLOT_ID = "slot_id"

# Sync bookkeeping fields
DATA_SYNC_PENDING_IDS = "pending_ids"
DATA_SYNC_REMOTE_CURSOR = "remote_cursor"
DATA_SYNC_CHECKPOINT = "checkpoint"
DATA_SYNC_CHECKPOINT_STATE = "state"
DATA_SYNC_CHECKPOINT_WATERMARK = "watermark"
DATA_SYNC_CHECKPOINT_IDS = "ids"
DATA_SYNC_LAST_SYNCED = "last_synced"

# ------------------------------------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------------------------------------
TX_TYPE_LOSS = "loss"
TX_TYPE_GAIN = "gain"
TX_TYPE_REFILL = "refill"
TX_TYPES = (TX_TYPE_LOSS, TX_TYPE_GAIN, TX_TYPE_REFILL)

# Loss reasons
LOSS_REASON_FOCUS_BREAK = "focus_break"
LOSS_REASON_WRONG_TAP = "wrong_tap"
LOSS_REASON_DISTRACTION_FAIL = "distraction_fail"
LOSS_REASON_EARLY_QUIT = "early_quit"
LOSS_REASON_TEST_FAIL = "test_fail"
LOSS_REASONS = (
    LOSS_REASON_FOCUS_BREAK,
    LOSS_REASON_WRONG_TAP,
    LOSS_REASON_DISTRACTION_FAIL,
    LOSS_REASON_EARLY_QUIT,
    LOSS_REASON_TEST_FAIL,
)

# Gain reasons
GAIN_REASON_DAILY_SESSION_COMPLETE = "daily_session_complete"
GAIN_REASON_PERFECT_STREAK_3 = "perfect_streak_3"
GAIN_REASON_FOCUS_RESET_ANIMATION = "focus_reset_animation"
GAIN_REASON_BREATHING_EXERCISE = "breathing_exercise"
GAIN_REASON_MICRO_FOCUS = "micro_focus"
GAIN_REASON_INVITE_FRIEND = "invite_friend"
GAIN_REASON_WATCH_TIP = "watch_tip"
GAIN_REASON_MIDNIGHT_RESET = "midnight_reset"
GAIN_REASON_HOURLY_REFILL = "hourly_refill"
GAIN_REASONS = (
    GAIN_REASON_DAILY_SESSION_COMPLETE,
    GAIN_REASON_PERFECT_STREAK_3,
    GAIN_REASON_FOCUS_RESET_ANIMATION,
    GAIN_REASON_BREATHING_EXERCISE,
    GAIN_REASON_MICRO_FOCUS,
    GAIN_REASON_INVITE_FRIEND,
    GAIN_REASON_WATCH_TIP,
    GAIN_REASON_MIDNIGHT_RESET,
    GAIN_REASON_HOURLY_REFILL,
)

# Reasons a caller may pass to gain_heart (the rest are produced internally)
MANUAL_GAIN_REASONS = (
    GAIN_REASON_DAILY_SESSION_COMPLETE,
    GAIN_REASON_FOCUS_RESET_ANIMATION,
    GAIN_REASON_BREATHING_EXERCISE,
    GAIN_REASON_MICRO_FOCUS,
    GAIN_REASON_INVITE_FRIEND,
    GAIN_REASON_WATCH_TIP,
)

# Refill actions offered when a user runs out of hearts
REFILL_ACTION_BREATHING_EXERCISE = "breathing_exercise"
REFILL_ACTION_MICRO_FOCUS = "micro_focus"
REFILL_ACTION_INVITE_FRIEND = "invite_friend"
REFILL_ACTION_WATCH_TIP = "watch_tip"
REFILL_ACTION_GAIN_REASONS = {
    REFILL_ACTION_BREATHING_EXERCISE: GAIN_REASON_BREATHING_EXERCISE,
    REFILL_ACTION_MICRO_FOCUS: GAIN_REASON_MICRO_FOCUS,
    REFILL_ACTION_INVITE_FRIEND: GAIN_REASON_INVITE_FRIEND,
    REFILL_ACTION_WATCH_TIP: GAIN_REASON_WATCH_TIP,
}

# Gains that count toward the manual refill daily limit
RATE_LIMITED_GAIN_REASONS = (
    GAIN_REASON_FOCUS_RESET_ANIMATION,
    GAIN_REASON_BREATHING_EXERCISE,
    GAIN_REASON_MICRO_FOCUS,
    GAIN_REASON_INVITE_FRIEND,
    GAIN_REASON_WATCH_TIP,
)

# ------------------------------------------------------------------------------------------------
# Operation Outcomes
# ------------------------------------------------------------------------------------------------
NOOP_REASON_PREMIUM = "premium"
NOOP_REASON_EMPTY = "no_hearts"
NOOP_REASON_FULL = "pool_full"
NOOP_REASON_NO_MIDNIGHT = "midnight_not_crossed"
NOOP_REASON_RATE_LIMITED = "rate_limited"
NOOP_REASON_DUPLICATE = "duplicate"

CAN_START_REASON_NO_HEARTS = "no_hearts"
CAN_START_REASON_NEEDS_MORE_HEARTS = "needs_more_hearts"

# ------------------------------------------------------------------------------------------------
# Event Signals (instance-scoped via get_event_signal)
# ------------------------------------------------------------------------------------------------
SIGNAL_SUFFIX_HEARTS_CHANGED = "hearts_changed"
SIGNAL_SUFFIX_USER_ADDED = "user_added"

# ------------------------------------------------------------------------------------------------
# Services
# ------------------------------------------------------------------------------------------------
SERVICE_LOSE_HEART = "lose_heart"
SERVICE_GAIN_HEART = "gain_heart"
SERVICE_RECORD_PERFECT = "record_perfect"
SERVICE_COMPLETE_REFILL_ACTION = "complete_refill_action"
SERVICE_GET_STATE = "get_state"
SERVICE_CAN_START_CHALLENGE = "can_start_challenge"
SERVICE_PROCESS_DUE = "process_due"
SERVICE_SET_PREMIUM = "set_premium"
SERVICE_SYNC_NOW = "sync_now"
SERVICE_VERIFY_LEDGER = "verify_ledger"

FIELD_USER_ID = "user_id"
FIELD_REASON = "reason"
FIELD_AMOUNT = "amount"
FIELD_CHALLENGE_ID = "challenge_id"
FIELD_ACTION = "action"
FIELD_IS_DIFFICULT = "is_difficult"
FIELD_PREMIUM = "premium"

# ------------------------------------------------------------------------------------------------
# Sensor
# ------------------------------------------------------------------------------------------------
SENSOR_UID_SUFFIX_HEARTS = "_hearts"
TRANS_KEY_SENSOR_HEARTS = "hearts_sensor"
DEFAULT_HEARTS_ICON = "mdi:heart"
DEFAULT_HEARTS_EMPTY_ICON = "mdi:heart-outline"
DEFAULT_HEARTS_UNLIMITED_ICON = "mdi:heart-plus"

ATTR_USER_ID = "user_id"
ATTR_MAX_HEARTS = "max_hearts"
ATTR_IS_PREMIUM = "is_premium"
ATTR_NEXT_REFILL_AT = "next_refill_at"
ATTR_NEXT_REFILL_IN = "next_refill_in"
ATTR_OPEN_SLOTS = "open_slots"
ATTR_PERFECT_STREAK = "perfect_streak_count"
ATTR_TOTAL_LOST = "total_hearts_lost"
ATTR_TOTAL_GAINED = "total_hearts_gained"
ATTR_LAST_HEART_LOST = "last_heart_lost"

# ------------------------------------------------------------------------------------------------
# Remote sync (HTTP adapter)
# ------------------------------------------------------------------------------------------------
REMOTE_PATH_TRANSACTIONS = "/users/{user_id}/heart_transactions"
REMOTE_TIMEOUT_SECONDS = 20
REMOTE_KEY_TRANSACTIONS = "transactions"
REMOTE_KEY_CURSOR = "cursor"
REMOTE_KEY_ACCEPTED = "accepted"

# ------------------------------------------------------------------------------------------------
# Translation keys / errors
# ------------------------------------------------------------------------------------------------
TRANS_KEY_ERROR_SINGLE_INSTANCE = "single_instance_allowed"
TRANS_KEY_ERROR_INVALID_SYNC_URL = "invalid_sync_url"

ERROR_UNKNOWN_REASON_FMT = "Unknown heart reason '{}'"
ERROR_UNKNOWN_ACTION_FMT = "Unknown refill action '{}'"
ERROR_NOT_LOADED = "FocusHearts is not loaded"
