"""Constants shared across the match event log."""

# --- Snapshot envelope ---
SNAPSHOT_VERSION = "1.0.0"
DEFAULT_STORAGE_KEY = "dif-coach-match-events"
EVENT_ID_PREFIX = "evt_"
MATCH_ID_PREFIX = "match_"

# --- Undo reasons ---
DEFAULT_UNDO_REASON = "user_action"
GOAL_UNDO_REASON = "goal_deleted"

# --- Time ---
MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
ZERO_MATCH_TIME = "00:00"

# Allowed drift between derived times and recorded statistics
TIME_CONSISTENCY_TOLERANCE_MS = 5000

# --- Listener notification kinds ---
EVENTS_SAVED = "events_saved"
EVENT_REMOVED = "event_removed"
EVENTS_CLEARED = "events_cleared"

# --- Storage backends ---
SQLITE_TIMEOUT_SECONDS = 30.0
SQLITE_DB_NAME = "matchlog.db"
STORE_DIR_NAME = ".matchlog"
