"""
Centralized configuration for watchstreak.
All magic numbers and thresholds are defined here.
"""

# === Completion ===

# An item is completed at min(duration * RATIO, duration - TAIL) seconds
COMPLETION_RATIO = 0.9
COMPLETION_TAIL_SECONDS = 60

# Items shorter than this are only completed by a natural "ended" event
MIN_COMPLETION_DURATION_SECONDS = 120

# === Resume ===

# A stored position this close to the end restarts the item from 0
RESUME_RESTART_WINDOW_SECONDS = 10

# prev() restarts the current item once playback is past this point
PREV_RESTART_THRESHOLD_SECONDS = 3

# === Goals & Aggregates ===

DEFAULT_DAILY_GOAL_SECONDS = 30 * 60
MIN_DAILY_GOAL_SECONDS = 60

# === Playback ===

MIN_PLAYBACK_RATE = 0.25
MAX_PLAYBACK_RATE = 3.0

# Bounds applied to a session's stored average rate
MIN_SESSION_RATE = 0.25
MAX_SESSION_RATE = 4.0

# === Timers (seconds) ===

TICK_INTERVAL_SECONDS = 1.0
CHECKPOINT_INTERVAL_SECONDS = 1.0
# Open sessions not checkpointed for this long are treated as left behind by a dead process
STALE_SESSION_SECONDS = 60.0
AGGREGATE_DEBOUNCE_SECONDS = 2.0
ROLLOVER_CHECK_SECONDS = 60.0

# Number of days shown in the dashboard history
HISTORY_DAYS = 7
