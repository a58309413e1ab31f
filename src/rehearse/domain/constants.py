"""Centralized constants for rehearse.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- FSRS-4.5 forgetting curve ----------
FSRS_FACTOR = 19 / 81
FSRS_DECAY = -0.5
FSRS_WEIGHT_COUNT = 17

# w0..w3 initial stability, w4..w5 initial difficulty, w6..w7 difficulty update,
# w8..w10 recall stability, w11..w14 forget stability, w15 hard penalty, w16 easy bonus
DEFAULT_WEIGHTS = (
    0.4872,
    1.4003,
    3.7145,
    13.8206,
    5.1618,
    1.2298,
    0.8975,
    0.031,
    1.6474,
    0.1367,
    1.0461,
    2.1072,
    0.0793,
    0.3246,
    1.587,
    0.2272,
    2.8755,
)

# ---------- Scheduling bounds ----------
DEFAULT_MIN_STABILITY = 0.01
DEFAULT_MAX_STABILITY = 36500.0
DIFFICULTY_FLOOR = 1.0
DIFFICULTY_CEILING = 10.0

# ---------- Learning configuration ----------
DEFAULT_LEARNING_STEPS = (1, 10)  # minutes
DEFAULT_RELEARNING_STEPS = (10,)  # minutes
DEFAULT_GRADUATING_INTERVAL_DAYS = 1
DEFAULT_EASY_INTERVAL_DAYS = 4
DEFAULT_MINIMUM_INTERVAL_DAYS = 1
DEFAULT_MAXIMUM_INTERVAL_DAYS = 36500
DEFAULT_DESIRED_RETENTION = 0.9
DEFAULT_LAPSE_MULTIPLIER = 0.5

# ---------- Review events ----------
MAX_RESPONSE_TIME_MS = 3_600_000  # one hour

# ---------- Session ----------
DEFAULT_SESSION_CAPACITY = 10
SESSION_CACHE_PREFIX = "session:"

# ---------- Local cache ----------
DEFAULT_CACHE_TTL_HOURS = 24
DEFAULT_CACHE_MAX_ENTRIES = 50
CONSTRAINED_CACHE_MAX_ENTRIES = 10
STORAGE_PROBE_KEY = "__rehearse_probe__"

# ---------- Daily quota (advisory, per tier) ----------
TIER_DAILY_LIMITS = {
    "free": 20,  # 2 sessions x 10 cards
    "paid": 9999,
    "admin": 9999,
}

# ---------- Optimizer ----------
MIN_REVIEWS_FOR_OPTIMIZATION = 50
OPTIMIZATION_MILESTONES = (50, 100, 250, 500, 1000, 2000)
OPTIMIZATION_STEP_AFTER_MILESTONES = 1000
MAX_WEIGHT_DELTA = 0.10
OPTIMIZER_HISTORY_WINDOW = 1000
FULL_CONFIDENCE_REVIEWS = 200
MIN_CONFIDENCE_TO_APPLY = 0.5
CALIBRATION_BINS = 10
MIN_PREDICTABLE_REVIEWS = 10
