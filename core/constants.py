"""
Policy constants for session pacing, budgets and live view.

These are fixed policy values, not configuration. Durations are in seconds.
"""

# --- Rate Limits ---

MAX_ACTIONS_PER_MINUTE = 8
MAX_APPLICATIONS_PER_SESSION = 15
MAX_EXTRACTIONS_PER_SESSION = 75
SESSION_DURATION_MAX_MINUTES = 45
ACTION_WINDOW_SECONDS = 60.0

# --- Human Behavior Timing ---

HUMAN_DELAY_MIN = 0.8
HUMAN_DELAY_MAX = 2.5
HUMAN_TYPE_MIN_MS = 50
HUMAN_TYPE_MAX_MS = 150
HUMAN_TYPE_PAUSE_CHANCE = 0.05
HUMAN_READING_PAUSE_PER_SENTENCE = 0.35
BETWEEN_LISTINGS_MIN = 5.0
BETWEEN_LISTINGS_MAX = 15.0
BETWEEN_APPLICATIONS_MIN = 30.0
BETWEEN_APPLICATIONS_MAX = 90.0
IDLE_CHANCE = 0.1
IDLE_MIN = 3.0
IDLE_MAX = 10.0

# Fraction of the bounding box a click may land in, on both axes
CLICK_BOX_MIN_FRACTION = 0.3
CLICK_BOX_MAX_FRACTION = 0.7

# --- Circuit Breaker ---

CIRCUIT_FAILURE_THRESHOLD = 3
CIRCUIT_RESET_TIMEOUT = 60.0

# --- Live View ---

LIVE_STALE_TIMEOUT = 10.0
LIVE_TICK_INTERVAL = 1 / 60

# --- Valuation Enrichment ---

ENRICHMENT_DELAY_MIN = 5.0
ENRICHMENT_DELAY_MAX = 10.0

# --- Adapter Discovery ---

ADAPTER_KEYWORD = "openorbit-adapter"
ADAPTER_METADATA_FILES = ("plugin.json", "plugin.yaml", "plugin.yml")
