"""
Application-wide constants.

Defines thresholds, parameter bounds and status vocabularies shared by the
analytics services and the report routers.
"""

# Health report parameter bounds
STALE_DAYS_MIN = 7
STALE_DAYS_MAX = 90

MIN_EXECUTIONS_MIN = 3
MIN_EXECUTIONS_MAX = 20

LOOKBACK_DAYS_MIN = 30
LOOKBACK_DAYS_MAX = 365
LOOKBACK_ALL_TIME = 0
"""A lookback of 0 disables the window and scores the full history."""

# Health score deductions
NEVER_EXECUTED_PENALTY = 50
STALENESS_TIERS = ((90, 40), (60, 25), (30, 10))
"""(days exceeded, deduction) pairs, checked from the highest tier down."""

SUSPICIOUS_PASS_PENALTY = 5
BROKEN_TEST_PENALTY = 30
LOW_PASS_RATE_PENALTY = 20
LOW_PASS_RATE_THRESHOLD = 50
LOW_FREQUENCY_EXECUTIONS = 3
LOW_FREQUENCY_PENALTY = 10

# Flaky test detection
CONSECUTIVE_RUNS_MIN = 5
CONSECUTIVE_RUNS_MAX = 30
FLIP_THRESHOLD_MIN = 2

RECENCY_DECAY_FACTOR = 0.7
"""Each older execution weighs 70% of the one after it."""

FLIP_WEIGHT = 0.5
RECENCY_WEIGHT = 0.5

# Test case sources
AUTOMATED_SOURCES = ("JUNIT", "TESTNG", "XUNIT", "NUNIT", "MSTEST", "MOCHA", "CUCUMBER")
MANUAL_SOURCES = ("MANUAL", "API")

# Synthetic statuses for automated results without an explicit status mapping
AUTOMATED_STATUS_FALLBACK = {
    "PASSED": (-1, "#22c55e"),
    "FAILURE": (-2, "#ef4444"),
    "ERROR": (-3, "#ef4444"),
}
NEUTRAL_STATUS_COLOR = "#6b7280"

# Milestone progress
UNTESTED_STATUS_NAME = "Untested"
UNTESTED_STATUS_COLOR = "#9ca3af"
MIN_SEGMENT_WIDTH_PERCENT = 3

# Pagination
PAGE_SIZE_ALL = "All"
"""Page size sentinel meaning 'return every row'."""
