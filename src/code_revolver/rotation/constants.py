"""Constants for the rotation module.

This module centralizes thresholds and weights used across the rotation package.
"""

# Time constants
SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR

# Switch score weights
PRIORITY_WEIGHT = 1000
USAGE_WEIGHT = 5
UNKNOWN_RESET_PENALTY = 10_000

# An unknown window is assumed fully used
UNKNOWN_USED_PERCENT = 100.0

# "Best available" never recommends an account this close to exhaustion
BEST_CANDIDATE_MAX_USED_PERCENT = 99.0

# Presentation grouping: secondary usage above this is "approaching exhaustion"
EXHAUSTION_GROUP_THRESHOLD_PERCENT = 90.0

DEFAULT_RANKED_CANDIDATES_LIMIT = 4

USAGE_REFRESH_JOB_ID = "usage_refresh"
