"""Protocol constants for the index pool.

All weights, fees and balances are 18-decimal fixed-point integers scaled by
BONE. Durations are in seconds.
"""

# Fixed-point unit (1.0 in 18-decimal arithmetic)
BONE = 10**18

# Time units
ONE_HOUR = 60 * 60
ONE_DAY = 24 * ONE_HOUR
ONE_WEEK = 7 * ONE_DAY

# =============================================================================
# Pool bounds
# =============================================================================

MIN_BOUND_TOKENS = 2
MAX_BOUND_TOKENS = 10

MIN_FEE = BONE // 10**6  # 0.0001%
MAX_FEE = BONE // 10  # 10%
DEFAULT_SWAP_FEE = BONE * 25 // 1000  # 2.5%

# Charged in pool shares on every exit, paid to the exit fee recipient
EXIT_FEE = BONE // 200  # 0.5%

MIN_WEIGHT = BONE // 4
MAX_WEIGHT = 25 * BONE
MAX_TOTAL_WEIGHT = 27 * BONE

MIN_BALANCE = BONE // 10**12
INIT_POOL_SUPPLY = 100 * BONE

# bpow bounds
MIN_BPOW_BASE = 1
MAX_BPOW_BASE = 2 * BONE - 1
BPOW_PRECISION = BONE // 10**10

# Fraction of a balance that a single operation may move
MAX_IN_RATIO = BONE // 2
MAX_OUT_RATIO = BONE // 3 + 1

# Rate limits
WEIGHT_UPDATE_DELAY = ONE_HOUR
MIN_BALANCE_UPDATE_DELAY = 6 * ONE_HOUR

# =============================================================================
# Oracle and category defaults
# =============================================================================

OBSERVATION_PERIOD = ONE_DAY

SHORT_TWAP_MIN_TIME_ELAPSED = ONE_HOUR
SHORT_TWAP_MAX_TIME_ELAPSED = 2 * ONE_DAY
LONG_TWAP_MIN_TIME_ELAPSED = ONE_DAY
LONG_TWAP_MAX_TIME_ELAPSED = 2 * ONE_WEEK

MAX_CATEGORY_TOKENS = 25
CATEGORY_SORT_DELAY = ONE_DAY

# =============================================================================
# Controller defaults
# =============================================================================

# Desired weights are normalized fractions scaled to this total
WEIGHT_MULTIPLIER = 25 * BONE

REWEIGH_DELAY = ONE_HOUR
REINDEX_DELAY = 2 * ONE_WEEK

# New tokens must reach this share of the pool value before they trade
MIN_BALANCE_POOL_SHARE_DIVISOR = 100
