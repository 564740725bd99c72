"""Timing and tolerance constants for cyclesnap.

All times are in MIDI ticks unless the name says otherwise.

- ``DEFAULT_TICKS_PER_BEAT`` - resolution assumed when a file reports none.
- ``DEFAULT_BPM`` - tempo used when the source has no ``set_tempo`` event.
- ``FALLBACK_SEGMENT_TICKS`` - length of the single synthesized segment for
  degenerate (empty or single-point) timelines.
"""

DEFAULT_TICKS_PER_BEAT = 960
DEFAULT_BPM = 120.0

FALLBACK_SEGMENT_TICKS = 960.0

# Event starts closer than this to the previous grid point do not open a new segment.
GRID_DEBOUNCE_TICKS = 0.001

# Events further than this from every grid point, and past the end, go to the last bucket.
TRAILING_EVENT_TICKS = 1.0

# Materialized events closer together than this are ordered as simultaneous.
SIMULTANEITY_TICKS = 1e-6

# Source durations at or below this are treated as empty.
MIN_SOURCE_TICKS = 1e-7

# Solver
BISECTION_ITERATIONS = 100
BISECTION_TOLERANCE = 1e-7
BISECTION_LOW = 0.00001
BISECTION_HIGH = 2.0
BISECTION_MAX_EXPANSIONS = 30
LINEAR_SNAP_TOLERANCE = 0.001

# Step scales this close to 1.0 are summed as an unscaled pattern.
UNITY_SCALE_TOLERANCE = 1e-7

MIN_SEARCH_LIMIT = 1000
SEARCH_LIMIT_PER_SEGMENT = 100

# Drift rating thresholds, in milliseconds.
DRIFT_TIGHT_MS = 10.0
DRIFT_LOOSE_MS = 30.0
