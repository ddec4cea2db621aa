"""
Enumeration definitions for the Allocation Pulse backend.

All enums inherit from both `str` and `Enum` to ensure JSON serialization
compatibility with Pydantic models, enabling automatic serialization in API
responses and plain string values in DataFrame columns.

The segment enums describe the default label sets. Label sets are configurable
(see Settings.coarse_labels / Settings.fine_labels), so pipeline frames carry
plain strings and these enums are only the canonical defaults.
"""

from enum import Enum


class LeanSegment(str, Enum):
    """
    Coarse 3-level segment used for every rate comparison.

    Default cut points: 0.4 and 0.6 on the region lean scale.
    - low:  mean_lean < 0.4
    - mid:  0.4 <= mean_lean < 0.6
    - high: mean_lean >= 0.6
    """
    LOW = "low"
    MID = "mid"
    HIGH = "high"


class LeanBand(str, Enum):
    """
    Fine 5-level lean band used for display.

    Default cut points: 0.2, 0.4, 0.6, 0.8. Ordered from strongest
    opposition to strongest support of the lean attribute.
    """
    STRONG_OPPOSITION = "strong_opposition"
    LEAN_OPPOSITION = "lean_opposition"
    NEUTRAL = "neutral"
    LEAN_SUPPORT = "lean_support"
    STRONG_SUPPORT = "strong_support"


class TableType(str, Enum):
    """
    Input tables consumed by the pipeline.

    Each value doubles as the key into the required-column and code-column
    maps in services/ingestion.py.
    """
    GEO_UNITS = "geo_units"
    ZIP_MAPPING = "zip_mapping"
    ENTITIES = "entities"
    EVENTS = "events"


class Period(str, Enum):
    """
    Position of a bucket relative to the pivot's calendar date.

    - pre:  bucket_start strictly before the pivot date (feeds the baseline)
    - post: everything else
    """
    PRE = "pre"
    POST = "post"


class DeltaDirection(str, Enum):
    """Sign of an allocation change (to_state - from_state)."""
    INCREASE = "increase"
    DECREASE = "decrease"
    UNCHANGED = "unchanged"
