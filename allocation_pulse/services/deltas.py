"""
Direction/Distribution Aggregator Service.

Describes the raw magnitude of allocation changes around the pivot. There is
no denominator here: each event contributes its own signed delta.

    delta = to_state - from_state

Events are taken from the half-open window

    [pivot_at - half_window, pivot_at + half_window)

Outputs:
    event_deltas()        one row per event (occurred_at, entity_id, segment,
                          from_state, to_state, delta, direction)
    delta_distribution()  per (bucket_start, segment): count, mean, min,
                          quartiles, max and direction counts. Rows with a
                          null segment summarize every event in the bucket,
                          matching the unsegmented rate series.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence
import logging

import numpy as np
import pandas as pd

from allocation_pulse.models import DeltaDirection
from allocation_pulse.services.bucketizer import (
    DEFAULT_BUCKET_MINUTES,
    floor_to_bucket,
    sort_records,
)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_HALF_WINDOW_HOURS: int = 72

DELTA_COLUMNS: List[str] = [
    'occurred_at',
    'entity_id',
    'segment',
    'from_state',
    'to_state',
    'delta',
    'direction',
]

DISTRIBUTION_COLUMNS: List[str] = [
    'bucket_start',
    'segment',
    'event_count',
    'mean_delta',
    'min_delta',
    'q1_delta',
    'median_delta',
    'q3_delta',
    'max_delta',
    'increases',
    'decreases',
    'unchanged',
]

logger = logging.getLogger(__name__)


# =============================================================================
# Per-Event Deltas
# =============================================================================


def classify_direction(deltas: pd.Series) -> pd.Series:
    """Map signed deltas to increase / decrease / unchanged."""
    labels = np.select(
        [deltas > 0, deltas < 0],
        [DeltaDirection.INCREASE.value, DeltaDirection.DECREASE.value],
        default=DeltaDirection.UNCHANGED.value,
    )
    return pd.Series(labels, index=deltas.index, dtype=object)


def event_deltas(
    events: pd.DataFrame,
    pivot_at: datetime,
    half_window_hours: int = DEFAULT_HALF_WINDOW_HOURS,
) -> pd.DataFrame:
    """
    Signed delta of every event near the pivot.

    Args:
        events: Window-filtered events carrying a segment column
            (see bucketizer.attach_segments).
        pivot_at: Pivot timestamp.
        half_window_hours: Hours on each side of the pivot.

    Returns:
        DataFrame with DELTA_COLUMNS sorted by occurred_at then entity_id.
    """
    pivot = pd.Timestamp(pivot_at)
    half_window = timedelta(hours=half_window_hours)
    occurred = pd.to_datetime(events['occurred_at'])
    near = events[(occurred >= pivot - half_window) & (occurred < pivot + half_window)]

    out = near[['occurred_at', 'entity_id', 'segment', 'from_state', 'to_state']].copy()
    out['from_state'] = out['from_state'].astype(float)
    out['to_state'] = out['to_state'].astype(float)
    out['delta'] = out['to_state'] - out['from_state']
    out['direction'] = classify_direction(out['delta'])

    logger.info(
        f"Collected {len(out)} event deltas within {half_window_hours}h of {pivot}"
    )
    return (
        out[DELTA_COLUMNS]
        .sort_values(['occurred_at', 'entity_id'], kind='stable')
        .reset_index(drop=True)
    )


# =============================================================================
# Bucketed Distribution
# =============================================================================


def _q1(values: pd.Series) -> float:
    return float(values.quantile(0.25))


def _q3(values: pd.Series) -> float:
    return float(values.quantile(0.75))


def _summarize(frame: pd.DataFrame, keys: List[str]) -> pd.DataFrame:
    return (
        frame.groupby(keys, sort=True)
        .agg(
            event_count=('delta', 'size'),
            mean_delta=('delta', 'mean'),
            min_delta=('delta', 'min'),
            q1_delta=('delta', _q1),
            median_delta=('delta', 'median'),
            q3_delta=('delta', _q3),
            max_delta=('delta', 'max'),
            increases=('is_increase', 'sum'),
            decreases=('is_decrease', 'sum'),
            unchanged=('is_unchanged', 'sum'),
        )
        .reset_index()
    )


def delta_distribution(
    deltas: pd.DataFrame,
    bucket_minutes: int = DEFAULT_BUCKET_MINUTES,
    segment_labels: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Summary statistics of deltas per bucket, overall and per segment.

    Quartiles use linear interpolation. Events with a null segment appear
    only in the overall (segment = None) rows.

    Returns:
        DataFrame with DISTRIBUTION_COLUMNS sorted by bucket_start then
        segment order.
    """
    if deltas.empty:
        return pd.DataFrame({
            col: pd.Series(dtype='datetime64[ns]' if col == 'bucket_start' else object)
            for col in DISTRIBUTION_COLUMNS
        })

    frame = deltas.assign(
        bucket_start=floor_to_bucket(deltas['occurred_at'], bucket_minutes),
        is_increase=deltas['direction'] == DeltaDirection.INCREASE.value,
        is_decrease=deltas['direction'] == DeltaDirection.DECREASE.value,
        is_unchanged=deltas['direction'] == DeltaDirection.UNCHANGED.value,
    )

    overall = _summarize(frame, ['bucket_start'])
    overall['segment'] = None

    segmented = frame[frame['segment'].notna()]
    parts = [overall]
    if not segmented.empty:
        parts.append(_summarize(segmented, ['bucket_start', 'segment']))

    summary = pd.concat(parts, ignore_index=True)
    for col in ('event_count', 'increases', 'decreases', 'unchanged'):
        summary[col] = summary[col].astype('int64')

    return sort_records(summary[DISTRIBUTION_COLUMNS], segment_labels)
